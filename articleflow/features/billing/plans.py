"""
Plan lookup: Stripe price id -> (plan id, articles per month).

The subscription_plans table is authoritative; the configured price ids are
the fallback. Unknown prices and lookup failures degrade to the default paid
plan instead of failing the caller.
"""
from typing import Dict, Optional

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from articleflow.core.database import session_scope, subscription_plans
from articleflow.core.logging import log_event
from articleflow.models.billing import PlanResolution

FREE_PLAN_ID = "free"

# Articles per month for plans absent from subscription_plans
DEFAULT_PLAN_QUOTAS = {
    "pro": 30,
    "enterprise": 100,
}


class PlanCatalog:
    def __init__(
        self,
        session_factory: sessionmaker,
        price_map: Optional[Dict[str, str]] = None,
        default_plan: str = "pro",
        free_articles_per_month: int = 2,
    ):
        self._session_factory = session_factory
        self.price_map = {k: v for k, v in (price_map or {}).items() if k}
        self.default_plan = default_plan
        self.free_articles_per_month = free_articles_per_month

    def resolve(self, price_id: Optional[str]) -> PlanResolution:
        if price_id:
            try:
                found = self._lookup_price(price_id)
            except SQLAlchemyError as exc:
                log_event(
                    "warning",
                    "billing.plan_lookup_failed",
                    error_code="unavailable",
                    extra={"price_id": price_id, "error": exc},
                )
                found = None
            if found is not None:
                return found
            plan_id = self.price_map.get(price_id)
            if plan_id:
                return PlanResolution(plan_id=plan_id, articles_per_month=self.quota_for(plan_id))

        log_event(
            "warning",
            "billing.plan_fallback",
            extra={"price_id": price_id, "plan_id": self.default_plan},
        )
        return PlanResolution(
            plan_id=self.default_plan,
            articles_per_month=self.quota_for(self.default_plan),
            fallback=True,
        )

    def _lookup_price(self, price_id: str) -> Optional[PlanResolution]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(subscription_plans.c.id, subscription_plans.c.articles_per_month).where(
                    and_(
                        subscription_plans.c.stripe_price_id == price_id,
                        subscription_plans.c.is_active.is_(True),
                    )
                )
            ).fetchone()
            if not row:
                return None
            return PlanResolution(plan_id=row.id, articles_per_month=row.articles_per_month)

    def price_for_plan(self, plan_id: str) -> Optional[str]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(subscription_plans.c.stripe_price_id).where(subscription_plans.c.id == plan_id)
            ).fetchone()
        if row and row.stripe_price_id:
            return row.stripe_price_id
        for price_id, mapped in self.price_map.items():
            if mapped == plan_id:
                return price_id
        return None

    def quota_for(self, plan_id: Optional[str]) -> int:
        if not plan_id or plan_id == FREE_PLAN_ID:
            return self.free_articles_per_month
        try:
            with session_scope(self._session_factory) as session:
                row = session.execute(
                    select(subscription_plans.c.articles_per_month).where(subscription_plans.c.id == plan_id)
                ).fetchone()
        except SQLAlchemyError as exc:
            log_event("warning", "billing.quota_lookup_failed", extra={"plan_id": plan_id, "error": exc})
            row = None
        if row:
            return row.articles_per_month
        return DEFAULT_PLAN_QUOTAS.get(plan_id, self.free_articles_per_month)

"""
Subscription reconciler.

Converges the canonical subscription record from two independent triggers:

1. Provider events (Stripe webhook), deduplicated by event id in billing_events
2. Client checkout verification (POST /stripe/verify-session)

Both paths normalize what they observed into a SubscriptionObservation and
funnel it through upsert_subscription(). Whichever observation is applied last
wins; there is no timestamp comparison between paths.
"""
import hashlib
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from articleflow.core.errors import (
    ForbiddenError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from articleflow.core.logging import log_event
from articleflow.features.billing.plans import FREE_PLAN_ID, PlanCatalog
from articleflow.features.billing.provider import (
    BillingEvent,
    BillingProvider,
    BillingProviderError,
    SubscriptionObservation,
)
from articleflow.features.billing.store import BillingEventLog, SubscriptionStore
from articleflow.models.billing import (
    BLOCKING_STATUSES,
    SubscriptionRecord,
    normalize_status,
)

PAID_SESSION_STATUSES = frozenset({"paid", "no_payment_required"})

SUBSCRIPTION_EVENTS = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})
INVOICE_EVENTS = frozenset({
    "invoice.payment_succeeded",
    "invoice.payment_failed",
})


class SubscriptionReconciler:
    def __init__(
        self,
        provider: Optional[BillingProvider],
        subscriptions: SubscriptionStore,
        events: BillingEventLog,
        plans: PlanCatalog,
        app_url: str = "http://localhost:3000",
        trial_days: int = 7,
    ):
        self.provider = provider
        self.subscriptions = subscriptions
        self.events = events
        self.plans = plans
        self.app_url = app_url.rstrip("/")
        self.trial_days = trial_days

    def _require_provider(self) -> BillingProvider:
        if self.provider is None:
            raise UnavailableError("Billing provider not configured")
        return self.provider

    # ----- provider-event path -----

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> Dict[str, Any]:
        """
        Process a billing webhook (idempotent).

        1. Verify signature and parse
        2. Skip if the event id was already processed
        3. Apply the observation
        4. Mark processed (or record the error and re-raise)

        Raises:
            BillingWebhookError: signature or payload invalid
            UnavailableError: storage or provider failure, safe to redeliver
        """
        event = self._require_provider().parse_webhook(headers, body)
        payload_hash = hashlib.sha256(body).hexdigest()

        try:
            fresh = self.events.begin(event.event_id, event.event_type, payload_hash)
        except SQLAlchemyError as exc:
            raise UnavailableError("Billing event storage unavailable") from exc

        if not fresh:
            log_event("info", "billing.webhook_duplicate", event_type=event.event_type,
                      extra={"event_id": event.event_id})
            return {"received": True, "duplicate": True}

        try:
            self._apply_event(event)
        except Exception as exc:
            try:
                self.events.mark_failed(event.event_id, str(exc))
            except SQLAlchemyError:
                log_event("error", "billing.event_mark_failed_error", event_type=event.event_type,
                          extra={"event_id": event.event_id}, exc_info=True)
            if isinstance(exc, (SQLAlchemyError, BillingProviderError)):
                raise UnavailableError("Billing event processing failed; safe to redeliver") from exc
            raise

        try:
            self.events.mark_processed(event.event_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Billing event storage unavailable") from exc
        return {"received": True, "duplicate": False}

    def _apply_event(self, event: BillingEvent) -> None:
        event_type = event.event_type
        if event_type in SUBSCRIPTION_EVENTS and event.subscription is not None:
            self.observe(event.subscription, source="webhook", customer_id=event.customer_id)
        elif event_type == "checkout.session.completed" or event_type in INVOICE_EVENTS:
            if not event.subscription_id:
                log_event("info", "billing.webhook_no_subscription", event_type=event_type,
                          extra={"event_id": event.event_id})
                return
            observation = self._require_provider().retrieve_subscription(event.subscription_id)
            if not observation.user_id:
                observation.user_id = event.metadata.get("user_id")
            self.observe(observation, source="webhook", customer_id=event.customer_id)
        elif event_type == "customer.subscription.trial_will_end":
            log_event("info", "billing.trial_will_end", event_type=event_type,
                      extra={"subscription_id": event.subscription_id})
        else:
            log_event("info", "billing.webhook_ignored", event_type=event_type,
                      extra={"event_id": event.event_id})

    def _resolve_user(self, observation: SubscriptionObservation, customer_id: Optional[str]) -> Optional[str]:
        if observation.user_id:
            return observation.user_id
        existing = self.subscriptions.get_by_provider_id(observation.provider_subscription_id)
        if existing:
            return existing.user_id
        customer = observation.customer_id or customer_id
        if customer:
            return self.subscriptions.find_user_by_customer(customer)
        return None

    def observe(
        self,
        observation: SubscriptionObservation,
        source: str,
        customer_id: Optional[str] = None,
    ) -> Optional[SubscriptionRecord]:
        """Normalize one observation and apply it. Returns None when no user can be resolved."""
        try:
            user_id = self._resolve_user(observation, customer_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Subscription storage unavailable") from exc
        if not user_id:
            log_event(
                "warning",
                "billing.user_unresolved",
                extra={"subscription_id": observation.provider_subscription_id, "source": source},
            )
            return None

        plan = self.plans.resolve(observation.price_id)
        record = SubscriptionRecord(
            user_id=user_id,
            provider_subscription_id=observation.provider_subscription_id,
            plan_id=plan.plan_id,
            status=normalize_status(observation.status),
            current_period_start=observation.current_period_start,
            current_period_end=observation.current_period_end,
            customer_id=observation.customer_id or customer_id,
            price_id=observation.price_id,
            cancel_at_period_end=observation.cancel_at_period_end,
        )
        return self.upsert_subscription(record, source=source)

    def upsert_subscription(self, record: SubscriptionRecord, source: str = "direct") -> SubscriptionRecord:
        try:
            changed = self.subscriptions.upsert(record)
            stored = self.subscriptions.get_for_user(record.user_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Subscription storage unavailable") from exc

        log_event(
            "info",
            "billing.subscription_upserted" if changed else "billing.subscription_unchanged",
            user_id=record.user_id,
            extra={
                "subscription_id": record.provider_subscription_id,
                "status": record.status.value,
                "plan_id": record.plan_id,
                "source": source,
            },
        )
        return stored

    # ----- client-verification path -----

    def verify_checkout_session(self, session_id: str, user_id: str) -> Dict[str, Any]:
        """
        Returns:
            {"status": "pending", "plan": None} while payment is not settled,
            otherwise the canonical {"status", "plan"} after the upsert.

        Raises:
            ForbiddenError: session belongs to another user
            UnavailableError: provider or storage failure
        """
        try:
            state = self._require_provider().retrieve_checkout_session(session_id)
        except BillingProviderError as exc:
            raise UnavailableError("Billing provider unavailable") from exc

        if state.user_id != user_id:
            raise ForbiddenError("Checkout session belongs to another user")

        if state.payment_status not in PAID_SESSION_STATUSES or state.subscription is None:
            log_event("info", "billing.verify_pending", user_id=user_id,
                      extra={"session_id": session_id, "payment_status": state.payment_status})
            return {"status": "pending", "plan": None}

        observation = state.subscription
        observation.user_id = user_id
        record = self.observe(observation, source="verify_session")
        return {"status": record.status.value, "plan": record.plan_id}

    # ----- read model / checkout -----

    def get_subscription(self, user_id: str) -> Optional[SubscriptionRecord]:
        try:
            return self.subscriptions.get_for_user(user_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Subscription storage unavailable") from exc

    def get_billing_status(self, user_id: str) -> Dict[str, Any]:
        record = self.get_subscription(user_id)
        if record is None:
            return {
                "plan_id": FREE_PLAN_ID,
                "status": None,
                "articles_per_month": self.plans.quota_for(FREE_PLAN_ID),
                "current_period_end": None,
                "cancel_at_period_end": False,
                "can_generate": True,
            }
        return {
            "plan_id": record.plan_id,
            "status": record.status.value,
            "articles_per_month": self.plans.quota_for(record.plan_id),
            "current_period_end": record.current_period_end,
            "cancel_at_period_end": record.cancel_at_period_end,
            "can_generate": record.status not in BLOCKING_STATUSES,
        }

    def create_checkout(self, user_id: str, plan_id: str, email: Optional[str] = None) -> str:
        provider = self._require_provider()
        try:
            price_id = self.plans.price_for_plan(plan_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Plan storage unavailable") from exc
        if not price_id:
            raise ValidationError(f"No Stripe price configured for plan: {plan_id}", fields=["plan_id"])

        try:
            url = provider.create_checkout_session(
                price_id=price_id,
                success_url=f"{self.app_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.app_url}/pricing",
                metadata={"user_id": user_id, "plan_id": plan_id},
                customer_email=email,
                trial_days=self.trial_days,
            )
        except BillingProviderError as exc:
            raise UnavailableError("Billing provider unavailable") from exc

        log_event("info", "billing.checkout_created", user_id=user_id, extra={"plan_id": plan_id})
        return url

    def create_portal(self, user_id: str) -> str:
        """Billing portal URL for the user's Stripe customer.

        Raises:
            NotFoundError: user has no subscription with a customer id
        """
        record = self.get_subscription(user_id)
        if record is None or not record.customer_id:
            raise NotFoundError("No subscription found")
        try:
            return self._require_provider().create_portal_session(
                record.customer_id, return_url=f"{self.app_url}/dashboard/billing"
            )
        except BillingProviderError as exc:
            raise UnavailableError("Billing provider unavailable") from exc

    def set_cancel_at_period_end(self, user_id: str, cancel: bool) -> SubscriptionRecord:
        record = self.get_subscription(user_id)
        if record is None:
            raise NotFoundError("No subscription for user")
        try:
            observation = self._require_provider().set_cancel_at_period_end(
                record.provider_subscription_id, cancel
            )
        except BillingProviderError as exc:
            raise UnavailableError("Billing provider unavailable") from exc
        observation.user_id = user_id
        return self.observe(observation, source="cancel_toggle")

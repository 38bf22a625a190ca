"""
Canonical subscription storage.

upsert() is a single INSERT .. ON CONFLICT (provider_subscription_id)
DO UPDATE .. WHERE <some column differs> statement:
- replaying an identical observation touches nothing (updated_at included)
- concurrent writers for one subscription serialize on the row
- the last observation applied wins; observations carry no ordering
- a user keeps one row; a new subscription id re-keys it, but a terminal
  event for the replaced id never overwrites a live subscription
"""
from typing import Optional

from sqlalchemy import select, insert, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

from articleflow.core.database import billing_events, session_scope, subscriptions, utc_now
from articleflow.core.logging import log_event
from articleflow.models.billing import TERMINAL_STATUSES, SubscriptionRecord, SubscriptionStatus

# Columns compared (and overwritten) on conflict; user_id is fixed at insert
_MUTABLE_COLUMNS = (
    "customer_id",
    "price_id",
    "plan_id",
    "status",
    "current_period_start",
    "current_period_end",
    "cancel_at_period_end",
)

_TERMINAL_VALUES = frozenset(s.value for s in TERMINAL_STATUSES)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _row_to_record(row) -> SubscriptionRecord:
    return SubscriptionRecord(
        user_id=row.user_id,
        provider_subscription_id=row.provider_subscription_id,
        plan_id=row.plan_id,
        status=SubscriptionStatus(row.status),
        current_period_start=row.current_period_start,
        current_period_end=row.current_period_end,
        customer_id=row.customer_id,
        price_id=row.price_id,
        cancel_at_period_end=bool(row.cancel_at_period_end),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SubscriptionStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def upsert(self, record: SubscriptionRecord) -> bool:
        """Apply one observation. Returns True when the stored row changed."""
        now = utc_now()
        values = {
            "customer_id": record.customer_id,
            "price_id": record.price_id,
            "plan_id": record.plan_id,
            "status": record.status.value,
            "current_period_start": record.current_period_start,
            "current_period_end": record.current_period_end,
            "cancel_at_period_end": bool(record.cancel_at_period_end),
        }
        with session_scope(self._session_factory) as session:
            owned = session.execute(
                select(subscriptions.c.provider_subscription_id, subscriptions.c.status).where(
                    subscriptions.c.user_id == record.user_id
                )
            ).fetchone()
            if owned and owned.provider_subscription_id != record.provider_subscription_id:
                if record.status in TERMINAL_STATUSES and owned.status not in _TERMINAL_VALUES:
                    # Late event for a subscription the user already replaced
                    log_event(
                        "info",
                        "billing.stale_subscription_ignored",
                        user_id=record.user_id,
                        entity_id=record.provider_subscription_id,
                        extra={"status": record.status.value, "current_subscription": owned.provider_subscription_id},
                    )
                    return False
                # Re-subscription: re-key the user's row to the new provider id
                result = session.execute(
                    update(subscriptions)
                    .where(subscriptions.c.user_id == record.user_id)
                    .values(
                        provider_subscription_id=record.provider_subscription_id,
                        updated_at=now,
                        **values,
                    )
                )
                return result.rowcount > 0

            result = session.execute(self._upsert_statement(session, record, values, now))
            return result.rowcount > 0

    @staticmethod
    def _upsert_statement(session: Session, record: SubscriptionRecord, values: dict, now):
        dialect = session.get_bind().dialect.name
        try:
            insert_fn = _DIALECT_INSERTS[dialect]
        except KeyError:
            raise RuntimeError(f"Subscription upsert not supported on {dialect}")

        stmt = insert_fn(subscriptions).values(
            user_id=record.user_id,
            provider_subscription_id=record.provider_subscription_id,
            created_at=now,
            updated_at=now,
            **values,
        )
        excluded = stmt.excluded
        set_ = {name: excluded[name] for name in _MUTABLE_COLUMNS}
        set_["updated_at"] = excluded.updated_at
        return stmt.on_conflict_do_update(
            index_elements=[subscriptions.c.provider_subscription_id],
            set_=set_,
            where=or_(
                *[subscriptions.c[name].is_distinct_from(excluded[name]) for name in _MUTABLE_COLUMNS]
            ),
        )

    def get_for_user(self, user_id: str) -> Optional[SubscriptionRecord]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(subscriptions).where(subscriptions.c.user_id == user_id)
            ).fetchone()
            return _row_to_record(row) if row else None

    def get_by_provider_id(self, provider_subscription_id: str) -> Optional[SubscriptionRecord]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(subscriptions).where(
                    subscriptions.c.provider_subscription_id == provider_subscription_id
                )
            ).fetchone()
            return _row_to_record(row) if row else None

    def find_user_by_customer(self, customer_id: str) -> Optional[str]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(subscriptions.c.user_id)
                .where(subscriptions.c.customer_id == customer_id)
                .order_by(subscriptions.c.updated_at.desc())
                .limit(1)
            ).fetchone()
            return row.user_id if row else None


class BillingEventLog:
    """Webhook event ledger keyed by Stripe event id."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def begin(self, event_id: str, event_type: str, payload_hash: str) -> bool:
        """Record an event. Returns False when it was already processed."""
        with session_scope(self._session_factory) as session:
            existing = session.execute(
                select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event_id)
            ).fetchone()
            if existing:
                # Failed deliveries are reprocessed on redelivery
                return not existing.processed
        try:
            with session_scope(self._session_factory) as session:
                session.execute(
                    insert(billing_events).values(
                        stripe_event_id=event_id,
                        event_type=event_type,
                        payload_hash=payload_hash,
                        processed=False,
                        received_at=utc_now(),
                    )
                )
        except IntegrityError:
            # Concurrent delivery of the same event already recorded it
            return False
        return True

    def mark_processed(self, event_id: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event_id)
                .values(processed=True, processed_at=utc_now(), error=None)
            )

    def mark_failed(self, event_id: str, error: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event_id)
                .values(error=error[:2000])
            )

    def is_processed(self, event_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event_id)
            ).fetchone()
            return bool(row and row.processed)

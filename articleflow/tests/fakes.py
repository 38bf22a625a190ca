"""
Hand-written fakes for the external clients (Stripe, Google Sheets, RQ).
"""
import json
from collections import defaultdict
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from articleflow.features.billing.provider import (
    BillingEvent,
    BillingProviderError,
    BillingWebhookError,
    CheckoutSessionState,
    SubscriptionObservation,
)
from articleflow.features.ledger.sheets import LedgerClientError, _column_letter

VALID_SIGNATURE = "t=1,v1=valid"

PERIOD_START = datetime(2025, 1, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2025, 2, 1, tzinfo=timezone.utc)


def observation(
    sub_id: str = "sub_1",
    status: str = "active",
    price_id: Optional[str] = "price_pro",
    user_id: Optional[str] = "user_alice",
    customer_id: Optional[str] = "cus_1",
    period_start: Optional[datetime] = PERIOD_START,
    period_end: Optional[datetime] = PERIOD_END,
    cancel_at_period_end: bool = False,
) -> SubscriptionObservation:
    return SubscriptionObservation(
        provider_subscription_id=sub_id,
        status=status,
        price_id=price_id,
        current_period_start=period_start,
        current_period_end=period_end,
        customer_id=customer_id,
        user_id=user_id,
        cancel_at_period_end=cancel_at_period_end,
    )


def _encode_observation(obs: Optional[SubscriptionObservation]) -> Optional[dict]:
    if obs is None:
        return None
    data = asdict(obs)
    for key in ("current_period_start", "current_period_end"):
        if data[key] is not None:
            data[key] = int(data[key].timestamp())
    return data


def _decode_observation(data: Optional[dict]) -> Optional[SubscriptionObservation]:
    if data is None:
        return None
    data = dict(data)
    for key in ("current_period_start", "current_period_end"):
        if data[key] is not None:
            data[key] = datetime.fromtimestamp(data[key], tz=timezone.utc)
    return SubscriptionObservation(**data)


def webhook_body(
    event_id: str,
    event_type: str,
    subscription: Optional[SubscriptionObservation] = None,
    subscription_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    metadata: Optional[Dict[str, str]] = None,
) -> bytes:
    return json.dumps({
        "id": event_id,
        "type": event_type,
        "subscription": _encode_observation(subscription),
        "subscription_id": subscription_id,
        "customer_id": customer_id,
        "metadata": metadata or {},
    }).encode()


class FakeBillingProvider:
    """In-memory BillingProvider."""

    def __init__(self):
        self.sessions: Dict[str, CheckoutSessionState] = {}
        self.subscriptions: Dict[str, SubscriptionObservation] = {}
        self.checkout_calls: List[dict] = []
        self.fail_retrieval = False

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        if headers.get("stripe-signature") != VALID_SIGNATURE:
            raise BillingWebhookError("Invalid signature: fake verification failed")
        payload = json.loads(body)
        return BillingEvent(
            event_id=payload["id"],
            event_type=payload["type"],
            subscription=_decode_observation(payload.get("subscription")),
            subscription_id=payload.get("subscription_id"),
            customer_id=payload.get("customer_id"),
            metadata=payload.get("metadata") or {},
        )

    def add_session(
        self,
        session_id: str,
        user_id: str,
        payment_status: str = "paid",
        subscription: Optional[SubscriptionObservation] = None,
    ) -> None:
        self.sessions[session_id] = CheckoutSessionState(
            session_id=session_id,
            user_id=user_id,
            payment_status=payment_status,
            subscription=subscription,
        )

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionState:
        if self.fail_retrieval or session_id not in self.sessions:
            raise BillingProviderError(f"No such checkout session: {session_id}")
        state = self.sessions[session_id]
        sub = replace(state.subscription) if state.subscription else None
        return replace(state, subscription=sub)

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObservation:
        if self.fail_retrieval or subscription_id not in self.subscriptions:
            raise BillingProviderError(f"No such subscription: {subscription_id}")
        return replace(self.subscriptions[subscription_id])

    def create_checkout_session(self, price_id, success_url, cancel_url, metadata,
                                customer_email=None, trial_days=0) -> str:
        self.checkout_calls.append({
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
            "customer_email": customer_email,
            "trial_days": trial_days,
        })
        return f"https://checkout.test/{len(self.checkout_calls)}"

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        return f"https://portal.test/{customer_id}"

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> SubscriptionObservation:
        current = self.retrieve_subscription(subscription_id)
        updated = replace(current, cancel_at_period_end=cancel)
        self.subscriptions[subscription_id] = updated
        return replace(updated)


class FakeLedgerClient:
    """In-memory LedgerClient; set fail=True to simulate a network error.

    fail_subledger=True fails only sub-ledger creation.
    """

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.fail_subledger = False
        self.sheets = defaultdict(list)
        self.appended: List[tuple] = []
        self.subledgers: List[tuple] = []
        self.updated: List[tuple] = []
        self.cleared: List[tuple] = []

    def _check(self):
        if self.fail:
            raise LedgerClientError("Simulated network error")

    def append_row(self, spreadsheet_id: str, sheet_name: str, row: List[str]) -> str:
        self._check()
        rows = self.sheets[(spreadsheet_id, sheet_name)]
        rows.append(list(row))
        self.appended.append((spreadsheet_id, sheet_name, list(row)))
        n = len(rows)
        return f"{sheet_name}!A{n}:{_column_letter(len(row))}{n}"

    def create_subledger(self, spreadsheet_id: str, sheet_name: str, header: List[str]) -> Optional[str]:
        self._check()
        if self.fail_subledger:
            raise LedgerClientError("Simulated addSheet error")
        sheet_id = str(1000 + len(self.subledgers))
        self.subledgers.append((spreadsheet_id, sheet_name, list(header)))
        self.sheets[(spreadsheet_id, sheet_name)].append(list(header))
        return sheet_id

    def update_row(self, spreadsheet_id: str, a1_range: str, row: List[str]) -> str:
        self._check()
        self.updated.append((spreadsheet_id, a1_range, list(row)))
        return a1_range

    def clear_row(self, spreadsheet_id: str, a1_range: str) -> None:
        self._check()
        self.cleared.append((spreadsheet_id, a1_range))


class ImmediateDispatcher:
    """Runs sync jobs inline, right after they are scheduled."""

    def __init__(self, runner=None):
        self.runner = runner
        self.dispatched: List[str] = []

    def dispatch(self, job_id: str) -> None:
        self.dispatched.append(job_id)
        if self.runner is not None:
            self.runner.run(job_id)


class RecordingDispatcher:
    """Records job ids without running them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.dispatched: List[str] = []

    def dispatch(self, job_id: str) -> None:
        if self.fail:
            raise ConnectionError("Redis unavailable")
        self.dispatched.append(job_id)

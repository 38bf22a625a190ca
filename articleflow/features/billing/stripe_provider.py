"""
Stripe billing provider implementation.

Implements BillingProvider using an explicit stripe.StripeClient handle.
Handles webhook signature verification and normalizes Stripe payloads.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from articleflow.features.billing.provider import (
    BillingEvent,
    BillingProviderError,
    BillingWebhookError,
    CheckoutSessionState,
    SubscriptionObservation,
)


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a dict or StripeObject."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(sub: Any) -> Any:
    items = _field(_field(sub, "items"), "data") or []
    return items[0] if items else None


def parse_subscription(sub: Any, user_id: Optional[str] = None) -> SubscriptionObservation:
    """Normalize a Stripe subscription object.

    Newer API versions carry the billing period on the subscription item
    rather than the subscription; both are accepted.
    """
    item = _first_item(sub)
    price_id = _field(_field(item, "price"), "id")
    period_start = _field(sub, "current_period_start") or _field(item, "current_period_start")
    period_end = _field(sub, "current_period_end") or _field(item, "current_period_end")
    metadata = _field(sub, "metadata") or {}
    customer = _field(sub, "customer")
    if customer is not None and not isinstance(customer, str):
        customer = _field(customer, "id")
    return SubscriptionObservation(
        provider_subscription_id=_field(sub, "id"),
        status=_field(sub, "status"),
        price_id=price_id,
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        customer_id=customer,
        user_id=user_id or _field(metadata, "user_id"),
        cancel_at_period_end=bool(_field(sub, "cancel_at_period_end", False)),
    )


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str], webhook_secret: Optional[str] = None, client=None):
        """
        Args:
            secret_key: Stripe secret key
            webhook_secret: Stripe webhook signing secret
            client: prebuilt stripe.StripeClient (tests)
        """
        if client is None:
            if not secret_key:
                raise BillingProviderError("STRIPE_SECRET_KEY not configured")
            client = stripe.StripeClient(secret_key)
        self.client = client
        self.webhook_secret = webhook_secret

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            event = self.client.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        return self._parse_event(event)

    def _parse_event(self, event: Any) -> BillingEvent:
        """Parse Stripe event into a normalized BillingEvent."""
        event_type = _field(event, "type")
        data = _field(_field(event, "data"), "object") or {}
        metadata = dict(_field(data, "metadata") or {})

        subscription = None
        subscription_id = None
        customer_id = _field(data, "customer")

        if event_type.startswith("customer.subscription."):
            subscription = parse_subscription(data)
            subscription_id = subscription.provider_subscription_id
        elif event_type == "checkout.session.completed":
            subscription_id = _field(data, "subscription")
        elif event_type.startswith("invoice."):
            subscription_id = _field(data, "subscription")
            if not subscription_id:
                # Newer API versions nest the subscription under parent.subscription_details
                details = _field(_field(data, "parent"), "subscription_details")
                subscription_id = _field(details, "subscription")

        if subscription_id is not None and not isinstance(subscription_id, str):
            subscription_id = _field(subscription_id, "id")

        return BillingEvent(
            event_id=_field(event, "id"),
            event_type=event_type,
            subscription=subscription,
            subscription_id=subscription_id,
            customer_id=customer_id if isinstance(customer_id, str) else _field(customer_id, "id"),
            metadata=metadata,
        )

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionState:
        try:
            session = self.client.checkout.sessions.retrieve(
                session_id, params={"expand": ["subscription"]}
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe session retrieval failed: {e}")

        user_id = _field(_field(session, "metadata"), "user_id")
        sub = _field(session, "subscription")
        subscription = None
        if isinstance(sub, str):
            subscription = self.retrieve_subscription(sub)
        elif sub is not None:
            subscription = parse_subscription(sub)
        if subscription is not None and not subscription.user_id:
            subscription.user_id = user_id

        return CheckoutSessionState(
            session_id=_field(session, "id") or session_id,
            user_id=user_id,
            payment_status=_field(session, "payment_status"),
            subscription=subscription,
        )

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObservation:
        try:
            sub = self.client.subscriptions.retrieve(subscription_id)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription retrieval failed: {e}")
        return parse_subscription(sub)

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        trial_days: int = 0,
    ) -> str:
        """Create Stripe checkout session."""
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
        }
        if trial_days:
            params["subscription_data"]["trial_period_days"] = trial_days
        if customer_email:
            params["customer_email"] = customer_email
        try:
            session = self.client.checkout.sessions.create(params=params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return _field(session, "url")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create Stripe billing portal session."""
        try:
            session = self.client.billing_portal.sessions.create(
                params={"customer": customer_id, "return_url": return_url}
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe portal session creation failed: {e}")
        return _field(session, "url")

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> SubscriptionObservation:
        try:
            sub = self.client.subscriptions.update(
                subscription_id, params={"cancel_at_period_end": cancel}
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription update failed: {e}")
        return parse_subscription(sub)

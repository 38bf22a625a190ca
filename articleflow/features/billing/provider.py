"""
Billing provider protocol.

Defines the interface the reconciler depends on. Provider payloads are
normalized into the dataclasses below before any business logic sees them.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class SubscriptionObservation:
    """One observed provider subscription state."""
    provider_subscription_id: str
    status: Optional[str]  # raw provider status, normalized by the reconciler
    price_id: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    customer_id: Optional[str]
    user_id: Optional[str] = None
    cancel_at_period_end: bool = False


@dataclass
class BillingEvent:
    """Verified webhook event."""
    event_id: str
    event_type: str
    subscription: Optional[SubscriptionObservation]
    # Subscription id referenced by the event when the payload is not a subscription
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckoutSessionState:
    session_id: str
    user_id: Optional[str]
    payment_status: Optional[str]
    subscription: Optional[SubscriptionObservation]


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Webhook signature verification and parsing
    - Checkout session retrieval (with its subscription)
    - Subscription retrieval
    - Checkout session creation
    """

    def parse_webhook(self, headers: Dict[str, str], body: bytes) -> BillingEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature invalid or parsing fails
        """
        ...

    def retrieve_checkout_session(self, session_id: str) -> CheckoutSessionState:
        """
        Raises:
            BillingProviderError: If retrieval fails
        """
        ...

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionObservation:
        ...

    def create_checkout_session(
        self,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        trial_days: int = 0,
    ) -> str:
        """
        Create a subscription checkout session.

        Returns:
            Checkout session URL
        """
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        ...

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> SubscriptionObservation:
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Exception for webhook processing errors."""
    pass

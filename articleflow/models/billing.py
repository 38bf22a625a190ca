"""
Billing models: canonical subscription record and plan resolution.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"


# Provider statuses outside our vocabulary
_PROVIDER_STATUS_ALIASES = {
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}

# Statuses that block content generation
BLOCKING_STATUSES = frozenset({SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED})

# Statuses a subscription never leaves
TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED})


def normalize_status(raw: Optional[str]) -> SubscriptionStatus:
    """Map a provider status string onto the fixed status vocabulary.

    Unknown or missing values become ``incomplete``.
    """
    if not raw:
        return SubscriptionStatus.INCOMPLETE
    try:
        return SubscriptionStatus(raw)
    except ValueError:
        return _PROVIDER_STATUS_ALIASES.get(raw, SubscriptionStatus.INCOMPLETE)


class SubscriptionRecord(BaseModel):
    """Canonical billing state for a user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    provider_subscription_id: str
    plan_id: str
    status: SubscriptionStatus
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    price_id: Optional[str] = None
    cancel_at_period_end: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PlanResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    articles_per_month: int
    fallback: bool = False

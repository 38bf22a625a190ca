"""
Row layouts for the Google Sheets ledger.

The main-sheet layout is consumed by downstream tooling; column order and the
Yes/No encoding are fixed.

Main sheet (17 columns):
    A  sheet name            J  Saturday
    B  customer name         K  Sunday
    C  customer email        L  paywall status
    D  language              M  end of membership
    E  Monday                N  customer sheet created (ISO timestamp)
    F  Tuesday               O  article 1 example
    G  Wednesday             P  article 2 example
    H  Thursday              Q  article 3 example
    I  Friday

Customers sheet (8 columns):
    email, display name, created at, language, delivery days, status,
    style samples, subjects
"""
import re
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from articleflow.features.drafts.validators import DAYS
from articleflow.models.drafts import ArticleStyle, OnboardingProfile

MAIN_SHEET_COLUMNS = 17
ONBOARDING_COLUMNS = 8
ARRAY_SEPARATOR = ","
SUBLEDGER_HEADER = ["Subject", "Status", "Generated", "Sent", "Content", "Notes"]
ONBOARDING_STATUSES = ("active", "paused")

_WHITESPACE = re.compile(r"\s")


def _flag(enabled: bool) -> str:
    return "Yes" if enabled else "No"


def _as_utc(ts: datetime) -> datetime:
    # Stored timestamps may come back naive; they are UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _iso(ts: datetime) -> str:
    return _as_utc(ts).isoformat().replace("+00:00", "Z")


def customer_sheet_name(style: ArticleStyle) -> str:
    """Per-customer sheet name: display name (or name), whitespace -> '_', plus id prefix."""
    base = style.display_name or style.name
    return f"{_WHITESPACE.sub('_', base)}_{style.id[:8]}"


def main_sheet_row(style: ArticleStyle, created: datetime, paywall_status: str = "active",
                   end_of_membership: str = "") -> List[str]:
    days = set(style.delivery_days)
    samples = list(style.style_samples[:3]) + [""] * (3 - min(len(style.style_samples), 3))
    row = [
        customer_sheet_name(style),
        style.display_name or style.name,
        style.email or "",
        style.preferred_language,
        *[_flag(day in days) for day in DAYS],
        paywall_status,
        end_of_membership,
        _iso(created),
        *samples,
    ]
    return row


class OnboardingRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    display_name: str
    created_at: str
    preferred_language: str
    delivery_days: List[str]
    status: str
    style_samples: List[str]
    subjects: List[str]

    @classmethod
    def from_profile(cls, profile: OnboardingProfile, status: str = "active") -> "OnboardingRow":
        if status not in ONBOARDING_STATUSES:
            raise ValueError(f"Invalid status value: expected 'active' or 'paused', got '{status}'")
        return cls(
            email=profile.email,
            display_name=profile.display_name,
            created_at=_iso(profile.created_at),
            preferred_language=profile.preferred_language,
            delivery_days=list(profile.delivery_days),
            status=status,
            style_samples=list(profile.style_samples),
            subjects=list(profile.subjects),
        )


def serialize_onboarding_row(data: OnboardingRow) -> List[str]:
    return [
        data.email,
        data.display_name,
        data.created_at,
        data.preferred_language,
        ARRAY_SEPARATOR.join(data.delivery_days),
        data.status,
        ARRAY_SEPARATOR.join(data.style_samples),
        ARRAY_SEPARATOR.join(data.subjects),
    ]


def subledger_sheet_name(profile: OnboardingProfile, now: Optional[datetime] = None) -> str:
    stamp = int(_as_utc(now or profile.completed_at).timestamp() * 1000)
    return f"{_WHITESPACE.sub('_', profile.display_name)}_{stamp}"

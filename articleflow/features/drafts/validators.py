"""
Field-local validation for wizard steps.

Each step validates its own payload before handing it to the accumulator;
the accumulator itself only enforces ownership and finalization state.
"""

import re
from typing import Callable, Dict, Iterable, List

from articleflow.core.errors import ValidationError
from articleflow.models.drafts import DraftKind

DAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_WORD_SPLIT = re.compile(r"\s+")


def count_words(text: str) -> int:
    """Count whitespace-separated non-empty tokens."""
    trimmed = text.strip()
    if not trimmed:
        return 0
    return len([w for w in _WORD_SPLIT.split(trimmed) if w])


def clean_style_samples(samples: Iterable[str]) -> List[str]:
    """Drop blank samples; at least one non-empty sample is required."""
    valid = [s for s in samples if s and count_words(s) > 0]
    if not valid:
        raise ValidationError("At least one style sample is required", fields=["style_samples"])
    return valid


def is_subject_valid(subject: str, existing: Iterable[str]) -> bool:
    trimmed = subject.strip()
    if not trimmed:
        return False
    return not any(e.lower() == trimmed.lower() for e in existing)


def clean_subjects(subjects: Iterable[str]) -> List[str]:
    """Trim subjects and drop blanks and case-insensitive duplicates, keeping order."""
    cleaned: List[str] = []
    for subject in subjects:
        if subject and is_subject_valid(subject, cleaned):
            cleaned.append(subject.strip())
    if not cleaned:
        raise ValidationError("At least one subject is required", fields=["subjects"])
    return cleaned


def clean_delivery_days(days: Iterable[str]) -> List[str]:
    """Normalize day codes to calendar order; at least one day is required."""
    requested = {(d or "").strip().lower() for d in days}
    unknown = sorted(requested - set(DAYS) - {""})
    if unknown:
        raise ValidationError(
            f"Unknown delivery day(s): {', '.join(unknown)}",
            fields=["delivery_days"],
        )
    ordered = [d for d in DAYS if d in requested]
    if not ordered:
        raise ValidationError("At least one delivery day is required", fields=["delivery_days"])
    return ordered


def require_text(value, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", fields=[field])
    return value.strip()


def _missing(fields: Dict, names: Iterable[str]) -> List[str]:
    missing = []
    for name in names:
        value = fields.get(name)
        if value is None:
            missing.append(name)
        elif isinstance(value, str) and not value.strip():
            missing.append(name)
        elif isinstance(value, (list, tuple)) and len(value) == 0:
            missing.append(name)
    return missing


ARTICLE_STYLE_REQUIRED = ("style_samples", "subjects", "name", "delivery_days")
ONBOARDING_REQUIRED = ("style_samples", "subjects", "email", "display_name", "delivery_days")


def article_style_required_fields(fields: Dict) -> List[str]:
    return _missing(fields, ARTICLE_STYLE_REQUIRED)


def onboarding_required_fields(fields: Dict) -> List[str]:
    return _missing(fields, ONBOARDING_REQUIRED)


REQUIRED_FIELD_CHECKS: Dict[DraftKind, Callable[[Dict], List[str]]] = {
    DraftKind.ARTICLE_STYLE: article_style_required_fields,
    DraftKind.ONBOARDING: onboarding_required_fields,
}

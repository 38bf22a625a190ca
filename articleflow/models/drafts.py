"""
articleflow/models/drafts.py
Draft and finalized-entity models for the multi-step wizards.
"""

from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Union


class DraftKind(str, Enum):
    ARTICLE_STYLE = "article_style"
    ONBOARDING = "onboarding"


class DraftStatus(str, Enum):
    """Draft lifecycle: open -> finalized (or superseded by a newer open draft)"""

    OPEN = "open"
    FINALIZED = "finalized"
    SUPERSEDED = "superseded"


class DraftFields(BaseModel):
    """Partial step payload. Only fields explicitly set are merged."""

    style_samples: Optional[List[str]] = None
    subjects: Optional[List[str]] = None
    name: Optional[str] = None
    display_name: Optional[str] = None
    preferred_language: Optional[str] = None
    delivery_days: Optional[List[str]] = None
    email: Optional[str] = None

    def as_update(self) -> dict:
        return self.model_dump(exclude_unset=True)


class Draft(BaseModel):
    model_config = ConfigDict(frozen=True)

    draft_id: str = Field(description="UUID")
    owner_id: str
    kind: DraftKind
    status: DraftStatus = DraftStatus.OPEN
    fields: dict = Field(default_factory=dict)
    entity_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    finalized_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == DraftStatus.OPEN


class ArticleStyle(BaseModel):
    """Finalized article style."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    name: str
    style_samples: List[str]
    subjects: List[str]
    email: Optional[str] = None
    display_name: Optional[str] = None
    preferred_language: str = "en"
    delivery_days: List[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @property
    def kind(self) -> DraftKind:
        return DraftKind.ARTICLE_STYLE


class ArticleStyleUpdate(BaseModel):
    """Explicit post-creation update; unset fields are left alone."""

    name: Optional[str] = Field(default=None, min_length=1)
    style_samples: Optional[List[str]] = None
    subjects: Optional[List[str]] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    preferred_language: Optional[str] = None
    delivery_days: Optional[List[str]] = None
    is_active: Optional[bool] = None


class OnboardingProfile(BaseModel):
    """Completed onboarding answers for a user."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    style_samples: List[str]
    subjects: List[str]
    email: str
    display_name: str
    preferred_language: str = "en"
    delivery_days: List[str] = Field(default_factory=list)
    created_at: datetime
    completed_at: datetime

    @property
    def kind(self) -> DraftKind:
        return DraftKind.ONBOARDING


FinalizedEntity = Union[ArticleStyle, OnboardingProfile]

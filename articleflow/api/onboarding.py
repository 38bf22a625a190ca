"""
Onboarding wizard API.

Step 3 finalizes the onboarding draft into the user's profile.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from articleflow.core.auth import get_current_user_id
from articleflow.core.container import ServiceContainer, get_services
from articleflow.features.drafts.validators import (
    REQUIRED_FIELD_CHECKS,
    clean_delivery_days,
    clean_style_samples,
    clean_subjects,
    require_text,
)
from articleflow.models.drafts import DraftFields, DraftKind

router = APIRouter(prefix="/onboarding", tags=["onboarding"])

KIND = DraftKind.ONBOARDING


class Step1Request(BaseModel):
    draft_id: Optional[str] = None
    style_samples: List[str]


class Step2Request(BaseModel):
    draft_id: str
    subjects: List[str]


class Step3Request(BaseModel):
    draft_id: str
    email: str
    display_name: str
    preferred_language: str = "en"
    delivery_days: List[str] = Field(default_factory=list)


@router.post("/step-1")
def save_step_1(
    body: Step1Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    fields = DraftFields(style_samples=clean_style_samples(body.style_samples))
    return {"draft_id": services.drafts.save_step(user_id, KIND, body.draft_id, fields)}


@router.post("/step-2")
def save_step_2(
    body: Step2Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    fields = DraftFields(subjects=clean_subjects(body.subjects))
    return {"draft_id": services.drafts.save_step(user_id, KIND, body.draft_id, fields)}


@router.post("/step-3")
def save_step_3(
    body: Step3Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    fields = DraftFields(
        email=require_text(body.email, "email"),
        display_name=require_text(body.display_name, "display_name"),
        preferred_language=body.preferred_language,
        delivery_days=clean_delivery_days(body.delivery_days),
    )
    draft_id = services.drafts.save_step(user_id, KIND, body.draft_id, fields)
    profile = services.drafts.complete_draft(draft_id, user_id, REQUIRED_FIELD_CHECKS[KIND])
    return {"draft_id": draft_id, "profile": profile.model_dump(mode="json")}


@router.get("/progress")
def get_progress(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Where the user is in onboarding: completed, or the next step of the open draft."""
    profile = services.entities.get_onboarding_profile_for_user(user_id)
    if profile is not None:
        return {"completed": True, "current_step": None, "draft_id": None, "fields": {}}

    draft = services.drafts.get_draft(user_id, KIND)
    if draft is None:
        return {"completed": False, "current_step": 1, "draft_id": None, "fields": {}}

    if not draft.fields.get("style_samples"):
        step = 1
    elif not draft.fields.get("subjects"):
        step = 2
    else:
        step = 3
    return {"completed": False, "current_step": step, "draft_id": draft.draft_id, "fields": draft.fields}

"""
Article style wizard API.

- POST /api/article-styles/step-1|step-2|step-3: save one step -> {draft_id}
- GET  /api/article-styles/step-1|step-2|step-3: stored fields of the open draft
- POST /api/article-styles/complete: finalize -> {style}
- GET/PATCH/DELETE /api/article-styles/{style_id}
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
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
from articleflow.models.drafts import ArticleStyleUpdate, DraftFields, DraftKind

router = APIRouter(prefix="/article-styles", tags=["article-styles"])

KIND = DraftKind.ARTICLE_STYLE

STEP_FIELDS = {
    1: ("style_samples",),
    2: ("subjects",),
    3: ("name", "display_name", "email", "preferred_language", "delivery_days"),
}


class Step1Request(BaseModel):
    draft_id: Optional[str] = None
    style_samples: List[str]


class Step2Request(BaseModel):
    draft_id: str
    subjects: List[str]


class Step3Request(BaseModel):
    draft_id: str
    name: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    preferred_language: str = "en"
    delivery_days: List[str] = Field(default_factory=list)
    complete: bool = False


class CompleteRequest(BaseModel):
    draft_id: str


def _step_view(services: ServiceContainer, user_id: str, step: int) -> dict:
    draft = services.drafts.get_draft(user_id, KIND)
    if draft is None:
        return {"draft_id": None, "fields": {}}
    return {
        "draft_id": draft.draft_id,
        "fields": {name: draft.fields.get(name) for name in STEP_FIELDS[step]},
    }


def _complete(services: ServiceContainer, draft_id: str, user_id: str) -> dict:
    style = services.drafts.complete_draft(draft_id, user_id, REQUIRED_FIELD_CHECKS[KIND])
    return {"style": style.model_dump(mode="json")}


@router.post("/step-1")
def save_step_1(
    body: Step1Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    fields = DraftFields(style_samples=clean_style_samples(body.style_samples))
    draft_id = services.drafts.save_step(user_id, KIND, body.draft_id, fields)
    return {"draft_id": draft_id}


@router.get("/step-1")
def get_step_1(user_id: str = Depends(get_current_user_id), services: ServiceContainer = Depends(get_services)):
    return _step_view(services, user_id, 1)


@router.post("/step-2")
def save_step_2(
    body: Step2Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    fields = DraftFields(subjects=clean_subjects(body.subjects))
    draft_id = services.drafts.save_step(user_id, KIND, body.draft_id, fields)
    return {"draft_id": draft_id}


@router.get("/step-2")
def get_step_2(user_id: str = Depends(get_current_user_id), services: ServiceContainer = Depends(get_services)):
    return _step_view(services, user_id, 2)


@router.post("/step-3")
def save_step_3(
    body: Step3Request,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    """Save name, contact and delivery settings; complete=true also finalizes."""
    fields = DraftFields(
        name=require_text(body.name, "name"),
        display_name=(body.display_name or "").strip() or None,
        email=(body.email or "").strip() or None,
        preferred_language=body.preferred_language,
        delivery_days=clean_delivery_days(body.delivery_days),
    )
    draft_id = services.drafts.save_step(user_id, KIND, body.draft_id, fields)
    if body.complete:
        return {"draft_id": draft_id, **_complete(services, draft_id, user_id)}
    return {"draft_id": draft_id}


@router.get("/step-3")
def get_step_3(user_id: str = Depends(get_current_user_id), services: ServiceContainer = Depends(get_services)):
    return _step_view(services, user_id, 3)


@router.post("/complete")
def complete(
    body: CompleteRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    return _complete(services, body.draft_id, user_id)


@router.get("/{style_id}")
def get_style(
    style_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    return {"style": services.styles.get(style_id, user_id).model_dump(mode="json")}


@router.patch("/{style_id}")
def update_style(
    style_id: str,
    body: ArticleStyleUpdate,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    style = services.styles.update(style_id, user_id, body)
    return {"style": style.model_dump(mode="json")}


@router.delete("/{style_id}", status_code=204)
def delete_style(
    style_id: str,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    services.styles.delete(style_id, user_id)
    return Response(status_code=204)

"""
Article style maintenance outside the wizard.

Explicit updates and deletes of finalized styles; each successful write
schedules the matching ledger sync operation.
"""
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from articleflow.core.errors import ForbiddenError, NotFoundError, UnavailableError
from articleflow.core.logging import log_event
from articleflow.features.drafts.entities import EntityStore
from articleflow.features.drafts.validators import (
    clean_delivery_days,
    clean_style_samples,
    clean_subjects,
    require_text,
)
from articleflow.models.drafts import ArticleStyle, ArticleStyleUpdate, DraftKind
from articleflow.models.ledger import SyncOperation


def _clean_update(changes: ArticleStyleUpdate) -> dict:
    values = changes.model_dump(exclude_unset=True)
    if "name" in values:
        values["name"] = require_text(values["name"], "name")
    if "style_samples" in values:
        values["style_samples"] = clean_style_samples(values["style_samples"] or [])
    if "subjects" in values:
        values["subjects"] = clean_subjects(values["subjects"] or [])
    if "delivery_days" in values:
        values["delivery_days"] = clean_delivery_days(values["delivery_days"] or [])
    if values.get("preferred_language") is None:
        values.pop("preferred_language", None)
    if values.get("is_active") is None:
        values.pop("is_active", None)
    return values


class ArticleStyleService:
    def __init__(self, entities: EntityStore, sync_scheduler=None):
        self.entities = entities
        self.sync_scheduler = sync_scheduler

    def get(self, style_id: str, owner_id: str) -> ArticleStyle:
        try:
            style = self.entities.get_article_style(style_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Article style storage unavailable") from exc
        if style is None:
            raise NotFoundError(f"Article style {style_id} not found")
        if style.user_id != owner_id:
            raise ForbiddenError("Article style belongs to another user")
        return style

    def update(self, style_id: str, owner_id: str, changes: ArticleStyleUpdate) -> ArticleStyle:
        self.get(style_id, owner_id)
        values = _clean_update(changes)
        if not values:
            return self.get(style_id, owner_id)
        try:
            updated = self.entities.update_article_style(style_id, values)
        except SQLAlchemyError as exc:
            raise UnavailableError("Article style storage unavailable") from exc
        if updated is None:
            raise NotFoundError(f"Article style {style_id} not found")

        log_event(
            "info",
            "article_style.updated",
            user_id=owner_id,
            entity_id=style_id,
            extra={"fields": ",".join(sorted(values))},
        )
        self._schedule(style_id, SyncOperation.UPDATE)
        return updated

    def delete(self, style_id: str, owner_id: str) -> None:
        self.get(style_id, owner_id)
        try:
            deleted = self.entities.delete_article_style(style_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Article style storage unavailable") from exc
        if not deleted:
            raise NotFoundError(f"Article style {style_id} not found")

        log_event("info", "article_style.deleted", user_id=owner_id, entity_id=style_id)
        self._schedule(style_id, SyncOperation.DELETE)

    def _schedule(self, style_id: str, operation: SyncOperation) -> Optional[str]:
        if self.sync_scheduler is None:
            return None
        try:
            return self.sync_scheduler.schedule(DraftKind.ARTICLE_STYLE.value, style_id, operation)
        except Exception as exc:
            log_event(
                "error",
                "ledger_sync.schedule_failed",
                entity_id=style_id,
                operation=operation.value,
                error_code="sync_degraded",
                extra={"error": exc},
                exc_info=True,
            )
            return None

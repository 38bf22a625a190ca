"""
Draft accumulator.

Accumulates multi-step wizard submissions into one draft per (owner, kind) and
promotes the draft to an immutable entity exactly once.

- save_step: create (superseding any open draft) or shallow-merge into an
  existing open draft
- get_draft: most recent open draft, read-only
- complete_draft: validate, insert the entity and flip the draft to finalized
  in one transaction, then schedule the ledger sync

Concurrent submissions of the same step are not locked; the last write seen by
the database wins.
"""
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from articleflow.core.errors import (
    AlreadyFinalizedError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from articleflow.core.logging import log_event
from articleflow.features.drafts.entities import EntityStore, build_entity
from articleflow.features.drafts.store import DraftStore
from articleflow.models.drafts import (
    Draft,
    DraftFields,
    DraftKind,
    DraftStatus,
    FinalizedEntity,
)
from articleflow.models.ledger import SyncOperation

RequiredFieldCheck = Callable[[Dict], List[str]]


class DraftAccumulator:
    def __init__(self, drafts: DraftStore, entities: EntityStore, sync_scheduler=None):
        self.drafts = drafts
        self.entities = entities
        self.sync_scheduler = sync_scheduler

    def _load_owned(self, draft_id: str, owner_id: str) -> Draft:
        draft = self.drafts.get(draft_id)
        if draft is None or draft.status == DraftStatus.SUPERSEDED:
            raise NotFoundError(f"Draft {draft_id} not found")
        if draft.owner_id != owner_id:
            raise ForbiddenError("Draft belongs to another user")
        return draft

    def save_step(
        self,
        owner_id: str,
        kind: DraftKind,
        draft_id: Optional[str],
        fields: DraftFields,
    ) -> str:
        """Persist one step's fields and return the draft id.

        Raises:
            NotFoundError: draft id unknown or superseded
            ForbiddenError: draft owned by another user
            ConflictError: draft already finalized, or a concurrent create won
            UnavailableError: storage failure
        """
        update = fields.as_update()
        try:
            if draft_id is None:
                draft = self.drafts.create(owner_id, kind, update)
                log_event(
                    "info",
                    "draft.created",
                    user_id=owner_id,
                    draft_id=draft.draft_id,
                    extra={"kind": kind.value},
                )
                return draft.draft_id

            draft = self._load_owned(draft_id, owner_id)
            if draft.kind != kind:
                raise NotFoundError(f"Draft {draft_id} not found")
            if draft.status == DraftStatus.FINALIZED:
                raise ConflictError("Draft already finalized")

            merged = {**draft.fields, **update}
            if not self.drafts.write_fields(draft_id, merged):
                # Finalized or superseded since it was read
                raise ConflictError("Draft is no longer open")
            log_event(
                "info",
                "draft.step_saved",
                user_id=owner_id,
                draft_id=draft_id,
                extra={"kind": kind.value, "fields": ",".join(sorted(update))},
            )
            return draft_id
        except IntegrityError as exc:
            raise ConflictError("Another draft was opened concurrently") from exc
        except SQLAlchemyError as exc:
            raise UnavailableError("Draft storage unavailable") from exc

    def get_draft(self, owner_id: str, kind: DraftKind) -> Optional[Draft]:
        try:
            return self.drafts.find_open(owner_id, kind)
        except SQLAlchemyError as exc:
            raise UnavailableError("Draft storage unavailable") from exc

    def complete_draft(
        self,
        draft_id: str,
        owner_id: str,
        required_field_check: RequiredFieldCheck,
    ) -> FinalizedEntity:
        """Finalize a draft into its entity.

        Raises:
            NotFoundError, ForbiddenError, AlreadyFinalizedError,
            ValidationError (missing fields, draft stays open),
            ConflictError (entity already exists), UnavailableError
        """
        try:
            draft = self._load_owned(draft_id, owner_id)
        except SQLAlchemyError as exc:
            raise UnavailableError("Draft storage unavailable") from exc

        if draft.status == DraftStatus.FINALIZED:
            raise AlreadyFinalizedError("Draft already finalized")

        missing = required_field_check(draft.fields)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields=missing,
            )

        entity = build_entity(draft.kind, owner_id, draft.fields)
        try:
            with self.drafts.session() as session:
                self.entities.insert(session, entity)
                if not self.drafts.mark_finalized(session, draft_id, entity.id):
                    # Lost the race to a concurrent completion; roll back the insert
                    raise AlreadyFinalizedError("Draft already finalized")
        except IntegrityError as exc:
            raise ConflictError(f"{draft.kind.value} already exists for this user") from exc
        except SQLAlchemyError as exc:
            raise UnavailableError("Draft storage unavailable") from exc

        log_event(
            "info",
            "draft.finalized",
            user_id=owner_id,
            draft_id=draft_id,
            entity_id=entity.id,
            extra={"kind": draft.kind.value},
        )
        self._schedule_sync(entity, draft.kind)
        return entity

    def _schedule_sync(self, entity: FinalizedEntity, kind: DraftKind) -> None:
        if self.sync_scheduler is None:
            return
        try:
            self.sync_scheduler.schedule(kind.value, entity.id, SyncOperation.CREATE)
        except Exception as exc:
            log_event(
                "error",
                "ledger_sync.schedule_failed",
                entity_id=entity.id,
                operation=SyncOperation.CREATE.value,
                error_code="sync_degraded",
                extra={"error": exc},
                exc_info=True,
            )

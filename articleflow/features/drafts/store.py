"""
articleflow/features/drafts/store.py

SQLAlchemy persistence for drafts.

Every read goes to the database. Concurrent saves of the same draft are not
locked: the last write observed by the database wins.
"""

from typing import Optional
from uuid import uuid4

from sqlalchemy import select, insert, update, and_
from sqlalchemy.orm import Session, sessionmaker

from articleflow.core.database import drafts, session_scope, utc_now
from articleflow.models.drafts import Draft, DraftKind, DraftStatus


def _row_to_draft(row) -> Draft:
    return Draft(
        draft_id=row.id,
        owner_id=row.owner_id,
        kind=DraftKind(row.kind),
        status=DraftStatus(row.status),
        fields=dict(row.fields or {}),
        entity_id=row.entity_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        finalized_at=row.finalized_at,
    )


class DraftStore:
    """Keyed access to the drafts table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, draft_id: str) -> Optional[Draft]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(drafts).where(drafts.c.id == draft_id)
            ).fetchone()
            return _row_to_draft(row) if row else None

    def find_open(self, owner_id: str, kind: DraftKind) -> Optional[Draft]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(drafts)
                .where(
                    and_(
                        drafts.c.owner_id == owner_id,
                        drafts.c.kind == kind.value,
                        drafts.c.status == DraftStatus.OPEN.value,
                    )
                )
                .order_by(drafts.c.updated_at.desc())
                .limit(1)
            ).fetchone()
            return _row_to_draft(row) if row else None

    def create(self, owner_id: str, kind: DraftKind, fields: dict) -> Draft:
        """Open a new draft, superseding any open draft of the same owner/kind."""
        now = utc_now()
        draft_id = str(uuid4())
        with session_scope(self._session_factory) as session:
            session.execute(
                update(drafts)
                .where(
                    and_(
                        drafts.c.owner_id == owner_id,
                        drafts.c.kind == kind.value,
                        drafts.c.status == DraftStatus.OPEN.value,
                    )
                )
                .values(status=DraftStatus.SUPERSEDED.value, updated_at=now)
            )
            session.execute(
                insert(drafts).values(
                    id=draft_id,
                    owner_id=owner_id,
                    kind=kind.value,
                    status=DraftStatus.OPEN.value,
                    fields=fields,
                    created_at=now,
                    updated_at=now,
                )
            )
        return Draft(
            draft_id=draft_id,
            owner_id=owner_id,
            kind=kind,
            fields=fields,
            created_at=now,
            updated_at=now,
        )

    def write_fields(self, draft_id: str, fields: dict) -> bool:
        """Replace an open draft's fields. Returns False once it is no longer open."""
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(drafts)
                .where(drafts.c.id == draft_id, drafts.c.status == DraftStatus.OPEN.value)
                .values(fields=fields, updated_at=utc_now())
            )
            return result.rowcount == 1

    @staticmethod
    def mark_finalized(session: Session, draft_id: str, entity_id: str) -> bool:
        """Flip an open draft to finalized inside the caller's transaction.

        Returns False when the draft was no longer open.
        """
        now = utc_now()
        result = session.execute(
            update(drafts)
            .where(
                and_(
                    drafts.c.id == draft_id,
                    drafts.c.status == DraftStatus.OPEN.value,
                )
            )
            .values(
                status=DraftStatus.FINALIZED.value,
                entity_id=entity_id,
                finalized_at=now,
                updated_at=now,
            )
        )
        return result.rowcount == 1

    def session(self):
        return session_scope(self._session_factory)

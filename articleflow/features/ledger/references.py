"""
Reference ledger: internal entity id -> external ledger references.

A missing entry means sync has not succeeded yet; that is a normal state.
"""
from typing import Optional

from sqlalchemy import select, insert, update, delete
from sqlalchemy.orm import sessionmaker

from articleflow.core.database import ledger_references, session_scope, utc_now
from articleflow.models.ledger import LedgerReference


class ReferenceLedger:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get(self, entity_id: str) -> Optional[LedgerReference]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(ledger_references).where(ledger_references.c.entity_id == entity_id)
            ).fetchone()
            if not row:
                return None
            return LedgerReference(
                entity_id=row.entity_id,
                entity_kind=row.entity_kind,
                sheets_config_id=row.sheets_config_id,
                sheets_row_id=row.sheets_row_id,
                sheets_subjects_id=row.sheets_subjects_id,
                updated_at=row.updated_at,
            )

    def put(self, ref: LedgerReference) -> None:
        """Insert or replace the entry for ref.entity_id."""
        values = {
            "entity_kind": ref.entity_kind,
            "sheets_config_id": ref.sheets_config_id,
            "sheets_row_id": ref.sheets_row_id,
            "sheets_subjects_id": ref.sheets_subjects_id,
            "updated_at": utc_now(),
        }
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(ledger_references)
                .where(ledger_references.c.entity_id == ref.entity_id)
                .values(**values)
            )
            if result.rowcount == 0:
                session.execute(
                    insert(ledger_references).values(entity_id=ref.entity_id, **values)
                )

    def delete(self, entity_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                delete(ledger_references).where(ledger_references.c.entity_id == entity_id)
            )
            return result.rowcount > 0

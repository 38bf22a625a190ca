"""
Ledger sync job bookkeeping.

One row per triggering event. The row is created in the request path; the
queued worker moves it to succeeded / failed / skipped.
"""
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.orm import sessionmaker

from articleflow.core.database import ledger_sync_jobs, session_scope, utc_now
from articleflow.models.ledger import SyncJob, SyncJobStatus, SyncOperation


def _row_to_job(row) -> SyncJob:
    return SyncJob(
        job_id=row.id,
        entity_id=row.entity_id,
        entity_kind=row.entity_kind,
        operation=SyncOperation(row.operation),
        status=SyncJobStatus(row.status),
        attempts=row.attempts,
        last_error=row.last_error,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SyncJobStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, entity_kind: str, entity_id: str, operation: SyncOperation) -> SyncJob:
        now = utc_now()
        job_id = str(uuid4())
        with session_scope(self._session_factory) as session:
            session.execute(
                insert(ledger_sync_jobs).values(
                    id=job_id,
                    entity_id=entity_id,
                    entity_kind=entity_kind,
                    operation=operation.value,
                    status=SyncJobStatus.PENDING.value,
                    attempts=0,
                    created_at=now,
                    updated_at=now,
                )
            )
        return SyncJob(
            job_id=job_id,
            entity_id=entity_id,
            entity_kind=entity_kind,
            operation=operation,
            status=SyncJobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

    def get(self, job_id: str) -> Optional[SyncJob]:
        with session_scope(self._session_factory) as session:
            row = session.execute(
                select(ledger_sync_jobs).where(ledger_sync_jobs.c.id == job_id)
            ).fetchone()
            return _row_to_job(row) if row else None

    def list_for_entity(self, entity_id: str) -> List[SyncJob]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(ledger_sync_jobs)
                .where(ledger_sync_jobs.c.entity_id == entity_id)
                .order_by(ledger_sync_jobs.c.created_at)
            ).fetchall()
            return [_row_to_job(r) for r in rows]

    def list_failed(self, limit: int = 100) -> List[SyncJob]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(ledger_sync_jobs)
                .where(ledger_sync_jobs.c.status == SyncJobStatus.FAILED.value)
                .order_by(ledger_sync_jobs.c.created_at)
                .limit(limit)
            ).fetchall()
            return [_row_to_job(r) for r in rows]

    def record_attempt(self, job_id: str, status: SyncJobStatus, error: Optional[str] = None) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                update(ledger_sync_jobs)
                .where(ledger_sync_jobs.c.id == job_id)
                .values(
                    status=status.value,
                    attempts=ledger_sync_jobs.c.attempts + 1,
                    last_error=error[:2000] if error else None,
                    updated_at=utc_now(),
                )
            )

    def reset(self, job_id: str) -> None:
        """Return a job to pending before a replay."""
        with session_scope(self._session_factory) as session:
            session.execute(
                update(ledger_sync_jobs)
                .where(ledger_sync_jobs.c.id == job_id)
                .values(status=SyncJobStatus.PENDING.value, updated_at=utc_now())
            )

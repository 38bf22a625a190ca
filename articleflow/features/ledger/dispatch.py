"""
Ledger sync scheduling and execution.

Request code calls LedgerSyncScheduler.schedule(), which records a
ledger_sync_jobs row and hands the job id to a dispatcher:

- RQDispatcher: enqueue on Redis, run by `rq worker` (production)
- ThreadDispatcher: bounded local thread pool (development)

SyncJobRunner.run() is the task boundary: every sync error stops there and is
recorded on the job row.
"""
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Optional, Protocol

from articleflow.core.logging import log_event
from articleflow.features.drafts.entities import EntityStore
from articleflow.features.ledger.jobs import SyncJobStore
from articleflow.features.ledger.sync import LedgerSync
from articleflow.models.drafts import DraftKind
from articleflow.models.ledger import SyncJob, SyncJobStatus, SyncOperation

RQ_JOB_FUNC = "articleflow.workers.ledger_sync.run_ledger_sync_job"


class SyncDispatcher(Protocol):
    def dispatch(self, job_id: str) -> None:
        ...


class SyncJobRunner:
    def __init__(self, jobs: SyncJobStore, entities: EntityStore, sync: LedgerSync):
        self.jobs = jobs
        self.entities = entities
        self.sync = sync

    def run(self, job_id: str) -> Optional[SyncJob]:
        """Execute one job. Failures are logged and recorded on the job row, never raised."""
        try:
            return self._run(job_id)
        except Exception as exc:
            # Job storage itself failed
            log_event(
                "error",
                "ledger_sync.failed",
                error_code="sync_degraded",
                extra={"job_id": job_id, "error": exc},
                exc_info=True,
            )
            try:
                self.jobs.record_attempt(job_id, SyncJobStatus.FAILED, str(exc))
            except Exception as record_exc:
                log_event(
                    "error",
                    "ledger_sync.record_failed",
                    error_code="sync_degraded",
                    extra={"job_id": job_id, "error": record_exc},
                )
            return None

    def _run(self, job_id: str) -> Optional[SyncJob]:
        job = self.jobs.get(job_id)
        if job is None:
            log_event("warning", "ledger_sync.job_missing", extra={"job_id": job_id})
            return None

        try:
            status = self._apply(job)
        except Exception as exc:
            log_event(
                "error",
                "ledger_sync.failed",
                entity_id=job.entity_id,
                operation=job.operation.value,
                error_code="sync_degraded",
                extra={"job_id": job_id, "entity_kind": job.entity_kind, "error": exc},
                exc_info=True,
            )
            self.jobs.record_attempt(job_id, SyncJobStatus.FAILED, str(exc))
        else:
            self.jobs.record_attempt(job_id, status)
        return self.jobs.get(job_id)

    def _apply(self, job: SyncJob) -> SyncJobStatus:
        kind = DraftKind(job.entity_kind)
        if job.operation == SyncOperation.DELETE:
            return self.sync.sync_delete(job.entity_id, kind)

        entity = self.entities.get(kind, job.entity_id)
        if entity is None:
            raise LookupError(f"{kind.value} {job.entity_id} no longer exists")
        if job.operation == SyncOperation.CREATE:
            return self.sync.sync_create(entity)
        return self.sync.sync_update(entity)


class RQDispatcher:
    def __init__(self, queue, job_timeout: int = 120, result_ttl: int = 3600):
        self.queue = queue
        self.job_timeout = job_timeout
        self.result_ttl = result_ttl

    def dispatch(self, job_id: str) -> None:
        self.queue.enqueue(
            RQ_JOB_FUNC,
            job_id,
            job_timeout=self.job_timeout,
            result_ttl=self.result_ttl,
        )


def _log_worker_failure(job_id: str, future: Future) -> None:
    if future.cancelled() or future.exception() is None:
        return
    log_event(
        "error",
        "ledger_sync.worker_crashed",
        error_code="sync_degraded",
        extra={"job_id": job_id, "error": future.exception()},
    )


class ThreadDispatcher:
    def __init__(self, runner: SyncJobRunner, max_workers: int = 4):
        self.runner = runner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger-sync")

    def dispatch(self, job_id: str) -> None:
        future = self._executor.submit(self.runner.run, job_id)
        future.add_done_callback(partial(_log_worker_failure, job_id))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class LedgerSyncScheduler:
    def __init__(self, jobs: SyncJobStore, dispatcher: SyncDispatcher):
        self.jobs = jobs
        self.dispatcher = dispatcher

    def schedule(self, entity_kind: str, entity_id: str, operation: SyncOperation) -> str:
        """Record a job and dispatch it. Dispatch errors leave the job pending."""
        job = self.jobs.create(entity_kind, entity_id, operation)
        try:
            self.dispatcher.dispatch(job.job_id)
        except Exception as exc:
            log_event(
                "error",
                "ledger_sync.dispatch_failed",
                entity_id=entity_id,
                operation=operation.value,
                error_code="sync_degraded",
                extra={"job_id": job.job_id, "error": exc},
            )
        return job.job_id

    def replay_failed(self, limit: int = 100) -> int:
        replayed = 0
        for job in self.jobs.list_failed(limit=limit):
            self.jobs.reset(job.job_id)
            self.dispatcher.dispatch(job.job_id)
            replayed += 1
        return replayed

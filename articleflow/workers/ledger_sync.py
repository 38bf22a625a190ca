"""Ledger sync worker.

Jobs are enqueued on the RQ queue named by LEDGER_SYNC_QUEUE and consumed by a
stock RQ worker:

    rq worker ledger-sync --url $REDIS_URL

Maintenance:
    python -m articleflow.workers.ledger_sync --replay-failed [--limit N]
    python -m articleflow.workers.ledger_sync --run JOB_ID
"""
from __future__ import annotations

import argparse
from typing import Optional

from articleflow.core.config import settings
from articleflow.core.container import ServiceContainer, build_services
from articleflow.core.logging import configure_logging, log_event

_services: Optional[ServiceContainer] = None


def _get_services() -> ServiceContainer:
    # One container per worker process, built on first job
    global _services
    if _services is None:
        configure_logging(settings.ENV, settings.LOG_LEVEL)
        _services = build_services(settings)
    return _services


def run_ledger_sync_job(job_id: str) -> Optional[str]:
    """RQ entry point. Returns the final job status."""
    job = _get_services().sync_runner.run(job_id)
    if job is None:
        return None
    log_event(
        "info",
        "ledger_sync.job_done",
        entity_id=job.entity_id,
        operation=job.operation.value,
        extra={"job_id": job_id, "status": job.status.value},
    )
    return job.status.value


def main() -> None:
    parser = argparse.ArgumentParser(description="Ledger sync worker utilities")
    parser.add_argument("--replay-failed", action="store_true", help="Re-enqueue failed sync jobs and exit")
    parser.add_argument("--run", metavar="JOB_ID", help="Run one sync job inline and exit")
    parser.add_argument("--limit", type=int, default=100, help="Max jobs to replay")
    args = parser.parse_args()

    services = _get_services()

    if args.run:
        job = services.sync_runner.run(args.run)
        if job is None:
            print(f"[ledger-sync] Job not found: {args.run}")
            return
        print(f"[ledger-sync] Job {job.job_id}: {job.status.value}")
        return

    if args.replay_failed:
        replayed = services.sync_scheduler.replay_failed(limit=args.limit)
        print(f"[ledger-sync] Re-enqueued {replayed} failed job(s)")
        return

    parser.print_help()


if __name__ == "__main__":
    main()

"""
External ledger sync: row projection, reference ledger, job outcomes.
"""
import logging

import pytest
from unittest.mock import Mock, patch
from sqlalchemy.exc import OperationalError

from articleflow.features.drafts.validators import REQUIRED_FIELD_CHECKS
from articleflow.features.ledger.dispatch import RQ_JOB_FUNC, RQDispatcher, ThreadDispatcher
from articleflow.features.ledger.rows import MAIN_SHEET_COLUMNS, SUBLEDGER_HEADER
from articleflow.features.ledger.sync import LedgerSync
from articleflow.models.drafts import ArticleStyleUpdate, DraftFields, DraftKind
from articleflow.models.ledger import SyncJobStatus, SyncOperation
from articleflow.tests.fakes import RecordingDispatcher


def _create_style(services, owner="user_alice", **overrides):
    fields = dict(
        style_samples=["First sample", "Second sample"],
        subjects=["AI", "Climate"],
        name="Weekly Digest",
        display_name="Alice Smith",
        email="alice@example.com",
        preferred_language="en",
        delivery_days=["mon", "wed", "sun"],
    )
    fields.update(overrides)
    acc = services.drafts
    draft_id = acc.save_step(owner, DraftKind.ARTICLE_STYLE, None, DraftFields(**fields))
    return acc.complete_draft(draft_id, owner, REQUIRED_FIELD_CHECKS[DraftKind.ARTICLE_STYLE])


def _create_profile(services, owner="user_alice"):
    acc = services.drafts
    draft_id = acc.save_step(
        owner,
        DraftKind.ONBOARDING,
        None,
        DraftFields(
            style_samples=["Sample"],
            subjects=["AI", "Space"],
            email="alice@example.com",
            display_name="Alice Smith",
            delivery_days=["tue", "fri"],
        ),
    )
    return acc.complete_draft(draft_id, owner, REQUIRED_FIELD_CHECKS[DraftKind.ONBOARDING])


class TestArticleStyleSync:
    def test_main_row_layout(self, services, ledger_client):
        style = _create_style(services)

        spreadsheet_id, sheet, row = ledger_client.appended[0]
        assert spreadsheet_id == "cfg-sheet"
        assert sheet == "Main"
        assert len(row) == MAIN_SHEET_COLUMNS
        assert row[0] == f"Alice_Smith_{style.id[:8]}"
        assert row[1:4] == ["Alice Smith", "alice@example.com", "en"]
        assert row[4:11] == ["Yes", "No", "Yes", "No", "No", "No", "Yes"]
        assert row[11:13] == ["active", ""]
        assert row[13].endswith("Z")
        assert row[14:17] == ["First sample", "Second sample", ""]

    def test_sheet_name_falls_back_to_style_name(self, services, ledger_client):
        style = _create_style(services, display_name=None)
        row = ledger_client.appended[0][2]
        assert row[0] == f"Weekly_Digest_{style.id[:8]}"
        assert row[1] == "Weekly Digest"

    def test_reference_recorded(self, services):
        style = _create_style(services)

        ref = services.references.get(style.id)
        assert ref.entity_kind == "article_style"
        assert ref.sheets_config_id == "cfg-sheet"
        assert ref.sheets_row_id == "Main!A1:Q1"
        assert ref.sheets_subjects_id is None

    def test_update_rewrites_recorded_row(self, services, ledger_client):
        style = _create_style(services)

        services.styles.update(style.id, "user_alice", ArticleStyleUpdate(name="Renamed", delivery_days=["sat"]))

        spreadsheet_id, a1_range, row = ledger_client.updated[0]
        assert spreadsheet_id == "cfg-sheet"
        assert a1_range == "Main!A1:Q1"
        assert row[4:11] == ["No", "No", "No", "No", "No", "Yes", "No"]
        assert len(ledger_client.appended) == 1

    def test_update_keeps_creation_timestamp(self, services, ledger_client):
        style = _create_style(services)
        services.styles.update(style.id, "user_alice", ArticleStyleUpdate(name="Renamed"))

        created = ledger_client.appended[0][2][13]
        assert created.endswith("Z")
        assert ledger_client.updated[0][2][13] == created

    def test_update_without_reference_appends(self, services, ledger_client):
        ledger_client.fail = True
        style = _create_style(services)
        assert services.references.get(style.id) is None

        ledger_client.fail = False
        services.styles.update(style.id, "user_alice", ArticleStyleUpdate(name="Renamed"))

        assert ledger_client.updated == []
        assert ledger_client.appended[-1][2][1] == "Alice Smith"
        assert services.references.get(style.id).sheets_row_id == "Main!A1:Q1"

    def test_delete_clears_row_and_reference(self, services, ledger_client):
        style = _create_style(services)

        services.styles.delete(style.id, "user_alice")

        assert ledger_client.cleared == [("cfg-sheet", "Main!A1:Q1")]
        assert services.references.get(style.id) is None
        assert services.entities.get_article_style(style.id) is None
        ops = [j.operation for j in services.sync_jobs.list_for_entity(style.id)]
        assert ops == [SyncOperation.CREATE, SyncOperation.DELETE]


class TestOnboardingSync:
    def test_customer_row_and_subledger(self, services, ledger_client):
        profile = _create_profile(services)

        spreadsheet_id, sheet, row = ledger_client.appended[0]
        assert (spreadsheet_id, sheet) == ("cfg-sheet", "Customers")
        assert row[0:2] == ["alice@example.com", "Alice Smith"]
        assert row[3:8] == ["en", "tue,fri", "active", "Sample", "AI,Space"]

        articles_id, sub_name, header = ledger_client.subledgers[0]
        assert articles_id == "articles-sheet"
        assert sub_name.startswith("Alice_Smith_")
        assert header == SUBLEDGER_HEADER

        ref = services.references.get(profile.id)
        assert ref.sheets_config_id == "cfg-sheet"
        assert ref.sheets_subjects_id == "1000"
        assert row[2].endswith("Z")

    def test_subledger_failure_keeps_customer_row(self, services, ledger_client):
        ledger_client.fail_subledger = True
        profile = _create_profile(services)
        customers = ledger_client.sheets[("cfg-sheet", "Customers")]

        assert len(customers) == 1
        ref = services.references.get(profile.id)
        assert ref.sheets_row_id == "Customers!A1:H1"
        assert ref.sheets_subjects_id is None
        assert services.sync_jobs.list_for_entity(profile.id)[0].status == SyncJobStatus.FAILED

        ledger_client.fail_subledger = False
        assert services.sync_scheduler.replay_failed() == 1

        assert len(customers) == 1
        ref = services.references.get(profile.id)
        assert ref.sheets_row_id == "Customers!A1:H1"
        assert ref.sheets_subjects_id == "1000"
        assert services.sync_jobs.list_for_entity(profile.id)[0].status == SyncJobStatus.SUCCEEDED


class TestFailureAndSkip:
    def test_failure_recorded_on_job(self, services, ledger_client):
        ledger_client.fail = True
        style = _create_style(services)

        job = services.sync_jobs.list_for_entity(style.id)[0]
        assert job.status == SyncJobStatus.FAILED
        assert services.references.get(style.id) is None

    def test_replay_failed_jobs(self, services, ledger_client):
        ledger_client.fail = True
        style = _create_style(services)

        ledger_client.fail = False
        replayed = services.sync_scheduler.replay_failed()

        assert replayed == 1
        job = services.sync_jobs.list_for_entity(style.id)[0]
        assert job.status == SyncJobStatus.SUCCEEDED
        assert job.attempts == 2
        assert services.references.get(style.id) is not None

    def test_unconfigured_spreadsheet_skips(self, services, ledger_client):
        services.ledger_sync.config_spreadsheet_id = None
        style = _create_style(services)

        job = services.sync_jobs.list_for_entity(style.id)[0]
        assert job.status == SyncJobStatus.SKIPPED
        assert ledger_client.appended == []

    def test_missing_entity_fails_job(self, services):
        job = services.sync_jobs.create("article_style", "gone", SyncOperation.UPDATE)
        result = services.sync_runner.run(job.job_id)
        assert result.status == SyncJobStatus.FAILED
        assert "no longer exists" in result.last_error

    def test_unknown_job_id(self, services):
        assert services.sync_runner.run("nope") is None

    def test_job_storage_failure_is_logged_and_recorded(self, services, caplog):
        job = services.sync_jobs.create("article_style", "style-1", SyncOperation.CREATE)
        error = OperationalError("SELECT ledger_sync_jobs", {}, Exception("db down"))

        with patch.object(services.sync_jobs, "get", side_effect=error):
            with caplog.at_level(logging.ERROR, logger="articleflow"):
                assert services.sync_runner.run(job.job_id) is None

        assert "ledger_sync.failed" in [r.getMessage() for r in caplog.records]
        stored = services.sync_jobs.get(job.job_id)
        assert stored.status == SyncJobStatus.FAILED
        assert "db down" in stored.last_error

    def test_unrecordable_failure_is_still_logged(self, services, caplog):
        error = OperationalError("UPDATE ledger_sync_jobs", {}, Exception("db down"))

        with patch.object(services.sync_jobs, "get", side_effect=error), \
                patch.object(services.sync_jobs, "record_attempt", side_effect=error):
            with caplog.at_level(logging.ERROR, logger="articleflow"):
                assert services.sync_runner.run("job-1") is None

        messages = [r.getMessage() for r in caplog.records]
        assert "ledger_sync.failed" in messages
        assert "ledger_sync.record_failed" in messages

    def test_sync_without_client_skips(self, services):
        sync = LedgerSync(None, services.references, config_spreadsheet_id="cfg-sheet")
        assert sync.configured is False
        assert sync.sync_delete("anything", DraftKind.ARTICLE_STYLE) == SyncJobStatus.SKIPPED


class TestDispatchers:
    @pytest.mark.parametrize("dispatcher", [RecordingDispatcher()])
    def test_schedule_records_pending_job(self, services, dispatcher):
        job_id = services.sync_scheduler.schedule("article_style", "style-1", SyncOperation.CREATE)

        assert dispatcher.dispatched == [job_id]
        assert services.sync_jobs.get(job_id).status == SyncJobStatus.PENDING

    def test_rq_dispatcher_enqueues_by_path(self):
        queue = Mock()
        RQDispatcher(queue, job_timeout=60).dispatch("job-1")
        queue.enqueue.assert_called_once_with(RQ_JOB_FUNC, "job-1", job_timeout=60, result_ttl=3600)

    def test_thread_dispatcher_runs_job(self, services, ledger_client):
        job = services.sync_jobs.create("article_style", "gone", SyncOperation.DELETE)
        dispatcher = ThreadDispatcher(services.sync_runner, max_workers=1)

        dispatcher.dispatch(job.job_id)
        dispatcher.shutdown(wait=True)

        assert services.sync_jobs.get(job.job_id).status == SyncJobStatus.SUCCEEDED

    def test_thread_dispatcher_logs_worker_crash(self, caplog):
        runner = Mock()
        runner.run.side_effect = RuntimeError("worker blew up")
        dispatcher = ThreadDispatcher(runner, max_workers=1)

        with caplog.at_level(logging.ERROR, logger="articleflow"):
            dispatcher.dispatch("job-1")
            dispatcher.shutdown(wait=True)

        crashed = [r for r in caplog.records if r.getMessage() == "ledger_sync.worker_crashed"]
        assert len(crashed) == 1
        assert crashed[0].job_id == "job-1"

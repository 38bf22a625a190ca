"""
External ledger sync.

Projects finalized entities onto the Google Sheets ledger and records the
resulting references. Every call is attempted once; any failure is raised as
SyncDegradedError and must be caught by the job runner, never by request code.

- article styles: one 17-column row on the main sheet of the customer config
  spreadsheet; update rewrites that row, delete clears it
- onboarding profiles: one 8-column row on the Customers sheet plus a
  per-customer articles sub-ledger
"""
from typing import List, Optional

from articleflow.core.errors import SyncDegradedError
from articleflow.core.logging import log_event
from articleflow.features.ledger.references import ReferenceLedger
from articleflow.features.ledger.rows import (
    SUBLEDGER_HEADER,
    OnboardingRow,
    main_sheet_row,
    serialize_onboarding_row,
    subledger_sheet_name,
)
from articleflow.features.ledger.sheets import LedgerClient
from articleflow.models.drafts import ArticleStyle, DraftKind, FinalizedEntity, OnboardingProfile
from articleflow.models.ledger import LedgerReference, SyncJobStatus, SyncOperation


class LedgerSync:
    def __init__(
        self,
        client: Optional[LedgerClient],
        references: ReferenceLedger,
        config_spreadsheet_id: Optional[str],
        articles_spreadsheet_id: Optional[str] = None,
        main_sheet: str = "Main",
        customers_sheet: str = "Customers",
    ):
        self.client = client
        self.references = references
        self.config_spreadsheet_id = config_spreadsheet_id
        self.articles_spreadsheet_id = articles_spreadsheet_id
        self.main_sheet = main_sheet
        self.customers_sheet = customers_sheet

    @property
    def configured(self) -> bool:
        return bool(self.client is not None and self.config_spreadsheet_id)

    def _skip(self, entity_id: str, operation: SyncOperation) -> SyncJobStatus:
        log_event(
            "warning",
            "ledger_sync.skipped",
            entity_id=entity_id,
            operation=operation.value,
            extra={"reason": "ledger spreadsheet not configured"},
        )
        return SyncJobStatus.SKIPPED

    def _degraded(self, entity_id: str, operation: SyncOperation, exc: Exception) -> SyncDegradedError:
        return SyncDegradedError(f"Ledger {operation.value} failed for {entity_id}: {exc}")

    def sync_create(self, entity: FinalizedEntity) -> SyncJobStatus:
        """Provision the entity's ledger rows. A replay resumes after the last recorded step."""
        if not self.configured:
            return self._skip(entity.id, SyncOperation.CREATE)
        try:
            if isinstance(entity, ArticleStyle):
                ref = self._create_style(entity)
            else:
                ref = self._create_onboarding(entity)
        except Exception as exc:
            raise self._degraded(entity.id, SyncOperation.CREATE, exc) from exc

        log_event(
            "info",
            "ledger_sync.created",
            entity_id=entity.id,
            operation=SyncOperation.CREATE.value,
            extra={"sheets_row_id": ref.sheets_row_id, "sheets_subjects_id": ref.sheets_subjects_id},
        )
        return SyncJobStatus.SUCCEEDED

    def _append_once(self, entity: FinalizedEntity, sheet_name: str, row: List[str]) -> LedgerReference:
        """Append the entity's row unless a reference already records one."""
        existing = self.references.get(entity.id)
        if existing and existing.sheets_row_id:
            return existing
        updated_range = self.client.append_row(self.config_spreadsheet_id, sheet_name, row)
        ref = LedgerReference(
            entity_id=entity.id,
            entity_kind=entity.kind.value,
            sheets_config_id=self.config_spreadsheet_id,
            sheets_row_id=updated_range or None,
        )
        self.references.put(ref)
        return ref

    def _create_style(self, style: ArticleStyle) -> LedgerReference:
        return self._append_once(style, self.main_sheet, main_sheet_row(style, created=style.created_at))

    def _create_onboarding(self, profile: OnboardingProfile) -> LedgerReference:
        row = serialize_onboarding_row(OnboardingRow.from_profile(profile))
        ref = self._append_once(profile, self.customers_sheet, row)
        if self.articles_spreadsheet_id and not ref.sheets_subjects_id:
            subjects_id = self.client.create_subledger(
                self.articles_spreadsheet_id,
                subledger_sheet_name(profile),
                list(SUBLEDGER_HEADER),
            )
            ref = ref.model_copy(update={"sheets_subjects_id": subjects_id})
            self.references.put(ref)
        return ref

    def sync_update(self, entity: ArticleStyle) -> SyncJobStatus:
        """Rewrite the entity's main-sheet row, appending one if none is recorded."""
        if not self.configured:
            return self._skip(entity.id, SyncOperation.UPDATE)
        try:
            existing = self.references.get(entity.id)
            row = main_sheet_row(entity, created=entity.created_at)
            if existing and existing.sheets_row_id:
                spreadsheet_id = existing.sheets_config_id or self.config_spreadsheet_id
                updated_range = self.client.update_row(spreadsheet_id, existing.sheets_row_id, row)
            else:
                spreadsheet_id = self.config_spreadsheet_id
                updated_range = self.client.append_row(spreadsheet_id, self.main_sheet, row)
            self.references.put(
                LedgerReference(
                    entity_id=entity.id,
                    entity_kind=entity.kind.value,
                    sheets_config_id=spreadsheet_id,
                    sheets_row_id=updated_range or None,
                    sheets_subjects_id=existing.sheets_subjects_id if existing else None,
                )
            )
        except Exception as exc:
            raise self._degraded(entity.id, SyncOperation.UPDATE, exc) from exc

        log_event("info", "ledger_sync.updated", entity_id=entity.id, operation=SyncOperation.UPDATE.value)
        return SyncJobStatus.SUCCEEDED

    def sync_delete(self, entity_id: str, kind: DraftKind) -> SyncJobStatus:
        """Clear the entity's row and drop its reference entry."""
        if not self.configured:
            return self._skip(entity_id, SyncOperation.DELETE)
        try:
            existing = self.references.get(entity_id)
            if existing and existing.sheets_row_id:
                self.client.clear_row(
                    existing.sheets_config_id or self.config_spreadsheet_id,
                    existing.sheets_row_id,
                )
            self.references.delete(entity_id)
        except Exception as exc:
            raise self._degraded(entity_id, SyncOperation.DELETE, exc) from exc

        log_event(
            "info",
            "ledger_sync.deleted",
            entity_id=entity_id,
            operation=SyncOperation.DELETE.value,
            extra={"kind": kind.value, "had_reference": bool(existing)},
        )
        return SyncJobStatus.SUCCEEDED

"""
External ledger models: reference entries and sync job bookkeeping.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncJobStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class LedgerReference(BaseModel):
    """External references recorded after a successful sync."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    entity_kind: str
    sheets_config_id: Optional[str] = None
    sheets_row_id: Optional[str] = None
    sheets_subjects_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class SyncJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    entity_id: str
    entity_kind: str
    operation: SyncOperation
    status: SyncJobStatus
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

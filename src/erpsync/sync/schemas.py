"""Pydantic schemas for sync jobs, entity mappings, and outcomes."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.erpsync.sync.errors import ErrorType

LocalId = int | str


def normalize_local_id(value: LocalId | None) -> str:
    """Canonical text form of a local id; "" means unknown."""
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text == "0" else text


class SyncDirection(str, Enum):
    """Direction of a single job."""

    push = "push"  # local -> remote
    pull = "pull"  # remote -> local


class ModuleDirection(str, Enum):
    """Which directions a module supports."""

    push_only = "push_only"
    pull_only = "pull_only"
    bidirectional = "bidirectional"

    @property
    def pushes(self) -> bool:
        return self in (ModuleDirection.push_only, ModuleDirection.bidirectional)

    @property
    def pulls(self) -> bool:
        return self in (ModuleDirection.pull_only, ModuleDirection.bidirectional)


class SyncAction(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class JobStatus(str, Enum):
    pending = "pending"
    claimed = "claimed"
    succeeded = "succeeded"
    dead = "dead"


class SyncResult(BaseModel):
    """Outcome of one push or pull.

    ``entity_id`` carries the remote id after a push (or the local id after
    a pull) even on failure, so a retry can update instead of re-creating.
    """

    succeeded: bool
    message: str = ""
    error_type: ErrorType | None = None
    entity_id: int | str | None = None
    skipped: bool = False

    @classmethod
    def ok(cls, message: str = "", entity_id: int | str | None = None) -> SyncResult:
        return cls(succeeded=True, message=message, entity_id=entity_id)

    @classmethod
    def skip(cls, message: str) -> SyncResult:
        return cls(succeeded=True, message=message, skipped=True)

    @classmethod
    def fail(
        cls,
        message: str,
        error_type: ErrorType = ErrorType.transient,
        entity_id: int | str | None = None,
    ) -> SyncResult:
        return cls(succeeded=False, message=message, error_type=error_type, entity_id=entity_id)


class SyncJob(BaseModel):
    """A queued unit of work, as read from the queue."""

    id: int
    module: str
    direction: SyncDirection
    entity_type: str
    action: SyncAction
    local_id: str = ""
    remote_id: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    priority: int = 5
    status: JobStatus = JobStatus.pending
    attempts: int = 0
    max_retries: int = 3
    last_error: str | None = None
    error_type: ErrorType | None = None
    scheduled_at: datetime | None = None
    claimed_at: datetime | None = None
    claim_token: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None


class EntityMappingRead(BaseModel):
    """A persisted local <-> remote id correspondence."""

    module: str
    entity_type: str
    local_id: str
    remote_id: int
    remote_model: str = ""
    sync_hash: str = ""
    created_at: datetime | None = None
    last_synced_at: datetime | None = None


class QueueStats(BaseModel):
    """Job counts by status."""

    pending: int = 0
    claimed: int = 0
    succeeded: int = 0
    dead: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.claimed + self.succeeded + self.dead


class QueueRunReport(BaseModel):
    """Summary of one worker pass over the queue."""

    batches: int = 0
    claimed: int = 0
    succeeded: int = 0
    skipped: int = 0
    retried: int = 0
    dead: int = 0
    stopped_reason: str = ""
    dry_run: bool = False

"""Error taxonomy for the sync pipeline.

Every failure that reaches the queue is either ``transient`` (retried with
exponential backoff until the retry ceiling) or ``permanent`` (dead-lettered
immediately). ``classify_exception`` is the single place that decides which.
"""

from __future__ import annotations

import asyncio
from enum import Enum


class ErrorType(str, Enum):
    transient = "transient"
    permanent = "permanent"


class SyncError(Exception):
    """Base class for sync pipeline errors."""

    error_type: ErrorType = ErrorType.transient


# ── Remote errors ───────────────────────────────────────────────────────────


class RemoteError(SyncError):
    """The remote system rejected a call for a reason it did not classify."""

    error_type = ErrorType.permanent


class RemoteTransientError(RemoteError):
    """Network failure, timeout, 5xx, or rate limiting. Safe to retry."""

    error_type = ErrorType.transient


class RemoteValidationError(RemoteError):
    """The remote refused the data (validation, access rights, user error)."""

    error_type = ErrorType.permanent


class RemoteNotFoundError(RemoteError):
    """The addressed remote record does not exist."""

    error_type = ErrorType.permanent


# ── Local errors ────────────────────────────────────────────────────────────


class MappingConflictError(SyncError):
    """A remote id is already mapped to a different local entity."""

    error_type = ErrorType.permanent

    def __init__(
        self,
        module: str,
        entity_type: str,
        local_id: str,
        remote_id: int,
        existing_local_id: str,
    ) -> None:
        self.module = module
        self.entity_type = entity_type
        self.local_id = local_id
        self.remote_id = remote_id
        self.existing_local_id = existing_local_id
        super().__init__(
            f"Remote id {remote_id} of {module}/{entity_type} is already mapped "
            f"to local id {existing_local_id}, refusing to map it to {local_id}"
        )


class LocalStoreError(SyncError):
    """The local host could not be reached or failed. Safe to retry."""

    error_type = ErrorType.transient


class LocalStoreRejectedError(SyncError):
    """The local host refused the data."""

    error_type = ErrorType.permanent


class UnknownModuleError(SyncError):
    """No booted module owns the job. Retried: the module may boot later."""

    error_type = ErrorType.transient


class UnknownEntityTypeError(SyncError):
    """The module does not declare the job's entity type."""

    error_type = ErrorType.permanent


class LockUnavailableError(SyncError):
    """Another worker holds the push lock for this entity."""

    error_type = ErrorType.transient


def classify_exception(exc: BaseException) -> ErrorType:
    """Map an exception to transient or permanent.

    Unknown exceptions are treated as transient so a bug in a hook gets a
    few retries (and a dead-letter entry) instead of silently vanishing.
    """
    if isinstance(exc, SyncError):
        return exc.error_type
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ErrorType.transient
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return ErrorType.permanent
    return ErrorType.transient

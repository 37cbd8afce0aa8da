"""Persistence models for sync bookkeeping.

- EntityMapModel: local id <-> remote id per (module, entity type)
- SyncJobModel: the durable job queue

Both identities of a mapping are unique, which makes the per-entity
mapping a partial injective function at the database level.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.erpsync.core.database import SyncBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityMapModel(SyncBase):
    """One local entity mapped to one remote record."""

    __tablename__ = "entity_map"
    __table_args__ = (
        UniqueConstraint("module", "entity_type", "local_id", name="uq_entity_map_local"),
        UniqueConstraint("module", "entity_type", "remote_id", name="uq_entity_map_remote"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    module: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    local_id: Mapped[str] = mapped_column(String(191), nullable=False)
    remote_id: Mapped[int] = mapped_column(Integer, nullable=False)
    remote_model: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    sync_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class SyncJobModel(SyncBase):
    """A durable sync job.

    Lifecycle: pending -> claimed -> succeeded | pending (retry) | dead.
    """

    __tablename__ = "sync_jobs"
    __table_args__ = (
        Index("ix_sync_jobs_claim", "status", "priority", "scheduled_at"),
        Index("ix_sync_jobs_dedup", "module", "entity_type", "direction", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    module: Mapped[str] = mapped_column(String(64), nullable=False)
    direction: Mapped[str] = mapped_column(String(8), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    local_id: Mapped[str | None] = mapped_column(String(191), nullable=True)
    remote_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

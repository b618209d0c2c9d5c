"""Sync bookkeeping models: per-entity status, per-type metadata, run audit log."""
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel

from splitsync.errors import InvariantViolation
from splitsync.timeutils import utcnow


class SyncStatus(str, Enum):
    PENDING_SYNC = "PENDING_SYNC"
    SYNCED = "SYNCED"
    SYNC_FAILED = "SYNC_FAILED"
    LOCAL_ONLY = "LOCAL_ONLY"
    LOCALLY_DELETED = "LOCALLY_DELETED"


# Rows in these states still owe the server a write.
UNSYNCED_STATUSES = (
    SyncStatus.PENDING_SYNC,
    SyncStatus.SYNC_FAILED,
    SyncStatus.LOCALLY_DELETED,
)


class SyncableBase(SQLModel):
    """
    Columns shared by every record that round-trips to the server.

    `id` is the private local identity and never changes. `server_id` is
    assigned by the server on first successful push and is immutable after
    that. `updated_at` and `sync_status` must only be written together, via
    mark_dirty() / mark_status().
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    server_id: Optional[int] = Field(default=None, index=True)
    sync_status: SyncStatus = Field(default=SyncStatus.PENDING_SYNC, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


def mark_status(entity: SyncableBase, status: SyncStatus, at: Optional[datetime] = None):
    """Set (updated_at, sync_status) as one step. Returns the entity."""
    entity.updated_at = at or utcnow()
    entity.sync_status = status
    return entity


def mark_dirty(entity: SyncableBase, at: Optional[datetime] = None):
    """Record a local mutation. LOCAL_ONLY rows never leave the device."""
    if entity.sync_status == SyncStatus.LOCAL_ONLY:
        entity.updated_at = at or utcnow()
        return entity
    return mark_status(entity, SyncStatus.PENDING_SYNC, at)


def mark_deleted(entity: SyncableBase, at: Optional[datetime] = None):
    """Tombstone a row until the server acknowledges the delete."""
    return mark_status(entity, SyncStatus.LOCALLY_DELETED, at)


def assign_server_id(entity: SyncableBase, server_id: Optional[int]) -> None:
    """Attach the server identity. Once set it may not change."""
    if server_id is None:
        return
    if entity.server_id is not None and entity.server_id != server_id:
        raise InvariantViolation(
            f"{type(entity).__name__} {entity.id} already has server id "
            f"{entity.server_id}, refusing {server_id}"
        )
    entity.server_id = server_id


class SyncMetadata(SQLModel, table=True):
    """One row per entity type. Upserted by MetadataStore, never duplicated."""

    entity_type: str = Field(primary_key=True)
    last_sync_timestamp: int = 0  # epoch ms
    last_etag: Optional[str] = None
    sync_status: SyncStatus = Field(default=SyncStatus.PENDING_SYNC)
    update_count: int = 0
    last_sync_result: Optional[str] = None


class SyncLog(SQLModel, table=True):
    """Records each orchestrated sync run for audit and debugging."""

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    status: str = "running"  # "running", "success", "partial", "error", "offline"
    forced: bool = False
    entities_synced: int = 0
    error_message: Optional[str] = None

"""
Row-level push/pull support shared by the SQLModel-backed entity managers.

RecordSyncMixin supplies the entity-specific hooks of both manager variants
(BaseSyncManager and BatchedSyncManager) for a table described by an
EntityCodec. Concrete managers only declare the table, codec, resource path
and their conflict policy.
"""
import logging
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Type

from sqlmodel import Session, SQLModel, col, select

from splitsync.errors import InvariantViolation
from splitsync.models.sync import (
    UNSYNCED_STATUSES,
    SyncStatus,
    assign_server_id,
    mark_status,
)
from splitsync.sync.codec import EntityCodec
from splitsync.sync.results import (
    FullSync,
    IncrementalSync,
    SyncError,
    SyncResult,
    SyncStrategy,
    SyncSuccess,
)
from splitsync.timeutils import from_ms, parse_timestamp, to_ms

logger = logging.getLogger(__name__)


class RecordSyncMixin:
    model: Type[SQLModel]
    codec: EntityCodec
    resource: str

    def __init__(self, engine, remote, metadata_store, **kwargs):
        super().__init__(metadata_store, **kwargs)
        self.engine = engine
        self.remote = remote
        self._pull_since = 0

    # ─── Local reads / bookkeeping ────────────────────────────────────────────

    def load_unsynced(self, model: Optional[Type[SQLModel]] = None) -> List[Any]:
        model = model or self.model
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(model)
                    .where(col(model.sync_status).in_(UNSYNCED_STATUSES))
                    .order_by(model.id)
                ).all()
            )

    def mark_row_failed(self, entity, model: Optional[Type[SQLModel]] = None) -> None:
        """Flag a failed push. Tombstones keep LOCALLY_DELETED so the delete is retried."""
        model = model or self.model
        with Session(self.engine) as s:
            row = s.get(model, entity.id)
            if row is None or row.sync_status == SyncStatus.LOCALLY_DELETED:
                return
            mark_status(row, SyncStatus.SYNC_FAILED, at=row.updated_at)
            s.add(row)
            s.commit()

    def purge(self, local_id: int, model: Optional[Type[SQLModel]] = None) -> None:
        """Physically remove a row once the server acknowledged its deletion."""
        model = model or self.model
        with Session(self.engine) as s:
            row = s.get(model, local_id)
            if row is not None:
                s.delete(row)
                s.commit()

    def confirm_push(
        self,
        local_id: int,
        response: Dict[str, Any],
        touched,
        model: Optional[Type[SQLModel]] = None,
    ):
        """Store the server id and mark SYNCED unless the row was edited meanwhile."""
        model = model or self.model
        with Session(self.engine) as s:
            row = s.get(model, local_id)
            if row is None:
                return None
            assign_server_id(row, response.get("id"))
            if row.updated_at == touched:
                mark_status(row, SyncStatus.SYNCED, from_ms(self._clock()))
            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    # ─── Push ─────────────────────────────────────────────────────────────────

    async def push_record(self, entity):
        with Session(self.engine) as s:
            row = s.get(self.model, entity.id)
            if row is None:
                return None
            status, server_id, touched = row.sync_status, row.server_id, row.updated_at
            payload = None
            if status != SyncStatus.LOCALLY_DELETED:
                payload = self.codec.to_payload(s, row)

        if status == SyncStatus.LOCALLY_DELETED:
            if server_id is not None:
                await self.remote.delete(self.resource, server_id)
            self.purge(entity.id)
            logger.debug("%s %s deleted", self.entity_type, entity.id)
            return entity

        if server_id is None:
            response = await self.remote.create(self.resource, payload)
        else:
            response = await self.remote.update(self.resource, server_id, payload)
        return self.confirm_push(entity.id, response, touched)

    # ─── Pull ─────────────────────────────────────────────────────────────────

    def apply_server_record(
        self,
        data: Dict[str, Any],
        since: int,
        model: Optional[Type[SQLModel]] = None,
        codec: Optional[EntityCodec] = None,
    ):
        """
        Insert or update the local copy of one server record.

        A row with local changes (PENDING_SYNC / SYNC_FAILED) is only touched
        when the server copy also changed after `since`; then
        resolve_conflicts() decides. The same holds for a server delete: the
        local row is dropped only when the deletion wins the conflict.
        Tombstones and LOCAL_ONLY rows are never overwritten.
        """
        model = model or self.model
        codec = codec or self.codec
        server_id = data.get("id")
        if server_id is None:
            raise InvariantViolation(f"{model.__name__} record from server has no id")

        with Session(self.engine) as s:
            existing = s.exec(select(model).where(model.server_id == server_id)).first()

            if data.get("deleted_at") or data.get("deleted"):
                if existing is None:
                    return None
                if not self._remote_delete_wins(existing, data, since):
                    logger.info(
                        "%s %s: local edit kept over remote delete", self.entity_type, existing.id
                    )
                    return existing
                self.drop_local(s, existing)
                s.commit()
                return None

            values = codec.from_payload(s, data)
            server_updated = values["updated_at"]

            if existing is None:
                row = model(**values)
                row.server_id = server_id
                mark_status(row, SyncStatus.SYNCED, server_updated)
            elif existing.sync_status in (SyncStatus.LOCALLY_DELETED, SyncStatus.LOCAL_ONLY):
                return existing
            elif existing.sync_status in (SyncStatus.PENDING_SYNC, SyncStatus.SYNC_FAILED):
                if to_ms(server_updated) <= since:
                    return existing
                candidate = model(**values)
                candidate.server_id = server_id
                if self.resolve_conflicts(existing, candidate) is existing:
                    logger.info("%s %s: local version kept", self.entity_type, existing.id)
                    return existing
                row = self._overwrite(existing, values, server_updated)
            elif server_updated > existing.updated_at:
                row = self._overwrite(existing, values, server_updated)
            else:
                return existing

            s.add(row)
            s.commit()
            s.refresh(row)
            return row

    def _remote_delete_wins(self, existing, data: Dict[str, Any], since: int) -> bool:
        """A server delete only beats unpushed local edits through the conflict policy."""
        if existing.sync_status not in (SyncStatus.PENDING_SYNC, SyncStatus.SYNC_FAILED):
            return True
        stamp = data.get("deleted_at") or data.get("updated_at")
        deleted_at = parse_timestamp(stamp) if stamp else from_ms(self._clock())
        if to_ms(deleted_at) <= since:
            return False
        tombstone = SimpleNamespace(server_id=existing.server_id, updated_at=deleted_at)
        return self.resolve_conflicts(existing, tombstone) is not existing

    def drop_local(self, session: Session, row) -> None:
        session.delete(row)

    @staticmethod
    def _overwrite(row, values: Dict[str, Any], server_updated):
        for name, value in values.items():
            setattr(row, name, value)
        return mark_status(row, SyncStatus.SYNCED, server_updated)

    def _last_sync(self) -> int:
        metadata = self.metadata_store.get(self.entity_type)
        return metadata.last_sync_timestamp if metadata else 0

    # ─── Simple-variant hooks ─────────────────────────────────────────────────

    async def get_unsynced_entities(self) -> List[Any]:
        return self.load_unsynced()

    async def sync_local_to_server(self, entities: List[Any]) -> SyncResult:
        pushed = []
        failed = []
        first_error: Optional[Exception] = None
        for entity in entities:
            try:
                row = await self.push_record(entity)
                if row is not None:
                    pushed.append(row)
            except Exception as exc:
                logger.error("%s %s: push failed: %s", self.entity_type, entity.id, exc)
                self.mark_row_failed(entity)
                failed.append(entity)
                first_error = first_error or exc
        if first_error is not None:
            return SyncError(first_error, failed_items=tuple(failed))
        return SyncSuccess(updated_items=tuple(pushed), timestamp=self._clock())

    async def sync_server_to_local(self, strategy: SyncStrategy) -> SyncResult:
        changes = await self.remote.fetch_changes(self.resource, strategy)
        since = self._last_sync()
        applied = []
        for item in changes.items:
            row = self.apply_server_record(item, since)
            if row is not None:
                applied.append(row)
        return SyncSuccess(updated_items=tuple(applied), timestamp=self._clock(), etag=changes.etag)

    # ─── Batched-variant hooks ────────────────────────────────────────────────

    async def get_local_changes(self) -> List[Any]:
        return self.load_unsynced()

    async def sync_to_server(self, entity):
        return await self.push_record(entity)

    async def get_server_changes(self, since: int) -> List[Dict[str, Any]]:
        self._pull_since = since
        strategy = IncrementalSync(since) if since else FullSync()
        changes = await self.remote.fetch_changes(self.resource, strategy)
        return changes.items

    async def apply_server_change(self, server_entity: Dict[str, Any]):
        return self.apply_server_record(server_entity, self._pull_since)

    async def on_push_failed(self, entity, exc: Exception) -> None:
        self.mark_row_failed(entity)

"""Per-entity-type sync bookkeeping backed by the `syncmetadata` table."""
import logging
import threading
from typing import Callable, Iterator, List, Optional

from sqlmodel import Session, select

from splitsync.models.sync import SyncMetadata, SyncStatus

logger = logging.getLogger(__name__)

_FIELDS = (
    "last_sync_timestamp",
    "last_etag",
    "sync_status",
    "update_count",
    "last_sync_result",
)


def _detached(row: SyncMetadata) -> SyncMetadata:
    return SyncMetadata(entity_type=row.entity_type, **{f: getattr(row, f) for f in _FIELDS})


class MetadataStore:
    """
    Read and upsert SyncMetadata rows.

    Returned rows are detached copies; mutate them through update() only.
    """

    def __init__(self, engine):
        self.engine = engine
        self._lock = threading.Lock()

    def get(self, entity_type: str) -> Optional[SyncMetadata]:
        with Session(self.engine) as s:
            row = s.get(SyncMetadata, entity_type)
            return _detached(row) if row else None

    def update(
        self,
        entity_type: str,
        fn: Callable[[SyncMetadata], SyncMetadata],
    ) -> SyncMetadata:
        """
        Atomic read-modify-write of one row.

        If no row exists yet, fn receives a default one
        (timestamp=0, status=PENDING_SYNC). fn may mutate its argument or
        return a new SyncMetadata; either way the returned values are stored.
        """
        with self._lock, Session(self.engine) as s:
            row = s.get(SyncMetadata, entity_type)
            if row is None:
                row = SyncMetadata(
                    entity_type=entity_type,
                    last_sync_timestamp=0,
                    sync_status=SyncStatus.PENDING_SYNC,
                )
            current = _detached(row)
            updated = fn(current)
            for name in _FIELDS:
                setattr(row, name, getattr(updated, name))
            s.add(row)
            s.commit()
            s.refresh(row)
            logger.debug(
                "Metadata %s -> %s (%s)", entity_type, row.sync_status, row.last_sync_result
            )
            return _detached(row)

    def has_synced_since(self, entity_type: str, since: int) -> bool:
        metadata = self.get(entity_type)
        return (
            metadata is not None
            and metadata.sync_status == SyncStatus.SYNCED
            and metadata.last_sync_timestamp >= since
        )

    def list_failed(self) -> Iterator[SyncMetadata]:
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncMetadata).where(SyncMetadata.sync_status == SyncStatus.SYNC_FAILED)
            ).all()
            detached = [_detached(r) for r in rows]
        yield from detached

    def list_all(self) -> List[SyncMetadata]:
        with Session(self.engine) as s:
            rows = s.exec(select(SyncMetadata).order_by(SyncMetadata.entity_type)).all()
            return [_detached(r) for r in rows]

"""
Generic sync managers: shared gate plus the simple push-then-pull template.

A pass for one entity type runs:

  should_sync -> determine_strategy -> push (local -> server)
              -> pull (server -> local) -> update metadata

Exceptions never escape perform_sync(); they come back as SyncError so the
orchestrator decides what a failure means for the rest of the run.
"""
import logging
from abc import ABC, abstractmethod
from typing import Generic, List, Optional, TypeVar

from splitsync.config import Settings, get_settings
from splitsync.models.sync import SyncMetadata, SyncStatus
from splitsync.sync.metadata_store import MetadataStore
from splitsync.sync.results import (
    SyncError,
    SyncResult,
    SyncSkipped,
    SyncStrategy,
    SyncSuccess,
    combine_results,
    determine_strategy,
)
from splitsync.sync.throttle import RateThrottle
from splitsync.timeutils import MINUTE_MS, Clock, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncManager(ABC):
    """What the orchestrator needs from any entity-type sync manager."""

    entity_type: str = ""
    sync_priority: int = 100  # lower numbers sync first

    def __init__(
        self,
        metadata_store: MetadataStore,
        throttle: Optional[RateThrottle] = None,
        settings: Optional[Settings] = None,
        clock: Clock = now_ms,
    ):
        self.metadata_store = metadata_store
        self.settings = settings or get_settings()
        self.throttle = throttle or RateThrottle(
            window_ms=self.settings.throttle_window_minutes * MINUTE_MS,
            max_requests=self.settings.throttle_max_requests,
            clock=clock,
        )
        self._clock = clock

    @property
    def sync_interval_ms(self) -> int:
        return self.settings.sync_interval_minutes * MINUTE_MS

    def needs_sync(self) -> bool:
        """Staleness check only; does not consume throttle budget."""
        metadata = self.metadata_store.get(self.entity_type)
        if metadata is None:
            return True
        if metadata.sync_status == SyncStatus.SYNC_FAILED:
            return True
        return self._clock() - metadata.last_sync_timestamp > self.sync_interval_ms

    def should_sync(self, force_sync: bool = False) -> bool:
        if force_sync:
            return True
        if not self.throttle.try_acquire(self.entity_type):
            logger.debug("%s: throttled", self.entity_type)
            return False
        return self.needs_sync()

    def record_failure(self, message: str) -> None:
        def _failed(metadata: SyncMetadata) -> SyncMetadata:
            metadata.sync_status = SyncStatus.SYNC_FAILED
            metadata.last_sync_result = message
            return metadata

        self.metadata_store.update(self.entity_type, _failed)

    @abstractmethod
    async def perform_sync(self, force_sync: bool = False) -> SyncResult:
        ...


class BaseSyncManager(SyncManager, Generic[T]):
    """Simple variant: whole-set push, strategy-driven pull, combined result."""

    @abstractmethod
    async def get_unsynced_entities(self) -> List[T]:
        ...

    @abstractmethod
    async def sync_local_to_server(self, entities: List[T]) -> SyncResult:
        ...

    @abstractmethod
    async def sync_server_to_local(self, strategy: SyncStrategy) -> SyncResult:
        ...

    @abstractmethod
    def resolve_conflicts(self, local: T, server: T) -> T:
        """Pick the surviving version when both sides changed since the last sync."""

    async def perform_sync(self, force_sync: bool = False) -> SyncResult:
        try:
            if not self.should_sync(force_sync):
                return SyncSkipped("Sync not needed")

            metadata = self.metadata_store.get(self.entity_type)
            strategy = determine_strategy(metadata)
            logger.info("Syncing %s with %s", self.entity_type, type(strategy).__name__)

            local_result = await self.sync_local_to_server(await self.get_unsynced_entities())
            server_result = await self.sync_server_to_local(strategy)

            self.update_metadata(local_result, server_result)
            return combine_results(local_result, server_result)

        except Exception as exc:
            logger.exception("Sync of %s failed", self.entity_type)
            self.record_failure(f"Sync failed: {exc}")
            return SyncError(exc)

    def update_metadata(self, local_result: SyncResult, server_result: SyncResult) -> None:
        errors = [r for r in (local_result, server_result) if isinstance(r, SyncError)]
        if errors:
            self.record_failure(f"Sync failed: {errors[0].message}")
            return

        successes = [r for r in (local_result, server_result) if isinstance(r, SyncSuccess)]
        timestamp = max((r.timestamp for r in successes), default=0) or self._clock()
        etag = server_result.etag if isinstance(server_result, SyncSuccess) else None

        def _synced(metadata: SyncMetadata) -> SyncMetadata:
            metadata.last_sync_timestamp = max(metadata.last_sync_timestamp, timestamp)
            metadata.last_etag = etag
            metadata.sync_status = SyncStatus.SYNCED
            metadata.update_count += 1
            metadata.last_sync_result = "Sync completed successfully"
            return metadata

        self.metadata_store.update(self.entity_type, _synced)

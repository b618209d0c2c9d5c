"""
Batched sync manager with anti-loop filtering and per-item retry.

Pushing a row makes the server echo it back on the next pull, which
updates the local row, which makes it look dirty again. Two short windows
break that loop: rows SYNCED within `recent_sync_threshold_ms` and rows
PENDING_SYNC within `rapid_update_threshold_ms` are left out of the push.

Rows that failed on a previous pass are pushed before fresh changes.
"""
import asyncio
import logging
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Generic, Iterator, List, Sequence, TypeVar

from splitsync.errors import PartialSyncError, is_transient
from splitsync.models.sync import SyncMetadata, SyncStatus
from splitsync.sync.base import SyncManager
from splitsync.sync.results import SyncError, SyncResult, SyncSkipped, SyncSuccess
from splitsync.timeutils import to_ms

logger = logging.getLogger(__name__)

L = TypeVar("L")
S = TypeVar("S")
R = TypeVar("R")


def chunked(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), max(1, size)):
        yield items[start:start + size]


async def with_retry(
    block: Callable[[], Awaitable[R]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 5.0,
    factor: float = 2.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> R:
    """
    Run `block`, retrying transport/IO failures with capped exponential backoff.

    Anything not classified as transient is re-raised on the first attempt.
    """
    delay = initial_delay
    for attempt in range(1, max_attempts):
        try:
            return await block()
        except Exception as exc:
            if not is_transient(exc):
                raise
            logger.warning("Attempt %d failed: %s; retrying in %.2fs", attempt, exc, delay)
            await sleep(delay)
            delay = min(delay * factor, max_delay)
    return await block()


class BatchedSyncManager(SyncManager, Generic[L, S]):
    batch_size: int = 0  # 0 -> settings.sync_batch_size

    @abstractmethod
    async def get_local_changes(self) -> List[L]:
        ...

    @abstractmethod
    async def sync_to_server(self, entity: L) -> Any:
        """Push one entity. Raise on failure."""

    @abstractmethod
    async def get_server_changes(self, since: int) -> List[S]:
        ...

    @abstractmethod
    async def apply_server_change(self, server_entity: S) -> Any:
        ...

    # Optional hooks

    def should_sync_entity(self, entity: L) -> bool:
        return True

    def entity_timestamp(self, entity: L) -> int:
        updated_at = getattr(entity, "updated_at", None)
        return to_ms(updated_at) if updated_at is not None else self._clock()

    def entity_sync_status(self, entity: L) -> SyncStatus:
        return getattr(entity, "sync_status", SyncStatus.PENDING_SYNC)

    async def on_push_failed(self, entity: L, exc: Exception) -> None:
        """Called once an entity has exhausted its retries."""

    # Template

    @property
    def effective_batch_size(self) -> int:
        return self.batch_size or self.settings.sync_batch_size

    def filter_recent_changes(self, entities: Sequence[L]) -> List[L]:
        now = self._clock()
        recent_sync = self.settings.recent_sync_threshold_ms
        rapid_update = self.settings.rapid_update_threshold_ms
        kept = []
        for entity in entities:
            if not self.should_sync_entity(entity):
                logger.debug("%s: entity filtered out by predicate", self.entity_type)
                continue
            status = self.entity_sync_status(entity)
            age = now - self.entity_timestamp(entity)
            if status == SyncStatus.SYNCED and age < recent_sync:
                logger.debug("%s: skipping recently synced entity (%dms ago)", self.entity_type, age)
                continue
            if status == SyncStatus.PENDING_SYNC and age < rapid_update:
                logger.debug("%s: skipping very recent update (%dms ago)", self.entity_type, age)
                continue
            kept.append(entity)
        return kept

    def order_for_push(self, entities: Sequence[L]) -> List[L]:
        """Previously failed entities first; otherwise keep the source order."""
        return sorted(
            entities, key=lambda e: self.entity_sync_status(e) != SyncStatus.SYNC_FAILED
        )

    async def _retrying(self, block: Callable[[], Awaitable[R]]) -> R:
        s = self.settings
        return await with_retry(
            block,
            max_attempts=s.retry_max_attempts,
            initial_delay=s.retry_initial_delay_ms / 1000,
            max_delay=s.retry_max_delay_ms / 1000,
            factor=s.retry_factor,
        )

    async def _pause(self) -> None:
        await asyncio.sleep(self.settings.sync_batch_pause_ms / 1000)

    async def perform_sync(self, force_sync: bool = False) -> SyncResult:
        if not self.should_sync(force_sync):
            return SyncSkipped("Sync not needed")

        try:
            metadata = self.metadata_store.get(self.entity_type)
            since = metadata.last_sync_timestamp if metadata else 0
            started = self._clock()
            logger.info("Starting sync for %s (changes since %d)", self.entity_type, since)

            success_count = 0
            failure_count = 0
            updated: List[Any] = []
            failed: List[Any] = []

            local_changes = await self.get_local_changes()
            to_push = self.filter_recent_changes(self.order_for_push(local_changes))
            logger.info(
                "%s: %d local changes, %d after anti-loop filtering",
                self.entity_type, len(local_changes), len(to_push),
            )

            batches = list(chunked(to_push, self.effective_batch_size))
            for index, batch in enumerate(batches):
                for entity in batch:
                    try:
                        updated.append(await self._retrying(lambda e=entity: self.sync_to_server(e)))
                        success_count += 1
                    except Exception as exc:
                        failure_count += 1
                        failed.append(entity)
                        logger.error("%s: error syncing entity to server: %s", self.entity_type, exc)
                        await self.on_push_failed(entity, exc)
                if index < len(batches) - 1:
                    await self._pause()

            server_changes = await self._retrying(lambda: self.get_server_changes(since))
            batches = list(chunked(server_changes, self.effective_batch_size))
            for index, batch in enumerate(batches):
                for server_entity in batch:
                    try:
                        updated.append(
                            await self._retrying(lambda e=server_entity: self.apply_server_change(e))
                        )
                        success_count += 1
                    except Exception as exc:
                        failure_count += 1
                        failed.append(server_entity)
                        logger.error("%s: error applying server change: %s", self.entity_type, exc)
                if index < len(batches) - 1:
                    await self._pause()

        except Exception as exc:
            logger.exception("Sync of %s failed", self.entity_type)
            self.record_failure(f"Sync failed: {exc}")
            return SyncError(exc)

        if failure_count:
            self.record_failure(
                f"Sync completed with failures: {failure_count} (successes: {success_count})"
            )
            return SyncError(
                PartialSyncError(self.entity_type, success_count, failure_count),
                failed_items=tuple(failed),
            )

        def _synced(metadata: SyncMetadata) -> SyncMetadata:
            metadata.last_sync_timestamp = started
            metadata.sync_status = SyncStatus.SYNCED
            metadata.update_count += 1
            metadata.last_sync_result = f"Sync completed. Successes: {success_count}"
            return metadata

        self.metadata_store.update(self.entity_type, _synced)
        return SyncSuccess(updated_items=tuple(updated), timestamp=started)

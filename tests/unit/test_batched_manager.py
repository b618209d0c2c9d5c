"""Tests for BatchedSyncManager: anti-loop filter, ordering, retry and metadata policy."""
from dataclasses import dataclass
from datetime import datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from splitsync.errors import PartialSyncError, RemoteApiError, TransientSyncError, is_transient
from splitsync.models.sync import SyncStatus
from splitsync.sync.batched import BatchedSyncManager, chunked, with_retry
from splitsync.sync.metadata_store import MetadataStore
from splitsync.sync.results import SyncError, SyncSkipped, SyncSuccess
from splitsync.timeutils import MINUTE_MS, from_ms


@dataclass
class Widget:
    id: int
    sync_status: SyncStatus
    updated_at: datetime


class WidgetSyncManager(BatchedSyncManager):
    entity_type = "widgets"
    batch_size = 2

    def __init__(self, metadata_store, local=(), server=(), failures=None, **kwargs):
        super().__init__(metadata_store, **kwargs)
        self.local = list(local)
        self.server = list(server)
        self.failures = dict(failures or {})  # id -> list of exceptions to raise in turn
        self.pushed = []
        self.applied = []
        self.failed = []
        self.since = []

    async def get_local_changes(self):
        return list(self.local)

    async def sync_to_server(self, entity):
        self.pushed.append(entity.id)
        pending = self.failures.get(entity.id)
        if pending:
            raise pending.pop(0)
        return entity

    async def get_server_changes(self, since):
        self.since.append(since)
        return list(self.server)

    async def apply_server_change(self, server_entity):
        self.applied.append(server_entity)
        return server_entity

    async def on_push_failed(self, entity, exc):
        self.failed.append(entity.id)


@pytest.fixture(name="store")
def store_fixture(engine):
    return MetadataStore(engine)


def _widget(clock, id, status, age_ms=60_000):
    return Widget(id=id, sync_status=status, updated_at=from_ms(clock.now - age_ms))


def _manager(store, settings, clock, **kwargs):
    return WidgetSyncManager(store, settings=settings, clock=clock, **kwargs)


# ─── Helpers ───────────────────────────────────────────────────────────────────

class TestChunked:
    def test_splits_into_batches(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 3)) == []


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        block = AsyncMock(return_value="ok")
        assert await with_retry(block, sleep=AsyncMock()) == "ok"
        block.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retries_transient_failures_with_capped_backoff(self):
        block = AsyncMock(side_effect=[TransientSyncError("x")] * 4 + ["ok"])
        sleep = AsyncMock()
        result = await with_retry(
            block, max_attempts=5, initial_delay=1.0, max_delay=5.0, factor=2.0, sleep=sleep
        )
        assert result == "ok"
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0, 5.0]

    @pytest.mark.asyncio
    async def test_non_transient_failure_is_not_retried(self):
        block = AsyncMock(side_effect=RemoteApiError("bad request", status_code=400))
        sleep = AsyncMock()
        with pytest.raises(RemoteApiError):
            await with_retry(block, sleep=sleep)
        block.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        block = AsyncMock(side_effect=TransientSyncError("down"))
        with pytest.raises(TransientSyncError):
            await with_retry(block, max_attempts=3, sleep=AsyncMock())
        assert block.await_count == 3


class TestIsTransient:
    def test_transport_errors(self):
        assert is_transient(httpx.ConnectError("refused"))
        assert is_transient(TimeoutError())
        assert is_transient(TransientSyncError("503"))

    def test_cause_chain_is_followed(self):
        try:
            try:
                raise ConnectionResetError()
            except OSError as exc:
                raise RuntimeError("wrapped") from exc
        except RuntimeError as wrapped:
            assert is_transient(wrapped)

    def test_logical_errors_are_not_transient(self):
        assert not is_transient(ValueError("bad"))
        assert not is_transient(RemoteApiError("nope", status_code=422))


# ─── Anti-loop filter and ordering ─────────────────────────────────────────────

class TestFilterRecentChanges:
    def test_drops_recently_synced(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        recent = _widget(clock, 1, SyncStatus.SYNCED, age_ms=4_999)
        older = _widget(clock, 2, SyncStatus.SYNCED, age_ms=5_000)
        assert manager.filter_recent_changes([recent, older]) == [older]

    def test_drops_rapid_pending_updates(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        rapid = _widget(clock, 1, SyncStatus.PENDING_SYNC, age_ms=1_999)
        settled = _widget(clock, 2, SyncStatus.PENDING_SYNC, age_ms=2_000)
        assert manager.filter_recent_changes([rapid, settled]) == [settled]

    def test_failed_and_deleted_rows_are_never_filtered_by_age(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        rows = [
            _widget(clock, 1, SyncStatus.SYNC_FAILED, age_ms=0),
            _widget(clock, 2, SyncStatus.LOCALLY_DELETED, age_ms=0),
        ]
        assert manager.filter_recent_changes(rows) == rows

    def test_entity_predicate(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        manager.should_sync_entity = lambda e: e.id != 2
        rows = [_widget(clock, 1, SyncStatus.PENDING_SYNC), _widget(clock, 2, SyncStatus.PENDING_SYNC)]
        assert [w.id for w in manager.filter_recent_changes(rows)] == [1]

    def test_thresholds_come_from_settings(self, store, settings, clock):
        settings.recent_sync_threshold_ms = 100
        manager = _manager(store, settings, clock)
        row = _widget(clock, 1, SyncStatus.SYNCED, age_ms=200)
        assert manager.filter_recent_changes([row]) == [row]


class TestOrderForPush:
    def test_previously_failed_first_otherwise_stable(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        rows = [
            _widget(clock, 1, SyncStatus.PENDING_SYNC),
            _widget(clock, 2, SyncStatus.SYNC_FAILED),
            _widget(clock, 3, SyncStatus.PENDING_SYNC),
            _widget(clock, 4, SyncStatus.SYNC_FAILED),
        ]
        assert [w.id for w in manager.order_for_push(rows)] == [2, 4, 1, 3]


# ─── perform_sync ──────────────────────────────────────────────────────────────

class TestPerformSync:
    @pytest.mark.asyncio
    async def test_success_updates_metadata(self, store, settings, clock):
        local = [_widget(clock, i, SyncStatus.PENDING_SYNC) for i in (1, 2, 3)]
        manager = _manager(store, settings, clock, local=local, server=[{"id": 9}])
        result = await manager.perform_sync()

        assert isinstance(result, SyncSuccess)
        assert result.timestamp == clock.now
        assert len(result.updated_items) == 4
        metadata = store.get("widgets")
        assert metadata.sync_status == SyncStatus.SYNCED
        assert metadata.last_sync_timestamp == clock.now
        assert metadata.update_count == 1
        assert metadata.last_sync_result == "Sync completed. Successes: 4"

    @pytest.mark.asyncio
    async def test_pull_uses_previous_sync_timestamp(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        await manager.perform_sync()
        first = clock.now
        clock.advance(20 * MINUTE_MS)
        await manager.perform_sync()
        assert manager.since == [0, first]

    @pytest.mark.asyncio
    async def test_failed_items_pushed_first(self, store, settings, clock):
        local = [
            _widget(clock, 1, SyncStatus.PENDING_SYNC),
            _widget(clock, 2, SyncStatus.SYNC_FAILED),
        ]
        manager = _manager(store, settings, clock, local=local)
        await manager.perform_sync()
        assert manager.pushed == [2, 1]

    @pytest.mark.asyncio
    async def test_recent_rows_not_pushed(self, store, settings, clock):
        local = [
            _widget(clock, 1, SyncStatus.SYNCED, age_ms=1_000),
            _widget(clock, 2, SyncStatus.PENDING_SYNC, age_ms=10_000),
        ]
        manager = _manager(store, settings, clock, local=local)
        await manager.perform_sync()
        assert manager.pushed == [2]

    @pytest.mark.asyncio
    async def test_partial_failure_marks_metadata_failed(self, store, settings, clock):
        local = [_widget(clock, i, SyncStatus.PENDING_SYNC) for i in (1, 2, 3)]
        failures = {2: [RemoteApiError("rejected", status_code=422)]}
        manager = _manager(store, settings, clock, local=local, failures=failures)

        result = await manager.perform_sync()

        assert isinstance(result, SyncError)
        assert isinstance(result.cause, PartialSyncError)
        assert (result.cause.success_count, result.cause.failure_count) == (2, 1)
        assert [w.id for w in result.failed_items] == [2]
        assert manager.pushed == [1, 2, 3]  # non-transient: no retry, rest continues
        assert manager.failed == [2]
        metadata = store.get("widgets")
        assert metadata.sync_status == SyncStatus.SYNC_FAILED
        assert metadata.last_sync_result == "Sync completed with failures: 1 (successes: 2)"

    @pytest.mark.asyncio
    async def test_transient_push_failure_is_retried(self, store, settings, clock):
        local = [_widget(clock, 1, SyncStatus.PENDING_SYNC)]
        failures = {1: [TransientSyncError("503"), httpx.ReadTimeout("slow")]}
        manager = _manager(store, settings, clock, local=local, failures=failures)

        result = await manager.perform_sync()

        assert isinstance(result, SyncSuccess)
        assert manager.pushed == [1, 1, 1]
        assert manager.failed == []

    @pytest.mark.asyncio
    async def test_pull_failure_returns_error(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        manager.get_server_changes = AsyncMock(side_effect=RemoteApiError("gone", status_code=410))
        result = await manager.perform_sync()
        assert isinstance(result, SyncError)
        assert store.get("widgets").sync_status == SyncStatus.SYNC_FAILED

    @pytest.mark.asyncio
    async def test_pauses_only_between_chunks(self, store, settings, clock):
        local = [_widget(clock, i, SyncStatus.PENDING_SYNC) for i in range(5)]
        manager = _manager(store, settings, clock, local=local)
        manager._pause = AsyncMock()
        await manager.perform_sync()
        assert manager._pause.await_count == 2  # 3 push chunks, empty pull

    @pytest.mark.asyncio
    async def test_second_run_inside_interval_is_skipped(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        await manager.perform_sync()
        clock.advance(MINUTE_MS)
        assert isinstance(await manager.perform_sync(), SyncSkipped)

    @pytest.mark.asyncio
    async def test_forced_run_ignores_interval(self, store, settings, clock):
        manager = _manager(store, settings, clock)
        await manager.perform_sync()
        assert isinstance(await manager.perform_sync(force_sync=True), SyncSuccess)

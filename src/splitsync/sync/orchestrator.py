"""
SyncOrchestrator: runs every entity manager once, in dependency order.

Flow for one run:
  1. Reject if a run is already in progress
  2. Create SyncLog (status="running")
  3. Check the network; offline (or connection lost mid-run) -> Failed(offline=True)
  4. For each manager by ascending sync_priority, run perform_sync() when
     forced or when its staleness check says it is due
  5. Update SyncLog and publish Completed / Failed; a run never ends InProgress

Dependency order (users before groups before payments ...) means foreign
keys are always translatable by the time a dependent entity is pushed.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, List, Optional, Sequence, Tuple, Union

from sqlmodel import Session

from splitsync.errors import OfflineError, SyncRunError, is_offline
from splitsync.models.sync import SyncLog
from splitsync.sync.base import SyncManager
from splitsync.sync.results import SyncError, SyncSkipped
from splitsync.timeutils import Clock, now_ms, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class InProgress:
    pass


@dataclass(frozen=True)
class Completed:
    timestamp: int
    failed_entities: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Failed:
    reason: str
    offline: bool = False


SyncState = Union[Idle, InProgress, Completed, Failed]


class SequencingPolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    CONTINUE_ON_ERROR = "continue_on_error"


class SyncOrchestrator:
    def __init__(
        self,
        managers: Sequence[SyncManager],
        network,
        engine,
        policy: SequencingPolicy = SequencingPolicy.FAIL_FAST,
        clock: Clock = now_ms,
    ):
        """
        Args:
            managers: Entity managers; run order is their sync_priority.
            network: Anything with `async is_online() -> bool`.
            engine: SQLAlchemy engine for the SyncLog audit rows.
            policy: What a failing entity type means for the rest of the run.
        """
        self.managers: List[SyncManager] = sorted(managers, key=lambda m: m.sync_priority)
        self.network = network
        self.engine = engine
        self.policy = SequencingPolicy(policy)
        self._clock = clock
        self._state: SyncState = Idle()
        self._subscribers: List[asyncio.Queue] = []

    # ─── Observable state ─────────────────────────────────────────────────────

    @property
    def state(self) -> SyncState:
        return self._state

    def _publish(self, state: SyncState) -> None:
        self._state = state
        for queue in self._subscribers:
            queue.put_nowait(state)

    async def states(self) -> AsyncIterator[SyncState]:
        """Yield the current state, then every later transition."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._state)
        self._subscribers.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(queue)

    # ─── Runs ─────────────────────────────────────────────────────────────────

    async def start_sync(self, force_sync: bool = False) -> SyncState:
        """Run one pass over all managers. A call during a run returns at once."""
        if isinstance(self._state, InProgress):
            logger.info("Sync already in progress; ignoring request")
            return self._state
        self._publish(InProgress())
        try:
            self._publish(await self._run(force_sync))
        finally:
            # Cancelled mid-run; never leave later runs locked out
            if isinstance(self._state, InProgress):
                self._publish(Failed("Sync interrupted"))
        return self._state

    async def perform_sync(self, force_sync: bool = False) -> SyncState:
        """Job-scheduler entry point: same as start_sync(), but a failed run raises."""
        state = await self.start_sync(force_sync)
        if isinstance(state, Failed):
            raise SyncRunError(state.reason, offline=state.offline)
        return state

    async def _run(self, force_sync: bool) -> SyncState:
        log: Optional[SyncLog] = None
        try:
            log = self._create_sync_log(force_sync)
            if not await self.network.is_online():
                raise OfflineError("No network connection")
            failed_entities, synced = await self._run_managers(force_sync)
        except OfflineError as exc:
            logger.warning("Sync aborted: %s", exc)
            self._close_sync_log(log, status="offline", error_message=str(exc))
            return Failed(str(exc), offline=True)
        except Exception as exc:
            logger.exception("Sync run failed")
            self._close_sync_log(log, status="error", error_message=str(exc))
            return Failed(str(exc))

        if failed_entities and self.policy == SequencingPolicy.FAIL_FAST:
            reason = f"Sync failed for {failed_entities[0]}"
            self._close_sync_log(log, status="error", entities_synced=synced, error_message=reason)
            return Failed(reason)

        self._close_sync_log(
            log,
            status="partial" if failed_entities else "success",
            entities_synced=synced,
            error_message=", ".join(failed_entities) or None,
        )
        return Completed(self._clock(), tuple(failed_entities))

    async def _run_managers(self, force_sync: bool) -> Tuple[List[str], int]:
        failed: List[str] = []
        synced = 0
        for manager in self.managers:
            if not force_sync and not manager.needs_sync():
                logger.debug("%s is up to date", manager.entity_type)
                continue

            result = await manager.perform_sync(force_sync)
            if isinstance(result, SyncError):
                if is_offline(result.cause):
                    raise OfflineError(
                        f"Lost connection while syncing {manager.entity_type}"
                    ) from result.cause
                logger.error("Sync of %s failed: %s", manager.entity_type, result.message)
                failed.append(manager.entity_type)
                if self.policy == SequencingPolicy.FAIL_FAST:
                    break
            elif isinstance(result, SyncSkipped):
                logger.debug("%s skipped: %s", manager.entity_type, result.reason)
            else:
                synced += 1
        return failed, synced

    # ─── SyncLog helpers ──────────────────────────────────────────────────────

    def _create_sync_log(self, forced: bool) -> SyncLog:
        log = SyncLog(started_at=utcnow(), status="running", forced=forced)
        with Session(self.engine) as s:
            s.add(log)
            s.commit()
            s.refresh(log)
        return log

    def _close_sync_log(self, log: Optional[SyncLog], **fields) -> None:
        """Finish the audit row; a failed write is logged, never raised."""
        if log is None:
            return
        try:
            self._finish_sync_log(log, **fields)
        except Exception:
            logger.exception("Could not record outcome of sync run %s", log.id)

    def _finish_sync_log(
        self,
        log: SyncLog,
        *,
        status: str,
        entities_synced: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        with Session(self.engine) as s:
            db_log = s.get(SyncLog, log.id)
            db_log.status = status
            db_log.finished_at = utcnow()
            db_log.entities_synced = entities_synced
            db_log.error_message = error_message
            s.add(db_log)
            s.commit()

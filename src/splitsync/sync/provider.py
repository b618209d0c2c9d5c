"""Wiring for the entity managers and the process-wide orchestrator."""
from typing import List, Optional

from splitsync.config import Settings, get_settings
from splitsync.remote.client import RemoteApi
from splitsync.remote.network import NetworkMonitor
from splitsync.sync.base import SyncManager
from splitsync.sync.managers.banking import (
    BankAccountSyncManager,
    RequisitionSyncManager,
    TransactionSyncManager,
)
from splitsync.sync.managers.conversions import CurrencyConversionSyncManager
from splitsync.sync.managers.members import GroupDefaultSplitSyncManager, GroupMemberSyncManager
from splitsync.sync.managers.payments import PaymentSyncManager
from splitsync.sync.managers.users import GroupSyncManager, UserSyncManager
from splitsync.sync.metadata_store import MetadataStore
from splitsync.sync.orchestrator import SequencingPolicy, SyncOrchestrator
from splitsync.sync.throttle import RateThrottle
from splitsync.timeutils import MINUTE_MS, Clock, now_ms

MANAGER_CLASSES = (
    UserSyncManager,
    GroupSyncManager,
    GroupMemberSyncManager,
    GroupDefaultSplitSyncManager,
    RequisitionSyncManager,
    BankAccountSyncManager,
    TransactionSyncManager,
    PaymentSyncManager,
    CurrencyConversionSyncManager,
)

_remote: Optional[RemoteApi] = None
_orchestrator: Optional[SyncOrchestrator] = None


def build_remote(settings: Optional[Settings] = None) -> RemoteApi:
    settings = settings or get_settings()
    return RemoteApi(
        settings.api_base_url,
        token=settings.api_token,
        timeout=settings.api_timeout_seconds,
    )


def get_remote() -> RemoteApi:
    """Return the module-level RemoteApi, creating it on first call."""
    global _remote
    if _remote is None:
        _remote = build_remote()
    return _remote


def build_managers(
    engine,
    remote,
    settings: Optional[Settings] = None,
    clock: Clock = now_ms,
) -> List[SyncManager]:
    """One manager per entity type, sharing one metadata store and one throttle."""
    settings = settings or get_settings()
    metadata_store = MetadataStore(engine)
    throttle = RateThrottle(
        window_ms=settings.throttle_window_minutes * MINUTE_MS,
        max_requests=settings.throttle_max_requests,
        clock=clock,
    )
    return [
        cls(engine, remote, metadata_store, throttle=throttle, settings=settings, clock=clock)
        for cls in MANAGER_CLASSES
    ]


def build_orchestrator(
    engine,
    remote,
    settings: Optional[Settings] = None,
    clock: Clock = now_ms,
) -> SyncOrchestrator:
    settings = settings or get_settings()
    return SyncOrchestrator(
        build_managers(engine, remote, settings=settings, clock=clock),
        network=NetworkMonitor(remote, timeout=settings.network_check_timeout_seconds),
        engine=engine,
        policy=SequencingPolicy(settings.sync_sequencing),
        clock=clock,
    )


def get_orchestrator() -> SyncOrchestrator:
    """Return the module-level orchestrator, creating it on first call."""
    global _orchestrator
    if _orchestrator is None:
        from splitsync.db.engine import get_engine

        _orchestrator = build_orchestrator(get_engine(), get_remote())
    return _orchestrator

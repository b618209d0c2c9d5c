"""Tagged unions for a sync pass outcome and the pull strategy."""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, Union

from splitsync.models.sync import SyncMetadata


@dataclass(frozen=True)
class SyncSuccess:
    updated_items: Tuple[Any, ...] = ()
    timestamp: int = 0
    etag: Optional[str] = None


@dataclass(frozen=True)
class SyncError:
    cause: Exception
    failed_items: Tuple[Any, ...] = ()

    @property
    def message(self) -> str:
        return str(self.cause) or type(self.cause).__name__


@dataclass(frozen=True)
class SyncSkipped:
    reason: str


SyncResult = Union[SyncSuccess, SyncError, SyncSkipped]


@dataclass(frozen=True)
class FullSync:
    pass


@dataclass(frozen=True)
class IncrementalSync:
    since: int


@dataclass(frozen=True)
class EtagSync:
    etag: str


SyncStrategy = Union[FullSync, IncrementalSync, EtagSync]


def determine_strategy(metadata: Optional[SyncMetadata]) -> SyncStrategy:
    if metadata is None:
        return FullSync()
    if metadata.last_etag is not None:
        return EtagSync(metadata.last_etag)
    return IncrementalSync(metadata.last_sync_timestamp)


def combine_results(local: SyncResult, server: SyncResult) -> SyncResult:
    """Merge the push and pull outcomes of one pass."""
    if isinstance(local, SyncError):
        return local
    if isinstance(server, SyncError):
        return server
    if isinstance(local, SyncSuccess) and isinstance(server, SyncSuccess):
        return SyncSuccess(
            updated_items=local.updated_items + server.updated_items,
            timestamp=max(local.timestamp, server.timestamp),
            etag=server.etag,
        )
    if isinstance(local, SyncSuccess):
        return local
    if isinstance(server, SyncSuccess):
        return server
    return SyncSkipped(
        "Both local and server sync were skipped: "
        f"{local.reason}, {server.reason}"
    )


@dataclass
class ChangeSet:
    """Server-side changes returned by the remote 'since' endpoints."""

    items: List[dict] = field(default_factory=list)
    etag: Optional[str] = None
    not_modified: bool = False

"""
Exception taxonomy for the sync and money layers.

  Transient / IO     -> TransientSyncError (retried with bounded backoff)
  Validation         -> InvariantViolation (fatal, never retried)
  Remote rejection   -> RemoteApiError (4xx, never retried)
  Partial batch      -> PartialSyncError (aggregate counts only)
  Run failure        -> SyncRunError (raised only at the orchestrator boundary)

Conflicts and throttle/quota rejections are not errors: the first is
resolved by a conflict policy, the second surfaces as SyncSkipped or False.
"""
from typing import Optional

import httpx


class SyncError(Exception):
    """Base class for everything raised by splitsync."""


class TransientSyncError(SyncError):
    """Timeouts, dropped connections and 5xx responses."""


class OfflineError(TransientSyncError):
    """Raised when the network reachability check fails before a run."""


class RemoteApiError(SyncError):
    """The server rejected a request (4xx). Retrying will not help."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvariantViolation(SyncError):
    """A consistency invariant does not hold; the operation is aborted."""


class SplitVerificationError(InvariantViolation):
    """Split amounts do not add up to the payment, or equal splits drift."""


class EntityNotFoundError(InvariantViolation):
    """A referenced local or remote entity is missing."""


class PartialSyncError(SyncError):
    """Some items of a batched pass failed; committed items stay committed."""

    def __init__(self, entity_type: str, success_count: int, failure_count: int):
        super().__init__(
            f"{entity_type}: {failure_count} failed, {success_count} succeeded"
        )
        self.entity_type = entity_type
        self.success_count = success_count
        self.failure_count = failure_count


class SyncRunError(SyncError):
    """An orchestrated run ended in Failed; lets the job scheduler retry."""

    def __init__(self, message: str, offline: bool = False):
        super().__init__(message)
        self.offline = offline


class RefreshDeniedError(SyncError):
    """A manual transaction refresh was refused by the feed quota."""

    def __init__(self, message: str, rate_limit=None):
        super().__init__(message)
        self.rate_limit = rate_limit


_TRANSIENT_TYPES = (TransientSyncError, httpx.TransportError, OSError, TimeoutError)


def is_transient(exc: BaseException) -> bool:
    """True if exc (or anything in its cause chain) is a transport/IO failure."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, _TRANSIENT_TYPES):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def is_offline(exc: BaseException) -> bool:
    """True if exc (or anything in its cause chain) means the server is unreachable."""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, (OfflineError, httpx.ConnectError)):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False

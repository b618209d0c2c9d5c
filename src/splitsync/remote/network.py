"""Network reachability check consumed by the orchestrator before each run."""
import asyncio
import logging

from splitsync.errors import RemoteApiError, TransientSyncError

logger = logging.getLogger(__name__)


class NetworkMonitor:
    """Answers "is the transport usable now" by probing the server health endpoint."""

    def __init__(self, remote, timeout: float = 3.0):
        self.remote = remote
        self.timeout = timeout

    async def is_online(self) -> bool:
        try:
            return await asyncio.wait_for(self.remote.health(), timeout=self.timeout)
        except (TransientSyncError, asyncio.TimeoutError):
            return False
        except RemoteApiError as exc:
            # The server answered, so the network is up even if /health is unknown.
            logger.debug("Health check rejected: %s", exc)
            return True

"""
Async REST client for the expense server.

Every endpoint is idempotent by identity: creates carry the client's local
id in `client_ref`, so a retried create returns the row the server already
holds instead of a duplicate.

Errors are classified at this boundary:
  - connection refused / DNS failure     -> OfflineError (retryable)
  - other transport errors, 429 and 5xx -> TransientSyncError (retryable)
  - other 4xx                           -> RemoteApiError (not retryable)
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from splitsync.errors import OfflineError, RemoteApiError, TransientSyncError
from splitsync.sync.results import ChangeSet, EtagSync, IncrementalSync, SyncStrategy

logger = logging.getLogger(__name__)


class RemoteApi:
    """Thin async wrapper over httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            base_url: Server API root, e.g. "https://example.org/api".
            token: Bearer token; omitted from headers when empty.
            timeout: Per-request timeout in seconds.
            client: Pre-built client (tests pass one with a MockTransport).
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.ConnectError as exc:
            raise OfflineError(f"{method} {path}: server unreachable: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientSyncError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code == 304:
            return resp
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientSyncError(f"{method} {path} returned {resp.status_code}")
        if resp.status_code >= 400:
            raise RemoteApiError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    # ─── Generic entity endpoints ─────────────────────────────────────────────

    async def fetch_changes(
        self,
        resource: str,
        strategy: SyncStrategy,
        params: Optional[Dict[str, Any]] = None,
    ) -> ChangeSet:
        """GET /{resource}/since according to the pull strategy."""
        query = dict(params or {})
        headers = {}
        if isinstance(strategy, IncrementalSync):
            query["since"] = strategy.since
        elif isinstance(strategy, EtagSync):
            headers["If-None-Match"] = strategy.etag

        resp = await self._request("GET", f"/{resource}/since", params=query, headers=headers)
        if resp.status_code == 304:
            etag = strategy.etag if isinstance(strategy, EtagSync) else None
            return ChangeSet(items=[], etag=etag, not_modified=True)

        body = resp.json()
        if isinstance(body, list):
            return ChangeSet(items=body, etag=resp.headers.get("ETag"))
        return ChangeSet(
            items=body.get("data", []),
            etag=body.get("etag") or resp.headers.get("ETag"),
        )

    async def create(self, resource: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request("POST", f"/{resource}", json=payload)
        return resp.json()

    async def update(
        self, resource: str, server_id: int, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        resp = await self._request("PUT", f"/{resource}/{server_id}", json=payload)
        return resp.json()

    async def delete(self, resource: str, server_id: int) -> None:
        """Delete a row. A 404 means it is already gone, which is what we wanted."""
        try:
            await self._request("DELETE", f"/{resource}/{server_id}")
        except RemoteApiError as exc:
            if exc.status_code != 404:
                raise
            logger.info("%s/%s already deleted on server", resource, server_id)

    # ─── Payment splits (nested under payments) ───────────────────────────────

    async def create_split(self, payment_server_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request("POST", f"/payments/{payment_server_id}/splits", json=payload)
        return resp.json()

    async def update_split(
        self, payment_server_id: int, split_server_id: int, payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        resp = await self._request(
            "PUT", f"/payments/{payment_server_id}/splits/{split_server_id}", json=payload
        )
        return resp.json()

    async def delete_split(self, payment_server_id: int, split_server_id: int) -> None:
        try:
            await self._request("DELETE", f"/payments/{payment_server_id}/splits/{split_server_id}")
        except RemoteApiError as exc:
            if exc.status_code != 404:
                raise

    # ─── Currency conversions ─────────────────────────────────────────────────

    async def create_conversion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.create("currency-conversions", payload)

    # ─── Rate-limited transaction feed ────────────────────────────────────────

    async def fetch_transactions(self, user_server_id: int) -> List[Dict[str, Any]]:
        resp = await self._request("GET", f"/transactions/user/{user_server_id}/recent")
        body = resp.json()
        return body if isinstance(body, list) else body.get("data", [])

    async def fetch_account_transactions(self, account_server_id: int) -> List[Dict[str, Any]]:
        resp = await self._request("GET", f"/accounts/{account_server_id}/transactions")
        body = resp.json()
        return body if isinstance(body, list) else body.get("data", [])

    async def health(self) -> bool:
        resp = await self._request("GET", "/health")
        return resp.status_code < 400

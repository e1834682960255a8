"""HTTP client for the remote authority.

The remote exposes two endpoints:

- ``POST /batch`` accepts a batch of outbox entries and reports a
  per-item outcome (``success``, ``conflict`` or ``error``).
- ``GET /health`` is a liveness probe; any 2xx answer means reachable.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time

import httpx
from jose import jwt
from pydantic import ValidationError

from tasksync.schemas.sync import BatchSyncRequest, BatchSyncResponse
from tasksync.services.sync_config import SyncConfig, load_sync_config

# Configure logger for this module
logger = logging.getLogger(__name__)


class RemoteError(RuntimeError):
    """Base exception raised when a call to the remote authority fails.

    Covers transport failures, timeouts and non-2xx answers. The sync
    engine treats all of them as retryable batch-level failures.
    """


class MalformedResponseError(RemoteError):
    """Raised when the remote answers without a usable per-item result."""


class RemoteClient:
    """Async HTTP client wrapper for remote authority interactions."""

    def __init__(
        self,
        config: SyncConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.batch_timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "X-Tasksync-Client-Id": self.config.client_id,
        }

        if self.config.shared_secret:
            now = int(time.time())
            payload = {
                "iss": self.config.client_id,
                "iat": now,
                "exp": now + max(1, self.config.token_ttl_seconds),
                "jti": secrets.token_hex(8),
            }
            token = jwt.encode(payload, self.config.shared_secret, algorithm="HS256")
            headers["Authorization"] = f"Bearer {token}"

        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float,
        json_data: object | None = None,
    ) -> httpx.Response:
        client = await self._ensure_client()
        try:
            # wait_for bounds the whole exchange; httpx only bounds each phase.
            return await asyncio.wait_for(
                client.request(
                    method,
                    path,
                    json=json_data,
                    headers=self._build_headers(),
                    timeout=timeout,
                ),
                timeout=timeout,
            )
        except (TimeoutError, asyncio.TimeoutError) as exc:
            raise RemoteError(f"{method} {path} timed out after {timeout:.1f}s") from exc
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

    async def send_batch(self, request: BatchSyncRequest) -> BatchSyncResponse:
        """Submit one batch and return the parsed per-item outcomes.

        Raises:
            RemoteError: On transport failure, timeout or a non-2xx status.
            MalformedResponseError: If the body lacks a valid ``processed_items`` list.
        """
        logger.info("Sending batch of %d items (checksum %s)", len(request.items), request.checksum)
        response = await self._request(
            "POST",
            "/batch",
            timeout=self.config.batch_timeout_seconds,
            json_data=request.model_dump(mode="json"),
        )

        if not response.is_success:
            raise RemoteError(f"Batch processing failed: remote responded with {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise MalformedResponseError("Invalid batch response: body is not JSON") from exc

        try:
            return BatchSyncResponse.model_validate(body)
        except ValidationError as exc:
            raise MalformedResponseError("Server response missing 'processed_items'") from exc

    async def check_health(self) -> bool:
        """Return True if the remote answers ``GET /health`` with a 2xx in time."""
        try:
            response = await self._request(
                "GET", "/health", timeout=self.config.probe_timeout_seconds
            )
        except RemoteError as exc:
            logger.warning("Connectivity: server unreachable (%s)", exc)
            return False

        reachable = response.is_success
        if reachable:
            logger.debug("Connectivity: server reachable")
        else:
            logger.warning("Connectivity: health check answered %s", response.status_code)
        return reachable

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _RemoteClientSingleton:
    """Singleton wrapper for RemoteClient."""

    _instance: RemoteClient | None = None

    @classmethod
    def get_instance(cls) -> RemoteClient:
        """Get or create the singleton RemoteClient instance."""
        if cls._instance is None:
            cls._instance = RemoteClient(load_sync_config())
        return cls._instance


def get_remote_client() -> RemoteClient:
    """Return a singleton remote client instance."""
    return _RemoteClientSingleton.get_instance()

"""HTTP client for the remote entity store."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from homekeep.errors import (
    DuplicateIntent,
    NetworkTransient,
    RemoteNotFound,
    RemoteRejected,
)
from homekeep.remote.base import RemoteEntityStore

logger = logging.getLogger(__name__)

# Statuses worth retrying: timeout, too early, rate limited, and any 5xx
_TRANSIENT_STATUSES = frozenset({408, 425, 429})

_DUPLICATE_MARKERS = ("duplicate_idempotency_key", "idempotency_key_used")


class HTTPEntityStore(RemoteEntityStore):
    """
    REST binding of :class:`RemoteEntityStore`.

    Endpoints:
        POST   {base_url}/entities/{entity_type}
        PATCH  {base_url}/entities/{entity_type}/{id}
        DELETE {base_url}/entities/{entity_type}/{id}

    Every request carries an ``Idempotency-Key`` header.

    Usage:
        async with HTTPEntityStore("https://host/api", api_key="...") as remote:
            task_id = await remote.create("Task", {"title": "Buy milk"}, idempotency_key=key)
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        api_key: str | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Base URL of the entity API (e.g., "https://host/api")
            timeout: Request timeout in seconds
            api_key: Optional bearer token
        """
        if not base_url.startswith(("http://", "https://")):
            raise ValueError("Invalid base URL scheme: must start with http:// or https://")

        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._api_key = api_key
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def is_connected(self) -> bool:
        return self._session is not None

    async def connect(self) -> None:
        """Create the HTTP session."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> HTTPEntityStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.disconnect()

    def _get_headers(self, idempotency_key: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Idempotency-Key": idempotency_key}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _entity_path(self, entity_type: str, entity_id: str | None = None) -> str:
        path = f"/entities/{quote(entity_type, safe='')}"
        if entity_id is not None:
            path += f"/{quote(entity_id, safe='')}"
        return path

    async def _request(
        self,
        method: str,
        path: str,
        *,
        idempotency_key: str,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an HTTP request and classify failures."""
        if not self._session:
            await self.connect()

        assert self._session is not None

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(
                method,
                url,
                json=json_data,
                headers=self._get_headers(idempotency_key),
            ) as response:
                text = await response.text()
                if response.status >= 400:
                    raise _classify_status(response.status, text)
                return _parse_body(text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkTransient(f"Connection error: {str(e) or type(e).__name__}") from e

    async def create(
        self, entity_type: str, payload: dict[str, Any], *, idempotency_key: str
    ) -> str:
        result = await self._request(
            "POST",
            self._entity_path(entity_type),
            idempotency_key=idempotency_key,
            json_data=payload,
        )
        remote_id = result.get("id")
        if not remote_id:
            raise RemoteRejected(f"Create {entity_type} returned no id")
        return str(remote_id)

    async def update(
        self,
        entity_type: str,
        entity_id: str,
        patch: dict[str, Any],
        *,
        idempotency_key: str,
    ) -> None:
        await self._request(
            "PATCH",
            self._entity_path(entity_type, entity_id),
            idempotency_key=idempotency_key,
            json_data=patch,
        )

    async def delete(self, entity_type: str, entity_id: str, *, idempotency_key: str) -> None:
        await self._request(
            "DELETE",
            self._entity_path(entity_type, entity_id),
            idempotency_key=idempotency_key,
        )


def _parse_body(text: str) -> dict[str, Any]:
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("Non-JSON response body ignored: %.80s", text)
        return {}
    return data if isinstance(data, dict) else {}


def _classify_status(status: int, text: str) -> Exception:
    """Turn an error response into the matching remote error."""
    body = _parse_body(text)
    message = str(body.get("error") or body.get("message") or text or f"HTTP {status}")

    if status >= 500 or status in _TRANSIENT_STATUSES:
        return NetworkTransient(f"Server error: {message}", status_code=status)
    if status == 409 and any(marker in text for marker in _DUPLICATE_MARKERS):
        existing = body.get("id") or body.get("existing_id")
        return DuplicateIntent(message, remote_id=str(existing) if existing else None)
    if status == 404:
        return RemoteNotFound(f"Not found: {message}", status_code=status)
    return RemoteRejected(f"Rejected: {message}", status_code=status)

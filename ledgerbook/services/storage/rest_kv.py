"""
REST Key-Value Storage Implementation

DESIGN DECISION: The remote backend speaks the Redis-over-HTTP protocol
used by hosted KV services (Upstash, Vercel KV): every call is a POST of a
JSON command array, e.g. ["SET", "account:Axis Bank", "<json>"], answered
by {"result": ...} or {"error": "..."}.

TRADEOFFS:
- One HTTP round trip per command (fine for a single user's ledger)
- No transactions or CAS; last write wins
- KEYS is a full scan on the server (acceptable at personal scale)

Values are stored as JSON strings so any client can read them.
"""

import json
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ledgerbook.config import KVSettings
from ledgerbook.services.storage.interface import (
    ConnectionError,
    KeyValueBackend,
    ParseError,
    StorageError,
)


_GLOB_SPECIAL = set("*?[]\\")


def _glob_escape(prefix: str) -> str:
    """Escape Redis glob metacharacters so a prefix matches literally."""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in prefix)


class RestKVClient:
    """
    Low-level REST KV client.

    Handles authentication and retries transient transport failures.
    HTTP-level errors (4xx/5xx) and command errors are not retried.
    """

    def __init__(
        self,
        url: str,
        token: str,
        timeout: float = 10.0,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url.rstrip("/")
        self._token = token
        self._retry_attempts = retry_attempts
        self._backoff_seconds = backoff_seconds
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: KVSettings, **kwargs) -> "RestKVClient":
        if not settings.is_configured:
            raise ConnectionError("KV_REST_API_URL and KV_REST_API_TOKEN must both be set")
        return cls(
            url=settings.rest_api_url,
            token=settings.rest_api_token,
            timeout=settings.timeout_seconds,
            retry_attempts=settings.retry_attempts,
            **kwargs,
        )

    async def _post(self, command: list) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=self._backoff_seconds, max=10),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
        ):
            with attempt:
                return await self._client.post(
                    self._url,
                    json=command,
                    headers={"Authorization": f"Bearer {self._token}"},
                )
        raise StorageError("No attempt was made")  # pragma: no cover

    async def command(self, *args: Any) -> Any:
        """Run one command and return its result."""
        try:
            response = await self._post(list(args))
        except httpx.TransportError as e:
            raise ConnectionError(f"KV endpoint unreachable: {e}")
        except httpx.HTTPError as e:
            raise StorageError(f"KV request failed: {e}")

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            detail = payload.get("error") if isinstance(payload, dict) else None
            raise StorageError(
                f"KV command {args[0]} failed with HTTP {response.status_code}: "
                f"{detail or response.text}"
            )
        if not isinstance(payload, dict):
            raise StorageError(f"Unexpected KV response to {args[0]}: {payload!r}")
        if payload.get("error"):
            raise StorageError(f"KV command {args[0]} failed: {payload['error']}")

        return payload.get("result")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class RestKVBackend(KeyValueBackend):
    """
    Remote key-value backend.

    One key per entity, values stored as JSON strings.
    """

    name = "remote"

    def __init__(self, client: RestKVClient):
        self._client = client

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.command("GET", key)
        if raw is None:
            return None
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"Stored value for {key!r} is not valid JSON: {e}")

    async def set(self, key: str, value: Any) -> None:
        await self._client.command("SET", key, json.dumps(value))

    async def delete(self, key: str) -> bool:
        removed = await self._client.command("DEL", key)
        return bool(removed)

    async def list_keys(self, prefix: str = "") -> list[str]:
        keys = await self._client.command("KEYS", f"{_glob_escape(prefix)}*")
        return sorted(keys or [])

    async def clear(self) -> None:
        await self._client.command("FLUSHDB")

    async def ping(self) -> bool:
        try:
            return await self._client.command("PING") == "PONG"
        except StorageError:
            return False

    async def close(self) -> None:
        await self._client.close()

"""
Persistence Store

DESIGN DECISION: Callers never branch on which backend is active. The
store is built once per process with a local backend and, when configured
and reachable, a remote one. Every call goes to the remote backend first;
if it fails the failure is logged and the local backend serves the call.

The local backend is therefore the durability floor: after a failed
remote write the value is still retrievable locally.

LIMITATIONS:
- No compare-and-swap or versioning. Two writers on the same key
  (e.g. two browser tabs) silently overwrite each other.
- No timeouts beyond the HTTP client's; a remote call that hangs stalls
  that one operation.
- Data written locally during an outage is not replayed to the remote.
"""

from typing import Any, Optional

import httpx
import structlog

from ledgerbook.config import KVSettings, LocalStorageSettings, get_settings
from ledgerbook.services.storage.interface import (
    KeyValueBackend,
    ParseError,
    StorageError,
)
from ledgerbook.services.storage.local_file import LocalFileBackend
from ledgerbook.services.storage.rest_kv import RestKVBackend, RestKVClient


logger = structlog.get_logger(__name__)


class PersistenceStore(KeyValueBackend):
    """
    Remote-first key-value store with transparent local fallback.

    Transport and server failures are contained here. ParseError is not:
    a corrupt value is data, not an outage, and the caller decides what
    replaces it.
    """

    def __init__(
        self,
        local: KeyValueBackend,
        remote: Optional[KeyValueBackend] = None,
    ):
        self._local = local
        self._remote = remote

    @property
    def name(self) -> str:
        return "remote" if self._remote is not None else "local"

    @property
    def local(self) -> KeyValueBackend:
        return self._local

    @property
    def remote(self) -> Optional[KeyValueBackend]:
        return self._remote

    async def _call(self, operation: str, *args: Any) -> Any:
        if self._remote is not None:
            try:
                return await getattr(self._remote, operation)(*args)
            except ParseError:
                raise
            except StorageError as e:
                logger.warning(
                    "storage_fallback",
                    operation=operation,
                    key=args[0] if args else None,
                    error=str(e),
                )
        return await getattr(self._local, operation)(*args)

    async def get(self, key: str) -> Optional[Any]:
        return await self._call("get", key)

    async def set(self, key: str, value: Any) -> None:
        await self._call("set", key, value)

    async def delete(self, key: str) -> bool:
        return await self._call("delete", key)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await self._call("list_keys", prefix)

    async def clear(self) -> None:
        """Clear both backends so no stale fallback data survives."""
        if self._remote is not None:
            try:
                await self._remote.clear()
            except StorageError as e:
                logger.warning("storage_fallback", operation="clear", error=str(e))
        await self._local.clear()

    async def ping(self) -> bool:
        if self._remote is not None and await self._remote.ping():
            return True
        return await self._local.ping()

    async def close(self) -> None:
        if self._remote is not None:
            await self._remote.close()
        await self._local.close()


def create_local_store(
    local_settings: Optional[LocalStorageSettings] = None,
) -> PersistenceStore:
    """Local-only store."""
    local_settings = local_settings or get_settings().local_storage
    return PersistenceStore(LocalFileBackend.from_settings(local_settings))


async def open_store(
    kv_settings: Optional[KVSettings] = None,
    local_settings: Optional[LocalStorageSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> PersistenceStore:
    """
    Build the process-wide store.

    The remote backend is used only when both the endpoint URL and the
    token are configured and the endpoint answers PING. Otherwise the
    store runs local-only for the rest of the process.
    """
    settings = get_settings()
    kv_settings = kv_settings or settings.kv
    local = LocalFileBackend.from_settings(local_settings or settings.local_storage)

    if not kv_settings.is_configured:
        logger.info("storage_mode_selected", mode="local", reason="remote not configured")
        return PersistenceStore(local)

    remote = RestKVBackend(RestKVClient.from_settings(kv_settings, http_client=http_client))
    if not await remote.ping():
        logger.warning("storage_mode_selected", mode="local", reason="remote unreachable")
        await remote.close()
        return PersistenceStore(local)

    logger.info("storage_mode_selected", mode="remote")
    return PersistenceStore(local, remote)

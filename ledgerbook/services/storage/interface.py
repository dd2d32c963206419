"""
Abstract Storage Interface

DESIGN DECISION: We define one abstract key-value interface and put every
backend behind it. This allows us to:
1. Use a remote KV service when it is configured and reachable
2. Fall back to a local file without the callers noticing
3. Use in-memory fakes for testing

Keys are namespaced by entity kind:
- account:<name>       one Account document
- transaction:<id>     one Transaction document
- tags                 the whole tag collection (a list)

Values are JSON-compatible Python objects. Backends decide how they are
laid out physically.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


ACCOUNT_PREFIX = "account:"
TRANSACTION_PREFIX = "transaction:"
TAGS_KEY = "tags"


def account_key(name: str) -> str:
    return f"{ACCOUNT_PREFIX}{name}"


def transaction_key(transaction_id: str) -> str:
    return f"{TRANSACTION_PREFIX}{transaction_id}"


class KeyValueBackend(ABC):
    """
    Abstract interface for a key-value durability backend.

    All methods may suspend on I/O and may raise StorageError.
    Writes are last-write-wins; there is no compare-and-swap.
    """

    name: str = "backend"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Returns:
            The decoded value, or None if the key does not exist

        Raises:
            StorageError: If the backend cannot be read
            ParseError: If the stored value is not valid JSON
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """
        Overwrite a value.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> list[str]:
        """
        List keys starting with prefix.

        An empty prefix lists every key.
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Remove every key."""
        pass

    async def ping(self) -> bool:
        """Check the backend is reachable."""
        return True

    async def close(self) -> None:
        """Release connections held by the backend."""
        return None


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class ParseError(StorageError):
    """Stored data exists but is not valid JSON or does not match its schema."""
    pass

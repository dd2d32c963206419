"""Services package."""

from ledgerbook.services.storage import (
    ConnectionError,
    KeyValueBackend,
    LedgerRepository,
    LocalFileBackend,
    ParseError,
    PersistenceStore,
    RestKVBackend,
    RestKVClient,
    StorageError,
    open_store,
)

__all__ = [
    "ConnectionError",
    "KeyValueBackend",
    "LedgerRepository",
    "LocalFileBackend",
    "ParseError",
    "PersistenceStore",
    "RestKVBackend",
    "RestKVClient",
    "StorageError",
    "open_store",
]

"""
Storage Services Package

Provides the abstract key-value interface, the remote REST KV and local
file backends, the fallback store that combines them, and the typed
repository the ledger components use.
"""

from ledgerbook.services.storage.interface import (
    ACCOUNT_PREFIX,
    TAGS_KEY,
    TRANSACTION_PREFIX,
    ConnectionError,
    KeyValueBackend,
    ParseError,
    StorageError,
    account_key,
    transaction_key,
)
from ledgerbook.services.storage.local_file import LocalFileBackend
from ledgerbook.services.storage.rest_kv import RestKVBackend, RestKVClient
from ledgerbook.services.storage.store import (
    PersistenceStore,
    create_local_store,
    open_store,
)
from ledgerbook.services.storage.repository import (
    LedgerRepository,
    LedgerState,
    ensure_preloaded_tags,
)

__all__ = [
    # Interface
    "ACCOUNT_PREFIX",
    "TAGS_KEY",
    "TRANSACTION_PREFIX",
    "KeyValueBackend",
    "account_key",
    "transaction_key",
    # Exceptions
    "ConnectionError",
    "ParseError",
    "StorageError",
    # Backends
    "LocalFileBackend",
    "RestKVBackend",
    "RestKVClient",
    # Store
    "PersistenceStore",
    "create_local_store",
    "open_store",
    # Repository
    "LedgerRepository",
    "LedgerState",
    "ensure_preloaded_tags",
]

"""
Local File Storage Implementation

DESIGN DECISION: The local backend is the durability floor. It must be
able to stand in for the remote backend at any key, so it implements the
same logical key scheme, but lays data out the way a single-user app
naturally does on disk: one JSON document per collection.

    <directory>/accounts.json      [Account, ...]
    <directory>/transactions.json  [Transaction, ...] newest first
    <directory>/tags.json          [TagStat, ...]

Entity keys (account:<name>, transaction:<id>) are translated into entries
of the matching collection. Any other key is stored as <key>.json.
backup-*.json files are backup snapshots, not keys, and are left alone.

Writes go to a temp file first and are then renamed into place.
A document that no longer parses is moved aside to
<name>.json.corrupt before it is rewritten, so nothing is lost silently.
"""

import json
import os
import re
from pathlib import Path
from typing import Any, Optional

import structlog

from ledgerbook.config import LocalStorageSettings
from ledgerbook.models.backup import BACKUP_FILE_PREFIX
from ledgerbook.services.storage.interface import (
    ACCOUNT_PREFIX,
    TRANSACTION_PREFIX,
    KeyValueBackend,
    ParseError,
    StorageError,
)


ACCOUNTS_DOCUMENT = "accounts"
TRANSACTIONS_DOCUMENT = "transactions"

# prefix -> (document, identity field)
_COLLECTIONS = {
    ACCOUNT_PREFIX: (ACCOUNTS_DOCUMENT, "name"),
    TRANSACTION_PREFIX: (TRANSACTIONS_DOCUMENT, "id"),
}

_PLAIN_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")

logger = structlog.get_logger(__name__)


class LocalFileBackend(KeyValueBackend):
    """File-per-collection backend on the local filesystem."""

    name = "local"

    def __init__(self, directory: Path):
        self._directory = Path(directory)

    @classmethod
    def from_settings(cls, settings: LocalStorageSettings) -> "LocalFileBackend":
        return cls(settings.directory)

    @property
    def directory(self) -> Path:
        return self._directory

    # -------------------------------------------------------------------------
    # Raw documents
    # -------------------------------------------------------------------------

    def _path(self, document: str) -> Path:
        return self._directory / f"{document}.json"

    def _read(self, document: str) -> Optional[Any]:
        path = self._path(document)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}")
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"{path} is not valid JSON: {e}")

    def _write(self, document: str, value: Any) -> None:
        path = self._path(document)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(value, indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write {path}: {e}")

    def _read_collection(self, document: str) -> list:
        data = self._read(document)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ParseError(f"{self._path(document)} does not hold a list")
        return data

    def _quarantine(self, document: str, error: ParseError) -> None:
        path = self._path(document)
        quarantine = path.with_name(path.name + ".corrupt")
        try:
            os.replace(path, quarantine)
        except OSError as move_error:
            raise StorageError(f"Cannot move corrupt {path} aside: {move_error}")
        logger.warning(
            "corrupt_document_quarantined",
            document=document,
            moved_to=str(quarantine),
            error=str(error),
        )

    def _read_collection_for_write(self, document: str) -> list:
        """Like _read_collection, but quarantines a corrupt file instead of failing."""
        try:
            return self._read_collection(document)
        except ParseError as e:
            self._quarantine(document, e)
            return []

    def _write_plain(self, document: str, value: Any) -> None:
        """Overwrite a plain document, moving a corrupt predecessor aside first."""
        try:
            self._read(document)
        except ParseError as e:
            self._quarantine(document, e)
        self._write(document, value)

    @staticmethod
    def _split(key: str) -> Optional[tuple[str, str, str]]:
        """Map an entity key to (document, identity field, identity)."""
        for prefix, (document, field) in _COLLECTIONS.items():
            if key.startswith(prefix):
                return document, field, key[len(prefix):]
        return None

    @staticmethod
    def _is_store_document(path: Path) -> bool:
        """False for files that share the directory but are not keys (backup snapshots)."""
        return not path.stem.startswith(BACKUP_FILE_PREFIX)

    def _plain_document(self, key: str) -> str:
        if (
            not _PLAIN_KEY.match(key)
            or key in (ACCOUNTS_DOCUMENT, TRANSACTIONS_DOCUMENT)
            or key.startswith(BACKUP_FILE_PREFIX)
        ):
            raise StorageError(f"Key {key!r} cannot be stored as a local document")
        return key

    # -------------------------------------------------------------------------
    # KeyValueBackend
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Optional[Any]:
        entity = self._split(key)
        if entity is None:
            return self._read(self._plain_document(key))

        document, field, identity = entity
        for item in self._read_collection(document):
            if isinstance(item, dict) and item.get(field) == identity:
                return item
        return None

    async def set(self, key: str, value: Any) -> None:
        entity = self._split(key)
        if entity is None:
            self._write_plain(self._plain_document(key), value)
            return

        document, field, identity = entity
        if not isinstance(value, dict) or value.get(field) != identity:
            raise StorageError(f"Value for {key!r} must be a document with {field}={identity!r}")

        items = self._read_collection_for_write(document)
        for index, item in enumerate(items):
            if isinstance(item, dict) and item.get(field) == identity:
                items[index] = value
                break
        else:
            if document == TRANSACTIONS_DOCUMENT:
                items.insert(0, value)
            else:
                items.append(value)
        self._write(document, items)

    async def delete(self, key: str) -> bool:
        entity = self._split(key)
        if entity is None:
            path = self._path(self._plain_document(key))
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError(f"Cannot delete {path}: {e}")
            return True

        document, field, identity = entity
        items = self._read_collection_for_write(document)
        remaining = [
            item for item in items
            if not (isinstance(item, dict) and item.get(field) == identity)
        ]
        if len(remaining) == len(items):
            return False
        self._write(document, remaining)
        return True

    async def list_keys(self, prefix: str = "") -> list[str]:
        keys = []
        for entity_prefix, (document, field) in _COLLECTIONS.items():
            # Only read collections the prefix can match
            if not (entity_prefix.startswith(prefix) or prefix.startswith(entity_prefix)):
                continue
            for item in self._read_collection(document):
                if isinstance(item, dict) and field in item:
                    keys.append(f"{entity_prefix}{item[field]}")

        if self._directory.is_dir():
            for path in self._directory.glob("*.json"):
                if self._is_store_document(path) and path.stem not in (ACCOUNTS_DOCUMENT, TRANSACTIONS_DOCUMENT):
                    keys.append(path.stem)

        return sorted(key for key in keys if key.startswith(prefix))

    async def clear(self) -> None:
        if not self._directory.is_dir():
            return
        for path in self._directory.glob("*.json"):
            if not self._is_store_document(path):
                continue
            try:
                path.unlink()
            except OSError as e:
                raise StorageError(f"Cannot delete {path}: {e}")

"""
Local Key-Value Backends

Two on-device stores back the credential vault and the device record:

1. SqliteBackend - the indexed local database. Preferred, but some
   platforms (sandboxed, read-only or network home directories) make it
   unreliable.
2. JsonFileBackend - a flat key-value file. Always written as well, so a
   device whose indexed store is broken can still sign in.

DESIGN DECISION: Backends are probed ONCE at startup (probe_backends) and
then handed to their consumers. Nothing probes per call.
"""

import json
import os
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import structlog

from fortnight.config.settings import VaultSettings
from fortnight.services.storage.interface import KeyValueBackend, StorageError
from fortnight.services.storage.memory import MemoryBackend


logger = structlog.get_logger(__name__)

_PROBE_KEY = "__probe__"


class SqliteBackend(KeyValueBackend):
    """
    Indexed key-value store in a single SQLite table.

    One short-lived connection per call; the store sees a handful of
    operations per sign-in, so pooling buys nothing.
    """

    name = "indexed"

    def __init__(self, path: Path, table: str = "credentials"):
        self._path = Path(path)
        self._table = table

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, timeout=5.0)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _ensure_table(self, conn: sqlite3.Connection) -> None:
        conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} "
            "(key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )

    def probe(self) -> None:
        """
        Check the store is usable by writing and deleting a probe key.

        Raises:
            StorageError: If the database cannot be created or written
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._transaction() as conn:
                self._ensure_table(conn)
                conn.execute(
                    f"INSERT OR REPLACE INTO {self._table} (key, value) VALUES (?, ?)",
                    (_PROBE_KEY, "1"),
                )
                conn.execute(f"DELETE FROM {self._table} WHERE key = ?", (_PROBE_KEY,))
        except (OSError, sqlite3.Error) as e:
            raise StorageError(f"Indexed store unavailable at {self._path}: {e}")

    async def get(self, key: str) -> Optional[Any]:
        try:
            with self._transaction() as conn:
                self._ensure_table(conn)
                row = conn.execute(
                    f"SELECT value FROM {self._table} WHERE key = ?", (key,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {key!r} from indexed store: {e}")

        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupted value for {key!r} in indexed store: {e}")

    async def set(self, key: str, value: Any) -> None:
        try:
            with self._transaction() as conn:
                self._ensure_table(conn)
                conn.execute(
                    f"INSERT OR REPLACE INTO {self._table} (key, value) VALUES (?, ?)",
                    (key, json.dumps(value)),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {key!r} to indexed store: {e}")

    async def delete(self, key: str) -> None:
        try:
            with self._transaction() as conn:
                self._ensure_table(conn)
                conn.execute(f"DELETE FROM {self._table} WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {key!r} from indexed store: {e}")


class JsonFileBackend(KeyValueBackend):
    """
    Flat key-value store kept in one JSON file.

    Writes go to a temporary file that replaces the original, so a crash
    mid-write leaves the previous content intact.
    """

    name = "flat"

    def __init__(self, path: Path):
        self._path = Path(path)

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read flat store {self._path}: {e}")
        if not isinstance(data, dict):
            raise StorageError(f"Flat store {self._path} is not a JSON object")
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise StorageError(f"Failed to write flat store {self._path}: {e}")

    def probe(self) -> None:
        """Raises StorageError if the file cannot be read back and rewritten."""
        data = self._read_all()
        self._write_all(data)

    async def get(self, key: str) -> Optional[Any]:
        return self._read_all().get(key)

    async def set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    async def delete(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)


def probe_backends(
    settings: VaultSettings,
) -> tuple[Optional[KeyValueBackend], KeyValueBackend]:
    """
    Pick the local backends for this device.

    Returns:
        (primary, fallback). primary is None when the indexed store is
        unusable; fallback is the flat file, or memory as a last resort.
    """
    primary: Optional[KeyValueBackend] = SqliteBackend(settings.indexed_db_path)
    try:
        primary.probe()
    except StorageError as e:
        logger.warning("indexed_store_unavailable", error=str(e))
        primary = None

    fallback: KeyValueBackend = JsonFileBackend(settings.flat_store_path)
    try:
        fallback.probe()
    except StorageError as e:
        logger.warning("flat_store_unavailable", error=str(e))
        fallback = MemoryBackend()

    logger.info(
        "local_backends_selected",
        primary=primary.name if primary else None,
        fallback=fallback.name,
    )
    return primary, fallback

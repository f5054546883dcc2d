"""Storage layer — durable key-value state in JSON files or SQLite."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from reviewtree.config import Settings, get_settings
from reviewtree.protocols import KeyValueStore

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when state cannot be durably written or read back."""


# ── JSON files ─────────────────────────────────────────────────────────


class JsonFileStore:
    """One ``<key>.json`` file per key.

    Writes go to a sibling temp file first and are swapped in with
    ``os.replace`` so a reader never sees a half-written key.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def load(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Could not read state {key!r} from {path}: {exc}") from exc

    def persist(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(value, indent=2, default=str), encoding="utf-8")
            os.replace(tmp_path, path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write state {key!r} to {path}: {exc}") from exc
        logger.debug("Persisted %s -> %s", key, path)


# ── SQLite ─────────────────────────────────────────────────────────────

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_state (
    key         TEXT    PRIMARY KEY,
    value       TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL
);
"""


class SQLiteStore:
    """Key-value state in a single SQLite table."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path))
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA_SQL)
        return self._conn

    def load(self, key: str) -> Any | None:
        try:
            row = self.conn.execute(
                "SELECT value FROM kv_state WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not read state {key!r}: {exc}") from exc
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except ValueError as exc:
            raise PersistenceError(f"Corrupt state under {key!r}: {exc}") from exc

    def persist(self, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            raw = json.dumps(value, default=str)
            self.conn.execute(
                """INSERT INTO kv_state (key, value, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at
                """,
                (key, raw, now),
            )
            self.conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as exc:
            raise PersistenceError(f"Could not write state {key!r}: {exc}") from exc
        logger.debug("Persisted %s in %s", key, self.path)

    def keys(self) -> list[str]:
        cur = self.conn.execute("SELECT key FROM kv_state ORDER BY key")
        return [r[0] for r in cur.fetchall()]

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def open_store(settings: Settings | None = None) -> KeyValueStore:
    """Return the configured durable store."""
    s = settings or get_settings()
    if s.state_backend == "sqlite":
        logger.info("Using SQLite state store: %s", s.sqlite_path)
        return SQLiteStore(s.sqlite_path)
    logger.info("Using JSON state store: %s", s.state_path)
    return JsonFileStore(s.state_path)

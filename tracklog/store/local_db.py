"""SQLite-backed key-value store for the local copy of the dataset."""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

DATA_KEY = "tracker_data"
TOMBSTONES_KEY = "pending_deletions"


class LocalDatabase:
    """Durable key-value storage holding JSON documents.

    Values that are missing or cannot be decoded read as ``None``; callers
    treat that as "no prior data".
    """

    def __init__(self, db_path: str | Path):
        """Initialize the database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open the connection and create the schema.

        A database file SQLite cannot read is moved aside to ``<name>.corrupt``
        and replaced by an empty database.
        """
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = self._open()
        except sqlite3.DatabaseError as e:
            if not isinstance(self.db_path, Path):
                raise
            corrupt = self.db_path.with_name(self.db_path.name + ".corrupt")
            logger.warning(
                f"Local database {self.db_path} is unreadable ({e}), "
                f"moving it to {corrupt} and starting empty"
            )
            self.db_path.replace(corrupt)
            self._conn = self._open()

        logger.info(f"LocalDatabase connected to {self.db_path}")

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        try:
            conn.row_factory = sqlite3.Row
            conn.executescript(SCHEMA)
            conn.commit()
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get_json(self, key: str) -> Any | None:
        """Read and decode a stored JSON value.

        Returns:
            The decoded value, or None if absent or unparsable.
        """
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM kv_store WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None

        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt local value for {key!r}: {e}")
            return None

    def put_json(self, values: dict[str, Any]) -> None:
        """Write several JSON values in one transaction."""
        conn = self._ensure_connected()
        now = datetime.now().isoformat()
        with conn:
            conn.executemany(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                [(key, json.dumps(value), now) for key, value in values.items()],
            )
        logger.debug(f"Persisted keys: {', '.join(values)}")

    def put_raw(self, key: str, value: str) -> None:
        """Write a raw string value without JSON encoding.

        Used by tests to plant undecodable values.
        """
        conn = self._ensure_connected()
        with conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, datetime.now().isoformat()),
            )

    def get_stats(self) -> dict[str, Any]:
        """Get storage statistics."""
        conn = self._ensure_connected()
        stats: dict[str, Any] = {"db_path": str(self.db_path)}
        cursor = conn.execute("SELECT key, updated_at FROM kv_store ORDER BY key")
        stats["keys"] = {row["key"]: row["updated_at"] for row in cursor}

        if isinstance(self.db_path, Path) and self.db_path.exists():
            stats["db_size_mb"] = round(self.db_path.stat().st_size / (1024 * 1024), 2)

        return stats

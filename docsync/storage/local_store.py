"""Local SQLite storage for records created and edited offline."""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import MalformedRecordError
from ..model import Record

logger = logging.getLogger(__name__)

# SQL schema for the record database
SCHEMA = """
-- Records: one row per unique_identifier, full document stored as JSON
CREATE TABLE IF NOT EXISTS records (
    unique_identifier TEXT PRIMARY KEY,
    record_type TEXT NOT NULL,
    internal_id TEXT,
    content TEXT NOT NULL,
    synced INTEGER NOT NULL DEFAULT 0,
    last_updated_at TEXT,
    last_synced_at TEXT,
    saved_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_type ON records(record_type);
CREATE INDEX IF NOT EXISTS idx_records_internal_id ON records(internal_id);
CREATE INDEX IF NOT EXISTS idx_records_synced ON records(record_type, synced);
"""


class LocalStore:
    """SQLite-backed persistence for records."""

    def __init__(self, db_path: str | Path):
        """Initialize the local store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA)
        self._conn.commit()

        logger.info(f"LocalStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.info("LocalStore connection closed")

    def _ensure_connected(self) -> sqlite3.Connection:
        """Ensure we have a database connection."""
        if self._conn is None:
            self.connect()
        return self._conn

    def _row_to_record(self, row: sqlite3.Row) -> Record:
        try:
            return Record.from_dict(json.loads(row["content"]), row["record_type"])
        except (ValueError, MalformedRecordError) as e:
            raise MalformedRecordError(
                f"Stored record {row['unique_identifier']} is corrupt: {e}"
            ) from e

    # ==================== Record Operations ====================

    def load(self, unique_id: str) -> Record | None:
        """Load a record by its client-generated identity.

        Returns:
            The record, or None if it does not exist.
        """
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT * FROM records WHERE unique_identifier = ?", (unique_id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def load_by_internal_id(
        self, internal_id: str, record_type: str | None = None
    ) -> Record | None:
        """Load a record by its server-assigned identity."""
        conn = self._ensure_connected()
        if record_type:
            row = conn.execute(
                "SELECT * FROM records WHERE internal_id = ? AND record_type = ?",
                (internal_id, record_type),
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT * FROM records WHERE internal_id = ?", (internal_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def save(self, record: Record) -> None:
        """Insert or replace a record.

        Raises:
            ValueError: If the record has no unique_identifier.
        """
        if not record.unique_id:
            raise ValueError("Cannot save a record without a unique_identifier")

        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO records (
                unique_identifier, record_type, internal_id, content,
                synced, last_updated_at, last_synced_at, saved_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(unique_identifier) DO UPDATE SET
                record_type = excluded.record_type,
                internal_id = excluded.internal_id,
                content = excluded.content,
                synced = excluded.synced,
                last_updated_at = excluded.last_updated_at,
                last_synced_at = excluded.last_synced_at,
                saved_at = excluded.saved_at
            """,
            (
                record.unique_id,
                record.record_type,
                record.internal_id,
                record.to_json(),
                1 if record.synced else 0,
                record.last_updated_at,
                record.last_synced_at,
                datetime.now().isoformat(),
            ),
        )
        conn.commit()

        logger.debug(f"Saved {record.record_type} record {record.unique_id}")

    def all(self, record_type: str) -> list[Record]:
        """All records of a type, oldest saved first."""
        conn = self._ensure_connected()
        cursor = conn.execute(
            "SELECT * FROM records WHERE record_type = ? ORDER BY saved_at ASC",
            (record_type,),
        )
        return [self._row_to_record(row) for row in cursor]

    def dirty(self, record_type: str) -> list[Record]:
        """Records of a type whose local edits have not been synced."""
        return [record for record in self.all(record_type) if record.is_dirty]

    def record_types(self) -> list[str]:
        conn = self._ensure_connected()
        cursor = conn.execute(
            "SELECT DISTINCT record_type FROM records ORDER BY record_type"
        )
        return [row[0] for row in cursor]

    def delete(self, unique_id: str) -> bool:
        conn = self._ensure_connected()
        cursor = conn.execute(
            "DELETE FROM records WHERE unique_identifier = ?", (unique_id,)
        )
        conn.commit()
        return cursor.rowcount > 0

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with record counts per type and sync state.
        """
        conn = self._ensure_connected()

        stats: dict[str, Any] = {"db_path": str(self.db_path)}

        cursor = conn.execute("SELECT COUNT(*) FROM records")
        stats["total_records"] = cursor.fetchone()[0]

        cursor = conn.execute("SELECT COUNT(*) FROM records WHERE synced = 0")
        stats["unsynced_records"] = cursor.fetchone()[0]

        cursor = conn.execute(
            "SELECT record_type, COUNT(*) FROM records GROUP BY record_type"
        )
        stats["records_by_type"] = {row[0]: row[1] for row in cursor}

        return stats

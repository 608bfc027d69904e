from __future__ import annotations

import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path

from jugadwake.telemetry.logging import get_logger

LOGGER = get_logger(__name__)
WAS_RUNNING_KEY = "service_enabled"


class PreferenceStore:
    """The one persisted bit: whether listening was on when the process last ran."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def was_running(self) -> bool:
        with closing(self._connection()) as conn:
            row = conn.execute("SELECT value FROM preferences WHERE key = ?", (WAS_RUNNING_KEY,)).fetchone()
        return row is not None and row["value"] == "1"

    def set_was_running(self, value: bool) -> None:
        with closing(self._connection()) as conn, conn:
            conn.execute(
                """
                INSERT INTO preferences (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """,
                (WAS_RUNNING_KEY, "1" if value else "0", datetime.now(timezone.utc).isoformat()),
            )
        LOGGER.debug("preferences.was_running.saved", value=value)

    def _connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with closing(self._connection()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )


__all__ = ["PreferenceStore"]

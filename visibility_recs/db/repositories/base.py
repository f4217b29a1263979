"""
Base repository providing shared SQLite execution helpers.

Every repository receives a ``sqlite3.Connection`` at construction time. The
connection is owned by the caller (``get_connection()`` or a test fixture);
repositories never commit. Atomicity across several repository calls is the
service's job, via ``transaction()``.

Design:
  - No ORM; all SQL is explicit and lives in repository methods.
  - Repositories speak Pydantic models, not raw dicts.
  - Timestamps go in and out through ``to_iso`` / ``from_iso``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement with ``?`` or ``:name`` placeholders."""
        logger.debug("SQL: %s | params: %s", sql.strip(), params)
        return self.conn.execute(sql, params)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def fetchscalar(self, sql: str, params: Params = ()) -> Any:
        """Return the first column of the first row, or ``None``."""
        row = self.fetchone(sql, params)
        return row[0] if row is not None else None

    def last_insert_rowid(self) -> int:
        row = self.fetchone("SELECT last_insert_rowid() AS rowid;")
        assert row is not None
        return int(row["rowid"])


def dump_json(value: Any) -> str:
    return json.dumps(value, default=str, sort_keys=True)


def load_json(value: Optional[str], default: Any) -> Any:
    if value is None or value == "":
        return default
    return json.loads(value)

"""
SQLite connection and transaction management.

``get_connection()`` yields a configured connection that:
  - Enables foreign key enforcement (OFF by default in SQLite).
  - Enables WAL journal mode so the sweep can read while a scan completes.
  - Sets a busy timeout to handle lock contention gracefully.
  - Uses ``sqlite3.Row`` factory so rows behave like dicts.
  - Commits on clean exit, rolls back on exception.

``transaction()`` wraps a block in a SAVEPOINT. Nested blocks nest
savepoints, so a refresh cycle processed inside an orchestrator step is
atomic on its own and also rolls back with the step. At the outermost level
releasing the savepoint commits.

Usage::

    from visibility_recs.db.connection import get_connection, transaction

    with get_connection("data/db/visibility_recs.db") as conn:
        with transaction(conn, "refresh_process"):
            conn.execute("UPDATE recommendations ...")
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from itertools import count
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

_SAVEPOINT_SEQ = count(1)
_SAVEPOINT_NAME_RE = re.compile(r"[^A-Za-z0-9_]")


@contextmanager
def get_connection(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Open ``db_path`` (creating parent directories) with the pragmas above.

    ``":memory:"`` is accepted for throwaway databases; ``busy_timeout_ms``
    applies both to ``sqlite3.connect`` and the ``busy_timeout`` pragma.
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms};")

        if wal_mode:
            conn.execute("PRAGMA journal_mode = WAL;")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        conn.close()


@contextmanager
def transaction(
    conn: sqlite3.Connection, name: str = "tx"
) -> Generator[sqlite3.Connection, None, None]:
    """Run the enclosed block atomically inside a SAVEPOINT.

    On exception the savepoint is rolled back and the exception re-raised;
    writes made before the block are untouched.

    Args:
        conn: An open connection.
        name: Readable label; a sequence suffix keeps nested names unique.
    """
    savepoint = f"{_SAVEPOINT_NAME_RE.sub('_', name)}_{next(_SAVEPOINT_SEQ)}"
    conn.execute(f"SAVEPOINT {savepoint};")
    try:
        yield conn
    except BaseException:
        logger.debug("Rolling back savepoint %s", savepoint)
        conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint};")
        conn.execute(f"RELEASE SAVEPOINT {savepoint};")
        raise
    else:
        conn.execute(f"RELEASE SAVEPOINT {savepoint};")

"""
Versioned, forward-only schema migrations.

``apply_schema()`` creates the baseline tables. Anything added after the
baseline is a ``Migration`` appended to ``MIGRATIONS``; ``run_migrations()``
applies the ones missing from ``schema_versions`` in list order, each inside
its own savepoint together with its version row.

To add one, write ``_NNNN_what(conn)`` and append
``Migration("NNNN_what", "Short description", _NNNN_what)``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from typing import NamedTuple

from visibility_recs.db.connection import transaction

logger = logging.getLogger(__name__)


class Migration(NamedTuple):
    version_id:  str
    description: str
    apply:       Callable[[sqlite3.Connection], None]


_VERSION_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version_id  TEXT NOT NULL PRIMARY KEY,
    description TEXT,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


# ── Migrations ────────────────────────────────────────────────────────────────

def _0001_baseline(conn: sqlite3.Connection) -> None:
    """Marks the baseline created by ``apply_schema()``."""


def _0002_plateau_alerts(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS plateau_alerts (
            alert_id          INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id        INTEGER NOT NULL,
            scan_count        INTEGER NOT NULL,
            score_range       INTEGER NOT NULL,
            implemented_count INTEGER NOT NULL,
            alerted_at        TEXT    NOT NULL
        );
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_plateau_alerts_account
            ON plateau_alerts(account_id, alerted_at DESC);
    """)


def _0003_candidate_pool_index(conn: sqlite3.Connection) -> None:
    # Refresh replacement reads the locked pool of one scan, best first.
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_recs_pool
            ON recommendations(scan_id, unlock_state, impact_score DESC);
    """)


MIGRATIONS: tuple[Migration, ...] = (
    Migration("0001_baseline", "Baseline schema from apply_schema()", _0001_baseline),
    Migration("0002_plateau_alerts", "Plateau alert log for sweep cooldowns", _0002_plateau_alerts),
    Migration("0003_candidate_pool_index", "idx_recs_pool on recommendations", _0003_candidate_pool_index),
)


# ── Runner ────────────────────────────────────────────────────────────────────

def applied_versions(conn: sqlite3.Connection) -> set[str]:
    conn.execute(_VERSION_TABLE_DDL)
    return {row[0] for row in conn.execute("SELECT version_id FROM schema_versions;")}


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every pending migration and return how many ran.

    A failing migration is rolled back with its version row and re-raised;
    earlier migrations in the same call stay applied.
    """
    done = applied_versions(conn)
    conn.commit()

    pending = [m for m in MIGRATIONS if m.version_id not in done]
    for migration in pending:
        logger.info("Applying migration %s (%s)", migration.version_id, migration.description)
        try:
            with transaction(conn, f"migration_{migration.version_id}"):
                migration.apply(conn)
                conn.execute(
                    "INSERT INTO schema_versions (version_id, description) VALUES (?, ?);",
                    (migration.version_id, migration.description),
                )
        except sqlite3.Error as exc:
            logger.error("Migration %s failed: %s", migration.version_id, exc)
            raise
        conn.commit()

    if pending:
        logger.info("Schema now at %s", pending[-1].version_id)
    return len(pending)

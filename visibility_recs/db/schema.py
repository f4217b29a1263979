"""
SQLite schema DDL: all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Table creation order respects foreign key dependencies:
  1. accounts                    (no FKs)
  2. scans                       (no FKs; account system is external)
  3. score_history               (→ scans)
  4. recommendation_contexts     (→ scans)
  5. recommendations             (→ scans, recommendation_contexts)
  6. context_scan_links          (→ recommendation_contexts, scans)
  7. refresh_cycles              (→ scans, recommendation_contexts)
  8. recommendation_replacements (→ refresh_cycles, recommendations)
  9. mode_states                 (no FKs)
  10. mode_transition_history    (→ scans)
  11. implementation_detections  (→ recommendations, scans)
  12. orchestrator_runs          (no FKs)

JSON columns (pillar vectors, signals, id snapshots, evidence) are stored as
TEXT and decoded in the repositories.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_ACCOUNTS = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id  INTEGER PRIMARY KEY,
    plan_tier   TEXT    NOT NULL DEFAULT 'free',
    industry    TEXT,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f000+00:00', 'now')),
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f000+00:00', 'now'))
);
"""

_DDL_SCANS = """
CREATE TABLE IF NOT EXISTS scans (
    scan_id             INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id          INTEGER NOT NULL,
    domain              TEXT    NOT NULL,
    normalized_domain   TEXT    NOT NULL,
    page_set            TEXT    NOT NULL DEFAULT '[]',
    pillar_scores       TEXT    NOT NULL,
    total_score         INTEGER NOT NULL CHECK (total_score BETWEEN 0 AND 1000),
    completed_at        TEXT    NOT NULL,
    is_competitor_probe INTEGER NOT NULL DEFAULT 0,
    signals             TEXT    NOT NULL DEFAULT '{}',
    status              TEXT    NOT NULL DEFAULT 'completed'
                        CHECK (status IN ('completed', 'degraded')),
    created_at          TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f000+00:00', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_scans_account_domain_time
    ON scans(account_id, normalized_domain, completed_at);
"""

_DDL_SCORE_HISTORY = """
CREATE TABLE IF NOT EXISTS score_history (
    snapshot_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id          INTEGER NOT NULL UNIQUE REFERENCES scans(scan_id),
    account_id       INTEGER NOT NULL,
    domain           TEXT    NOT NULL,
    total_score      INTEGER NOT NULL,
    pillar_scores    TEXT    NOT NULL,
    previous_scan_id INTEGER REFERENCES scans(scan_id),
    previous_score   INTEGER,
    score_delta      INTEGER NOT NULL DEFAULT 0,
    recorded_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_score_history_account_time
    ON score_history(account_id, recorded_at);
"""

_DDL_CONTEXTS = """
CREATE TABLE IF NOT EXISTS recommendation_contexts (
    context_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id      INTEGER NOT NULL,
    context_key     TEXT    NOT NULL,
    domain          TEXT    NOT NULL,
    page_set_hash   TEXT    NOT NULL,
    primary_scan_id INTEGER NOT NULL REFERENCES scans(scan_id),
    is_active       INTEGER NOT NULL DEFAULT 1,
    expires_at      TEXT    NOT NULL,
    initial_score   INTEGER,
    latest_score    INTEGER,
    score_change    INTEGER,
    expired_at      TEXT,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL,
    UNIQUE (account_id, context_key)
);

CREATE INDEX IF NOT EXISTS idx_contexts_active_expiry
    ON recommendation_contexts(is_active, expires_at);
"""

_DDL_RECOMMENDATIONS = """
CREATE TABLE IF NOT EXISTS recommendations (
    rec_id               INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id              INTEGER NOT NULL REFERENCES scans(scan_id),
    category             TEXT    NOT NULL,
    title                TEXT    NOT NULL,
    text                 TEXT    NOT NULL DEFAULT '',
    priority             TEXT    NOT NULL DEFAULT 'medium',
    difficulty           TEXT,
    impact_score         REAL    CHECK (impact_score IS NULL OR impact_score BETWEEN 0 AND 100),
    unlock_state         TEXT    NOT NULL DEFAULT 'locked'
                         CHECK (unlock_state IN ('locked', 'active', 'completed', 'skipped', 'archived')),
    batch_number         INTEGER NOT NULL DEFAULT 1,
    context_id           INTEGER REFERENCES recommendation_contexts(context_id),
    mode                 TEXT    NOT NULL DEFAULT 'optimization',
    elite_category       TEXT,
    compounding_score    REAL,
    industry_score       REAL,
    progress             REAL,
    refresh_cycle_number INTEGER,
    archived_reason      TEXT,
    unlocked_at          TEXT,
    completed_at         TEXT,
    skipped_at           TEXT,
    archived_at          TEXT,
    auto_detected_at     TEXT,
    created_at           TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f000+00:00', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_recs_scan_state
    ON recommendations(scan_id, unlock_state);
"""

_DDL_CONTEXT_SCAN_LINKS = """
CREATE TABLE IF NOT EXISTS context_scan_links (
    link_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    context_id  INTEGER NOT NULL REFERENCES recommendation_contexts(context_id),
    scan_id     INTEGER NOT NULL REFERENCES scans(scan_id),
    linked_at   TEXT    NOT NULL,
    UNIQUE (context_id, scan_id)
);
"""

_DDL_REFRESH_CYCLES = """
CREATE TABLE IF NOT EXISTS refresh_cycles (
    cycle_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id        INTEGER NOT NULL,
    scan_id           INTEGER NOT NULL REFERENCES scans(scan_id),
    context_id        INTEGER REFERENCES recommendation_contexts(context_id),
    cycle_number      INTEGER NOT NULL CHECK (cycle_number >= 1),
    start_date        TEXT    NOT NULL,
    next_cycle_date   TEXT    NOT NULL,
    active_rec_ids    TEXT    NOT NULL DEFAULT '[]',
    implemented_count INTEGER NOT NULL DEFAULT 0,
    skipped_count     INTEGER NOT NULL DEFAULT 0,
    replaced_count    INTEGER NOT NULL DEFAULT 0,
    created_at        TEXT    NOT NULL,
    UNIQUE (scan_id, cycle_number)
);

CREATE INDEX IF NOT EXISTS idx_cycles_next_date
    ON refresh_cycles(next_cycle_date);
"""

_DDL_REPLACEMENTS = """
CREATE TABLE IF NOT EXISTS recommendation_replacements (
    replacement_id   INTEGER PRIMARY KEY AUTOINCREMENT,
    cycle_id         INTEGER NOT NULL REFERENCES refresh_cycles(cycle_id),
    account_id       INTEGER NOT NULL,
    old_rec_id       INTEGER NOT NULL REFERENCES recommendations(rec_id),
    new_rec_id       INTEGER REFERENCES recommendations(rec_id),
    old_impact_score REAL,
    new_impact_score REAL,
    reason           TEXT    NOT NULL,
    replaced_at      TEXT    NOT NULL
);
"""

_DDL_MODE_STATES = """
CREATE TABLE IF NOT EXISTS mode_states (
    account_id             INTEGER PRIMARY KEY,
    current_mode           TEXT    NOT NULL
                           CHECK (current_mode IN ('optimization', 'elite_maintenance')),
    current_score          INTEGER NOT NULL,
    mode_since             TEXT    NOT NULL,
    in_buffer_zone         INTEGER NOT NULL DEFAULT 0,
    highest_score_achieved INTEGER NOT NULL,
    score_at_mode_entry    INTEGER NOT NULL,
    elite_entries          INTEGER NOT NULL DEFAULT 0,
    optimization_entries   INTEGER NOT NULL DEFAULT 0,
    last_transition_at     TEXT,
    updated_at             TEXT    NOT NULL
);
"""

_DDL_MODE_TRANSITIONS = """
CREATE TABLE IF NOT EXISTS mode_transition_history (
    transition_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id        INTEGER NOT NULL,
    from_mode         TEXT,
    to_mode           TEXT    NOT NULL,
    score             INTEGER NOT NULL,
    reason            TEXT    NOT NULL,
    scan_id           INTEGER REFERENCES scans(scan_id),
    notification_type TEXT,
    transitioned_at   TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_mode_transitions_account
    ON mode_transition_history(account_id, transitioned_at);
"""

_DDL_DETECTIONS = """
CREATE TABLE IF NOT EXISTS implementation_detections (
    detection_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    account_id       INTEGER NOT NULL,
    rec_id           INTEGER NOT NULL REFERENCES recommendations(rec_id),
    previous_scan_id INTEGER NOT NULL REFERENCES scans(scan_id),
    current_scan_id  INTEGER NOT NULL REFERENCES scans(scan_id),
    pillar           TEXT    NOT NULL,
    score_before     REAL    NOT NULL,
    score_after      REAL    NOT NULL,
    score_delta      REAL    NOT NULL,
    confidence       REAL    NOT NULL CHECK (confidence BETWEEN 0 AND 100),
    detection_type   TEXT    NOT NULL
                     CHECK (detection_type IN ('auto_complete', 'auto_partial', 'auto_detected')),
    evidence         TEXT    NOT NULL DEFAULT '[]',
    was_skipped      INTEGER NOT NULL DEFAULT 0,
    detected_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_detections_rec
    ON implementation_detections(rec_id);
"""

_DDL_ORCHESTRATOR_RUNS = """
CREATE TABLE IF NOT EXISTS orchestrator_runs (
    run_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug      TEXT    NOT NULL UNIQUE,
    run_kind      TEXT    NOT NULL,
    account_id    INTEGER,
    scan_id       INTEGER,
    status        TEXT    NOT NULL DEFAULT 'started',
    step_outcomes TEXT    NOT NULL DEFAULT '{}',
    error_message TEXT,
    started_at    TEXT    NOT NULL,
    finished_at   TEXT
);
"""

_ALL_DDL: list[str] = [
    _DDL_ACCOUNTS,
    _DDL_SCANS,
    _DDL_SCORE_HISTORY,
    _DDL_CONTEXTS,
    _DDL_RECOMMENDATIONS,
    _DDL_CONTEXT_SCAN_LINKS,
    _DDL_REFRESH_CYCLES,
    _DDL_REPLACEMENTS,
    _DDL_MODE_STATES,
    _DDL_MODE_TRANSITIONS,
    _DDL_DETECTIONS,
    _DDL_ORCHESTRATOR_RUNS,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "accounts",
    "scans",
    "score_history",
    "recommendation_contexts",
    "recommendations",
    "context_scan_links",
    "refresh_cycles",
    "recommendation_replacements",
    "mode_states",
    "mode_transition_history",
    "implementation_detections",
    "orchestrator_runs",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent; safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of table names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted list of index names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]

"""
Repository for per-account mode state and the transition log.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from visibility_recs.db.repositories.base import BaseRepository
from visibility_recs.models.lifecycle import ModeState, ModeTransitionRecord
from visibility_recs.taxonomy.lifecycle_taxonomy import RecommendationMode
from visibility_recs.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class ModeStateRepository(BaseRepository):
    """Read/write access to ``mode_states`` and ``mode_transition_history``."""

    def get(self, account_id: int) -> Optional[ModeState]:
        row = self.fetchone("SELECT * FROM mode_states WHERE account_id = ?;", (account_id,))
        return _row_to_state(row) if row else None

    def save(self, state: ModeState) -> None:
        """Insert or fully overwrite the account's mode state."""
        self.execute(
            """
            INSERT INTO mode_states (
                account_id, current_mode, current_score, mode_since, in_buffer_zone,
                highest_score_achieved, score_at_mode_entry, elite_entries,
                optimization_entries, last_transition_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                current_mode           = excluded.current_mode,
                current_score          = excluded.current_score,
                mode_since             = excluded.mode_since,
                in_buffer_zone         = excluded.in_buffer_zone,
                highest_score_achieved = excluded.highest_score_achieved,
                score_at_mode_entry    = excluded.score_at_mode_entry,
                elite_entries          = excluded.elite_entries,
                optimization_entries   = excluded.optimization_entries,
                last_transition_at     = excluded.last_transition_at,
                updated_at             = excluded.updated_at;
            """,
            (
                state.account_id,
                state.current_mode.value,
                state.current_score,
                to_iso(state.mode_since),
                int(state.in_buffer_zone),
                state.highest_score_achieved,
                state.score_at_mode_entry,
                state.elite_entries,
                state.optimization_entries,
                to_iso(state.last_transition_at),
                to_iso(state.updated_at or state.mode_since),
            ),
        )

    def append_transition(self, record: ModeTransitionRecord) -> int:
        self.execute(
            """
            INSERT INTO mode_transition_history (
                account_id, from_mode, to_mode, score, reason, scan_id,
                notification_type, transitioned_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                record.account_id,
                record.from_mode.value if record.from_mode else None,
                record.to_mode.value,
                record.score,
                record.reason,
                record.scan_id,
                record.notification_type,
                to_iso(record.transitioned_at),
            ),
        )
        return self.last_insert_rowid()

    def get_transitions(self, account_id: int, limit: int = 10) -> list[ModeTransitionRecord]:
        rows = self.fetchall(
            """
            SELECT * FROM mode_transition_history
            WHERE account_id = ?
            ORDER BY transitioned_at DESC, transition_id DESC
            LIMIT ?;
            """,
            (account_id, limit),
        )
        return [_row_to_transition(r) for r in rows]


# ── Private helpers ───────────────────────────────────────────────────────────

def _row_to_state(row: sqlite3.Row) -> ModeState:
    return ModeState(
        account_id=row["account_id"],
        current_mode=RecommendationMode(row["current_mode"]),
        current_score=row["current_score"],
        mode_since=from_iso(row["mode_since"]),
        in_buffer_zone=bool(row["in_buffer_zone"]),
        highest_score_achieved=row["highest_score_achieved"],
        score_at_mode_entry=row["score_at_mode_entry"],
        elite_entries=row["elite_entries"],
        optimization_entries=row["optimization_entries"],
        last_transition_at=from_iso(row["last_transition_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def _row_to_transition(row: sqlite3.Row) -> ModeTransitionRecord:
    return ModeTransitionRecord(
        transition_id=row["transition_id"],
        account_id=row["account_id"],
        from_mode=RecommendationMode(row["from_mode"]) if row["from_mode"] else None,
        to_mode=RecommendationMode(row["to_mode"]),
        score=row["score"],
        reason=row["reason"],
        scan_id=row["scan_id"],
        notification_type=row["notification_type"],
        transitioned_at=from_iso(row["transitioned_at"]),
    )

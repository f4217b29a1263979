"""
Repository for recommendations: insert, pool queries and guarded state moves.

Every unlock-state change goes through ``transition()``, which checks the
forward-only DAG and stamps the matching timestamp column. The UPDATE is
conditioned on the state that was read, so a concurrent writer that moved
the row first makes the second move fail instead of silently regressing it.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Iterable, Optional

from visibility_recs.db.repositories.base import BaseRepository
from visibility_recs.errors import InvalidStateTransition
from visibility_recs.models.recommendation import Recommendation
from visibility_recs.taxonomy.lifecycle_taxonomy import (
    Difficulty,
    RecommendationMode,
    UnlockState,
    can_transition,
)
from visibility_recs.utils.time_utils import from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

# Timestamp column stamped when a recommendation enters each state
_STATE_TIMESTAMP: dict[UnlockState, str] = {
    UnlockState.ACTIVE:    "unlocked_at",
    UnlockState.COMPLETED: "completed_at",
    UnlockState.SKIPPED:   "skipped_at",
    UnlockState.ARCHIVED:  "archived_at",
}

# Highest impact first; unscored candidates last; id breaks ties
_POOL_ORDER = "impact_score IS NULL, impact_score DESC, rec_id ASC"


class RecommendationRepository(BaseRepository):
    """Read/write access to the ``recommendations`` table."""

    def insert(self, rec: Recommendation) -> int:
        """Insert a recommendation and return its ``rec_id``."""
        self.execute(
            """
            INSERT INTO recommendations (
                scan_id, category, title, text, priority, difficulty,
                impact_score, unlock_state, batch_number, context_id, mode,
                elite_category, compounding_score, industry_score, progress,
                refresh_cycle_number, archived_reason, unlocked_at, completed_at,
                skipped_at, archived_at, auto_detected_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                rec.scan_id,
                rec.category,
                rec.title,
                rec.text,
                rec.priority,
                rec.difficulty.value if rec.difficulty else None,
                rec.impact_score,
                rec.unlock_state.value,
                rec.batch_number,
                rec.context_id,
                rec.mode.value,
                rec.elite_category,
                rec.compounding_score,
                rec.industry_score,
                rec.progress,
                rec.refresh_cycle_number,
                rec.archived_reason,
                to_iso(rec.unlocked_at),
                to_iso(rec.completed_at),
                to_iso(rec.skipped_at),
                to_iso(rec.archived_at),
                to_iso(rec.auto_detected_at),
                to_iso(rec.created_at or utcnow()),
            ),
        )
        return self.last_insert_rowid()

    def get_by_id(self, rec_id: int) -> Optional[Recommendation]:
        row = self.fetchone("SELECT * FROM recommendations WHERE rec_id = ?;", (rec_id,))
        return _row_to_rec(row) if row else None

    def get_for_scan(
        self,
        scan_id: int,
        states: Optional[Iterable[UnlockState]] = None,
    ) -> list[Recommendation]:
        """Recommendations owned by ``scan_id``, best impact first.

        Args:
            scan_id: Owning scan.
            states: Restrict to these unlock states; all states when ``None``.
        """
        sql = "SELECT * FROM recommendations WHERE scan_id = ?"
        params: list = [scan_id]
        if states is not None:
            state_list = [s.value for s in states]
            if not state_list:
                return []
            sql += f" AND unlock_state IN ({','.join('?' * len(state_list))})"
            params.extend(state_list)
        sql += f" ORDER BY {_POOL_ORDER};"
        return [_row_to_rec(r) for r in self.fetchall(sql, tuple(params))]

    def get_active_for_scans(self, scan_ids: Iterable[int]) -> list[Recommendation]:
        ids = sorted(set(scan_ids))
        if not ids:
            return []
        rows = self.fetchall(
            f"""
            SELECT * FROM recommendations
            WHERE scan_id IN ({','.join('?' * len(ids))}) AND unlock_state = 'active'
            ORDER BY {_POOL_ORDER};
            """,
            tuple(ids),
        )
        return [_row_to_rec(r) for r in rows]

    def get_locked_pool(self, scan_id: int) -> list[Recommendation]:
        """Locked candidates for ``scan_id``, next-to-activate first."""
        return self.get_for_scan(scan_id, [UnlockState.LOCKED])

    def get_unscored(self, scan_id: int) -> list[Recommendation]:
        rows = self.fetchall(
            """
            SELECT * FROM recommendations
            WHERE scan_id = ? AND impact_score IS NULL
            ORDER BY rec_id;
            """,
            (scan_id,),
        )
        return [_row_to_rec(r) for r in rows]

    def get_skipped_since(self, account_id: int, since: datetime) -> list[Recommendation]:
        """Recommendations of ``account_id`` skipped at or after ``since``."""
        rows = self.fetchall(
            """
            SELECT r.* FROM recommendations r
            JOIN scans s ON s.scan_id = r.scan_id
            WHERE s.account_id = ? AND r.unlock_state = 'skipped' AND r.skipped_at >= ?
            ORDER BY r.skipped_at, r.rec_id;
            """,
            (account_id, to_iso(since)),
        )
        return [_row_to_rec(r) for r in rows]

    def count_completed_since(self, account_id: int, since: datetime) -> int:
        value = self.fetchscalar(
            """
            SELECT COUNT(*) FROM recommendations r
            JOIN scans s ON s.scan_id = r.scan_id
            WHERE s.account_id = ? AND r.completed_at IS NOT NULL AND r.completed_at >= ?;
            """,
            (account_id, to_iso(since)),
        )
        return int(value or 0)

    def update_scores(
        self,
        rec_id: int,
        impact_score: float,
        difficulty: Difficulty,
        compounding_score: float,
        industry_score: float,
    ) -> None:
        self.execute(
            """
            UPDATE recommendations SET
                impact_score      = ?,
                difficulty        = COALESCE(difficulty, ?),
                compounding_score = ?,
                industry_score    = ?
            WHERE rec_id = ?;
            """,
            (impact_score, difficulty.value, compounding_score, industry_score, rec_id),
        )

    def transition(
        self,
        rec_id: int,
        to_state: UnlockState,
        at: datetime,
        *,
        archived_reason: Optional[str] = None,
        batch_number: Optional[int] = None,
        refresh_cycle_number: Optional[int] = None,
    ) -> Recommendation:
        """Move ``rec_id`` forward to ``to_state`` and return the updated row.

        Raises:
            LookupError: If the recommendation does not exist.
            InvalidStateTransition: If the move is not a forward DAG edge, or
                the row changed state underneath us.
        """
        current = self.get_by_id(rec_id)
        if current is None:
            raise LookupError(f"Recommendation {rec_id} not found.")
        if not can_transition(current.unlock_state, to_state):
            raise InvalidStateTransition(rec_id, current.unlock_state, to_state)

        ts_col = _STATE_TIMESTAMP[to_state]
        cur = self.execute(
            f"""
            UPDATE recommendations SET
                unlock_state         = ?,
                {ts_col}             = ?,
                archived_reason      = COALESCE(?, archived_reason),
                batch_number         = COALESCE(?, batch_number),
                refresh_cycle_number = COALESCE(?, refresh_cycle_number)
            WHERE rec_id = ? AND unlock_state = ?;
            """,
            (
                to_state.value,
                to_iso(at),
                archived_reason,
                batch_number,
                refresh_cycle_number,
                rec_id,
                current.unlock_state.value,
            ),
        )
        if cur.rowcount != 1:
            raise InvalidStateTransition(rec_id, current.unlock_state, to_state)

        updated = self.get_by_id(rec_id)
        assert updated is not None
        return updated

    def record_progress(self, rec_id: int, progress: float, at: datetime) -> None:
        """Store a partial-implementation fraction; progress never decreases."""
        self.execute(
            """
            UPDATE recommendations SET
                progress         = MAX(COALESCE(progress, 0.0), ?),
                auto_detected_at = ?
            WHERE rec_id = ?;
            """,
            (progress, to_iso(at), rec_id),
        )

    def mark_auto_detected(self, rec_id: int, at: datetime) -> None:
        self.execute(
            "UPDATE recommendations SET auto_detected_at = ? WHERE rec_id = ?;",
            (to_iso(at), rec_id),
        )

    def rehome(self, rec_ids: Iterable[int], scan_id: int, context_id: Optional[int]) -> int:
        """Move still-locked candidates into the pool of ``scan_id``.

        Returns:
            Number of recommendations moved.
        """
        ids = sorted(set(rec_ids))
        if not ids:
            return 0
        cur = self.execute(
            f"""
            UPDATE recommendations SET scan_id = ?, context_id = ?
            WHERE rec_id IN ({','.join('?' * len(ids))}) AND unlock_state = 'locked';
            """,
            (scan_id, context_id, *ids),
        )
        return cur.rowcount

    def assign_context(self, scan_id: int, context_id: int) -> int:
        """Stamp ``context_id`` on the scan's unassigned recommendations.

        Returns:
            Number of recommendations linked.
        """
        cur = self.execute(
            """
            UPDATE recommendations SET context_id = ?
            WHERE scan_id = ? AND context_id IS NULL;
            """,
            (context_id, scan_id),
        )
        return cur.rowcount


# ── Private helpers ───────────────────────────────────────────────────────────

def _row_to_rec(row: sqlite3.Row) -> Recommendation:
    return Recommendation(
        rec_id=row["rec_id"],
        scan_id=row["scan_id"],
        category=row["category"],
        title=row["title"],
        text=row["text"],
        priority=row["priority"],
        difficulty=Difficulty(row["difficulty"]) if row["difficulty"] else None,
        impact_score=row["impact_score"],
        unlock_state=UnlockState(row["unlock_state"]),
        batch_number=row["batch_number"],
        context_id=row["context_id"],
        mode=RecommendationMode(row["mode"]),
        elite_category=row["elite_category"],
        compounding_score=row["compounding_score"],
        industry_score=row["industry_score"],
        progress=row["progress"],
        refresh_cycle_number=row["refresh_cycle_number"],
        archived_reason=row["archived_reason"],
        unlocked_at=from_iso(row["unlocked_at"]),
        completed_at=from_iso(row["completed_at"]),
        skipped_at=from_iso(row["skipped_at"]),
        archived_at=from_iso(row["archived_at"]),
        auto_detected_at=from_iso(row["auto_detected_at"]),
        created_at=from_iso(row["created_at"]),
    )

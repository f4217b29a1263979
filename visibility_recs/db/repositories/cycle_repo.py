"""
Repository for refresh cycles and the replacement audit trail.

Only the highest ``cycle_number`` per scan is "current". ``extend()`` refuses
to move ``next_cycle_date`` backwards, which keeps the only-advances
invariant in SQL rather than in every caller.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from visibility_recs.db.repositories.base import BaseRepository, load_json
from visibility_recs.models.lifecycle import RefreshCycle
from visibility_recs.models.recommendation import ReplacementRecord
from visibility_recs.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class RefreshCycleRepository(BaseRepository):
    """Read/write access to ``refresh_cycles`` and ``recommendation_replacements``."""

    def insert(self, cycle: RefreshCycle, at: datetime) -> int:
        self.execute(
            """
            INSERT INTO refresh_cycles (
                account_id, scan_id, context_id, cycle_number, start_date,
                next_cycle_date, active_rec_ids, implemented_count,
                skipped_count, replaced_count, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                cycle.account_id,
                cycle.scan_id,
                cycle.context_id,
                cycle.cycle_number,
                to_iso(cycle.start_date),
                to_iso(cycle.next_cycle_date),
                json.dumps(cycle.active_rec_ids),
                cycle.implemented_count,
                cycle.skipped_count,
                cycle.replaced_count,
                to_iso(at),
            ),
        )
        return self.last_insert_rowid()

    def get_current(self, account_id: int, scan_id: int) -> Optional[RefreshCycle]:
        """Latest cycle for ``scan_id`` owned by ``account_id``, or ``None``."""
        row = self.fetchone(
            """
            SELECT * FROM refresh_cycles
            WHERE account_id = ? AND scan_id = ?
            ORDER BY cycle_number DESC
            LIMIT 1;
            """,
            (account_id, scan_id),
        )
        return _row_to_cycle(row) if row else None

    def list_for_scan(self, scan_id: int) -> list[RefreshCycle]:
        rows = self.fetchall(
            "SELECT * FROM refresh_cycles WHERE scan_id = ? ORDER BY cycle_number;",
            (scan_id,),
        )
        return [_row_to_cycle(r) for r in rows]

    def get_due(self, now: datetime) -> list[RefreshCycle]:
        """Current cycles whose ``next_cycle_date`` is at or before ``now``."""
        rows = self.fetchall(
            """
            SELECT c.* FROM refresh_cycles c
            WHERE c.next_cycle_date <= ?
              AND c.cycle_number = (
                  SELECT MAX(cycle_number) FROM refresh_cycles WHERE scan_id = c.scan_id
              )
            ORDER BY c.account_id, c.next_cycle_date;
            """,
            (to_iso(now),),
        )
        return [_row_to_cycle(r) for r in rows]

    def extend(self, cycle_id: int, next_cycle_date: datetime) -> bool:
        """Push ``next_cycle_date`` forward. Returns ``False`` if it would not advance."""
        cur = self.execute(
            """
            UPDATE refresh_cycles SET next_cycle_date = ?
            WHERE cycle_id = ? AND next_cycle_date < ?;
            """,
            (to_iso(next_cycle_date), cycle_id, to_iso(next_cycle_date)),
        )
        return cur.rowcount == 1

    def set_active(self, cycle_id: int, active_rec_ids: list[int]) -> None:
        self.execute(
            "UPDATE refresh_cycles SET active_rec_ids = ? WHERE cycle_id = ?;",
            (json.dumps(active_rec_ids), cycle_id),
        )

    def insert_replacement(self, rec: ReplacementRecord) -> int:
        self.execute(
            """
            INSERT INTO recommendation_replacements (
                cycle_id, account_id, old_rec_id, new_rec_id,
                old_impact_score, new_impact_score, reason, replaced_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                rec.cycle_id,
                rec.account_id,
                rec.old_rec_id,
                rec.new_rec_id,
                rec.old_impact_score,
                rec.new_impact_score,
                rec.reason,
                to_iso(rec.replaced_at),
            ),
        )
        return self.last_insert_rowid()

    def get_replacements(self, account_id: int, scan_id: int) -> list[ReplacementRecord]:
        rows = self.fetchall(
            """
            SELECT r.* FROM recommendation_replacements r
            JOIN refresh_cycles c ON c.cycle_id = r.cycle_id
            WHERE r.account_id = ? AND c.scan_id = ?
            ORDER BY r.replaced_at DESC, r.replacement_id DESC;
            """,
            (account_id, scan_id),
        )
        return [
            ReplacementRecord(
                replacement_id=r["replacement_id"],
                cycle_id=r["cycle_id"],
                account_id=r["account_id"],
                old_rec_id=r["old_rec_id"],
                new_rec_id=r["new_rec_id"],
                old_impact_score=r["old_impact_score"],
                new_impact_score=r["new_impact_score"],
                reason=r["reason"],
                replaced_at=from_iso(r["replaced_at"]),
            )
            for r in rows
        ]


# ── Private helpers ───────────────────────────────────────────────────────────

def _row_to_cycle(row: sqlite3.Row) -> RefreshCycle:
    return RefreshCycle(
        cycle_id=row["cycle_id"],
        account_id=row["account_id"],
        scan_id=row["scan_id"],
        context_id=row["context_id"],
        cycle_number=row["cycle_number"],
        start_date=from_iso(row["start_date"]),
        next_cycle_date=from_iso(row["next_cycle_date"]),
        active_rec_ids=load_json(row["active_rec_ids"], []),
        implemented_count=row["implemented_count"],
        skipped_count=row["skipped_count"],
        replaced_count=row["replaced_count"],
        created_at=from_iso(row["created_at"]),
    )

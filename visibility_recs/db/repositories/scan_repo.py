"""
Repositories for accounts, scans and score history.

Scans are written by the scanning system; the core only reads them, marks
them ``degraded`` and looks up "the immediately preceding scan" for a domain,
which is always resolved by ``completed_at`` among non-competitor scans.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from visibility_recs.db.repositories.base import BaseRepository, dump_json, load_json
from visibility_recs.lifecycle.identity import normalize_domain
from visibility_recs.models.scan import Account, PillarScores, Scan, ScanSignals, ScoreSnapshot
from visibility_recs.taxonomy.lifecycle_taxonomy import PlanTier, ScanStatus
from visibility_recs.utils.time_utils import from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)


class AccountRepository(BaseRepository):
    """Read/write access to the ``accounts`` table."""

    def upsert(self, account: Account) -> None:
        self.execute(
            """
            INSERT INTO accounts (account_id, plan_tier, industry, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                plan_tier  = excluded.plan_tier,
                industry   = excluded.industry,
                updated_at = excluded.updated_at;
            """,
            (account.account_id, account.plan_tier.value, account.industry, to_iso(utcnow())),
        )

    def get(self, account_id: int) -> Optional[Account]:
        row = self.fetchone("SELECT * FROM accounts WHERE account_id = ?;", (account_id,))
        if row is None:
            return None
        return Account(
            account_id=row["account_id"],
            plan_tier=PlanTier(row["plan_tier"]),
            industry=row["industry"],
        )

    def get_or_default(self, account_id: int) -> Account:
        """Unknown accounts are treated as free-tier with no industry."""
        return self.get(account_id) or Account(account_id=account_id)


class ScanRepository(BaseRepository):
    """Read/write access to the ``scans`` table."""

    def insert(self, scan: Scan) -> int:
        """Insert a completed scan and return its ``scan_id``.

        The normalized domain is stored alongside the raw one so that the
        preceding scan for the same site can be found with an index lookup.
        """
        self.execute(
            """
            INSERT INTO scans (
                account_id, domain, normalized_domain, page_set, pillar_scores,
                total_score, completed_at, is_competitor_probe, signals, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                scan.account_id,
                scan.domain,
                normalize_domain(scan.domain),
                dump_json(scan.page_set),
                scan.pillar_scores.model_dump_json(),
                scan.total_score,
                to_iso(scan.completed_at),
                int(scan.is_competitor_probe),
                scan.signals.model_dump_json(),
                scan.status.value,
            ),
        )
        return self.last_insert_rowid()

    def get_by_id(self, scan_id: int) -> Optional[Scan]:
        row = self.fetchone("SELECT * FROM scans WHERE scan_id = ?;", (scan_id,))
        return _row_to_scan(row) if row else None

    def get_previous(self, scan: Scan) -> Optional[Scan]:
        """Return the completed scan immediately preceding ``scan`` for its domain.

        Competitor probes are never "previous" to an owned-site scan.
        """
        row = self.fetchone(
            """
            SELECT * FROM scans
            WHERE account_id = ?
              AND normalized_domain = (SELECT normalized_domain FROM scans WHERE scan_id = ?)
              AND scan_id != ?
              AND is_competitor_probe = 0
              AND (completed_at < ? OR (completed_at = ? AND scan_id < ?))
            ORDER BY completed_at DESC, scan_id DESC
            LIMIT 1;
            """,
            (
                scan.account_id,
                scan.scan_id,
                scan.scan_id,
                to_iso(scan.completed_at),
                to_iso(scan.completed_at),
                scan.scan_id,
            ),
        )
        return _row_to_scan(row) if row else None

    def get_newer_recorded(self, scan: Scan) -> Optional[int]:
        """Return the id of a newer scan for the same domain that already has
        a score snapshot, or ``None``. A hit means ``scan`` arrived out of order.
        """
        value = self.fetchscalar(
            """
            SELECT s.scan_id FROM scans s
            JOIN score_history h ON h.scan_id = s.scan_id
            WHERE s.account_id = ?
              AND s.normalized_domain = (SELECT normalized_domain FROM scans WHERE scan_id = ?)
              AND s.scan_id != ?
              AND s.is_competitor_probe = 0
              AND s.completed_at > ?
            ORDER BY s.completed_at DESC
            LIMIT 1;
            """,
            (scan.account_id, scan.scan_id, scan.scan_id, to_iso(scan.completed_at)),
        )
        return int(value) if value is not None else None

    def mark_status(self, scan_id: int, status: ScanStatus) -> None:
        self.execute(
            "UPDATE scans SET status = ? WHERE scan_id = ?;", (status.value, scan_id)
        )

    def totals_since(self, account_id: int, since: datetime) -> list[int]:
        """Total scores of the account's owned-site scans since ``since``."""
        rows = self.fetchall(
            """
            SELECT total_score FROM scans
            WHERE account_id = ? AND is_competitor_probe = 0 AND completed_at >= ?
            ORDER BY completed_at;
            """,
            (account_id, to_iso(since)),
        )
        return [int(r["total_score"]) for r in rows]

    def accounts_scanned_since(self, since: datetime) -> list[int]:
        rows = self.fetchall(
            """
            SELECT DISTINCT account_id FROM scans
            WHERE is_competitor_probe = 0 AND completed_at >= ?
            ORDER BY account_id;
            """,
            (to_iso(since),),
        )
        return [int(r["account_id"]) for r in rows]


class ScoreHistoryRepository(BaseRepository):
    """Append-only access to ``score_history``."""

    def insert(self, snapshot: ScoreSnapshot) -> int:
        self.execute(
            """
            INSERT INTO score_history (
                scan_id, account_id, domain, total_score, pillar_scores,
                previous_scan_id, previous_score, score_delta, recorded_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                snapshot.scan_id,
                snapshot.account_id,
                snapshot.domain,
                snapshot.total_score,
                snapshot.pillar_scores.model_dump_json(),
                snapshot.previous_scan_id,
                snapshot.previous_score,
                snapshot.score_delta,
                to_iso(snapshot.recorded_at),
            ),
        )
        return self.last_insert_rowid()

    def get_by_scan(self, scan_id: int) -> Optional[ScoreSnapshot]:
        row = self.fetchone("SELECT * FROM score_history WHERE scan_id = ?;", (scan_id,))
        return _row_to_snapshot(row) if row else None

    def get_for_account(self, account_id: int, limit: int = 50) -> list[ScoreSnapshot]:
        rows = self.fetchall(
            """
            SELECT * FROM score_history WHERE account_id = ?
            ORDER BY recorded_at DESC LIMIT ?;
            """,
            (account_id, limit),
        )
        return [_row_to_snapshot(r) for r in rows]


# ── Private helpers ───────────────────────────────────────────────────────────

def _row_to_scan(row: sqlite3.Row) -> Scan:
    return Scan(
        scan_id=row["scan_id"],
        account_id=row["account_id"],
        domain=row["domain"],
        page_set=load_json(row["page_set"], []),
        pillar_scores=PillarScores.model_validate_json(row["pillar_scores"]),
        total_score=row["total_score"],
        completed_at=from_iso(row["completed_at"]),
        is_competitor_probe=bool(row["is_competitor_probe"]),
        signals=ScanSignals.model_validate_json(row["signals"]),
        status=ScanStatus(row["status"]),
    )


def _row_to_snapshot(row: sqlite3.Row) -> ScoreSnapshot:
    return ScoreSnapshot(
        snapshot_id=row["snapshot_id"],
        scan_id=row["scan_id"],
        account_id=row["account_id"],
        domain=row["domain"],
        total_score=row["total_score"],
        pillar_scores=PillarScores.model_validate_json(row["pillar_scores"]),
        previous_scan_id=row["previous_scan_id"],
        previous_score=row["previous_score"],
        score_delta=row["score_delta"],
        recorded_at=from_iso(row["recorded_at"]),
    )

"""
Repositories for audit rows: implementation detections, orchestrator runs and
plateau alerts.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Optional

from visibility_recs.db.repositories.base import BaseRepository, load_json
from visibility_recs.models.meta import OrchestratorRun
from visibility_recs.models.recommendation import Detection
from visibility_recs.taxonomy.lifecycle_taxonomy import DetectionType
from visibility_recs.taxonomy.pillars import Pillar
from visibility_recs.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class DetectionRepository(BaseRepository):
    """Append-only access to ``implementation_detections``."""

    def insert(self, detection: Detection) -> int:
        self.execute(
            """
            INSERT INTO implementation_detections (
                account_id, rec_id, previous_scan_id, current_scan_id, pillar,
                score_before, score_after, score_delta, confidence,
                detection_type, evidence, was_skipped, detected_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                detection.account_id,
                detection.rec_id,
                detection.previous_scan_id,
                detection.current_scan_id,
                detection.pillar.value,
                detection.score_before,
                detection.score_after,
                detection.score_delta,
                detection.confidence,
                detection.detection_type.value,
                json.dumps(detection.evidence),
                int(detection.was_skipped),
                to_iso(detection.detected_at),
            ),
        )
        return self.last_insert_rowid()

    def exists(self, rec_id: int, current_scan_id: int) -> bool:
        """True if ``rec_id`` was already evaluated against ``current_scan_id``."""
        value = self.fetchscalar(
            """
            SELECT 1 FROM implementation_detections
            WHERE rec_id = ? AND current_scan_id = ?
            LIMIT 1;
            """,
            (rec_id, current_scan_id),
        )
        return value is not None

    def get_for_scan(self, current_scan_id: int) -> list[Detection]:
        rows = self.fetchall(
            """
            SELECT * FROM implementation_detections
            WHERE current_scan_id = ?
            ORDER BY detection_id;
            """,
            (current_scan_id,),
        )
        return [_row_to_detection(r) for r in rows]

    def get_for_rec(self, rec_id: int) -> list[Detection]:
        rows = self.fetchall(
            "SELECT * FROM implementation_detections WHERE rec_id = ? ORDER BY detection_id;",
            (rec_id,),
        )
        return [_row_to_detection(r) for r in rows]


class OrchestratorRunRepository(BaseRepository):
    """Read/write access to ``orchestrator_runs``."""

    def insert_run(self, run: OrchestratorRun) -> int:
        self.execute(
            """
            INSERT INTO orchestrator_runs (
                run_slug, run_kind, account_id, scan_id, status,
                step_outcomes, error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                run.run_slug,
                run.run_kind,
                run.account_id,
                run.scan_id,
                run.status,
                json.dumps(run.step_outcomes),
                run.error_message,
                to_iso(run.started_at),
                to_iso(run.finished_at),
            ),
        )
        return self.last_insert_rowid()

    def update_run(self, run: OrchestratorRun) -> None:
        """Update the mutable fields of an existing run.

        Raises:
            ValueError: If ``run.run_id`` is ``None``.
        """
        if run.run_id is None:
            raise ValueError("Cannot update OrchestratorRun without a run_id.")
        self.execute(
            """
            UPDATE orchestrator_runs SET
                status        = ?,
                step_outcomes = ?,
                error_message = ?,
                finished_at   = ?
            WHERE run_id = ?;
            """,
            (
                run.status,
                json.dumps(run.step_outcomes),
                run.error_message,
                to_iso(run.finished_at),
                run.run_id,
            ),
        )

    def get_by_slug(self, run_slug: str) -> Optional[OrchestratorRun]:
        row = self.fetchone("SELECT * FROM orchestrator_runs WHERE run_slug = ?;", (run_slug,))
        return _row_to_run(row) if row else None

    def get_for_scan(self, scan_id: int) -> list[OrchestratorRun]:
        rows = self.fetchall(
            "SELECT * FROM orchestrator_runs WHERE scan_id = ? ORDER BY run_id;", (scan_id,)
        )
        return [_row_to_run(r) for r in rows]


class PlateauAlertRepository(BaseRepository):
    """Access to ``plateau_alerts`` (added by migration 0002)."""

    def last_alert_at(self, account_id: int) -> Optional[datetime]:
        value = self.fetchscalar(
            "SELECT MAX(alerted_at) FROM plateau_alerts WHERE account_id = ?;", (account_id,)
        )
        return from_iso(value)

    def insert(
        self,
        account_id: int,
        scan_count: int,
        score_range: int,
        implemented_count: int,
        at: datetime,
    ) -> int:
        self.execute(
            """
            INSERT INTO plateau_alerts (
                account_id, scan_count, score_range, implemented_count, alerted_at
            ) VALUES (?, ?, ?, ?, ?);
            """,
            (account_id, scan_count, score_range, implemented_count, to_iso(at)),
        )
        return self.last_insert_rowid()


# ── Private helpers ───────────────────────────────────────────────────────────

def _row_to_detection(row: sqlite3.Row) -> Detection:
    return Detection(
        detection_id=row["detection_id"],
        account_id=row["account_id"],
        rec_id=row["rec_id"],
        previous_scan_id=row["previous_scan_id"],
        current_scan_id=row["current_scan_id"],
        pillar=Pillar(row["pillar"]),
        score_before=row["score_before"],
        score_after=row["score_after"],
        score_delta=row["score_delta"],
        confidence=row["confidence"],
        detection_type=DetectionType(row["detection_type"]),
        evidence=load_json(row["evidence"], []),
        was_skipped=bool(row["was_skipped"]),
        detected_at=from_iso(row["detected_at"]),
    )


def _row_to_run(row: sqlite3.Row) -> OrchestratorRun:
    return OrchestratorRun(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        run_kind=row["run_kind"],
        account_id=row["account_id"],
        scan_id=row["scan_id"],
        status=row["status"],
        step_outcomes=load_json(row["step_outcomes"], {}),
        error_message=row["error_message"],
        started_at=from_iso(row["started_at"]),
        finished_at=from_iso(row["finished_at"]),
    )

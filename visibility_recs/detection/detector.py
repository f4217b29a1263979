"""
ImplementationDetector: infers which active recommendations the user carried
out between two consecutive scans of the same domain.

For each recommendation active against the previous scan:

  1. Map it to a pillar (``pillar_for``) and take the pillar delta on the
     0–10 scale. A non-positive delta ends the evaluation.
  2. Collect structural evidence for that pillar (``collect_evidence``).
  3. Combine both into a 0–100 confidence::

        delta credit    = 60                      if delta >= significant
                        = 40                      if delta >= minor
                        = delta / minor * 30      otherwise
        evidence credit = min(count * 15, 40)

  4. Drop anything under ``min_confidence``. Classify the rest:

        auto_complete  delta >= significant, evidence, confidence >= activation floor
                       → recommendation moves to ``completed``
        auto_partial   delta >= minor, evidence
                       → stays ``active``; progress = min(delta / significant, 1)
        auto_detected  anything else above the floor → audit row only

A score jump alone never completes a recommendation: with no evidence the
confidence tops out at the delta credit, which is the discard floor and
below the activation floor.

A second pass re-examines recommendations skipped in the last
``skipped_window_days`` against the scan that issued them, with a stricter
floor. Hits are stored with ``was_skipped=True`` and change no state.

Every (recommendation, current scan) pair is evaluated at most once, so
re-running detection for a scan is a no-op.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import timedelta
from typing import Optional

from visibility_recs.config import DetectionConfig
from visibility_recs.db.connection import transaction
from visibility_recs.db.repositories.context_repo import ContextRepository
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.run_repo import DetectionRepository
from visibility_recs.db.repositories.scan_repo import ScanRepository
from visibility_recs.detection.evidence import collect_evidence
from visibility_recs.lifecycle.identity import normalize_domain
from visibility_recs.models.recommendation import Detection, Recommendation
from visibility_recs.models.scan import Scan
from visibility_recs.notify.events import DetectionEvent, Notifier, publish_safely
from visibility_recs.taxonomy.lifecycle_taxonomy import DetectionType, UnlockState
from visibility_recs.taxonomy.pillars import pillar_for
from visibility_recs.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)


def confidence_for(delta: float, evidence_count: int, config: DetectionConfig) -> float:
    """Combined delta + evidence confidence, clamped to 0–100."""
    if delta >= config.significant_delta:
        delta_credit = config.significant_credit
    elif delta >= config.minor_delta:
        delta_credit = config.minor_credit
    else:
        delta_credit = delta / config.minor_delta * config.linear_credit
    evidence_credit = min(evidence_count * config.evidence_weight, config.evidence_cap)
    return round(max(0.0, min(100.0, delta_credit + evidence_credit)), 2)


def classify(
    delta: float, evidence: list[str], confidence: float, config: DetectionConfig
) -> DetectionType:
    if delta >= config.significant_delta and evidence and confidence >= config.auto_complete_confidence:
        return DetectionType.AUTO_COMPLETE
    if delta >= config.minor_delta and evidence:
        return DetectionType.AUTO_PARTIAL
    return DetectionType.AUTO_DETECTED


class ImplementationDetector:
    """Compares a completed scan with its predecessor and records detections.

    Args:
        conn:     Open connection; the caller owns the outer commit.
        config:   Thresholds and confidence floors.
        clock:    Returns "now"; injectable for tests.
        notifier: Receives a ``DetectionEvent`` per auto-completed recommendation.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[DetectionConfig] = None,
        clock: Clock = utcnow,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.conn       = conn
        self.config     = config or DetectionConfig()
        self.clock      = clock
        self.notifier   = notifier
        self.scans      = ScanRepository(conn)
        self.recs       = RecommendationRepository(conn)
        self.contexts   = ContextRepository(conn)
        self.detections = DetectionRepository(conn)

    def detect(self, account_id: int, current_scan_id: int) -> list[Detection]:
        """Evaluate every eligible recommendation against ``current_scan_id``.

        Returns:
            The detections written by this call (including skipped-pass
            audit rows). Empty when there is no previous scan.
        """
        current = self.scans.get_by_id(current_scan_id)
        if current is None or current.account_id != account_id:
            logger.warning("Detection skipped: scan %d not found for account %d",
                           current_scan_id, account_id)
            return []
        if current.is_competitor_probe:
            return []

        previous = self.scans.get_previous(current)
        if previous is None:
            logger.debug("No previous scan for %d; nothing to detect", current_scan_id)
            return []

        now = self.clock()
        written: list[Detection] = []

        with transaction(self.conn, "detect"):
            for rec in self._candidates(previous):
                if self.detections.exists(rec.rec_id, current.scan_id):
                    continue
                found = self._evaluate(
                    account_id, rec, previous, current, self.config.min_confidence, False
                )
                if found is None:
                    continue
                self._apply(found, now)
                written.append(self._store(found))

            written.extend(self._skipped_pass(account_id, current, now))

        completed = [d for d in written if d.detection_type == DetectionType.AUTO_COMPLETE
                     and not d.was_skipped]
        logger.info(
            "Detection | account=%d | scan=%d vs %d | detections=%d | completed=%d",
            account_id, current.scan_id, previous.scan_id, len(written), len(completed),
        )

        if self.notifier is not None:
            for d in completed:
                rec = self.recs.get_by_id(d.rec_id)
                publish_safely(self.notifier, DetectionEvent(
                    account_id=account_id,
                    scan_id=current.scan_id,
                    rec_id=d.rec_id,
                    title=rec.title if rec else "",
                    detection_type=d.detection_type.value,
                    confidence=d.confidence,
                    evidence=list(d.evidence),
                ))
        return written

    # ── Private helpers ───────────────────────────────────────────────────────

    def _candidates(self, previous: Scan) -> list[Recommendation]:
        """Active recommendations owned by the previous scan or its context's primary scan."""
        owners = {previous.scan_id}
        ctx = self.contexts.get_for_scan(previous.scan_id)
        if ctx is not None:
            owners.add(ctx.primary_scan_id)
        return self.recs.get_active_for_scans(owners)

    def _evaluate(
        self,
        account_id: int,
        rec: Recommendation,
        before: Scan,
        after: Scan,
        floor: float,
        was_skipped: bool,
    ) -> Optional[Detection]:
        pillar = pillar_for(rec.category, rec.title)
        score_before = before.pillar_scores.get(pillar)
        score_after = after.pillar_scores.get(pillar)
        delta = round(score_after - score_before, 4)
        if delta <= 0:
            return None

        evidence = collect_evidence(
            pillar, before.signals, after.signals, self.config.load_time_improvement_s
        )
        confidence = confidence_for(delta, len(evidence), self.config)
        if confidence < floor:
            return None

        return Detection(
            account_id=account_id,
            rec_id=rec.rec_id,
            previous_scan_id=before.scan_id,
            current_scan_id=after.scan_id,
            pillar=pillar,
            score_before=score_before,
            score_after=score_after,
            score_delta=delta,
            confidence=confidence,
            detection_type=classify(delta, evidence, confidence, self.config),
            evidence=evidence,
            was_skipped=was_skipped,
            detected_at=self.clock(),
        )

    def _apply(self, detection: Detection, now) -> None:
        if detection.detection_type == DetectionType.AUTO_COMPLETE:
            self.recs.transition(detection.rec_id, UnlockState.COMPLETED, now)
            self.recs.mark_auto_detected(detection.rec_id, now)
        elif detection.detection_type == DetectionType.AUTO_PARTIAL:
            progress = min(detection.score_delta / self.config.significant_delta, 1.0)
            self.recs.record_progress(detection.rec_id, progress, now)
        else:
            self.recs.mark_auto_detected(detection.rec_id, now)

    def _store(self, detection: Detection) -> Detection:
        detection_id = self.detections.insert(detection)
        return detection.model_copy(update={"detection_id": detection_id})

    def _skipped_pass(self, account_id: int, current: Scan, now) -> list[Detection]:
        since = now - timedelta(days=self.config.skipped_window_days)
        domain = normalize_domain(current.domain)
        written: list[Detection] = []
        owners: dict[int, Optional[Scan]] = {}

        for rec in self.recs.get_skipped_since(account_id, since):
            if self.detections.exists(rec.rec_id, current.scan_id):
                continue
            if rec.scan_id not in owners:
                owners[rec.scan_id] = self.scans.get_by_id(rec.scan_id)
            owner = owners[rec.scan_id]
            if owner is None or owner.scan_id == current.scan_id:
                continue
            if normalize_domain(owner.domain) != domain:
                continue
            found = self._evaluate(
                account_id, rec, owner, current, self.config.skipped_min_confidence, True
            )
            if found is not None:
                written.append(self._store(found))

        if written:
            logger.info("Skipped recommendations showing implementation: %d", len(written))
        return written

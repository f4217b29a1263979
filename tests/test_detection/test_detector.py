"""
Tests for the implementation detector.

What we test
------------
confidence_for() / classify():
  - Delta credit tiers and the evidence cap.
  - A score jump with no evidence is never auto_complete.

ImplementationDetector.detect():
  - +2 on the pillar with no evidence → auto_detected; rec stays active.
  - +2 with evidence → auto_complete; rec moves to completed.
  - Minor delta with evidence → auto_partial with progress recorded.
  - Below the floor and non-positive deltas write nothing.
  - Re-running detection for the same scan is a no-op.
  - Competitor probes and first scans are ignored.
  - Skipped recommendations are audited with the stricter floor only.
  - A DetectionEvent is published per auto-completed recommendation.
"""

from __future__ import annotations

import pytest

from visibility_recs.config import DetectionConfig
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.run_repo import DetectionRepository
from visibility_recs.detection.detector import ImplementationDetector, classify, confidence_for
from visibility_recs.models.scan import PillarScores, ScanSignals
from visibility_recs.notify.events import BufferedNotifier, DetectionEvent
from visibility_recs.taxonomy.lifecycle_taxonomy import DetectionType, UnlockState
from visibility_recs.taxonomy.pillars import Pillar

CFG = DetectionConfig()


# ── Helpers ────────────────────────────────────────────────────────────────────

def _pillars(schema: float) -> PillarScores:
    values = {p.value: 5.0 for p in Pillar}
    values[Pillar.AI_SEARCH_READINESS.value] = schema
    return PillarScores(**values)


def _scan_pair(seed, clock, before=5.0, after=7.0, signals_after=None, state=UnlockState.ACTIVE):
    """Two scans of example.com with one schema recommendation on the first."""
    seed.account()
    first = seed.scan(pillars=_pillars(before))
    rec = seed.rec(first.scan_id, state=state)
    clock.advance(days=7)
    second = seed.scan(pillars=_pillars(after), signals=signals_after)
    return first, second, rec


_ORG_ADDED = ScanSignals(has_organization_schema=True)


# ── Pure rules ─────────────────────────────────────────────────────────────────

class TestConfidence:
    @pytest.mark.parametrize("delta,count,expected", [
        (2.0, 0, 60.0),
        (1.0, 1, 75.0),
        (0.5, 0, 40.0),
        (0.25, 0, 15.0),
        (2.0, 5, 100.0),   # evidence capped at 40
        (0.7, 2, 70.0),
    ])
    def test_tiers(self, delta, count, expected):
        assert confidence_for(delta, count, CFG) == pytest.approx(expected)

    def test_no_evidence_never_completes(self):
        for delta in (1.0, 3.0, 9.0):
            conf = confidence_for(delta, 0, CFG)
            assert classify(delta, [], conf, CFG) == DetectionType.AUTO_DETECTED

    def test_classify_partial(self):
        assert classify(0.6, ["x"], 55.0, CFG) == DetectionType.AUTO_PARTIAL

    def test_classify_complete(self):
        assert classify(1.5, ["x"], 75.0, CFG) == DetectionType.AUTO_COMPLETE


# ── detect() ───────────────────────────────────────────────────────────────────

class TestDetect:
    def test_score_jump_without_evidence_is_audit_only(self, seed, in_memory_db, clock):
        _, second, rec = _scan_pair(seed, clock)
        detections = ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id)

        assert len(detections) == 1
        assert detections[0].detection_type == DetectionType.AUTO_DETECTED
        assert detections[0].confidence == pytest.approx(60.0)
        stored = RecommendationRepository(in_memory_db).get_by_id(rec.rec_id)
        assert stored.unlock_state == UnlockState.ACTIVE
        assert stored.auto_detected_at == clock()

    def test_jump_with_evidence_completes(self, seed, in_memory_db, clock):
        _, second, rec = _scan_pair(seed, clock, signals_after=_ORG_ADDED)
        detections = ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id)

        assert [d.detection_type for d in detections] == [DetectionType.AUTO_COMPLETE]
        assert detections[0].evidence == ["Added Organization schema markup"]
        assert detections[0].score_delta == pytest.approx(2.0)
        stored = RecommendationRepository(in_memory_db).get_by_id(rec.rec_id)
        assert stored.unlock_state == UnlockState.COMPLETED
        assert stored.completed_at == clock()

    def test_minor_delta_with_evidence_is_partial(self, seed, in_memory_db, clock):
        signals = ScanSignals(schema_types=["Organization"], has_organization_schema=True)
        _, second, rec = _scan_pair(seed, clock, before=5.0, after=5.7, signals_after=signals)
        detections = ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id)

        assert [d.detection_type for d in detections] == [DetectionType.AUTO_PARTIAL]
        stored = RecommendationRepository(in_memory_db).get_by_id(rec.rec_id)
        assert stored.unlock_state == UnlockState.ACTIVE
        assert stored.progress == pytest.approx(0.7)

    def test_below_floor_discarded(self, seed, in_memory_db, clock):
        _, second, _ = _scan_pair(seed, clock, before=5.0, after=5.3, signals_after=_ORG_ADDED)
        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id) == []

    def test_score_drop_ignored(self, seed, in_memory_db, clock):
        _, second, _ = _scan_pair(seed, clock, before=7.0, after=6.0, signals_after=_ORG_ADDED)
        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id) == []

    def test_rerun_is_noop(self, seed, in_memory_db, clock):
        _, second, _ = _scan_pair(seed, clock)
        detector = ImplementationDetector(in_memory_db, CFG, clock)
        assert len(detector.detect(1, second.scan_id)) == 1
        assert detector.detect(1, second.scan_id) == []
        assert len(DetectionRepository(in_memory_db).get_for_scan(second.scan_id)) == 1

    def test_first_scan_has_nothing_to_compare(self, seed, in_memory_db, clock):
        seed.account()
        only = seed.scan()
        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, only.scan_id) == []

    def test_competitor_probe_ignored(self, seed, in_memory_db, clock):
        seed.account()
        first = seed.scan(pillars=_pillars(5.0))
        seed.rec(first.scan_id, state=UnlockState.ACTIVE)
        clock.advance(days=1)
        probe = seed.scan(pillars=_pillars(9.0), is_competitor_probe=True)
        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, probe.scan_id) == []

    def test_wrong_account_ignored(self, seed, in_memory_db, clock):
        _, second, _ = _scan_pair(seed, clock)
        assert ImplementationDetector(in_memory_db, CFG, clock).detect(2, second.scan_id) == []

    def test_locked_recommendations_not_evaluated(self, seed, in_memory_db, clock):
        _, second, _ = _scan_pair(seed, clock, state=UnlockState.LOCKED, signals_after=_ORG_ADDED)
        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id) == []

    def test_event_for_auto_complete(self, seed, in_memory_db, clock):
        buffer = BufferedNotifier()
        _, second, rec = _scan_pair(seed, clock, signals_after=_ORG_ADDED)
        ImplementationDetector(in_memory_db, CFG, clock, buffer).detect(1, second.scan_id)

        assert len(buffer.pending) == 1
        event = buffer.pending[0]
        assert isinstance(event, DetectionEvent)
        assert event.rec_id == rec.rec_id
        assert event.title == rec.title


class TestSkippedPass:
    def _skip(self, in_memory_db, clock, rec):
        RecommendationRepository(in_memory_db).transition(rec.rec_id, UnlockState.SKIPPED, clock())

    def test_skipped_with_evidence_is_audited(self, seed, in_memory_db, clock):
        seed.account()
        first = seed.scan(pillars=_pillars(5.0))
        rec = seed.rec(first.scan_id, state=UnlockState.ACTIVE)
        self._skip(in_memory_db, clock, rec)
        clock.advance(days=7)
        second = seed.scan(pillars=_pillars(7.0), signals=_ORG_ADDED)

        detections = ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id)

        assert len(detections) == 1
        assert detections[0].was_skipped
        assert RecommendationRepository(in_memory_db).get_by_id(rec.rec_id).unlock_state == UnlockState.SKIPPED

    def test_skipped_without_evidence_under_stricter_floor(self, seed, in_memory_db, clock):
        seed.account()
        first = seed.scan(pillars=_pillars(5.0))
        rec = seed.rec(first.scan_id, state=UnlockState.ACTIVE)
        self._skip(in_memory_db, clock, rec)
        clock.advance(days=7)
        second = seed.scan(pillars=_pillars(7.0))

        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id) == []

    def test_skips_outside_window_ignored(self, seed, in_memory_db, clock):
        seed.account()
        first = seed.scan(pillars=_pillars(5.0))
        rec = seed.rec(first.scan_id, state=UnlockState.ACTIVE)
        self._skip(in_memory_db, clock, rec)
        clock.advance(days=31)
        second = seed.scan(pillars=_pillars(7.0), signals=_ORG_ADDED)

        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id) == []

    def test_other_domain_ignored(self, seed, in_memory_db, clock):
        seed.account()
        other = seed.scan(domain="other.com", pillars=_pillars(5.0))
        rec = seed.rec(other.scan_id, state=UnlockState.ACTIVE)
        self._skip(in_memory_db, clock, rec)
        seed.scan(pillars=_pillars(5.0))
        clock.advance(days=7)
        second = seed.scan(pillars=_pillars(7.0), signals=_ORG_ADDED)

        assert ImplementationDetector(in_memory_db, CFG, clock).detect(1, second.scan_id) == []

"""
Tests for the pydantic domain models.

What we test
------------
1. PillarScores: 0–10 bounds, uniform() and get().
2. Scan / Account / Recommendation validators.
3. Models are frozen; updates go through model_copy().
4. OrchestratorRun rejects unknown kinds and statuses and stays mutable.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from visibility_recs.models.meta import OrchestratorRun
from visibility_recs.models.recommendation import Recommendation
from visibility_recs.models.scan import Account, PillarScores, Scan
from visibility_recs.taxonomy.lifecycle_taxonomy import PlanTier, UnlockState
from visibility_recs.taxonomy.pillars import Pillar

from conftest import FIXED_NOW


def _scan(**overrides) -> Scan:
    fields = dict(
        account_id=1,
        domain="example.com",
        pillar_scores=PillarScores.uniform(6.0),
        total_score=640,
        completed_at=FIXED_NOW,
    )
    fields.update(overrides)
    return Scan(**fields)


class TestPillarScores:
    def test_uniform_and_get(self):
        scores = PillarScores.uniform(7.5)
        assert all(scores.get(p) == 7.5 for p in Pillar)

    @pytest.mark.parametrize("value", [-0.1, 10.01])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationError):
            PillarScores.uniform(value)


class TestScan:
    def test_defaults(self):
        scan = _scan()
        assert scan.scan_id is None
        assert scan.page_set == []
        assert not scan.is_competitor_probe
        assert scan.signals.schema_types == []

    def test_blank_domain(self):
        with pytest.raises(ValidationError):
            _scan(domain="   ")

    @pytest.mark.parametrize("total", [-1, 1001])
    def test_total_on_thousand_scale(self, total):
        with pytest.raises(ValidationError):
            _scan(total_score=total)

    def test_frozen(self):
        scan = _scan()
        with pytest.raises(ValidationError):
            scan.total_score = 700
        assert scan.model_copy(update={"total_score": 700}).total_score == 700


class TestAccount:
    def test_default_tier(self):
        assert Account(account_id=3).plan_tier == PlanTier.FREE

    def test_non_positive_id(self):
        with pytest.raises(ValidationError):
            Account(account_id=0)


class TestRecommendation:
    def test_defaults(self):
        rec = Recommendation(scan_id=1, category="Schema Markup", title="Add schema")
        assert rec.unlock_state == UnlockState.LOCKED
        assert rec.impact_score is None
        assert rec.batch_number == 1

    def test_empty_title(self):
        with pytest.raises(ValidationError):
            Recommendation(scan_id=1, category="x", title=" ")

    def test_impact_bounds(self):
        with pytest.raises(ValidationError):
            Recommendation(scan_id=1, category="x", title="y", impact_score=101.0)

    def test_progress_bounds(self):
        with pytest.raises(ValidationError):
            Recommendation(scan_id=1, category="x", title="y", progress=1.5)


class TestOrchestratorRun:
    def test_mutable(self):
        run = OrchestratorRun(run_slug="abc", run_kind="sweep", started_at=FIXED_NOW)
        run.status = "success"
        assert run.status == "success"

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            OrchestratorRun(run_slug="abc", run_kind="backfill", started_at=FIXED_NOW)

    def test_unknown_status(self):
        with pytest.raises(ValidationError):
            OrchestratorRun(run_slug="abc", run_kind="sweep", status="done", started_at=FIXED_NOW)

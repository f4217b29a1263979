"""
Tests for elite-maintenance candidate generation.

What we test
------------
1. Category split: 2/2/1/0 for five, never more than the batch size.
2. Candidates are locked, elite-mode and carry their elite category.
3. Templates react to the scan: weakest pillars, FAQ signals, existing
   schema types, industry label and score drops.
"""

from __future__ import annotations

import pytest

from visibility_recs.generators.elite import (
    EliteTemplateGenerator,
    category_distribution,
    weakest_pillars,
)
from visibility_recs.models.scan import PillarScores, Scan, ScanSignals
from visibility_recs.taxonomy.lifecycle_taxonomy import (
    EliteCategory,
    RecommendationMode,
    UnlockState,
)
from visibility_recs.taxonomy.pillars import Pillar

from conftest import FIXED_NOW


def _scan(total_score: int = 880, signals: ScanSignals | None = None, **pillars: float) -> Scan:
    values = {p.value: 9.0 for p in Pillar}
    values.update(pillars)
    return Scan(
        scan_id=7,
        account_id=1,
        domain="example.com",
        pillar_scores=PillarScores(**values),
        total_score=total_score,
        completed_at=FIXED_NOW,
        signals=signals or ScanSignals(),
    )


def _titles(recs) -> list[str]:
    return [r.title for r in recs]


class TestCategoryDistribution:
    def test_default_batch(self):
        assert category_distribution(5) == {
            EliteCategory.COMPETITIVE_INTELLIGENCE: 2,
            EliteCategory.CONTENT_OPPORTUNITIES:    2,
            EliteCategory.ADVANCED_OPTIMIZATION:    1,
            EliteCategory.MAINTENANCE_MONITORING:   0,
        }

    def test_batch_of_ten(self):
        counts = category_distribution(10)
        assert counts[EliteCategory.COMPETITIVE_INTELLIGENCE] == 3
        assert counts[EliteCategory.ADVANCED_OPTIMIZATION] == 2
        assert counts[EliteCategory.MAINTENANCE_MONITORING] == 2

    @pytest.mark.parametrize("total", [0, 1, 2, 3, 5, 7, 10])
    def test_never_exceeds_total(self, total):
        assert sum(category_distribution(total).values()) == total


class TestEliteTemplateGenerator:
    def test_candidate_shape(self):
        recs = EliteTemplateGenerator().generate(_scan(), "saas")
        assert len(recs) == 5
        for rec in recs:
            assert rec.scan_id == 7
            assert rec.unlock_state == UnlockState.LOCKED
            assert rec.mode == RecommendationMode.ELITE_MAINTENANCE
            assert rec.elite_category == rec.category
            assert rec.difficulty is not None
        assert [r.category for r in recs] == [
            "Competitive Intelligence", "Competitive Intelligence",
            "Content Opportunities", "Content Opportunities",
            "Advanced Optimization",
        ]

    def test_weakest_pillar_drives_benchmark(self):
        scan = _scan(trust_authority=6.0, content_freshness=7.0)
        assert weakest_pillars(scan)[:2] == [Pillar.TRUST_AUTHORITY, Pillar.CONTENT_FRESHNESS]
        titles = _titles(EliteTemplateGenerator().generate(scan))
        assert "Benchmark Trust & Authority Against Top Competitors" in titles

    def test_industry_label(self):
        titles = _titles(EliteTemplateGenerator().generate(_scan(), "msp_var"))
        assert "Add Missing Msp Var FAQs" in titles

    def test_faq_depth_only_with_existing_faqs(self):
        without = _titles(EliteTemplateGenerator().generate(_scan()))
        with_faqs = _titles(EliteTemplateGenerator().generate(_scan(signals=ScanSignals(faq_count=4))))
        assert "Expand FAQ Depth for Advanced Topics" not in without
        assert "Expand FAQ Depth for Advanced Topics" in with_faqs

    def test_existing_speakable_skipped(self):
        signals = ScanSignals(schema_types=["SpeakableSpecification"], has_faq_schema=True)
        recs = EliteTemplateGenerator().generate(_scan(signals=signals))
        advanced = [r.title for r in recs if r.category == EliteCategory.ADVANCED_OPTIMIZATION.value]
        assert advanced == ["Upgrade FAQs with SuggestedAnswer Property"]

    def test_score_drop_alert_in_larger_batch(self):
        recs = EliteTemplateGenerator(batch_size=10).generate(_scan(total_score=860), previous_score=900)
        assert "Score Dropped 40 Points - Immediate Action Required" in _titles(recs)

    def test_small_drop_no_alert(self):
        recs = EliteTemplateGenerator(batch_size=10).generate(_scan(total_score=895), previous_score=900)
        assert not any(t.startswith("Score Dropped") for t in _titles(recs))

    def test_titles_unique(self):
        titles = _titles(EliteTemplateGenerator(batch_size=10).generate(_scan(), "saas", 900))
        assert len(titles) == len(set(titles))

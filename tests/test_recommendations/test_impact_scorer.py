"""
Tests for visibility_recs/recommendations/impact.py.

What we test
------------
Sub-scores:
  - deficiency grows as the pillar score falls, amplified by pillar weight,
    and is clamped to 100.
  - difficulty: quick win 100, moderate ~66.7, complex 40.
  - complex keywords win over quick-win keywords.
  - compounding is 0 for types with no effect set.
  - industry: 100 high, 75 medium, 50 otherwise / unknown industry.

ImpactScorer:
  - Worked example under both weight tables.
  - Same inputs give the same score (pure).
  - Explicit difficulty tag overrides text detection.
  - Score always within 0–100.
"""

from __future__ import annotations

import pytest

from visibility_recs.config import ScoringConfig
from visibility_recs.models.recommendation import Recommendation
from visibility_recs.models.scan import PillarScores
from visibility_recs.recommendations.impact import (
    GENERAL_TYPE,
    ImpactScorer,
    compounding_score,
    deficiency_score,
    detect_difficulty,
    detect_recommendation_type,
    difficulty_score,
    industry_score,
)
from visibility_recs.taxonomy.lifecycle_taxonomy import Difficulty, RecommendationMode
from visibility_recs.taxonomy.pillars import Pillar


# ── Helpers ────────────────────────────────────────────────────────────────────

def _rec(
    title: str = "Add Organization schema",
    category: str = "Schema Markup",
    text: str = "",
    difficulty: Difficulty | None = None,
) -> Recommendation:
    return Recommendation(scan_id=1, title=title, category=category, text=text, difficulty=difficulty)


def _pillars(**overrides: float) -> PillarScores:
    values = {p.value: 5.0 for p in Pillar}
    values.update(overrides)
    return PillarScores(**values)


# ── Sub-scores ─────────────────────────────────────────────────────────────────

class TestDeficiency:
    def test_half_gap_amplified_by_weight(self):
        # gap 50% * (1 + 0.20)
        assert deficiency_score(Pillar.AI_SEARCH_READINESS, _pillars()) == pytest.approx(60.0)

    def test_perfect_pillar_has_no_deficiency(self):
        assert deficiency_score(Pillar.SPEED_UX, _pillars(speed_ux=10.0)) == 0.0

    def test_clamped_at_100(self):
        assert deficiency_score(Pillar.TECHNICAL_SETUP, _pillars(technical_setup=0.0)) == 100.0

    def test_monotone_in_pillar_score(self):
        low = deficiency_score(Pillar.TRUST_AUTHORITY, _pillars(trust_authority=3.0))
        high = deficiency_score(Pillar.TRUST_AUTHORITY, _pillars(trust_authority=7.0))
        assert low > high


class TestDifficulty:
    def test_tiers(self):
        assert difficulty_score(Difficulty.QUICK_WIN) == pytest.approx(100.0)
        assert difficulty_score(Difficulty.MODERATE) == pytest.approx(66.667, abs=0.01)
        assert difficulty_score(Difficulty.COMPLEX) == pytest.approx(40.0)

    def test_complex_keywords_checked_first(self):
        assert detect_difficulty(_rec("Add advanced schema")) == Difficulty.COMPLEX

    def test_quick_win_keyword(self):
        assert detect_difficulty(_rec("Insert a meta description")) == Difficulty.QUICK_WIN

    def test_default_moderate(self):
        assert detect_difficulty(_rec("Rewrite the homepage")) == Difficulty.MODERATE


class TestTypeAndCompounding:
    @pytest.mark.parametrize("title,expected", [
        ("Add Organization schema", "organization_schema"),
        ("Mark up FAQPage", "faq_schema"),
        ("Add FAQ section", "add_faqs"),
        ("Write entity definitions", "entity_definitions"),
        ("Content update cadence", "content_freshness"),
        ("Improve page speed", "page_speed"),
        ("Rewrite the homepage", GENERAL_TYPE),
    ])
    def test_type_detection(self, title, expected):
        assert detect_recommendation_type(_rec(title, category="Misc")) == expected

    def test_compounding_for_three_pillar_type(self):
        # avg gap 50% * (1 + 0.6)
        assert compounding_score("organization_schema", _pillars()) == pytest.approx(80.0)

    def test_compounding_zero_without_effects(self):
        assert compounding_score(GENERAL_TYPE, _pillars()) == 0.0


class TestIndustry:
    def test_high_medium_other(self):
        assert industry_score("organization_schema", "saas") == 100.0
        assert industry_score("integration_docs", "saas") == 75.0
        assert industry_score("page_speed", "saas") == 50.0

    def test_unknown_or_missing_industry(self):
        assert industry_score("organization_schema", "bakery") == 50.0
        assert industry_score("organization_schema", None) == 50.0

    def test_case_insensitive(self):
        assert industry_score("faq_schema", " SaaS ") == 100.0


# ── Combined score ─────────────────────────────────────────────────────────────

class TestImpactScorer:
    def test_optimization_worked_example(self):
        score = ImpactScorer().score(_rec(), _pillars(), "saas", RecommendationMode.OPTIMIZATION)
        # 60*0.40 + 100*0.30 + 80*0.20 + 100*0.10
        assert score == pytest.approx(80.0)

    def test_elite_worked_example(self):
        score = ImpactScorer().score(_rec(), _pillars(), "saas", RecommendationMode.ELITE_MAINTENANCE)
        # 60*0.25 + 100*0.20 + 80*0.30 + 100*0.25
        assert score == pytest.approx(84.0)

    def test_pure(self):
        scorer = ImpactScorer()
        args = (_rec(), _pillars(ai_search_readiness=2.5), "agency", RecommendationMode.OPTIMIZATION)
        assert scorer.score(*args) == scorer.score(*args)

    def test_explicit_difficulty_overrides_text(self):
        comps = ImpactScorer().components(_rec(difficulty=Difficulty.COMPLEX), _pillars(), None)
        assert comps.difficulty_tier == Difficulty.COMPLEX
        assert comps.difficulty == pytest.approx(40.0)

    def test_custom_weights(self):
        cfg = ScoringConfig(optimization_weights={
            "deficiency": 1.0, "difficulty": 0.0, "compounding": 0.0, "industry": 0.0,
        })
        score = ImpactScorer(cfg).score(_rec(), _pillars(), None, RecommendationMode.OPTIMIZATION)
        assert score == pytest.approx(60.0)

    @pytest.mark.parametrize("value", [0.0, 3.3, 10.0])
    def test_bounded(self, value):
        score = ImpactScorer().score(
            _rec(), PillarScores.uniform(value), "saas", RecommendationMode.ELITE_MAINTENANCE
        )
        assert 0.0 <= score <= 100.0

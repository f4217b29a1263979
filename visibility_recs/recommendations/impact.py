"""
Impact scoring: ranks a recommendation 0–100 from the scan's pillar vector,
the account's industry and its operating mode.

Score formula (weighted sum, range 0–100)
------------------------------------------
    optimization:      deficiency*0.40 + difficulty*0.30 + compounding*0.20 + industry*0.10
    elite_maintenance: deficiency*0.25 + difficulty*0.20 + compounding*0.30 + industry*0.25

Weights come from ``ScoringConfig`` so they can be tuned without code changes.

Component explanations
----------------------
deficiency (0–100):
    Room for improvement on the pillar the recommendation targets, amplified
    by that pillar's global weight.
    Formula: clamp((10 − pillar) / 10 × 100 × (1 + weight), 0, 100).

difficulty (0–100):
    Inverse-effort multiplier (quick win 1.5, moderate 1.0, complex 0.6),
    normalized so a quick win scores 100. Detected from text when untagged;
    complex keywords are checked before quick-win keywords.

compounding (0–100):
    Recommendation type → set of pillars it also lifts. Average deficiency
    over that set × (1 + 0.2 × |set|). Types with no entry score 0.

industry (0–100):
    100 if the type is on the industry's high-priority list, 75 if on the
    medium list, 50 otherwise (including unknown industries).

Everything here is pure: no I/O, no clock, no randomness.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from visibility_recs.config import ScoringConfig
from visibility_recs.models.recommendation import Recommendation
from visibility_recs.models.scan import PillarScores
from visibility_recs.taxonomy.lifecycle_taxonomy import Difficulty, RecommendationMode
from visibility_recs.taxonomy.pillars import PILLAR_WEIGHTS, Pillar, pillar_for

DIFFICULTY_MULTIPLIERS: dict[Difficulty, float] = {
    Difficulty.QUICK_WIN: 1.5,
    Difficulty.MODERATE:  1.0,
    Difficulty.COMPLEX:   0.6,
}
_MAX_DIFFICULTY_MULTIPLIER = max(DIFFICULTY_MULTIPLIERS.values())

_COMPLEX_KEYWORDS = (
    "restructure", "rebuild", "implement custom", "develop",
    "technical", "advanced", "complex", "requires developer",
)
_QUICK_WIN_KEYWORDS = (
    "add", "include", "update text", "insert", "copy",
    "simple", "easy", "quick", "basic",
)

COMPOUNDING_EFFECTS: dict[str, tuple[Pillar, ...]] = {
    "organization_schema":   (Pillar.AI_SEARCH_READINESS, Pillar.TRUST_AUTHORITY, Pillar.VOICE_OPTIMIZATION),
    "faq_schema":            (Pillar.AI_SEARCH_READINESS, Pillar.CONTENT_STRUCTURE, Pillar.VOICE_OPTIMIZATION),
    "article_schema":        (Pillar.AI_SEARCH_READINESS, Pillar.CONTENT_STRUCTURE, Pillar.CONTENT_FRESHNESS),
    "howto_schema":          (Pillar.AI_SEARCH_READINESS, Pillar.CONTENT_STRUCTURE, Pillar.VOICE_OPTIMIZATION),
    "local_business_schema": (Pillar.AI_SEARCH_READINESS, Pillar.TRUST_AUTHORITY),
    "add_faqs":              (Pillar.CONTENT_STRUCTURE, Pillar.VOICE_OPTIMIZATION, Pillar.AI_READABILITY),
    "entity_definitions":    (Pillar.AI_READABILITY, Pillar.TRUST_AUTHORITY, Pillar.CONTENT_STRUCTURE),
    "content_freshness":     (Pillar.CONTENT_FRESHNESS, Pillar.TRUST_AUTHORITY),
    "page_speed":            (Pillar.SPEED_UX, Pillar.TECHNICAL_SETUP),
    "mobile_optimization":   (Pillar.SPEED_UX, Pillar.TECHNICAL_SETUP, Pillar.VOICE_OPTIMIZATION),
    "structured_headings":   (Pillar.CONTENT_STRUCTURE, Pillar.AI_READABILITY),
    "author_bio":            (Pillar.TRUST_AUTHORITY, Pillar.AI_SEARCH_READINESS),
    "certifications":        (Pillar.TRUST_AUTHORITY, Pillar.AI_SEARCH_READINESS),
    "reviews":               (Pillar.TRUST_AUTHORITY, Pillar.AI_SEARCH_READINESS),
}

INDUSTRY_PRIORITIES: dict[str, dict[str, frozenset[str]]] = {
    "saas": {
        "high":   frozenset({"organization_schema", "product_schema", "faq_schema", "software_app_schema"}),
        "medium": frozenset({"pricing_transparency", "feature_comparison", "integration_docs"}),
    },
    "agency": {
        "high":   frozenset({"local_business_schema", "service_schema", "reviews", "portfolio"}),
        "medium": frozenset({"case_studies", "team_bios", "certifications"}),
    },
    "telecom": {
        "high":   frozenset({"service_schema", "faq_schema", "pricing_transparency", "coverage_info"}),
        "medium": frozenset({"support_docs", "technical_specs"}),
    },
    "msp_var": {
        "high":   frozenset({"local_business_schema", "certifications", "partnerships", "service_schema"}),
        "medium": frozenset({"case_studies", "security_compliance", "support_sla"}),
    },
    "ecommerce": {
        "high":   frozenset({"product_schema", "review_schema", "faq_schema", "breadcrumbs"}),
        "medium": frozenset({"shipping_info", "return_policy", "payment_security"}),
    },
    "healthcare": {
        "high":   frozenset({"local_business_schema", "medical_org_schema", "provider_bios", "hipaa_compliance"}),
        "medium": frozenset({"insurance_info", "patient_reviews", "facility_info"}),
    },
}

# Ordered (needles, type): the first rule with a matching needle wins.
# A tuple of tuples means "all of these must appear".
_TYPE_RULES: tuple[tuple[tuple, str], ...] = (
    (("organization schema",),              "organization_schema"),
    (("faq schema", "faqpage"),             "faq_schema"),
    (("article schema",),                   "article_schema"),
    (("howto schema", "how-to"),            "howto_schema"),
    (("local business", "localbusiness"),   "local_business_schema"),
    (("product schema",),                   "product_schema"),
    (("service schema",),                   "service_schema"),
    (("review schema", "aggregaterating"),  "reviews"),
    (("add faq", "create faq"),             "add_faqs"),
    ((("entity", "definition"),),           "entity_definitions"),
    ((("content", "update"), ("content", "fresh")), "content_freshness"),
    (("heading", "h1", "h2"),               "structured_headings"),
    (("speed", "performance"),              "page_speed"),
    (("mobile",),                           "mobile_optimization"),
    (("author",),                           "author_bio"),
    (("certification", "credential"),       "certifications"),
    (("portfolio", "case stud"),            "case_studies"),
)

GENERAL_TYPE = "general"


@dataclass(frozen=True)
class ImpactComponents:
    """All sub-scores of one recommendation's impact.

    Attributes:
        deficiency:  0–100, weighted room for improvement on the mapped pillar.
        difficulty:  0–100, inverse effort.
        compounding: 0–100, cross-pillar leverage.
        industry:    0–100, industry relevance.
        pillar:      Pillar the recommendation maps to.
        rec_type:    Detected recommendation type key.
        difficulty_tier: Explicit or detected effort tier.
    """

    deficiency:      float
    difficulty:      float
    compounding:     float
    industry:        float
    pillar:          Pillar
    rec_type:        str
    difficulty_tier: Difficulty

    def weighted(self, weights: dict[str, float]) -> float:
        """Combine sub-scores with ``weights``; rounded to 2 decimals, clamped 0–100."""
        total = (
            self.deficiency    * weights["deficiency"]
            + self.difficulty  * weights["difficulty"]
            + self.compounding * weights["compounding"]
            + self.industry    * weights["industry"]
        )
        return round(_clamp(total, 0.0, 100.0), 2)


class ImpactScorer:
    """Referentially transparent impact scorer.

    Args:
        config: Mode weight tables; defaults to ``ScoringConfig()``.
    """

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def components(
        self,
        rec: Recommendation,
        pillar_scores: PillarScores,
        industry: Optional[str],
    ) -> ImpactComponents:
        rec_type = detect_recommendation_type(rec)
        tier = rec.difficulty or detect_difficulty(rec)
        pillar = pillar_for(rec.category, rec.title)
        return ImpactComponents(
            deficiency=round(deficiency_score(pillar, pillar_scores), 2),
            difficulty=round(difficulty_score(tier), 2),
            compounding=round(compounding_score(rec_type, pillar_scores), 2),
            industry=industry_score(rec_type, industry),
            pillar=pillar,
            rec_type=rec_type,
            difficulty_tier=tier,
        )

    def score(
        self,
        rec: Recommendation,
        pillar_scores: PillarScores,
        industry: Optional[str],
        mode: RecommendationMode,
    ) -> float:
        """Return the 0–100 impact score for ``rec`` under ``mode``."""
        return self.components(rec, pillar_scores, industry).weighted(self.weights_for(mode))

    def weights_for(self, mode: RecommendationMode) -> dict[str, float]:
        if mode == RecommendationMode.ELITE_MAINTENANCE:
            return self.config.elite_weights
        return self.config.optimization_weights


# ── Sub-scores ────────────────────────────────────────────────────────────────

def deficiency_score(pillar: Pillar, pillar_scores: PillarScores) -> float:
    gap_pct = (10.0 - pillar_scores.get(pillar)) / 10.0 * 100.0
    return _clamp(gap_pct * (1.0 + PILLAR_WEIGHTS[pillar]), 0.0, 100.0)


def difficulty_score(tier: Difficulty) -> float:
    return DIFFICULTY_MULTIPLIERS[tier] / _MAX_DIFFICULTY_MULTIPLIER * 100.0


def compounding_score(rec_type: str, pillar_scores: PillarScores) -> float:
    affected = COMPOUNDING_EFFECTS.get(rec_type, ())
    if not affected:
        return 0.0
    avg_gap = sum(10.0 - pillar_scores.get(p) for p in affected) / len(affected)
    return _clamp(avg_gap / 10.0 * 100.0 * (1.0 + 0.2 * len(affected)), 0.0, 100.0)


def industry_score(rec_type: str, industry: Optional[str]) -> float:
    priorities = INDUSTRY_PRIORITIES.get((industry or "").strip().lower())
    if priorities is None:
        return 50.0
    if rec_type in priorities["high"]:
        return 100.0
    if rec_type in priorities["medium"]:
        return 75.0
    return 50.0


# ── Text heuristics ───────────────────────────────────────────────────────────

def detect_recommendation_type(rec: Recommendation) -> str:
    text = f"{rec.title} {rec.text} {rec.category}".lower()
    for needles, rec_type in _TYPE_RULES:
        for needle in needles:
            if isinstance(needle, tuple):
                if all(part in text for part in needle):
                    return rec_type
            elif needle in text:
                return rec_type
    return GENERAL_TYPE


def detect_difficulty(rec: Recommendation) -> Difficulty:
    text = f"{rec.title} {rec.text}".lower()
    if any(kw in text for kw in _COMPLEX_KEYWORDS):
        return Difficulty.COMPLEX
    if any(kw in text for kw in _QUICK_WIN_KEYWORDS):
        return Difficulty.QUICK_WIN
    return Difficulty.MODERATE


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))

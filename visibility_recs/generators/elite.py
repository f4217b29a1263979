"""
Elite-maintenance candidate generation.

Once an account sits above the enter threshold the foundational fixes are
done, so new candidates come from four families instead::

    Competitive Intelligence   30%  (rounded up)
    Content Opportunities      30%  (rounded up)
    Advanced Optimization      20%  (rounded down)
    Maintenance & Monitoring   remainder

For the default batch of five that is 2 / 2 / 1 / 0. Templates are filled
from the scan's weakest pillars, its structural signals, the account's
industry and the previous total score.

The orchestrator depends only on the ``CandidateGenerator`` protocol, so a
generator backed by real competitor data can replace this one.
"""

from __future__ import annotations

import math
from typing import Callable, Optional, Protocol

from visibility_recs.models.recommendation import Recommendation
from visibility_recs.models.scan import Scan
from visibility_recs.taxonomy.lifecycle_taxonomy import (
    Difficulty,
    EliteCategory,
    RecommendationMode,
    UnlockState,
)
from visibility_recs.taxonomy.pillars import Pillar

CATEGORY_MIX: dict[EliteCategory, float] = {
    EliteCategory.COMPETITIVE_INTELLIGENCE: 0.30,
    EliteCategory.CONTENT_OPPORTUNITIES:    0.30,
    EliteCategory.ADVANCED_OPTIMIZATION:    0.20,
    EliteCategory.MAINTENANCE_MONITORING:   0.20,
}

DEFAULT_BATCH_SIZE = 5
SCORE_DROP_ALERT = 10  # total-score points

_PILLAR_LABELS: dict[Pillar, str] = {
    Pillar.AI_SEARCH_READINESS: "AI Search Readiness",
    Pillar.CONTENT_STRUCTURE:   "Content Structure",
    Pillar.VOICE_OPTIMIZATION:  "Voice Optimization",
    Pillar.TECHNICAL_SETUP:     "Technical Setup",
    Pillar.TRUST_AUTHORITY:     "Trust & Authority",
    Pillar.AI_READABILITY:      "AI Readability",
    Pillar.CONTENT_FRESHNESS:   "Content Freshness",
    Pillar.SPEED_UX:            "Speed & UX",
}


class CandidateGenerator(Protocol):
    """Produces unsaved ``locked`` candidates for a scan."""

    def generate(
        self,
        scan: Scan,
        industry: Optional[str] = None,
        previous_score: Optional[int] = None,
    ) -> list[Recommendation]: ...


def category_distribution(total: int = DEFAULT_BATCH_SIZE) -> dict[EliteCategory, int]:
    """Split ``total`` candidates over the elite categories.

    Never allocates more than ``total``; small batches fill the categories
    in declaration order.
    """
    wanted = {
        EliteCategory.COMPETITIVE_INTELLIGENCE: math.ceil(round(total * CATEGORY_MIX[EliteCategory.COMPETITIVE_INTELLIGENCE], 6)),
        EliteCategory.CONTENT_OPPORTUNITIES:    math.ceil(round(total * CATEGORY_MIX[EliteCategory.CONTENT_OPPORTUNITIES], 6)),
        EliteCategory.ADVANCED_OPTIMIZATION:    math.floor(round(total * CATEGORY_MIX[EliteCategory.ADVANCED_OPTIMIZATION], 6)),
    }
    counts: dict[EliteCategory, int] = {}
    remaining = max(0, total)
    for category, n in wanted.items():
        counts[category] = min(n, remaining)
        remaining -= counts[category]
    counts[EliteCategory.MAINTENANCE_MONITORING] = remaining
    return counts


def weakest_pillars(scan: Scan) -> list[Pillar]:
    return sorted(Pillar, key=lambda p: (scan.pillar_scores.get(p), p.value))


# A template takes (scan, industry, previous_score) and returns
# (title, text, difficulty, priority), or None when it does not apply.
_Template = Callable[[Scan, Optional[str], Optional[int]], Optional[tuple[str, str, Difficulty, str]]]


def _industry_label(industry: Optional[str]) -> str:
    return industry.replace("_", " ").title() if industry else "Industry"


# ── Competitive Intelligence ──────────────────────────────────────────────────

def _track_competitor_schema(scan, industry, previous_score):
    return (
        "Track Competitor Schema Implementations",
        "Monitor your top 3 competitors for schema markup changes and respond "
        "to significant improvements before they erode your position.",
        Difficulty.QUICK_WIN,
        "medium",
    )


def _benchmark_weakest_pillar(scan, industry, previous_score):
    label = _PILLAR_LABELS[weakest_pillars(scan)[0]]
    return (
        f"Benchmark {label} Against Top Competitors",
        f"{label} is your lowest-scoring pillar. Compare how competitors "
        f"handle it and close the gap with a differentiated approach.",
        Difficulty.MODERATE,
        "high",
    )


def _monitor_ai_citations(scan, industry, previous_score):
    return (
        f"Monitor AI Citations in {_industry_label(industry)} Queries",
        "Track which competitors AI assistants cite for your core queries and "
        "note the content formats those answers favour.",
        Difficulty.MODERATE,
        "medium",
    )


# ── Content Opportunities ─────────────────────────────────────────────────────

def _missing_industry_faqs(scan, industry, previous_score):
    return (
        f"Add Missing {_industry_label(industry)} FAQs",
        "Expand FAQ coverage with industry-specific questions your competitors "
        "are already answering, and mark them up with FAQ schema.",
        Difficulty.MODERATE,
        "high",
    )


def _expand_faq_depth(scan, industry, previous_score):
    if scan.signals.faq_count == 0:
        return None
    return (
        "Expand FAQ Depth for Advanced Topics",
        "Your FAQs cover the basics. Add detailed answers for advanced "
        "deep-dive questions that competitors are capturing.",
        Difficulty.MODERATE,
        "medium",
    )


def _refresh_weak_content(scan, industry, previous_score):
    label = _PILLAR_LABELS[weakest_pillars(scan)[1]]
    return (
        f"Publish New Content Targeting {label}",
        f"Create fresh content aimed at {label.lower()} signals to keep "
        f"your pages ahead of emerging questions.",
        Difficulty.MODERATE,
        "medium",
    )


# ── Advanced Optimization ─────────────────────────────────────────────────────

def _speakable_schema(scan, industry, previous_score):
    if "SpeakableSpecification" in scan.signals.schema_types:
        return None
    return (
        "Implement Speakable Schema for Voice Search",
        "Add speakable markup to the sections best suited for voice "
        "assistants and text-to-speech.",
        Difficulty.MODERATE,
        "medium",
    )


def _suggested_answer(scan, industry, previous_score):
    if not scan.signals.has_faq_schema:
        return None
    return (
        "Upgrade FAQs with SuggestedAnswer Property",
        "Enhance FAQ markup with suggestedAnswer to provide alternative "
        "viewpoints and raise citation likelihood.",
        Difficulty.QUICK_WIN,
        "medium",
    )


def _breadcrumb_schema(scan, industry, previous_score):
    if "BreadcrumbList" in scan.signals.schema_types:
        return None
    return (
        "Implement BreadcrumbList Schema",
        "Add BreadcrumbList markup so AI engines understand your site hierarchy.",
        Difficulty.QUICK_WIN,
        "low",
    )


def _item_reviewed(scan, industry, previous_score):
    return (
        "Add ItemReviewed Properties to Review Schema",
        "Link each review to the product or service it covers with itemReviewed.",
        Difficulty.QUICK_WIN,
        "low",
    )


# ── Maintenance & Monitoring ──────────────────────────────────────────────────

def _score_drop(scan, industry, previous_score):
    if previous_score is None or previous_score - scan.total_score < SCORE_DROP_ALERT:
        return None
    drop = previous_score - scan.total_score
    return (
        f"Score Dropped {drop} Points - Immediate Action Required",
        "Your visibility score has declined. Identify and fix the issues "
        "causing the drop before it reaches the exit threshold.",
        Difficulty.COMPLEX,
        "critical",
    )


def _schema_vocabulary_updates(scan, industry, previous_score):
    return (
        "Review Schema.org Vocabulary Updates",
        "Check recent schema.org releases for new types and properties that "
        "apply to your pages, and retire deprecated ones.",
        Difficulty.QUICK_WIN,
        "low",
    )


def _performance_monitoring(scan, industry, previous_score):
    return (
        "Set Up Page Performance Monitoring",
        "Alert on load-time regressions so elite scores are not lost to "
        "slow pages.",
        Difficulty.MODERATE,
        "medium",
    )


_TEMPLATES: dict[EliteCategory, tuple[_Template, ...]] = {
    EliteCategory.COMPETITIVE_INTELLIGENCE: (
        _track_competitor_schema, _benchmark_weakest_pillar, _monitor_ai_citations,
    ),
    EliteCategory.CONTENT_OPPORTUNITIES: (
        _missing_industry_faqs, _expand_faq_depth, _refresh_weak_content,
    ),
    EliteCategory.ADVANCED_OPTIMIZATION: (
        _speakable_schema, _suggested_answer, _breadcrumb_schema, _item_reviewed,
    ),
    EliteCategory.MAINTENANCE_MONITORING: (
        _score_drop, _schema_vocabulary_updates, _performance_monitoring,
    ),
}


class EliteTemplateGenerator:
    """Default ``CandidateGenerator`` for elite-maintenance accounts.

    Args:
        batch_size: Total number of candidates per call.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self.batch_size = batch_size

    def generate(
        self,
        scan: Scan,
        industry: Optional[str] = None,
        previous_score: Optional[int] = None,
    ) -> list[Recommendation]:
        candidates: list[Recommendation] = []
        for category, count in category_distribution(self.batch_size).items():
            filled = 0
            for template in _TEMPLATES[category]:
                if filled >= count:
                    break
                result = template(scan, industry, previous_score)
                if result is None:
                    continue
                title, text, difficulty, priority = result
                candidates.append(Recommendation(
                    scan_id=scan.scan_id,
                    category=category.value,
                    title=title,
                    text=text,
                    priority=priority,
                    difficulty=difficulty,
                    unlock_state=UnlockState.LOCKED,
                    mode=RecommendationMode.ELITE_MAINTENANCE,
                    elite_category=category.value,
                ))
                filled += 1
        return candidates

"""
Pillar taxonomy and the category → pillar dispatch table.

The eight pillars are the fixed dimensions of the visibility score. Each has
a global weight (summing to 1.0) that amplifies deficiency in the impact
scorer.

``pillar_for()`` is the single lookup used by both the impact scorer and the
implementation detector:

  1. Exact match of the declared category in ``CATEGORY_PILLARS``.
  2. Ordered keyword rules over ``category + title`` text.
  3. ``DEFAULT_PILLAR``.

This module has NO imports from any other ``visibility_recs`` package.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional


class Pillar(StrEnum):
    """One of the eight weighted scoring dimensions (each scored 0–10)."""

    AI_SEARCH_READINESS = "ai_search_readiness"
    CONTENT_STRUCTURE = "content_structure"
    VOICE_OPTIMIZATION = "voice_optimization"
    TECHNICAL_SETUP = "technical_setup"
    TRUST_AUTHORITY = "trust_authority"
    AI_READABILITY = "ai_readability"
    CONTENT_FRESHNESS = "content_freshness"
    SPEED_UX = "speed_ux"


PILLAR_WEIGHTS: dict[Pillar, float] = {
    Pillar.AI_SEARCH_READINESS: 0.20,
    Pillar.CONTENT_STRUCTURE:   0.15,
    Pillar.VOICE_OPTIMIZATION:  0.12,
    Pillar.TECHNICAL_SETUP:     0.18,
    Pillar.TRUST_AUTHORITY:     0.12,
    Pillar.AI_READABILITY:      0.10,
    Pillar.CONTENT_FRESHNESS:   0.08,
    Pillar.SPEED_UX:            0.05,
}

DEFAULT_PILLAR = Pillar.AI_SEARCH_READINESS


# ── Declared categories ───────────────────────────────────────────────────────
# Every category the candidate generators emit. Unknown categories fall
# through to the keyword rules below.

CATEGORY_PILLARS: dict[str, Pillar] = {
    "Schema Markup":            Pillar.AI_SEARCH_READINESS,
    "Structured Data":          Pillar.AI_SEARCH_READINESS,
    "FAQ Content":              Pillar.CONTENT_STRUCTURE,
    "Voice Optimization":       Pillar.VOICE_OPTIMIZATION,
    "Technical SEO":            Pillar.TECHNICAL_SETUP,
    "Trust Signals":            Pillar.TRUST_AUTHORITY,
    "Content Quality":          Pillar.AI_READABILITY,
    "Entity Definitions":       Pillar.AI_READABILITY,
    "Content Updates":          Pillar.CONTENT_FRESHNESS,
    "Performance":              Pillar.SPEED_UX,
    # Elite-mode categories
    "Competitive Intelligence": Pillar.TRUST_AUTHORITY,
    "Content Opportunities":    Pillar.CONTENT_STRUCTURE,
    "Advanced Optimization":    Pillar.TECHNICAL_SETUP,
    "Maintenance & Monitoring": Pillar.CONTENT_FRESHNESS,
}

# Ordered: first rule with any matching keyword wins.
_KEYWORD_RULES: tuple[tuple[tuple[str, ...], Pillar], ...] = (
    (("schema", "markup", "structured"),       Pillar.AI_SEARCH_READINESS),
    (("faq", "content structure"),             Pillar.CONTENT_STRUCTURE),
    (("voice",),                               Pillar.VOICE_OPTIMIZATION),
    (("speed", "performance"),                 Pillar.SPEED_UX),
    (("technical", "crawl"),                   Pillar.TECHNICAL_SETUP),
    (("trust", "authority", "credential"),     Pillar.TRUST_AUTHORITY),
    (("readability", "entity"),                Pillar.AI_READABILITY),
    (("fresh", "update"),                      Pillar.CONTENT_FRESHNESS),
)


def pillar_for(category: Optional[str], title: Optional[str] = None) -> Pillar:
    """Resolve the pillar a recommendation targets.

    Args:
        category: Declared recommendation category (may be ``None``).
        title:    Recommendation title, used only by the keyword fallback.

    Returns:
        The mapped ``Pillar``; never ``None``.
    """
    if category and category in CATEGORY_PILLARS:
        return CATEGORY_PILLARS[category]

    text = f"{category or ''} {title or ''}".lower()
    for keywords, pillar in _KEYWORD_RULES:
        if any(kw in text for kw in keywords):
            return pillar
    return DEFAULT_PILLAR

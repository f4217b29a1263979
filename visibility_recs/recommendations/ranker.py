"""
Recommendation ordering used for initial batch selection and replacement.

Order: impact score descending (unscored last), then easier difficulty first,
then lower ``rec_id`` so the result is total and deterministic.
"""

from __future__ import annotations

from typing import Iterable

from visibility_recs.models.recommendation import Recommendation
from visibility_recs.recommendations.impact import detect_difficulty
from visibility_recs.taxonomy.lifecycle_taxonomy import Difficulty

_DIFFICULTY_ORDER: dict[Difficulty, int] = {
    Difficulty.QUICK_WIN: 0,
    Difficulty.MODERATE:  1,
    Difficulty.COMPLEX:   2,
}


def _sort_key(rec: Recommendation) -> tuple:
    tier = rec.difficulty or detect_difficulty(rec)
    return (
        rec.impact_score is None,
        -(rec.impact_score or 0.0),
        _DIFFICULTY_ORDER[tier],
        rec.rec_id if rec.rec_id is not None else float("inf"),
    )


def sort_by_impact(recs: Iterable[Recommendation]) -> list[Recommendation]:
    return sorted(recs, key=_sort_key)


def top_n(recs: Iterable[Recommendation], n: int) -> list[Recommendation]:
    """Return the ``n`` best recommendations by impact."""
    if n <= 0:
        return []
    return sort_by_impact(recs)[:n]

"""
Recommendation-side models: the recommendation itself, its replacement
audit entry and implementation detections.

``Recommendation`` is frozen like every other model in the system; state
changes go through ``RecommendationRepository.transition()`` which enforces
the forward-only unlock DAG and returns a freshly loaded row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from visibility_recs.taxonomy.lifecycle_taxonomy import (
    DetectionType,
    Difficulty,
    RecommendationMode,
    UnlockState,
)
from visibility_recs.taxonomy.pillars import Pillar


class Recommendation(BaseModel):
    """An improvement recommendation issued against one scan.

    Attributes:
        rec_id: Auto-assigned DB PK; ``None`` before insertion.
        scan_id: Owning scan.
        category: Declared category, e.g. ``"Schema Markup"``.
        title: Short headline.
        text: Full recommendation body.
        priority: Free-text priority label from the generator.
        difficulty: Explicit effort tag; detected from text when ``None``.
        impact_score: 0–100, ``None`` until scored.
        unlock_state: Position in the unlock DAG.
        batch_number: Which unlock batch surfaced this recommendation.
        context_id: Context the recommendation belongs to, once linked.
        mode: Mode the account was in when the candidate was generated.
        elite_category: Set for elite-mode candidates.
        compounding_score: Compounding sub-score at last scoring.
        industry_score: Industry-relevance sub-score at last scoring.
        progress: Partial-implementation fraction (0–1) from detection.
        refresh_cycle_number: Cycle that activated this recommendation.
        archived_reason: Why it left the active set (``completed``/``skipped``).
    """

    model_config = ConfigDict(frozen=True)

    rec_id: Optional[int] = None
    scan_id: int
    category: str
    title: str
    text: str = ""
    priority: str = "medium"
    difficulty: Optional[Difficulty] = None
    impact_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    unlock_state: UnlockState = UnlockState.LOCKED
    batch_number: int = 1
    context_id: Optional[int] = None
    mode: RecommendationMode = RecommendationMode.OPTIMIZATION
    elite_category: Optional[str] = None
    compounding_score: Optional[float] = None
    industry_score: Optional[float] = None
    progress: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    refresh_cycle_number: Optional[int] = None
    archived_reason: Optional[str] = None
    unlocked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    auto_detected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be empty.")
        return v


class ReplacementRecord(BaseModel):
    """Audit entry for one old → new swap performed by a refresh cycle."""

    model_config = ConfigDict(frozen=True)

    replacement_id: Optional[int] = None
    cycle_id: int
    account_id: int
    old_rec_id: int
    new_rec_id: Optional[int] = None
    old_impact_score: Optional[float] = None
    new_impact_score: Optional[float] = None
    reason: str
    replaced_at: datetime


class Detection(BaseModel):
    """Append-only record of an inferred implementation.

    Attributes:
        rec_id: Recommendation the evidence points at.
        previous_scan_id / current_scan_id: The pair of scans compared.
        pillar: Pillar the recommendation maps to.
        score_before / score_after / score_delta: 0–10 pillar values.
        confidence: 0–100 combined delta + evidence confidence.
        detection_type: ``auto_complete``, ``auto_partial`` or ``auto_detected``.
        evidence: One string per distinct structural diff item.
        was_skipped: Found by the skipped-recommendation pass (audit only).
    """

    model_config = ConfigDict(frozen=True)

    detection_id: Optional[int] = None
    account_id: int
    rec_id: int
    previous_scan_id: int
    current_scan_id: int
    pillar: Pillar
    score_before: float
    score_after: float
    score_delta: float
    confidence: float = Field(ge=0.0, le=100.0)
    detection_type: DetectionType
    evidence: list[str] = []
    was_skipped: bool = False
    detected_at: datetime

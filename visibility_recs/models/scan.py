"""
Scan-side models: the pillar vector, structural signals, the completed scan,
its score snapshot and the owning account.

A ``Scan`` is immutable once completed; the only field the core ever changes
afterwards is the row-level ``status`` (set to ``degraded`` when score
recording fails), which is why ``status`` lives on the DB row and is
reloaded rather than mutated here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from visibility_recs.taxonomy.lifecycle_taxonomy import PlanTier, ScanStatus
from visibility_recs.taxonomy.pillars import Pillar


class PillarScores(BaseModel):
    """The fixed 8-pillar score vector, each on a 0–10 scale."""

    model_config = ConfigDict(frozen=True)

    ai_search_readiness: float = Field(ge=0.0, le=10.0)
    content_structure: float = Field(ge=0.0, le=10.0)
    voice_optimization: float = Field(ge=0.0, le=10.0)
    technical_setup: float = Field(ge=0.0, le=10.0)
    trust_authority: float = Field(ge=0.0, le=10.0)
    ai_readability: float = Field(ge=0.0, le=10.0)
    content_freshness: float = Field(ge=0.0, le=10.0)
    speed_ux: float = Field(ge=0.0, le=10.0)

    def get(self, pillar: Pillar) -> float:
        return float(getattr(self, pillar.value))

    @classmethod
    def uniform(cls, value: float) -> "PillarScores":
        """Every pillar at ``value``. Handy for fixtures and defaults."""
        return cls(**{p.value: value for p in Pillar})


class ScanSignals(BaseModel):
    """Structural signals extracted by the content-analysis engine.

    Only the fields the implementation detector diffs are modelled. Anything
    else the engine produces is ignored.
    """

    model_config = ConfigDict(frozen=True)

    schema_types: list[str] = []
    has_organization_schema: bool = False
    has_faq_schema: bool = False
    has_local_business_schema: bool = False
    has_faqpage_markup: bool = False
    faq_count: int = 0
    entity_count: int = 0
    last_modified: Optional[datetime] = None
    page_load_time: Optional[float] = None
    is_mobile_friendly: bool = False


class Scan(BaseModel):
    """A completed scan of one domain (and optional page set).

    Attributes:
        scan_id: Auto-assigned DB PK; ``None`` before insertion.
        account_id: Owning account.
        domain: Domain as submitted (normalization happens in the resolver).
        page_set: Extra page URLs or paths scanned alongside the homepage.
        pillar_scores: 8-pillar vector (0–10 each).
        total_score: Aggregate score on the 0–1000 scale.
        completed_at: UTC completion timestamp; orders scans per domain.
        is_competitor_probe: Competitive scans never share a context.
        signals: Structural signals used for detection evidence.
        status: ``completed`` or ``degraded``.
    """

    model_config = ConfigDict(frozen=True)

    scan_id: Optional[int] = None
    account_id: int
    domain: str
    page_set: list[str] = []
    pillar_scores: PillarScores
    total_score: int = Field(ge=0, le=1000)
    completed_at: datetime
    is_competitor_probe: bool = False
    signals: ScanSignals = ScanSignals()
    status: ScanStatus = ScanStatus.COMPLETED

    @field_validator("domain")
    @classmethod
    def validate_domain_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("domain must not be blank.")
        return v


class ScoreSnapshot(BaseModel):
    """One row of score history, written as the first orchestrator step."""

    model_config = ConfigDict(frozen=True)

    snapshot_id: Optional[int] = None
    scan_id: int
    account_id: int
    domain: str
    total_score: int
    pillar_scores: PillarScores
    previous_scan_id: Optional[int] = None
    previous_score: Optional[int] = None
    score_delta: int = 0
    recorded_at: datetime


class Account(BaseModel):
    """Account attributes supplied by the account/billing system."""

    model_config = ConfigDict(frozen=True)

    account_id: int
    plan_tier: PlanTier = PlanTier.FREE
    industry: Optional[str] = None

    @field_validator("account_id")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"account_id must be positive, got {v}.")
        return v

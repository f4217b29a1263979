"""
Lifecycle state models: recommendation contexts, refresh cycles, per-account
mode state and the mode transition log.

Entities reference each other only by integer id. A context points at its
primary scan; a cycle points at the scan whose recommendation pool it rotates;
nothing embeds another model.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from visibility_recs.taxonomy.lifecycle_taxonomy import RecommendationMode


class RecommendationContext(BaseModel):
    """Stable identity shared by repeated scans of one account/domain/page set.

    Attributes:
        context_id: Auto-assigned DB PK; ``None`` before insertion.
        account_id: Owning account.
        context_key: 32-hex digest of account + normalized domain + page-set hash.
        domain: Normalized domain.
        page_set_hash: ``homepage-only`` or a 16-hex digest of sorted paths.
        primary_scan_id: Scan whose recommendation pool the context serves.
        is_active: False once expired.
        expires_at: When the context stops being reusable.
        initial_score: Total score when the context was first created.
        latest_score: Total score of the most recent linked scan.
        score_change: ``latest_score - initial_score``.
    """

    model_config = ConfigDict(frozen=True)

    context_id: Optional[int] = None
    account_id: int
    context_key: str
    domain: str
    page_set_hash: str
    primary_scan_id: int
    is_active: bool = True
    expires_at: datetime
    initial_score: Optional[int] = None
    latest_score: Optional[int] = None
    score_change: Optional[int] = None
    expired_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ContextCreated(BaseModel):
    """``create()`` inserted a brand-new context row."""

    model_config = ConfigDict(frozen=True)

    context: RecommendationContext
    linked_recommendations: int = 0


class ContextUpdated(BaseModel):
    """``create()`` found an existing row and refreshed it."""

    model_config = ConfigDict(frozen=True)

    context: RecommendationContext
    previous_scan_id: int
    linked_recommendations: int = 0


ContextUpsertResult = Union[ContextCreated, ContextUpdated]


class RefreshCycle(BaseModel):
    """One rotation window of the active recommendation set.

    ``next_cycle_date`` only ever moves forward; a no-op ``process()`` call
    extends it in place, a replacing call opens the next ``cycle_number``.
    """

    model_config = ConfigDict(frozen=True)

    cycle_id: Optional[int] = None
    account_id: int
    scan_id: int
    context_id: Optional[int] = None
    cycle_number: int = Field(ge=1)
    start_date: datetime
    next_cycle_date: datetime
    active_rec_ids: list[int] = []
    implemented_count: int = 0
    skipped_count: int = 0
    replaced_count: int = 0
    created_at: Optional[datetime] = None


class ModeState(BaseModel):
    """Per-account operating mode and score bookkeeping."""

    model_config = ConfigDict(frozen=True)

    account_id: int
    current_mode: RecommendationMode
    current_score: int
    mode_since: datetime
    in_buffer_zone: bool = False
    highest_score_achieved: int
    score_at_mode_entry: int
    elite_entries: int = 0
    optimization_entries: int = 0
    last_transition_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ModeTransitionRecord(BaseModel):
    """Immutable log entry for a mode change.

    ``from_mode`` is ``None`` for a first scan that starts directly in elite.
    """

    model_config = ConfigDict(frozen=True)

    transition_id: Optional[int] = None
    account_id: int
    from_mode: Optional[RecommendationMode] = None
    to_mode: RecommendationMode
    score: int
    reason: str
    scan_id: Optional[int] = None
    notification_type: Optional[str] = None
    transitioned_at: datetime

"""
Lifecycle enums: unlock states, operating modes, detection outcomes,
difficulty tiers, plan tiers and elite categories.

``UnlockState`` is a strict forward DAG::

    locked → active → {completed, skipped} → archived

``can_transition()`` is the only place that encodes the allowed edges; the
recommendation repository refuses any other move.

This module has NO imports from any other ``visibility_recs`` package.
"""

from enum import StrEnum


class UnlockState(StrEnum):
    """Where a recommendation sits in its lifecycle."""

    LOCKED = "locked"
    """Candidate in the pool; not yet shown to the user."""

    ACTIVE = "active"
    """Part of the current active set."""

    COMPLETED = "completed"
    """Implemented, either reported by the user or auto-detected."""

    SKIPPED = "skipped"
    """Dismissed by the user."""

    ARCHIVED = "archived"
    """Rotated out by a refresh cycle. Terminal."""


_ALLOWED_TRANSITIONS: dict[UnlockState, frozenset[UnlockState]] = {
    UnlockState.LOCKED:    frozenset({UnlockState.ACTIVE}),
    UnlockState.ACTIVE:    frozenset({UnlockState.COMPLETED, UnlockState.SKIPPED}),
    UnlockState.COMPLETED: frozenset({UnlockState.ARCHIVED}),
    UnlockState.SKIPPED:   frozenset({UnlockState.ARCHIVED}),
    UnlockState.ARCHIVED:  frozenset(),
}


def can_transition(from_state: UnlockState, to_state: UnlockState) -> bool:
    """Return True if ``from_state → to_state`` is a forward edge of the DAG."""
    return to_state in _ALLOWED_TRANSITIONS[from_state]


class RecommendationMode(StrEnum):
    """Per-account operating mode, governed by score hysteresis."""

    OPTIMIZATION = "optimization"
    ELITE_MAINTENANCE = "elite_maintenance"


class DetectionType(StrEnum):
    """Outcome of comparing two scans for one recommendation."""

    AUTO_COMPLETE = "auto_complete"
    AUTO_PARTIAL = "auto_partial"
    AUTO_DETECTED = "auto_detected"


class Difficulty(StrEnum):
    """Implementation effort tier."""

    QUICK_WIN = "quick_win"
    MODERATE = "moderate"
    COMPLEX = "complex"


class PlanTier(StrEnum):
    """Billing plan; drives active-set size and context lifetime."""

    FREE = "free"
    DIY = "diy"
    PRO = "pro"
    AGENCY = "agency"
    ENTERPRISE = "enterprise"


class EliteCategory(StrEnum):
    """Recommendation families generated once an account is in elite mode."""

    COMPETITIVE_INTELLIGENCE = "Competitive Intelligence"
    CONTENT_OPPORTUNITIES = "Content Opportunities"
    ADVANCED_OPTIMIZATION = "Advanced Optimization"
    MAINTENANCE_MONITORING = "Maintenance & Monitoring"


class TransitionReason(StrEnum):
    """Why a mode transition was recorded."""

    FIRST_SCAN_ELITE = "first_scan_elite"
    SCORE_ABOVE_ENTER = "score_above_enter_threshold"
    SCORE_BELOW_EXIT = "score_below_exit_threshold"
    MANUAL_OVERRIDE = "manual_override"


class ScanStatus(StrEnum):
    """Post-orchestration state of a scan row."""

    COMPLETED = "completed"
    DEGRADED = "degraded"

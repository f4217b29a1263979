"""
ModeTransitionGate: per-account hysteresis state machine over the total score.

States and thresholds (0–1000 scale, defaults from ``ModeConfig``)::

    first scan:          score >= ENTER → elite_maintenance (recorded, reason first_scan_elite)
                         otherwise      → optimization      (no transition record)
    optimization:        score >= ENTER → elite_maintenance
    elite_maintenance:   score <  EXIT  → optimization
                         EXIT <= score < ENTER → stay, in_buffer_zone = True
                         score >= ENTER        → stay, in_buffer_zone = False

With ENTER=850 and EXIT=800 the sequence 820, 860, 830, 810, 790 yields
optimization, elite, elite, elite, optimization.

``decide()`` is the pure rule; ``ModeTransitionGate.evaluate()`` loads the
state, applies the rule and persists the outcome atomically.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Optional

from visibility_recs.config import ModeConfig
from visibility_recs.db.connection import transaction
from visibility_recs.db.repositories.mode_repo import ModeStateRepository
from visibility_recs.models.lifecycle import ModeState, ModeTransitionRecord
from visibility_recs.taxonomy.lifecycle_taxonomy import (
    EliteCategory,
    RecommendationMode,
    TransitionReason,
)
from visibility_recs.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeDecision:
    """Result of applying the hysteresis rule to one score."""

    transition:        bool
    to_mode:           RecommendationMode
    in_buffer_zone:    bool
    reason:            Optional[str] = None
    notification_type: Optional[str] = None


@dataclass(frozen=True)
class ModeEvaluation:
    """Outcome of ``ModeTransitionGate.evaluate()``."""

    state:          ModeState
    transitioned:   bool
    previous_mode:  Optional[RecommendationMode]
    previous_score: Optional[int]
    record:         Optional[ModeTransitionRecord] = None


def decide(current: Optional[ModeState], score: int, config: ModeConfig) -> ModeDecision:
    """Apply the hysteresis rule. Pure."""
    enter, exit_ = config.enter_threshold, config.exit_threshold

    if current is None:
        if score >= enter:
            return ModeDecision(
                transition=True,
                to_mode=RecommendationMode.ELITE_MAINTENANCE,
                in_buffer_zone=False,
                reason=TransitionReason.FIRST_SCAN_ELITE,
                notification_type="initial_elite",
            )
        return ModeDecision(False, RecommendationMode.OPTIMIZATION, False)

    if current.current_mode == RecommendationMode.OPTIMIZATION:
        if score >= enter:
            return ModeDecision(
                transition=True,
                to_mode=RecommendationMode.ELITE_MAINTENANCE,
                in_buffer_zone=False,
                reason=TransitionReason.SCORE_ABOVE_ENTER,
                notification_type="improvement_to_elite",
            )
        return ModeDecision(False, RecommendationMode.OPTIMIZATION, False)

    # elite_maintenance
    if score < exit_:
        return ModeDecision(
            transition=True,
            to_mode=RecommendationMode.OPTIMIZATION,
            in_buffer_zone=False,
            reason=TransitionReason.SCORE_BELOW_EXIT,
            notification_type="return_to_optimization",
        )
    return ModeDecision(False, RecommendationMode.ELITE_MAINTENANCE, score < enter)


class ModeTransitionGate:
    """Persists hysteresis decisions for one account at a time.

    Args:
        conn:   Open connection; the caller owns commit.
        config: Enter/exit thresholds.
        clock:  Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[ModeConfig] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.conn   = conn
        self.config = config or ModeConfig()
        self.clock  = clock
        self.repo   = ModeStateRepository(conn)

    def current(self, account_id: int) -> Optional[ModeState]:
        return self.repo.get(account_id)

    def current_mode(self, account_id: int) -> RecommendationMode:
        """Mode for ``account_id``; optimization when no state exists yet."""
        state = self.repo.get(account_id)
        return state.current_mode if state else RecommendationMode.OPTIMIZATION

    def evaluate(self, account_id: int, score: int, scan_id: Optional[int] = None) -> ModeEvaluation:
        """Feed a new total score through the state machine and persist the result."""
        now = self.clock()
        with transaction(self.conn, "mode_evaluate"):
            current = self.repo.get(account_id)
            decision = decide(current, score, self.config)

            if decision.transition:
                state, record = self._apply_transition(
                    account_id, current, decision, score, scan_id, now
                )
                logger.info(
                    "Mode transition | account=%d | %s -> %s | score=%d | reason=%s",
                    account_id,
                    current.current_mode if current else None,
                    decision.to_mode,
                    score,
                    decision.reason,
                )
            else:
                state, record = self._apply_score_only(account_id, current, decision, score, now), None

        return ModeEvaluation(
            state=state,
            transitioned=decision.transition,
            previous_mode=current.current_mode if current else None,
            previous_score=current.current_score if current else None,
            record=record,
        )

    def force_transition(
        self,
        account_id: int,
        to_mode: RecommendationMode,
        reason: str = TransitionReason.MANUAL_OVERRIDE,
        score: Optional[int] = None,
    ) -> ModeEvaluation:
        """Admin override: move to ``to_mode`` regardless of thresholds.

        A no-op (and no history row) when the account is already in ``to_mode``.
        """
        now = self.clock()
        with transaction(self.conn, "mode_force"):
            current = self.repo.get(account_id)
            if current is not None and current.current_mode == to_mode:
                return ModeEvaluation(current, False, to_mode, current.current_score)

            effective_score = score if score is not None else (current.current_score if current else 0)
            decision = ModeDecision(
                transition=True,
                to_mode=to_mode,
                in_buffer_zone=False,
                reason=reason,
                notification_type="manual_override",
            )
            state, record = self._apply_transition(
                account_id, current, decision, effective_score, None, now
            )
        logger.warning("Forced mode transition | account=%d | -> %s | reason=%s",
                       account_id, to_mode, reason)
        return ModeEvaluation(
            state=state,
            transitioned=True,
            previous_mode=current.current_mode if current else None,
            previous_score=current.current_score if current else None,
            record=record,
        )

    def history(self, account_id: int, limit: int = 10) -> list[ModeTransitionRecord]:
        return self.repo.get_transitions(account_id, limit)

    # ── Private helpers ───────────────────────────────────────────────────────

    def _apply_transition(self, account_id, current, decision, score, scan_id, now):
        elite = decision.to_mode == RecommendationMode.ELITE_MAINTENANCE
        state = ModeState(
            account_id=account_id,
            current_mode=decision.to_mode,
            current_score=score,
            mode_since=now,
            in_buffer_zone=False,
            highest_score_achieved=max(score, current.highest_score_achieved if current else score),
            score_at_mode_entry=score,
            elite_entries=(current.elite_entries if current else 0) + int(elite),
            optimization_entries=(current.optimization_entries if current else 0) + int(not elite),
            last_transition_at=now,
            updated_at=now,
        )
        self.repo.save(state)
        record = ModeTransitionRecord(
            account_id=account_id,
            from_mode=current.current_mode if current else None,
            to_mode=decision.to_mode,
            score=score,
            reason=str(decision.reason),
            scan_id=scan_id,
            notification_type=decision.notification_type,
            transitioned_at=now,
        )
        transition_id = self.repo.append_transition(record)
        return state, record.model_copy(update={"transition_id": transition_id})

    def _apply_score_only(self, account_id, current, decision, score, now) -> ModeState:
        if current is None:
            state = ModeState(
                account_id=account_id,
                current_mode=decision.to_mode,
                current_score=score,
                mode_since=now,
                in_buffer_zone=decision.in_buffer_zone,
                highest_score_achieved=score,
                score_at_mode_entry=score,
                optimization_entries=1,
                updated_at=now,
            )
        else:
            state = current.model_copy(update={
                "current_score": score,
                "in_buffer_zone": decision.in_buffer_zone,
                "highest_score_achieved": max(current.highest_score_achieved, score),
                "updated_at": now,
            })
        self.repo.save(state)
        return state


def mode_profile(mode: RecommendationMode) -> dict[str, Any]:
    """Focus areas and recommendation mix an account sees in ``mode``."""
    if mode == RecommendationMode.ELITE_MAINTENANCE:
        return {
            "mode": mode.value,
            "focus_areas": [c.value for c in EliteCategory],
            "recommendation_mix": {
                EliteCategory.COMPETITIVE_INTELLIGENCE.value: 0.30,
                EliteCategory.CONTENT_OPPORTUNITIES.value:    0.30,
                EliteCategory.ADVANCED_OPTIMIZATION.value:    0.20,
                EliteCategory.MAINTENANCE_MONITORING.value:   0.20,
            },
            "features": {
                "competitive_dashboard": True,
                "citation_tracking": True,
                "trend_alerts": True,
                "score_protection_alerts": True,
            },
        }
    return {
        "mode": mode.value,
        "focus_areas": ["Technical Fixes", "Content Gaps", "Schema Markup", "Foundational Optimizations"],
        "recommendation_mix": {
            "technical_fixes": 0.35,
            "content_gaps":    0.30,
            "schema_markup":   0.25,
            "performance":     0.10,
        },
        "features": {
            "competitive_dashboard": False,
            "citation_tracking": False,
            "trend_alerts": False,
            "score_protection_alerts": False,
        },
    }

"""
Scan-completion orchestration.

``CompletionOrchestrator.on_scan_complete()`` runs the lifecycle steps for a
freshly completed scan in a fixed order:

  Step 1 - Record score:   Score snapshot + delta vs. the previous scan.
                           FATAL: on failure the scan is marked ``degraded``
                           and ``FatalPipelineError`` is raised.
  Step 2 - Mode:           ModeTransitionGate; transition event when moved.
  Step 3 - Detection:      ImplementationDetector against the previous scan.
  Step 4 - Scoring:        ImpactScorer for recommendations without a score.
  Step 5 - Elite:          In elite mode, persist generated locked candidates.
  Step 6 - Context/cycle:  Reuse or create the context; open cycle 1 if none.
                           On reuse, elite candidates move into the primary
                           scan's pool and fill any active-set shortfall.

Failure isolation
-----------------
- Steps 2–6 each run in their own SAVEPOINT. A failure rolls back that step
  only, is recorded as a ``RecoverableStepError`` and the run continues.
- Step 5 reads the mode written by step 2. If step 2 failed, the mode
  persisted before this run applies.
- Events raised inside a step are buffered and published only once the step
  has committed; a rolled-back step publishes nothing.
- Every run is audited in ``orchestrator_runs``. Audit-write failures are
  logged and never fail the run.

Status: ``success`` when no step failed, ``partial`` otherwise. A fatal
step-1 failure is recorded as ``failed`` before the exception propagates.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import uuid4

from visibility_recs.config import AppConfig
from visibility_recs.db.connection import transaction
from visibility_recs.db.repositories.cycle_repo import RefreshCycleRepository
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.run_repo import OrchestratorRunRepository
from visibility_recs.db.repositories.scan_repo import (
    AccountRepository,
    ScanRepository,
    ScoreHistoryRepository,
)
from visibility_recs.detection.detector import ImplementationDetector
from visibility_recs.errors import (
    FatalPipelineError,
    OutOfOrderScanError,
    RecoverableStepError,
)
from visibility_recs.generators.elite import CandidateGenerator, EliteTemplateGenerator
from visibility_recs.lifecycle.context import ContextResolver
from visibility_recs.lifecycle.mode import ModeTransitionGate
from visibility_recs.lifecycle.refresh import RefreshCycleManager
from visibility_recs.models.lifecycle import ContextCreated
from visibility_recs.models.meta import OrchestratorRun
from visibility_recs.models.recommendation import Detection
from visibility_recs.models.scan import PillarScores, Scan, ScoreSnapshot
from visibility_recs.notify.events import (
    BufferedNotifier,
    LoggingNotifier,
    ModeTransitionEvent,
    Notifier,
)
from visibility_recs.recommendations.impact import ImpactScorer
from visibility_recs.taxonomy.lifecycle_taxonomy import RecommendationMode, ScanStatus
from visibility_recs.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)

STEP_RECORD_SCORE = "record_score"
STEP_MODE         = "mode"
STEP_DETECTION    = "detection"
STEP_SCORING      = "scoring"
STEP_ELITE        = "elite_candidates"
STEP_CONTEXT      = "context_cycle"

STEP_ORDER = (
    STEP_RECORD_SCORE, STEP_MODE, STEP_DETECTION, STEP_SCORING, STEP_ELITE, STEP_CONTEXT,
)


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class StepOutcome:
    """Outcome of one orchestrator step.

    Attributes:
        name:    One of ``STEP_ORDER``.
        status:  ``ok``, ``skipped`` or ``failed``.
        error:   Exception message when ``status == "failed"``.
    """

    name:   str
    status: str
    error:  Optional[str] = None


@dataclass
class OrchestratorResult:
    """Complete result of one ``on_scan_complete`` run.

    Attributes:
        run_slug:           UUID4 of the audit row.
        run_id:             DB id of the audit row (``None`` if the write failed).
        mode:               Account mode after step 2.
        transitioned:       True if step 2 changed the mode.
        detections:         Detections written by step 3.
        scored_count:       Recommendations scored by step 4.
        elite_candidate_ids: Candidates inserted by step 5.
        elite_promoted_ids: Adopted candidates step 6 activated to fill the set.
        context_id:         Context the scan belongs to after step 6.
        context_created:    True if step 6 inserted a new context.
        cycle_initialized:  True if step 6 opened cycle 1.
        steps:              Per-step outcomes in execution order.
        errors:             Recoverable step failures.
        status:             ``success`` or ``partial``.
    """

    run_slug:            str
    account_id:          int
    scan_id:             int
    run_id:              Optional[int]       = None
    started_at:          Optional[datetime]  = None
    finished_at:         Optional[datetime]  = None
    mode:                Optional[RecommendationMode] = None
    transitioned:        bool                = False
    detections:          list[Detection]     = field(default_factory=list)
    scored_count:        int                 = 0
    elite_candidate_ids: list[int]           = field(default_factory=list)
    elite_promoted_ids:  list[int]           = field(default_factory=list)
    context_id:          Optional[int]       = None
    context_created:     bool                = False
    cycle_initialized:   bool                = False
    steps:               list[StepOutcome]   = field(default_factory=list)
    errors:              list[RecoverableStepError] = field(default_factory=list)
    status:              str                 = "started"

    def step(self, name: str) -> Optional[StepOutcome]:
        return next((s for s in self.steps if s.name == name), None)


# ── Orchestrator ──────────────────────────────────────────────────────────────

class CompletionOrchestrator:
    """Runs the lifecycle pipeline for completed scans.

    Args:
        conn:      Open connection. The orchestrator commits after each step.
        config:    Application configuration.
        clock:     Returns "now"; injectable for tests.
        notifier:  Receives lifecycle events; defaults to ``LoggingNotifier``.
        generator: Elite candidate source; defaults to ``EliteTemplateGenerator``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[AppConfig] = None,
        clock: Clock = utcnow,
        notifier: Optional[Notifier] = None,
        generator: Optional[CandidateGenerator] = None,
    ) -> None:
        self.conn      = conn
        self.config    = config or AppConfig()
        self.clock     = clock
        self.notifier  = notifier if notifier is not None else LoggingNotifier()
        self.generator = generator or EliteTemplateGenerator()
        self._buffer   = BufferedNotifier()

        self.scans    = ScanRepository(conn)
        self.history  = ScoreHistoryRepository(conn)
        self.accounts = AccountRepository(conn)
        self.recs     = RecommendationRepository(conn)
        self.cycles   = RefreshCycleRepository(conn)
        self.runs     = OrchestratorRunRepository(conn)

        self.scorer   = ImpactScorer(self.config.scoring)
        self.mode     = ModeTransitionGate(conn, self.config.mode, clock)
        self.detector = ImplementationDetector(conn, self.config.detection, clock, self._buffer)
        self.refresh  = RefreshCycleManager(conn, self.config.refresh, clock, self._buffer)
        self.resolver = ContextResolver(conn, self.config.refresh, clock, self.refresh)

    def on_scan_complete(
        self,
        account_id: int,
        scan_id: int,
        pillar_scores: Optional[PillarScores] = None,
        total_score: Optional[int] = None,
    ) -> OrchestratorResult:
        """Run all lifecycle steps for a completed scan.

        Args:
            account_id:    Owning account.
            scan_id:       The completed scan (already persisted).
            pillar_scores: Pillar vector; defaults to the stored scan's.
            total_score:   0–1000 total; defaults to the stored scan's.

        Returns:
            OrchestratorResult summarising all steps.

        Raises:
            FatalPipelineError: Score recording failed or the scan arrived out
                of order. The scan is left ``degraded``.
        """
        result = OrchestratorResult(
            run_slug=str(uuid4()),
            account_id=account_id,
            scan_id=scan_id,
            started_at=self.clock(),
        )
        logger.info(
            "CompletionOrchestrator | run_slug=%s | account=%d | scan=%d",
            result.run_slug, account_id, scan_id,
        )
        run = self._persist_run_start(result)

        # ── Step 1: Record score (fatal) ──────────────────────────────────────
        logger.info("[1/6] Recording score snapshot ...")
        try:
            scan, snapshot = self._record_score(account_id, scan_id, pillar_scores, total_score)
        except Exception as exc:
            fatal = exc if isinstance(exc, FatalPipelineError) else FatalPipelineError(
                scan_id, f"score recording failed: {exc}"
            )
            self._mark_degraded(account_id, scan_id)
            result.steps.append(StepOutcome(STEP_RECORD_SCORE, "failed", str(exc)))
            result.status = "failed"
            result.finished_at = self.clock()
            self._persist_run_finish(run, result, error=str(fatal))
            logger.error("Score recording failed for scan %d: %s", scan_id, exc)
            raise fatal from exc
        result.steps.append(StepOutcome(STEP_RECORD_SCORE, "ok"))

        industry = self.accounts.get_or_default(account_id).industry

        # ── Steps 2–6: best-effort ────────────────────────────────────────────
        logger.info("[2/6] Mode transition gate ...")
        self._run_step(result, STEP_MODE, lambda: self._step_mode(result, scan, snapshot))

        logger.info("[3/6] Implementation detection ...")
        self._run_step(result, STEP_DETECTION, lambda: self._step_detection(result, scan))

        logger.info("[4/6] Impact scoring ...")
        self._run_step(result, STEP_SCORING, lambda: self._step_scoring(result, scan, industry))

        logger.info("[5/6] Elite candidates ...")
        if self.mode.current_mode(account_id) == RecommendationMode.ELITE_MAINTENANCE:
            self._run_step(
                result, STEP_ELITE,
                lambda: self._step_elite(result, scan, snapshot, industry),
            )
        else:
            result.steps.append(StepOutcome(STEP_ELITE, "skipped"))

        logger.info("[6/6] Context and refresh cycle ...")
        if scan.is_competitor_probe:
            result.steps.append(StepOutcome(STEP_CONTEXT, "skipped"))
        else:
            self._run_step(result, STEP_CONTEXT, lambda: self._step_context(result, scan))

        # ── Finalise result ───────────────────────────────────────────────────
        result.finished_at = self.clock()
        result.status = "partial" if result.errors else "success"
        self._persist_run_finish(
            run, result, error="; ".join(str(e) for e in result.errors) or None
        )

        logger.info(
            "CompletionOrchestrator finished | status=%s | mode=%s | detections=%d | "
            "scored=%d | elite=%d | errors=%d",
            result.status, result.mode, len(result.detections), result.scored_count,
            len(result.elite_candidate_ids), len(result.errors),
        )
        return result

    # ── Steps ─────────────────────────────────────────────────────────────────

    def _record_score(
        self,
        account_id: int,
        scan_id: int,
        pillar_scores: Optional[PillarScores],
        total_score: Optional[int],
    ) -> tuple[Scan, ScoreSnapshot]:
        with transaction(self.conn, STEP_RECORD_SCORE):
            scan = self.scans.get_by_id(scan_id)
            if scan is None:
                raise FatalPipelineError(scan_id, "scan not found.")
            if scan.account_id != account_id:
                raise FatalPipelineError(
                    scan_id, f"belongs to account {scan.account_id}, not {account_id}."
                )

            existing = self.history.get_by_scan(scan_id)
            if existing is not None:
                logger.info("Score for scan %d already recorded; reusing snapshot", scan_id)
                return scan, existing

            newer = self.scans.get_newer_recorded(scan)
            if newer is not None:
                raise OutOfOrderScanError(scan_id, newer)

            total = scan.total_score if total_score is None else total_score
            pillars = pillar_scores or scan.pillar_scores
            previous = self.scans.get_previous(scan)
            snapshot = ScoreSnapshot(
                scan_id=scan_id,
                account_id=account_id,
                domain=scan.domain,
                total_score=total,
                pillar_scores=pillars,
                previous_scan_id=previous.scan_id if previous else None,
                previous_score=previous.total_score if previous else None,
                score_delta=total - previous.total_score if previous else 0,
                recorded_at=self.clock(),
            )
            snapshot_id = self.history.insert(snapshot)
        self.conn.commit()

        if total != scan.total_score or pillars != scan.pillar_scores:
            scan = scan.model_copy(update={"total_score": total, "pillar_scores": pillars})
        return scan, snapshot.model_copy(update={"snapshot_id": snapshot_id})

    def _step_mode(self, result: OrchestratorResult, scan: Scan, snapshot: ScoreSnapshot) -> None:
        evaluation = self.mode.evaluate(scan.account_id, snapshot.total_score, scan.scan_id)
        result.mode = evaluation.state.current_mode
        result.transitioned = evaluation.transitioned
        record = evaluation.record
        if record is not None:
            self._buffer.publish(ModeTransitionEvent(
                account_id=record.account_id,
                scan_id=record.scan_id,
                from_mode=record.from_mode.value if record.from_mode else None,
                to_mode=record.to_mode.value,
                score=record.score,
                reason=record.reason,
                notification_type=record.notification_type or "",
            ))

    def _step_detection(self, result: OrchestratorResult, scan: Scan) -> None:
        result.detections = self.detector.detect(scan.account_id, scan.scan_id)

    def _step_scoring(self, result: OrchestratorResult, scan: Scan, industry: Optional[str]) -> None:
        mode = self.mode.current_mode(scan.account_id)
        weights = self.scorer.weights_for(mode)
        for rec in self.recs.get_unscored(scan.scan_id):
            parts = self.scorer.components(rec, scan.pillar_scores, industry)
            self.recs.update_scores(
                rec.rec_id,
                parts.weighted(weights),
                parts.difficulty_tier,
                parts.compounding,
                parts.industry,
            )
            result.scored_count += 1

    def _step_elite(
        self,
        result: OrchestratorResult,
        scan: Scan,
        snapshot: ScoreSnapshot,
        industry: Optional[str],
    ) -> None:
        existing_titles = {r.title for r in self.recs.get_for_scan(scan.scan_id)}
        ctx = self.resolver.context_for_scan(scan.scan_id)
        if ctx is not None and ctx.primary_scan_id != scan.scan_id:
            # a replayed scan's candidates may already live in the primary pool
            existing_titles |= {r.title for r in self.recs.get_for_scan(ctx.primary_scan_id)}
        inserted: list[int] = []
        weights = self.scorer.weights_for(RecommendationMode.ELITE_MAINTENANCE)
        for candidate in self.generator.generate(scan, industry, snapshot.previous_score):
            if candidate.title in existing_titles:
                continue
            parts = self.scorer.components(candidate, scan.pillar_scores, industry)
            scored = candidate.model_copy(update={
                "impact_score": parts.weighted(weights),
                "difficulty": candidate.difficulty or parts.difficulty_tier,
                "compounding_score": parts.compounding,
                "industry_score": parts.industry,
            })
            inserted.append(self.recs.insert(scored))
            existing_titles.add(candidate.title)
        result.elite_candidate_ids.extend(inserted)

    def _step_context(self, result: OrchestratorResult, scan: Scan) -> None:
        resolution = self.resolver.resolve(scan.account_id, scan.domain, scan.page_set)
        adopted = 0

        if resolution.reuse and resolution.context is not None:
            ctx = resolution.context
            primary_scan_id = ctx.primary_scan_id
            if primary_scan_id != scan.scan_id:
                self.resolver.link_scan(ctx.context_id, scan.scan_id, scan.total_score)
                adopted = self._adopt_elite_candidates(result, primary_scan_id, ctx.context_id)
        else:
            upsert = self.resolver.create(
                scan.account_id, scan.scan_id, scan.domain, scan.page_set, scan.total_score
            )
            ctx = upsert.context
            result.context_created = isinstance(upsert, ContextCreated)
            primary_scan_id = scan.scan_id

        result.context_id = ctx.context_id
        if self.cycles.get_current(scan.account_id, primary_scan_id) is None:
            self.refresh.initialize(scan.account_id, primary_scan_id, ctx.context_id)
            result.cycle_initialized = True
        elif adopted:
            result.elite_promoted_ids = self.refresh.top_up(scan.account_id, primary_scan_id)

    def _adopt_elite_candidates(
        self, result: OrchestratorResult, primary_scan_id: int, context_id: int
    ) -> int:
        """Move this run's elite candidates into the reused context's pool.

        The refresh cycle only draws from the primary scan. Candidates whose
        title is already in that pool stay on the new scan.
        """
        if not result.elite_candidate_ids:
            return 0
        pool_titles = {r.title for r in self.recs.get_for_scan(primary_scan_id)}
        movable = [
            rec.rec_id
            for rec in map(self.recs.get_by_id, result.elite_candidate_ids)
            if rec is not None and rec.title not in pool_titles
        ]
        moved = self.recs.rehome(movable, primary_scan_id, context_id)
        logger.info(
            "Moved %d elite candidate(s) to scan %d | context=%d",
            moved, primary_scan_id, context_id,
        )
        return moved

    # ── Private helpers ───────────────────────────────────────────────────────

    def _run_step(self, result: OrchestratorResult, name: str, fn: Callable[[], Any]) -> None:
        """Run ``fn`` in its own savepoint; record failure and keep going."""
        try:
            with transaction(self.conn, name):
                fn()
        except Exception as exc:
            self._buffer.discard()
            error = RecoverableStepError(name, exc)
            result.errors.append(error)
            result.steps.append(StepOutcome(name, "failed", str(exc)))
            logger.error(
                "Step %s failed | account=%d | scan=%d: %s",
                name, result.account_id, result.scan_id, exc,
            )
            return
        self.conn.commit()
        self._buffer.flush(self.notifier)
        result.steps.append(StepOutcome(name, "ok"))

    def _mark_degraded(self, account_id: int, scan_id: int) -> None:
        """Flag the scan; unknown scans and other accounts' scans are left alone."""
        try:
            scan = self.scans.get_by_id(scan_id)
            if scan is None or scan.account_id != account_id:
                return
            self.scans.mark_status(scan_id, ScanStatus.DEGRADED)
            self.conn.commit()
        except sqlite3.Error as exc:
            logger.error("Could not mark scan %d degraded: %s", scan_id, exc)

    def _persist_run_start(self, result: OrchestratorResult) -> Optional[OrchestratorRun]:
        """Write the initial audit row. Returns ``None`` if the write fails."""
        run = OrchestratorRun(
            run_slug=result.run_slug,
            run_kind="scan_complete",
            account_id=result.account_id,
            scan_id=result.scan_id,
            started_at=result.started_at,
        )
        try:
            run.run_id = self.runs.insert_run(run)
            self.conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Failed to persist orchestrator run start: %s", exc)
            return None
        result.run_id = run.run_id
        return run

    def _persist_run_finish(
        self,
        run: Optional[OrchestratorRun],
        result: OrchestratorResult,
        error: Optional[str] = None,
    ) -> None:
        if run is None:
            return
        run.status = result.status
        run.step_outcomes = {s.name: s.status for s in result.steps}
        run.error_message = error
        run.finished_at = result.finished_at
        try:
            self.runs.update_run(run)
            self.conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Failed to persist orchestrator run finish: %s", exc)

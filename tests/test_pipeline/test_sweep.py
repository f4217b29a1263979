"""
Tests for RefreshSweep.

What we test
------------
1. Due cycles are rotated and their events delivered.
2. A failing account is recorded; other accounts are still processed.
3. Expired contexts are deactivated unless cleanup is disabled.
4. Plateau detection: thresholds, alert row, event and the cooldown.
5. Each sweep writes a ``sweep`` row to ``orchestrator_runs``.
"""

from __future__ import annotations

from contextlib import nullcontext
from unittest.mock import patch

from visibility_recs.config import AppConfig
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.run_repo import OrchestratorRunRepository
from visibility_recs.lifecycle.context import ContextResolver
from visibility_recs.lifecycle.refresh import RefreshCycleManager
from visibility_recs.notify.events import BufferedNotifier, PlateauEvent, RefreshCycleEvent
from visibility_recs.pipeline.sweep import RefreshSweep
from visibility_recs.taxonomy.lifecycle_taxonomy import UnlockState

CFG = AppConfig()


# ── Helpers ────────────────────────────────────────────────────────────────────

def _sweep(conn, clock, target=None) -> RefreshSweep:
    return RefreshSweep(CFG, clock, target or BufferedNotifier(), connect=lambda: nullcontext(conn))


def _account_with_cycle(seed, conn, clock, account_id: int, domain: str = "example.com"):
    """Account with an initialised cycle and its best recommendation completed."""
    seed.account(account_id=account_id)
    scan = seed.scan(account_id=account_id, domain=domain)
    recs = seed.recs(scan.scan_id, [90, 80, 70, 60, 50, 40, 30, 20, 10, 5, 4, 3])
    RefreshCycleManager(conn, CFG.refresh, clock).initialize(account_id, scan.scan_id)
    RecommendationRepository(conn).transition(recs[0].rec_id, UnlockState.COMPLETED, clock())
    conn.commit()
    return scan, recs


def _plateau_account(seed, clock, totals=(600, 610, 605, 615), completed: int = 10) -> None:
    seed.account()
    first = None
    for total in totals:
        scan = seed.scan(total_score=total)
        first = first or scan
        clock.advance(days=5)
    for i in range(completed):
        seed.rec(first.scan_id, title=f"Done {i}", state=UnlockState.COMPLETED, completed_at=clock())


# ── Rotation ───────────────────────────────────────────────────────────────────

class TestRotation:
    def test_nothing_due(self, seed, in_memory_db, clock):
        _account_with_cycle(seed, in_memory_db, clock, 1)
        result = _sweep(in_memory_db, clock).run()
        assert result.cycles_due == 0
        assert result.status == "success"

    def test_due_cycle_rotated(self, seed, in_memory_db, clock):
        scan, recs = _account_with_cycle(seed, in_memory_db, clock, 1)
        clock.advance(days=6)
        target = BufferedNotifier()

        result = _sweep(in_memory_db, clock, target).run()

        assert result.cycles_due == 1
        assert result.cycles_processed == 1
        assert result.recommendations_replaced == 1
        assert result.status == "success"
        repo = RecommendationRepository(in_memory_db)
        assert repo.get_by_id(recs[0].rec_id).unlock_state == UnlockState.ARCHIVED
        assert repo.get_by_id(recs[10].rec_id).unlock_state == UnlockState.ACTIVE
        events = [e for e in target.pending if isinstance(e, RefreshCycleEvent)]
        assert len(events) == 1
        assert events[0].cycle_number == 2

    def test_failing_account_isolated(self, seed, in_memory_db, clock):
        _account_with_cycle(seed, in_memory_db, clock, 1, "one.com")
        _, recs_two = _account_with_cycle(seed, in_memory_db, clock, 2, "two.com")
        clock.advance(days=6)
        real = RefreshCycleManager.process

        def fail_for_first(self, account_id, scan_id):
            if account_id == 1:
                raise RuntimeError("pool query failed")
            return real(self, account_id, scan_id)

        with patch.object(RefreshCycleManager, "process", fail_for_first):
            result = _sweep(in_memory_db, clock).run()

        assert result.cycles_due == 2
        assert result.cycles_processed == 1
        assert list(result.accounts_failed) == [1]
        assert "pool query failed" in result.accounts_failed[1]
        assert result.status == "partial"
        assert RecommendationRepository(in_memory_db).get_by_id(recs_two[0].rec_id).unlock_state == UnlockState.ARCHIVED


# ── Housekeeping ───────────────────────────────────────────────────────────────

class TestContextCleanup:
    def _context(self, seed, in_memory_db, clock):
        seed.account()
        scan = seed.scan()
        ContextResolver(in_memory_db, CFG.refresh, clock).create(1, scan.scan_id, "example.com")
        in_memory_db.commit()

    def test_expired_contexts_deactivated(self, seed, in_memory_db, clock):
        self._context(seed, in_memory_db, clock)
        clock.advance(days=6)
        assert _sweep(in_memory_db, clock).run(check_plateaus=False).contexts_expired == 1

    def test_cleanup_can_be_disabled(self, seed, in_memory_db, clock):
        self._context(seed, in_memory_db, clock)
        clock.advance(days=6)
        assert _sweep(in_memory_db, clock).run(cleanup_contexts=False).contexts_expired == 0


# ── Plateaus ───────────────────────────────────────────────────────────────────

class TestPlateau:
    def test_flagged_with_event(self, seed, in_memory_db, clock):
        _plateau_account(seed, clock)
        target = BufferedNotifier()
        result = _sweep(in_memory_db, clock, target).run()

        assert result.plateau_accounts == [1]
        events = [e for e in target.pending if isinstance(e, PlateauEvent)]
        assert len(events) == 1
        assert events[0].scan_count == 4
        assert events[0].score_range == 15
        assert events[0].implemented_count == 10

    def test_wide_range_not_flagged(self, seed, in_memory_db, clock):
        _plateau_account(seed, clock, totals=(600, 640, 620, 610))
        assert _sweep(in_memory_db, clock).run().plateau_accounts == []

    def test_too_few_scans_not_flagged(self, seed, in_memory_db, clock):
        _plateau_account(seed, clock, totals=(600, 605, 610))
        assert _sweep(in_memory_db, clock).run().plateau_accounts == []

    def test_too_few_completions_not_flagged(self, seed, in_memory_db, clock):
        _plateau_account(seed, clock, completed=9)
        assert _sweep(in_memory_db, clock).run().plateau_accounts == []

    def test_cooldown(self, seed, in_memory_db, clock):
        _plateau_account(seed, clock)
        sweep = _sweep(in_memory_db, clock)
        assert sweep.run().plateau_accounts == [1]
        clock.advance(days=1)
        assert sweep.run().plateau_accounts == []
        clock.advance(days=30)
        assert sweep.run().plateau_accounts == [1]


class TestAudit:
    def test_sweep_run_recorded(self, seed, in_memory_db, clock):
        result = _sweep(in_memory_db, clock).run()
        run = OrchestratorRunRepository(in_memory_db).get_by_slug(result.run_slug)
        assert run.run_kind == "sweep"
        assert run.status == "success"
        assert run.account_id is None

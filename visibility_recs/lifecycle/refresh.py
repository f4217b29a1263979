"""
RefreshCycleManager: rotates a scan's active recommendation set.

A cycle is a window (``RefreshConfig.window_days``) over the active set of
one primary scan. When a cycle falls due, every recommendation the user
completed or skipped is archived and replaced by the highest-impact locked
candidate from the same scan. Recommendations still active stay put.

Invariants:
  - ``process()`` is one SAVEPOINT; any failure rolls back every archive,
    activation, replacement row and the new cycle together.
  - ``next_cycle_date`` only moves forward. A ``process()`` call with nothing
    to replace extends the current cycle; it never shortens it.
  - Running ``process()`` twice with no new completions leaves the active
    set untouched.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from visibility_recs.config import RefreshConfig
from visibility_recs.db.connection import transaction
from visibility_recs.db.repositories.cycle_repo import RefreshCycleRepository
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.scan_repo import AccountRepository
from visibility_recs.errors import CycleNotFoundError
from visibility_recs.models.lifecycle import RefreshCycle
from visibility_recs.models.recommendation import Recommendation, ReplacementRecord
from visibility_recs.notify.events import Notifier, RefreshCycleEvent, publish_safely
from visibility_recs.recommendations.ranker import sort_by_impact, top_n
from visibility_recs.taxonomy.lifecycle_taxonomy import UnlockState
from visibility_recs.utils.time_utils import Clock, add_days, days_until, utcnow

logger = logging.getLogger(__name__)

_PROCESSED_STATES = (UnlockState.COMPLETED, UnlockState.SKIPPED)


@dataclass(frozen=True)
class DueStatus:
    """Answer to ``is_due()``. ``next_cycle_date`` is ``None`` when no cycle exists."""

    due:             bool
    days_remaining:  int
    next_cycle_date: Optional[datetime] = None


@dataclass
class RefreshResult:
    """Outcome of one ``process()`` call.

    Attributes:
        replaced_count:  Recommendations archived this call.
        next_cycle_date: Due date of the (possibly new) current cycle.
        new_rec_ids:     Candidates activated as replacements.
        cycle_number:    Number of the current cycle after the call.
        extended:        True when nothing was eligible and the cycle was
                         only pushed forward.
    """

    replaced_count:  int
    next_cycle_date: datetime
    cycle_number:    int
    new_rec_ids:     list[int] = field(default_factory=list)
    extended:        bool = False


class RefreshCycleManager:
    """Opens, checks and advances refresh cycles.

    Args:
        conn:     Open connection; the caller owns the outer commit.
        config:   Window length and per-plan active-set sizes.
        clock:    Returns "now"; injectable for tests.
        notifier: Receives a ``RefreshCycleEvent`` after each rotation.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[RefreshConfig] = None,
        clock: Clock = utcnow,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.conn     = conn
        self.config   = config or RefreshConfig()
        self.clock    = clock
        self.notifier = notifier
        self.cycles   = RefreshCycleRepository(conn)
        self.recs     = RecommendationRepository(conn)
        self.accounts = AccountRepository(conn)

    def initialize(
        self,
        account_id: int,
        scan_id: int,
        context_id: Optional[int] = None,
    ) -> RefreshCycle:
        """Open cycle 1 for ``scan_id``; returns the existing cycle if one is open.

        The active set is filled up to the plan's K from the locked pool
        (batch 1) and the top-K active ids are snapshotted on the cycle.
        """
        existing = self.cycles.get_current(account_id, scan_id)
        if existing is not None:
            return existing

        now = self.clock()
        limit = self._active_limit(account_id)

        with transaction(self.conn, "refresh_initialize"):
            active = self.recs.get_for_scan(scan_id, [UnlockState.ACTIVE])
            shortfall = limit - len(active)
            if shortfall > 0:
                for candidate in top_n(self.recs.get_locked_pool(scan_id), shortfall):
                    active.append(self.recs.transition(
                        candidate.rec_id, UnlockState.ACTIVE, now,
                        batch_number=1, refresh_cycle_number=1,
                    ))

            cycle = RefreshCycle(
                account_id=account_id,
                scan_id=scan_id,
                context_id=context_id,
                cycle_number=1,
                start_date=now,
                next_cycle_date=add_days(now, self.config.window_days),
                active_rec_ids=[r.rec_id for r in top_n(active, limit)],
            )
            cycle_id = self.cycles.insert(cycle, now)

        logger.info(
            "Opened refresh cycle 1 | account=%d | scan=%d | active=%d/%d",
            account_id, scan_id, len(cycle.active_rec_ids), limit,
        )
        return cycle.model_copy(update={"cycle_id": cycle_id, "created_at": now})

    def is_due(self, account_id: int, scan_id: int) -> DueStatus:
        cycle = self.cycles.get_current(account_id, scan_id)
        if cycle is None:
            return DueStatus(due=False, days_remaining=0)
        now = self.clock()
        return DueStatus(
            due=cycle.next_cycle_date <= now,
            days_remaining=days_until(cycle.next_cycle_date, now),
            next_cycle_date=cycle.next_cycle_date,
        )

    def process(self, account_id: int, scan_id: int) -> RefreshResult:
        """Archive processed recommendations and activate replacements.

        Raises:
            CycleNotFoundError: If ``initialize()`` was never run for the scan.
        """
        now = self.clock()
        window = self.config.window_days

        with transaction(self.conn, "refresh_process"):
            cycle = self.cycles.get_current(account_id, scan_id)
            if cycle is None:
                raise CycleNotFoundError(account_id, scan_id)

            processed = sorted(
                self.recs.get_for_scan(scan_id, _PROCESSED_STATES),
                key=lambda r: r.rec_id,
            )
            if not processed:
                next_date = add_days(cycle.next_cycle_date, window)
                if next_date <= now:
                    next_date = add_days(now, window)
                self.cycles.extend(cycle.cycle_id, next_date)
                logger.debug(
                    "Nothing to rotate | account=%d | scan=%d | next=%s",
                    account_id, scan_id, next_date,
                )
                return RefreshResult(
                    replaced_count=0,
                    next_cycle_date=next_date,
                    cycle_number=cycle.cycle_number,
                    extended=True,
                )

            new_number = cycle.cycle_number + 1
            pool = sort_by_impact(self.recs.get_locked_pool(scan_id))
            swaps: list[tuple[Recommendation, Optional[Recommendation]]] = []

            for old in processed:
                self.recs.transition(
                    old.rec_id, UnlockState.ARCHIVED, now,
                    archived_reason=old.unlock_state.value,
                )
                new: Optional[Recommendation] = None
                if pool:
                    new = self.recs.transition(
                        pool.pop(0).rec_id, UnlockState.ACTIVE, now,
                        batch_number=new_number, refresh_cycle_number=new_number,
                    )
                swaps.append((old, new))

            still_active = self.recs.get_for_scan(scan_id, [UnlockState.ACTIVE])
            next_date = max(add_days(now, window), cycle.next_cycle_date)
            new_cycle = RefreshCycle(
                account_id=account_id,
                scan_id=scan_id,
                context_id=cycle.context_id,
                cycle_number=new_number,
                start_date=now,
                next_cycle_date=next_date,
                active_rec_ids=[r.rec_id for r in still_active],
                implemented_count=sum(1 for r in processed if r.unlock_state == UnlockState.COMPLETED),
                skipped_count=sum(1 for r in processed if r.unlock_state == UnlockState.SKIPPED),
                replaced_count=len(processed),
            )
            cycle_id = self.cycles.insert(new_cycle, now)

            for old, new in swaps:
                self.cycles.insert_replacement(ReplacementRecord(
                    cycle_id=cycle_id,
                    account_id=account_id,
                    old_rec_id=old.rec_id,
                    new_rec_id=new.rec_id if new else None,
                    old_impact_score=old.impact_score,
                    new_impact_score=new.impact_score if new else None,
                    reason=old.unlock_state.value,
                    replaced_at=now,
                ))

        new_ids = [new.rec_id for _, new in swaps if new is not None]
        if len(new_ids) < len(swaps):
            logger.warning(
                "Locked pool exhausted | account=%d | scan=%d | %d archived without replacement",
                account_id, scan_id, len(swaps) - len(new_ids),
            )
        logger.info(
            "Refresh cycle %d | account=%d | scan=%d | replaced=%d | next=%s",
            new_number, account_id, scan_id, len(processed), next_date,
        )

        if self.notifier is not None:
            publish_safely(self.notifier, RefreshCycleEvent(
                account_id=account_id,
                scan_id=scan_id,
                cycle_number=new_number,
                replaced_count=len(processed),
                implemented_count=new_cycle.implemented_count,
                skipped_count=new_cycle.skipped_count,
                next_cycle_date=next_date,
                new_rec_ids=new_ids,
            ))

        return RefreshResult(
            replaced_count=len(processed),
            next_cycle_date=next_date,
            cycle_number=new_number,
            new_rec_ids=new_ids,
        )

    def top_up(self, account_id: int, scan_id: int) -> list[int]:
        """Activate locked candidates until the current cycle holds the plan's K.

        Used when candidates join a scan's pool mid-cycle. The promoted
        recommendations belong to the current cycle's batch.

        Raises:
            CycleNotFoundError: If ``initialize()`` was never run for the scan.
        """
        now = self.clock()
        limit = self._active_limit(account_id)

        with transaction(self.conn, "refresh_top_up"):
            cycle = self.cycles.get_current(account_id, scan_id)
            if cycle is None:
                raise CycleNotFoundError(account_id, scan_id)

            active = self.recs.get_for_scan(scan_id, [UnlockState.ACTIVE])
            shortfall = limit - len(active)
            if shortfall <= 0:
                return []

            promoted = [
                self.recs.transition(
                    candidate.rec_id, UnlockState.ACTIVE, now,
                    batch_number=cycle.cycle_number,
                    refresh_cycle_number=cycle.cycle_number,
                )
                for candidate in top_n(self.recs.get_locked_pool(scan_id), shortfall)
            ]
            if promoted:
                self.cycles.set_active(
                    cycle.cycle_id, [r.rec_id for r in top_n(active + promoted, limit)]
                )

        if promoted:
            logger.info(
                "Topped up cycle %d | account=%d | scan=%d | promoted=%d",
                cycle.cycle_number, account_id, scan_id, len(promoted),
            )
        return [r.rec_id for r in promoted]

    def replacement_history(self, account_id: int, scan_id: int) -> list[ReplacementRecord]:
        return self.cycles.get_replacements(account_id, scan_id)

    def due_cycles(self, now: Optional[datetime] = None) -> list[RefreshCycle]:
        """Current cycles across all accounts whose due date has passed."""
        return self.cycles.get_due(now or self.clock())

    def _active_limit(self, account_id: int) -> int:
        account = self.accounts.get_or_default(account_id)
        return self.config.active_limit_for(account.plan_tier)

"""
Periodic refresh sweep, called by an external scheduler.

``RefreshSweep.run()`` is stateless: everything it needs is read from the
database on each call.

  Step 1 - Due cycles:   Find every current cycle past its due date.
  Step 2 - Rotate:       Process due cycles grouped per account, one
                         connection per account. A failing account is
                         recorded and the sweep moves on.
  Step 3 - Housekeeping: Deactivate contexts whose window has elapsed
                         (``sweep.cleanup_expired_contexts``).
  Step 4 - Plateaus:     Flag accounts whose score has stalled despite many
                         completed recommendations.

Plateau rule (defaults from ``SweepConfig``)::

    scans in last 60 days        >= 4
    max(total) - min(total)       < 30
    recommendations completed    >= 10   (same window)
    no alert in last 30 days

Scheduling example (cron, every 6 hours)::

    0 */6 * * * cd /srv/visibility-recs && .venv/bin/visibility-recs run-sweep
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from visibility_recs.config import AppConfig
from visibility_recs.db.connection import get_connection
from visibility_recs.db.repositories.cycle_repo import RefreshCycleRepository
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.run_repo import (
    OrchestratorRunRepository,
    PlateauAlertRepository,
)
from visibility_recs.db.repositories.scan_repo import ScanRepository
from visibility_recs.lifecycle.context import ContextResolver
from visibility_recs.lifecycle.refresh import RefreshCycleManager
from visibility_recs.models.lifecycle import RefreshCycle
from visibility_recs.models.meta import OrchestratorRun
from visibility_recs.notify.events import (
    BufferedNotifier,
    LoggingNotifier,
    Notifier,
    PlateauEvent,
    publish_safely,
)
from visibility_recs.utils.time_utils import Clock, utcnow

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], AbstractContextManager[sqlite3.Connection]]


@dataclass
class SweepResult:
    """Summary of one sweep.

    Attributes:
        cycles_due:               Due cycles found in step 1.
        cycles_processed:         Cycles rotated or extended without error.
        recommendations_replaced: Total recommendations archived.
        accounts_failed:          account_id → error message.
        contexts_expired:         Contexts deactivated in step 3.
        plateau_accounts:         Accounts flagged in step 4.
        status:                   ``success``, ``partial`` or ``failed``.
    """

    run_slug:                 str
    started_at:               Optional[datetime] = None
    finished_at:              Optional[datetime] = None
    cycles_due:               int = 0
    cycles_processed:         int = 0
    recommendations_replaced: int = 0
    accounts_failed:          dict[int, str] = field(default_factory=dict)
    contexts_expired:         int = 0
    plateau_accounts:         list[int] = field(default_factory=list)
    errors:                   list[str] = field(default_factory=list)
    status:                   str = "started"


class RefreshSweep:
    """Rotates due refresh cycles across all accounts.

    Args:
        config:    Application configuration.
        clock:     Returns "now"; injectable for tests.
        notifier:  Receives refresh and plateau events after each commit.
        connect:   Zero-arg factory returning a connection context manager.
                   Defaults to ``get_connection`` on ``config.database``.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        clock: Clock = utcnow,
        notifier: Optional[Notifier] = None,
        connect: Optional[ConnectionFactory] = None,
    ) -> None:
        self.config   = config or AppConfig()
        self.clock    = clock
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.connect  = connect or self._default_connect

    def run(self, cleanup_contexts: Optional[bool] = None, check_plateaus: bool = True) -> SweepResult:
        now = self.clock()
        result = SweepResult(run_slug=str(uuid4()), started_at=now)
        logger.info("RefreshSweep | run_slug=%s | now=%s", result.run_slug, now)

        # ── Step 1: Due cycles ────────────────────────────────────────────────
        logger.info("[1/4] Finding due cycles ...")
        try:
            with self.connect() as conn:
                due = RefreshCycleRepository(conn).get_due(now)
        except Exception as exc:
            result.status = "failed"
            result.errors.append(f"Due-cycle lookup failed: {exc}")
            result.finished_at = self.clock()
            logger.error("Due-cycle lookup failed: %s", exc)
            return result
        result.cycles_due = len(due)

        by_account: dict[int, list[RefreshCycle]] = defaultdict(list)
        for cycle in due:
            by_account[cycle.account_id].append(cycle)

        # ── Step 2: Rotate per account ────────────────────────────────────────
        logger.info("[2/4] Processing %d due cycles over %d accounts ...", len(due), len(by_account))
        for account_id, cycles in sorted(by_account.items()):
            self._process_account(account_id, cycles, result)

        # ── Step 3: Context housekeeping ──────────────────────────────────────
        cleanup = self.config.sweep.cleanup_expired_contexts if cleanup_contexts is None else cleanup_contexts
        if cleanup:
            logger.info("[3/4] Expiring stale contexts ...")
            try:
                with self.connect() as conn:
                    resolver = ContextResolver(conn, self.config.refresh, self.clock)
                    result.contexts_expired = resolver.cleanup_expired()
            except Exception as exc:
                result.errors.append(f"Context cleanup failed: {exc}")
                logger.error("Context cleanup failed: %s", exc)
        else:
            logger.info("[3/4] Context cleanup skipped.")

        # ── Step 4: Plateau detection ─────────────────────────────────────────
        if check_plateaus:
            logger.info("[4/4] Checking score plateaus ...")
            try:
                result.plateau_accounts = self._check_plateaus(now)
            except Exception as exc:
                result.errors.append(f"Plateau check failed: {exc}")
                logger.error("Plateau check failed: %s", exc)
        else:
            logger.info("[4/4] Plateau check skipped.")

        # ── Finalise result ───────────────────────────────────────────────────
        result.finished_at = self.clock()
        if not result.errors and not result.accounts_failed:
            result.status = "success"
        elif result.cycles_processed > 0 or not result.accounts_failed:
            result.status = "partial"
        else:
            result.status = "failed"

        self._persist_run(result)
        logger.info(
            "RefreshSweep finished | status=%s | due=%d | processed=%d | replaced=%d | "
            "failed_accounts=%d | expired=%d | plateaus=%d",
            result.status, result.cycles_due, result.cycles_processed,
            result.recommendations_replaced, len(result.accounts_failed),
            result.contexts_expired, len(result.plateau_accounts),
        )
        return result

    # ── Private helpers ───────────────────────────────────────────────────────

    def _process_account(self, account_id: int, cycles: list[RefreshCycle], result: SweepResult) -> None:
        """Rotate one account's cycles; each cycle commits on its own."""
        buffer = BufferedNotifier()
        try:
            with self.connect() as conn:
                manager = RefreshCycleManager(conn, self.config.refresh, self.clock, buffer)
                for cycle in cycles:
                    outcome = manager.process(account_id, cycle.scan_id)
                    conn.commit()
                    buffer.flush(self.notifier)
                    result.cycles_processed += 1
                    result.recommendations_replaced += outcome.replaced_count
        except Exception as exc:
            buffer.discard()
            result.accounts_failed[account_id] = str(exc)
            logger.error("Sweep failed for account=%d: %s", account_id, exc)

    def _check_plateaus(self, now: datetime) -> list[int]:
        cfg = self.config.sweep
        since = now - timedelta(days=cfg.plateau_window_days)
        cooldown = timedelta(days=cfg.plateau_cooldown_days)
        flagged: list[int] = []
        events: list[PlateauEvent] = []

        with self.connect() as conn:
            scans  = ScanRepository(conn)
            recs   = RecommendationRepository(conn)
            alerts = PlateauAlertRepository(conn)

            for account_id in scans.accounts_scanned_since(since):
                totals = scans.totals_since(account_id, since)
                if len(totals) < cfg.plateau_min_scans:
                    continue
                spread = max(totals) - min(totals)
                if spread >= cfg.plateau_max_range:
                    continue
                implemented = recs.count_completed_since(account_id, since)
                if implemented < cfg.plateau_min_implemented:
                    continue
                last = alerts.last_alert_at(account_id)
                if last is not None and now - last < cooldown:
                    continue

                alerts.insert(account_id, len(totals), spread, implemented, now)
                flagged.append(account_id)
                events.append(PlateauEvent(
                    account_id=account_id,
                    scan_count=len(totals),
                    score_range=spread,
                    implemented_count=implemented,
                ))
            conn.commit()

        for event in events:
            publish_safely(self.notifier, event)
        if flagged:
            logger.info("Plateau detected for accounts: %s", flagged)
        return flagged

    def _persist_run(self, result: SweepResult) -> None:
        run = OrchestratorRun(
            run_slug=result.run_slug,
            run_kind="sweep",
            status=result.status,
            step_outcomes={
                "due_cycles": "ok",
                "rotate": "failed" if result.accounts_failed else "ok",
                "cleanup": "failed" if any("cleanup" in e for e in result.errors) else "ok",
                "plateaus": "failed" if any("Plateau" in e for e in result.errors) else "ok",
            },
            error_message="; ".join(
                result.errors + [f"account {a}: {e}" for a, e in result.accounts_failed.items()]
            ) or None,
            started_at=result.started_at,
            finished_at=result.finished_at,
        )
        try:
            with self.connect() as conn:
                OrchestratorRunRepository(conn).insert_run(run)
                conn.commit()
        except Exception as exc:
            logger.warning("Failed to persist sweep run: %s", exc)

    def _default_connect(self) -> AbstractContextManager[sqlite3.Connection]:
        db = self.config.database
        return get_connection(db.db_path, wal_mode=db.wal_mode, busy_timeout_ms=db.busy_timeout_ms)

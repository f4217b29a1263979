"""
ContextResolver: decides whether a scan reuses an existing recommendation set.

A context is identified by ``context_key(account, domain, page set)``. While
the context is active and unexpired, every scan of that identity keeps the
primary scan's active recommendations instead of being issued a fresh set.

Resolution flow for ``resolve()``::

    competitor probe                         → reuse = False
    no context / inactive / expired          → reuse = False
    active context, cycle not due            → reuse = True
    active context, cycle due                → process the cycle, reuse = True,
                                               cycle_refreshed = True
    active context, cycle processing failed  → reuse = True, cycle_refreshed = False

``create()`` is an upsert. The unique ``(account_id, context_key)`` index
turns a concurrent second insert into a ``ConcurrencyConflict``, which is
handled here by refreshing the existing row; callers always get a tagged
``ContextCreated`` or ``ContextUpdated`` result.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from visibility_recs.config import RefreshConfig
from visibility_recs.db.connection import transaction
from visibility_recs.db.repositories.context_repo import ContextRepository
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.scan_repo import AccountRepository
from visibility_recs.errors import ConcurrencyConflict
from visibility_recs.lifecycle.identity import context_key, normalize_domain, page_set_hash
from visibility_recs.lifecycle.refresh import RefreshCycleManager
from visibility_recs.models.lifecycle import (
    ContextCreated,
    ContextUpdated,
    ContextUpsertResult,
    RecommendationContext,
)
from visibility_recs.utils.time_utils import Clock, add_days, end_of_month, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolveResult:
    """Answer to ``ContextResolver.resolve()``."""

    reuse:           bool
    context:         Optional[RecommendationContext] = None
    cycle_refreshed: bool = False


class ContextResolver:
    """Looks up, creates and expires recommendation contexts.

    Args:
        conn:            Open connection; the caller owns the outer commit.
        config:          Window length and long-window plan tiers.
        clock:           Returns "now"; injectable for tests.
        refresh_manager: Used to process a due cycle during ``resolve()``.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[RefreshConfig] = None,
        clock: Clock = utcnow,
        refresh_manager: Optional[RefreshCycleManager] = None,
    ) -> None:
        self.conn     = conn
        self.config   = config or RefreshConfig()
        self.clock    = clock
        self.refresh  = refresh_manager or RefreshCycleManager(conn, self.config, clock)
        self.repo     = ContextRepository(conn)
        self.recs     = RecommendationRepository(conn)
        self.accounts = AccountRepository(conn)

    def resolve(
        self,
        account_id: int,
        domain: str,
        page_set: Optional[Iterable[str]] = None,
        is_competitor_probe: bool = False,
    ) -> ResolveResult:
        """Decide whether a new scan of this identity reuses the current set.

        Raises:
            ValidationError: On a non-positive account id or empty domain.
        """
        key = context_key(account_id, domain, page_set)
        if is_competitor_probe:
            return ResolveResult(reuse=False)

        ctx = self.repo.get_by_key(account_id, key)
        now = self.clock()
        if ctx is None or not ctx.is_active or ctx.expires_at <= now:
            return ResolveResult(reuse=False, context=ctx)

        refreshed = False
        status = self.refresh.is_due(account_id, ctx.primary_scan_id)
        if status.due:
            try:
                self.refresh.process(account_id, ctx.primary_scan_id)
                refreshed = True
            except Exception as exc:
                logger.warning(
                    "Speculative refresh failed | account=%d | context=%d: %s",
                    account_id, ctx.context_id, exc,
                )
        return ResolveResult(reuse=True, context=ctx, cycle_refreshed=refreshed)

    def create(
        self,
        account_id: int,
        scan_id: int,
        domain: str,
        page_set: Optional[Iterable[str]] = None,
        initial_score: Optional[int] = None,
        plan_tier: Optional[str] = None,
    ) -> ContextUpsertResult:
        """Insert a context for ``scan_id`` or repoint the existing one at it.

        The scan's recommendations that have no context yet are stamped with
        the resulting ``context_id``.
        """
        pages = list(page_set or [])
        key = context_key(account_id, domain, pages)
        now = self.clock()
        if plan_tier is None:
            plan_tier = self.accounts.get_or_default(account_id).plan_tier
        expires_at = self.expiry_for(plan_tier, now)

        with transaction(self.conn, "context_create"):
            candidate = RecommendationContext(
                account_id=account_id,
                context_key=key,
                domain=normalize_domain(domain),
                page_set_hash=page_set_hash(pages),
                primary_scan_id=scan_id,
                expires_at=expires_at,
                initial_score=initial_score,
                latest_score=initial_score,
                score_change=0,
            )
            try:
                context_id = self.repo.insert(candidate, now)
                previous_scan_id = None
            except ConcurrencyConflict:
                existing = self.repo.get_by_key(account_id, key)
                if existing is None:
                    raise
                context_id = existing.context_id
                previous_scan_id = existing.primary_scan_id
                self.repo.refresh(context_id, scan_id, expires_at, initial_score, now)

            linked = self.recs.assign_context(scan_id, context_id)
            ctx = self.repo.get_by_id(context_id)

        if previous_scan_id is None:
            logger.info(
                "Created context %d | account=%d | domain=%s | expires=%s",
                context_id, account_id, ctx.domain, expires_at,
            )
            return ContextCreated(context=ctx, linked_recommendations=linked)

        logger.info(
            "Updated context %d | account=%d | primary scan %d -> %d",
            context_id, account_id, previous_scan_id, scan_id,
        )
        return ContextUpdated(
            context=ctx, previous_scan_id=previous_scan_id, linked_recommendations=linked
        )

    def link_scan(self, context_id: int, scan_id: int, latest_score: int) -> bool:
        """Record that ``scan_id`` reused ``context_id``; updates the score trend."""
        return self.repo.link_scan(context_id, scan_id, latest_score, self.clock())

    def context_for_scan(self, scan_id: int) -> Optional[RecommendationContext]:
        return self.repo.get_for_scan(scan_id)

    def expire(self, context_id: int) -> bool:
        return self.repo.expire(context_id, self.clock())

    def cleanup_expired(self) -> int:
        """Deactivate every active context whose ``expires_at`` has passed.

        Returns:
            Number of contexts expired.
        """
        now = self.clock()
        expired = 0
        with transaction(self.conn, "context_cleanup"):
            for ctx in self.repo.get_expired_active(now):
                if self.repo.expire(ctx.context_id, now):
                    expired += 1
        if expired:
            logger.info("Expired %d stale contexts", expired)
        return expired

    def expiry_for(self, plan_tier: Optional[str], now: Optional[datetime] = None) -> datetime:
        """Long-window tiers live to month end; everyone else gets one window."""
        now = now or self.clock()
        if plan_tier is not None and str(plan_tier).lower() in self.config.long_window_tiers:
            return end_of_month(now)
        return add_days(now, self.config.window_days)

"""
Shared pytest fixtures for the visibility-recs test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and all migrations applied. Created anew for each test.
  - ``clock``: A controllable clock starting at ``FIXED_NOW``.
  - ``seed``: A ``Seeder`` bound to ``in_memory_db`` for inserting accounts,
    scans and recommendations with sensible defaults.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional

import pytest

from visibility_recs.db.migrations import run_migrations
from visibility_recs.db.repositories.recommendation_repo import RecommendationRepository
from visibility_recs.db.repositories.scan_repo import AccountRepository, ScanRepository
from visibility_recs.db.schema import apply_schema
from visibility_recs.models.recommendation import Recommendation
from visibility_recs.models.scan import Account, PillarScores, Scan, ScanSignals
from visibility_recs.taxonomy.lifecycle_taxonomy import PlanTier, UnlockState

FIXED_NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock for deterministic tests; ``advance()`` moves it forward."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0) -> datetime:
        self.now = self.now + timedelta(days=days, hours=hours)
        return self.now


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with schema + migrations.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── Sample domain object factories ────────────────────────────────────────────

class Seeder:
    """Inserts fixture rows through the real repositories."""

    def __init__(self, conn: sqlite3.Connection, clock: FakeClock) -> None:
        self.conn  = conn
        self.clock = clock

    def account(
        self,
        account_id: int = 1,
        plan_tier: PlanTier = PlanTier.PRO,
        industry: Optional[str] = "saas",
    ) -> Account:
        account = Account(account_id=account_id, plan_tier=plan_tier, industry=industry)
        AccountRepository(self.conn).upsert(account)
        return account

    def scan(
        self,
        account_id: int = 1,
        domain: str = "example.com",
        total_score: int = 600,
        pillars: Optional[PillarScores] = None,
        completed_at: Optional[datetime] = None,
        signals: Optional[ScanSignals] = None,
        page_set: Optional[list[str]] = None,
        is_competitor_probe: bool = False,
    ) -> Scan:
        scan = Scan(
            account_id=account_id,
            domain=domain,
            page_set=page_set or [],
            pillar_scores=pillars or PillarScores.uniform(5.0),
            total_score=total_score,
            completed_at=completed_at or self.clock(),
            is_competitor_probe=is_competitor_probe,
            signals=signals or ScanSignals(),
        )
        scan_id = ScanRepository(self.conn).insert(scan)
        return scan.model_copy(update={"scan_id": scan_id})

    def rec(
        self,
        scan_id: int,
        title: str = "Add Organization schema",
        category: str = "Schema Markup",
        impact_score: Optional[float] = 50.0,
        state: UnlockState = UnlockState.LOCKED,
        **extra,
    ) -> Recommendation:
        rec = Recommendation(
            scan_id=scan_id,
            category=category,
            title=title,
            impact_score=impact_score,
            unlock_state=state,
            unlocked_at=self.clock() if state != UnlockState.LOCKED else None,
            **extra,
        )
        rec_id = RecommendationRepository(self.conn).insert(rec)
        return rec.model_copy(update={"rec_id": rec_id})

    def recs(self, scan_id: int, impacts: list[float], state: UnlockState = UnlockState.LOCKED) -> list[Recommendation]:
        """One recommendation per impact score, titled ``Rec <impact>``."""
        return [
            self.rec(scan_id, title=f"Rec {impact:g}", impact_score=impact, state=state)
            for impact in impacts
        ]


@pytest.fixture
def seed(in_memory_db: sqlite3.Connection, clock: FakeClock) -> Seeder:
    return Seeder(in_memory_db, clock)

"""
Repository for recommendation contexts and their scan links.

``insert()`` is a plain INSERT guarded by ``UNIQUE(account_id, context_key)``.
A collision is reported as ``ConcurrencyConflict`` so the resolver can take
the update path explicitly and return a ``ContextUpdated`` result.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from visibility_recs.db.repositories.base import BaseRepository
from visibility_recs.errors import ConcurrencyConflict
from visibility_recs.models.lifecycle import RecommendationContext
from visibility_recs.utils.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)


class ContextRepository(BaseRepository):
    """Read/write access to ``recommendation_contexts`` and ``context_scan_links``."""

    def insert(self, ctx: RecommendationContext, at: datetime) -> int:
        """Insert a new context and return its ``context_id``.

        Raises:
            ConcurrencyConflict: A row with the same ``(account_id, context_key)``
                already exists.
        """
        try:
            self.execute(
                """
                INSERT INTO recommendation_contexts (
                    account_id, context_key, domain, page_set_hash, primary_scan_id,
                    is_active, expires_at, initial_score, latest_score, score_change,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?, 0, ?, ?);
                """,
                (
                    ctx.account_id,
                    ctx.context_key,
                    ctx.domain,
                    ctx.page_set_hash,
                    ctx.primary_scan_id,
                    to_iso(ctx.expires_at),
                    ctx.initial_score,
                    ctx.initial_score,
                    to_iso(at),
                    to_iso(at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc).upper():
                raise
            raise ConcurrencyConflict(ctx.account_id, ctx.context_key) from exc
        return self.last_insert_rowid()

    def refresh(
        self,
        context_id: int,
        primary_scan_id: int,
        expires_at: datetime,
        score: Optional[int],
        at: datetime,
    ) -> None:
        """Conflict path of ``create()``: repoint, re-arm and rescore a context.

        ``initial_score`` is kept when already set.
        """
        self.execute(
            """
            UPDATE recommendation_contexts SET
                primary_scan_id = ?,
                expires_at      = ?,
                is_active       = 1,
                expired_at      = NULL,
                initial_score   = COALESCE(initial_score, ?),
                latest_score    = ?,
                score_change    = CASE
                    WHEN ? IS NULL THEN score_change
                    ELSE ? - COALESCE(initial_score, ?)
                END,
                updated_at      = ?
            WHERE context_id = ?;
            """,
            (
                primary_scan_id,
                to_iso(expires_at),
                score,
                score,
                score,
                score,
                score,
                to_iso(at),
                context_id,
            ),
        )

    def get_by_id(self, context_id: int) -> Optional[RecommendationContext]:
        row = self.fetchone(
            "SELECT * FROM recommendation_contexts WHERE context_id = ?;", (context_id,)
        )
        return _row_to_context(row) if row else None

    def get_by_key(self, account_id: int, context_key: str) -> Optional[RecommendationContext]:
        row = self.fetchone(
            """
            SELECT * FROM recommendation_contexts
            WHERE account_id = ? AND context_key = ?;
            """,
            (account_id, context_key),
        )
        return _row_to_context(row) if row else None

    def get_for_scan(self, scan_id: int) -> Optional[RecommendationContext]:
        """Context whose primary scan is ``scan_id`` or that links ``scan_id``."""
        row = self.fetchone(
            """
            SELECT c.* FROM recommendation_contexts c
            WHERE c.primary_scan_id = ?
               OR c.context_id IN (SELECT context_id FROM context_scan_links WHERE scan_id = ?)
            ORDER BY c.primary_scan_id = ? DESC, c.updated_at DESC
            LIMIT 1;
            """,
            (scan_id, scan_id, scan_id),
        )
        return _row_to_context(row) if row else None

    def link_scan(self, context_id: int, scan_id: int, latest_score: int, at: datetime) -> bool:
        """Record that ``scan_id`` reused ``context_id``.

        Returns:
            ``True`` if a new link row was written, ``False`` if it existed.
        """
        cur = self.execute(
            """
            INSERT OR IGNORE INTO context_scan_links (context_id, scan_id, linked_at)
            VALUES (?, ?, ?);
            """,
            (context_id, scan_id, to_iso(at)),
        )
        self.execute(
            """
            UPDATE recommendation_contexts SET
                latest_score = ?,
                score_change = ? - COALESCE(initial_score, ?),
                updated_at   = ?
            WHERE context_id = ?;
            """,
            (latest_score, latest_score, latest_score, to_iso(at), context_id),
        )
        return cur.rowcount == 1

    def linked_scan_ids(self, context_id: int) -> list[int]:
        rows = self.fetchall(
            "SELECT scan_id FROM context_scan_links WHERE context_id = ? ORDER BY linked_at;",
            (context_id,),
        )
        return [int(r["scan_id"]) for r in rows]

    def expire(self, context_id: int, at: datetime) -> bool:
        cur = self.execute(
            """
            UPDATE recommendation_contexts SET is_active = 0, expired_at = ?, updated_at = ?
            WHERE context_id = ? AND is_active = 1;
            """,
            (to_iso(at), to_iso(at), context_id),
        )
        return cur.rowcount == 1

    def get_expired_active(self, now: datetime) -> list[RecommendationContext]:
        """Contexts still flagged active whose ``expires_at`` has passed."""
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_contexts
            WHERE is_active = 1 AND expires_at <= ?
            ORDER BY expires_at;
            """,
            (to_iso(now),),
        )
        return [_row_to_context(r) for r in rows]


# ── Private helpers ───────────────────────────────────────────────────────────

def _row_to_context(row: sqlite3.Row) -> RecommendationContext:
    return RecommendationContext(
        context_id=row["context_id"],
        account_id=row["account_id"],
        context_key=row["context_key"],
        domain=row["domain"],
        page_set_hash=row["page_set_hash"],
        primary_scan_id=row["primary_scan_id"],
        is_active=bool(row["is_active"]),
        expires_at=from_iso(row["expires_at"]),
        initial_score=row["initial_score"],
        latest_score=row["latest_score"],
        score_change=row["score_change"],
        expired_at=from_iso(row["expired_at"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )

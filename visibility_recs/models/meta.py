"""
Orchestrator and sweep run metadata, the audit backbone.

``OrchestratorRun`` is the only model in the system that is NOT frozen: its
``status``, ``step_outcomes``, ``error_message`` and ``finished_at`` fields
are filled in as the run progresses.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_RUN_KINDS = frozenset({"scan_complete", "sweep"})
VALID_RUN_STATUSES = frozenset({"started", "success", "partial", "failed"})


class OrchestratorRun(BaseModel):
    """One invocation of the completion orchestrator or the refresh sweep.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this run.
        run_kind: ``scan_complete`` or ``sweep``.
        account_id: Account processed, ``None`` for sweeps.
        scan_id: Scan processed, ``None`` for sweeps.
        status: ``started`` → ``success`` | ``partial`` | ``failed``.
        step_outcomes: Step name → ``ok`` / ``skipped`` / ``failed``.
        error_message: Accumulated error text, if any.
    """

    # Not frozen: outcomes are filled in as steps complete
    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    run_kind: str
    account_id: Optional[int] = None
    scan_id: Optional[int] = None
    status: str = "started"
    step_outcomes: dict[str, str] = {}
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("run_kind")
    @classmethod
    def validate_run_kind(cls, v: str) -> str:
        if v not in VALID_RUN_KINDS:
            raise ValueError(
                f"Unknown run_kind '{v}'. Must be one of {sorted(VALID_RUN_KINDS)}."
            )
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v

"""
Exception taxonomy for the recommendation lifecycle.

Only ``FatalPipelineError`` (and its subclasses) escapes the completion
orchestrator. ``RecoverableStepError`` is recorded on the orchestrator
result and the run continues. ``ConcurrencyConflict`` is raised by the
context repository on a unique-key collision and is always handled by the
context resolver; callers never see it.
"""

from __future__ import annotations

from typing import Optional


class VisibilityError(Exception):
    """Base class for all lifecycle errors."""


class ValidationError(VisibilityError, ValueError):
    """Malformed identity input, rejected before any write.

    Attributes:
        field: Name of the offending input.
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"Invalid {field}: {message}")


class ConcurrencyConflict(VisibilityError):
    """A concurrent writer already inserted the same context identity.

    Attributes:
        account_id:  Owning account.
        context_key: The colliding identity key.
    """

    def __init__(self, account_id: int, context_key: str) -> None:
        self.account_id  = account_id
        self.context_key = context_key
        super().__init__(
            f"Context {context_key} for account {account_id} was created concurrently."
        )


class FatalPipelineError(VisibilityError):
    """Score recording failed; the orchestrator run for this scan is aborted.

    Attributes:
        scan_id: The scan left in ``degraded`` status.
    """

    def __init__(self, scan_id: int, message: str) -> None:
        self.scan_id = scan_id
        super().__init__(f"Scan {scan_id}: {message}")


class OutOfOrderScanError(FatalPipelineError):
    """A scan completed before a scan already recorded for the same domain."""

    def __init__(self, scan_id: int, newer_scan_id: int) -> None:
        self.newer_scan_id = newer_scan_id
        super().__init__(
            scan_id,
            f"completed out of order (scan {newer_scan_id} is newer for the same domain).",
        )


class RecoverableStepError(VisibilityError):
    """A best-effort orchestrator step failed and was rolled back.

    Attributes:
        step:  Step name, e.g. ``"detection"``.
        cause: The underlying exception, if any.
    """

    def __init__(self, step: str, cause: Optional[BaseException] = None) -> None:
        self.step  = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause}")


class CycleNotFoundError(VisibilityError, LookupError):
    """No refresh cycle has been opened for the requested scan."""

    def __init__(self, account_id: int, scan_id: int) -> None:
        self.account_id = account_id
        self.scan_id    = scan_id
        super().__init__(f"No refresh cycle for account {account_id}, scan {scan_id}.")


class InvalidStateTransition(VisibilityError):
    """Attempt to move a recommendation backwards in the unlock DAG."""

    def __init__(self, rec_id: int, from_state: str, to_state: str) -> None:
        self.rec_id     = rec_id
        self.from_state = from_state
        self.to_state   = to_state
        super().__init__(
            f"Recommendation {rec_id} cannot move from '{from_state}' to '{to_state}'."
        )

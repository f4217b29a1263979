"""
Event payloads produced for the external notification dispatcher.

The core never delivers notifications. It builds an event and hands it to a
``Notifier``; delivery (email, in-app, webhook) belongs to the collaborator.
Events are published only after the state change they describe is written,
so a subscriber never sees an event for a rolled-back transaction.

``LoggingNotifier`` is the default implementation: it emits each payload as a
structured log line, which the JSON formatter turns into one object per event.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeTransitionEvent:
    """Account moved between optimization and elite maintenance."""

    event_type: ClassVar[str] = "mode_transition"

    account_id:        int
    scan_id:           Optional[int]
    from_mode:         Optional[str]
    to_mode:           str
    score:             int
    reason:            str
    notification_type: str


@dataclass(frozen=True)
class RefreshCycleEvent:
    """A refresh cycle rotated the active set."""

    event_type: ClassVar[str] = "refresh_cycle"

    account_id:        int
    scan_id:           int
    cycle_number:      int
    replaced_count:    int
    implemented_count: int
    skipped_count:     int
    next_cycle_date:   datetime
    new_rec_ids:       list[int] = field(default_factory=list)


@dataclass(frozen=True)
class DetectionEvent:
    """A recommendation was auto-completed from scan evidence."""

    event_type: ClassVar[str] = "auto_detected_implementation"

    account_id:     int
    scan_id:        int
    rec_id:         int
    title:          str
    detection_type: str
    confidence:     float
    evidence:       list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PlateauEvent:
    """Score has stalled despite many implemented recommendations."""

    event_type: ClassVar[str] = "plateau_intervention"

    account_id:        int
    scan_count:        int
    score_range:       int
    implemented_count: int


LifecycleEvent = ModeTransitionEvent | RefreshCycleEvent | DetectionEvent | PlateauEvent


def to_payload(event: LifecycleEvent) -> dict[str, Any]:
    """Flatten an event to a JSON-friendly dict including its ``event_type``."""
    payload = asdict(event)
    payload["event_type"] = event.event_type
    return payload


class Notifier(Protocol):
    """Notification dispatcher contract."""

    def publish(self, event: LifecycleEvent) -> None: ...


class LoggingNotifier:
    """Default notifier: one INFO log line per event."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def publish(self, event: LifecycleEvent) -> None:
        payload = to_payload(event)
        self._log.info(
            "event=%s account_id=%s", event.event_type, payload.get("account_id"),
            extra={"event": payload},
        )


class BufferedNotifier:
    """Holds events until ``flush()``; used to publish only after a step commits."""

    def __init__(self) -> None:
        self.pending: list[LifecycleEvent] = []

    def publish(self, event: LifecycleEvent) -> None:
        self.pending.append(event)

    def flush(self, target: Optional[Notifier]) -> int:
        events, self.pending = self.pending, []
        if target is not None:
            for event in events:
                publish_safely(target, event)
        return len(events)

    def discard(self) -> None:
        self.pending = []


def publish_safely(notifier: Notifier, event: LifecycleEvent) -> None:
    """Publish ``event``; a dispatcher failure is logged and never propagates."""
    try:
        notifier.publish(event)
    except Exception as exc:
        logger.warning("Notifier failed for %s: %s", event.event_type, exc)

"""
Tests for lifecycle events and notifiers.

What we test
------------
1. to_payload() flattens an event and adds its event_type.
2. BufferedNotifier holds events until flush(); discard() drops them.
3. publish_safely() logs and swallows dispatcher failures.
4. LoggingNotifier writes one INFO record per event.
"""

from __future__ import annotations

import logging

from visibility_recs.notify.events import (
    BufferedNotifier,
    DetectionEvent,
    LoggingNotifier,
    PlateauEvent,
    RefreshCycleEvent,
    publish_safely,
    to_payload,
)

from conftest import FIXED_NOW


def _plateau(account_id: int = 1) -> PlateauEvent:
    return PlateauEvent(account_id=account_id, scan_count=4, score_range=12, implemented_count=11)


class _Exploding:
    def publish(self, event):
        raise ConnectionError("webhook unreachable")


class TestPayload:
    def test_plateau(self):
        assert to_payload(_plateau()) == {
            "event_type": "plateau_intervention",
            "account_id": 1,
            "scan_count": 4,
            "score_range": 12,
            "implemented_count": 11,
        }

    def test_lists_copied(self):
        event = RefreshCycleEvent(
            account_id=1, scan_id=2, cycle_number=3, replaced_count=1,
            implemented_count=1, skipped_count=0, next_cycle_date=FIXED_NOW,
            new_rec_ids=[9],
        )
        payload = to_payload(event)
        assert payload["event_type"] == "refresh_cycle"
        assert payload["new_rec_ids"] == [9]
        assert payload["next_cycle_date"] == FIXED_NOW


class TestBufferedNotifier:
    def test_flush_delivers_in_order(self):
        buffer, target = BufferedNotifier(), BufferedNotifier()
        buffer.publish(_plateau(1))
        buffer.publish(_plateau(2))
        assert buffer.flush(target) == 2
        assert [e.account_id for e in target.pending] == [1, 2]
        assert buffer.pending == []

    def test_discard(self):
        buffer, target = BufferedNotifier(), BufferedNotifier()
        buffer.publish(_plateau())
        buffer.discard()
        assert buffer.flush(target) == 0
        assert target.pending == []

    def test_flush_without_target_empties(self):
        buffer = BufferedNotifier()
        buffer.publish(_plateau())
        assert buffer.flush(None) == 1
        assert buffer.pending == []

    def test_flush_survives_failing_target(self):
        buffer = BufferedNotifier()
        buffer.publish(_plateau(1))
        buffer.publish(_plateau(2))
        assert buffer.flush(_Exploding()) == 2


class TestPublishSafely:
    def test_failure_logged_not_raised(self, caplog):
        with caplog.at_level(logging.WARNING, logger="visibility_recs.notify.events"):
            publish_safely(_Exploding(), _plateau())
        assert "webhook unreachable" in caplog.text


class TestLoggingNotifier:
    def test_one_record_per_event(self, caplog):
        log = logging.getLogger("test.notifier")
        event = DetectionEvent(
            account_id=3, scan_id=4, rec_id=5, title="Add FAQ schema",
            detection_type="auto_complete", confidence=75.0, evidence=["Added FAQ schema"],
        )
        with caplog.at_level(logging.INFO, logger="test.notifier"):
            LoggingNotifier(log).publish(event)
        assert len(caplog.records) == 1
        record = caplog.records[0]
        assert "auto_detected_implementation" in record.getMessage()
        assert record.event["rec_id"] == 5

import logging

from conftest import T0
from filaprint_telemetry.telemetry.event_types import (
    EventSeverity,
    StatusEvent,
    StatusEventKind,
)
from filaprint_telemetry.telemetry.events import EventBus
from filaprint_telemetry.telemetry.models import NormalizedSnapshot


def _event(kind=StatusEventKind.CONNECTED):
    return StatusEvent(
        kind=kind,
        printer_id="p1",
        snapshot=NormalizedSnapshot(printer_id="p1", timestamp=T0),
        occurred_at=T0,
    )


class TestEventBus:
    def test_handlers_called_in_subscription_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe(lambda event: calls.append(("first", event.kind)))
        bus.subscribe(lambda event: calls.append(("second", event.kind)))

        delivered = bus.publish(_event())

        assert delivered == 2
        assert calls == [
            ("first", StatusEventKind.CONNECTED),
            ("second", StatusEventKind.CONNECTED),
        ]

    def test_failing_handler_is_isolated(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(broken)
        bus.subscribe(received.append)

        with caplog.at_level(logging.ERROR):
            delivered = bus.publish(_event())

        assert delivered == 1
        assert len(received) == 1
        assert "Status event handler" in caplog.text

    def test_unsubscribe_callable(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)

        unsubscribe()
        bus.publish(_event())

        assert received == []
        assert len(bus) == 0
        assert bus.unsubscribe(received.append) is False

    def test_unsubscribe_during_dispatch_does_not_skip_others(self):
        bus = EventBus()
        received = []
        unsubscribe_holder = []

        def once(event):
            unsubscribe_holder[0]()

        unsubscribe_holder.append(bus.subscribe(once))
        bus.subscribe(received.append)

        bus.publish(_event())
        bus.publish(_event())

        assert len(received) == 2
        assert len(bus) == 1


class TestStatusEvent:
    def test_severity_by_kind(self):
        assert _event(StatusEventKind.CONNECTED).severity is EventSeverity.INFO
        assert _event(StatusEventKind.DISCONNECTED).severity is EventSeverity.WARNING
        assert _event(StatusEventKind.PRINT_FAILED).severity is EventSeverity.ERROR

    def test_to_dict(self):
        event = StatusEvent(
            kind=StatusEventKind.ERROR,
            printer_id="p1",
            snapshot=None,
            occurred_at=T0,
            data={"code": 50348044, "message": None},
        )

        result = event.to_dict()

        assert result["kind"] == "error"
        assert result["occurredAtUtc"] == "2025-03-01T12:00:00Z"
        assert result["snapshot"] is None
        assert result["data"] == {"code": 50348044, "message": None}

    def test_event_ids_are_unique(self):
        assert _event().event_id != _event().event_id

"""Tests that replay captured printer reports to verify lifecycle detection."""

from pathlib import Path

import pytest

from filaprint_telemetry.cli import replay_capture
from filaprint_telemetry.telemetry import PrinterPhase, StatusEventKind, TelemetryNormalizer

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def replayed():
    normalizer = TelemetryNormalizer()
    with (FIXTURES / "x1c-print-lifecycle.jsonl").open("r", encoding="utf-8") as stream:
        events = replay_capture(normalizer, stream)
    return normalizer, events


def test_fixture_replay_print_lifecycle(replayed) -> None:
    """Replay an X1C capture and verify the emitted event sequence.

    The capture contains: idle -> prepare -> running (with a sub-degree
    temperature wobble) -> pause -> running -> finish -> repeated finish.
    """
    normalizer, events = replayed

    assert [event.kind for event in events] == [
        StatusEventKind.CONNECTED,
        StatusEventKind.PROGRESS_UPDATE,
        StatusEventKind.PROGRESS_UPDATE,
        StatusEventKind.PROGRESS_UPDATE,
        StatusEventKind.PROGRESS_UPDATE,
        StatusEventKind.PROGRESS_UPDATE,
        StatusEventKind.PROGRESS_UPDATE,
        StatusEventKind.PRINT_COMPLETED,
    ]
    assert [event.data.get("reason") for event in events[1:7]] == [
        "forced",
        "progress",
        "progress",
        "forced",
        "forced",
        "progress",
    ]
    assert normalizer.get_phase("x1c") is PrinterPhase.IDLE


def test_fixture_replay_completion_details(replayed) -> None:
    normalizer, events = replayed
    completion = events[-1]

    assert completion.data["jobName"] == "calibration_cube"
    usage = completion.data["filamentUsage"]
    assert usage["reported"] is True
    assert usage["totalWeight"] == 9.8
    assert usage["entries"][0]["slot"] == 1

    snapshot = normalizer.get_current_snapshot("x1c")
    assert snapshot.progress.percentage == 100.0
    assert snapshot.progress.current_layer == 120
    assert snapshot.temperatures.nozzle1 == 220.3
    assert snapshot.temperatures.chamber == pytest.approx(24.0)
    assert snapshot.ams.active_slot == 1
    assert snapshot.humidity.average == 4.0


def test_event_timestamps_come_from_capture(replayed) -> None:
    _, events = replayed

    assert events[0].to_dict()["occurredAtUtc"] == "2025-03-01T12:00:00Z"
    assert events[-1].to_dict()["occurredAtUtc"] == "2025-03-01T12:02:10Z"

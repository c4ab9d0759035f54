from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from filaprint_telemetry.telemetry import StatusEvent, TelemetryNormalizer

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
REPORT_TOPIC = "device/01S00C000000001/report"
AMS_TOPIC = "device/01S00C000000001/ams"


class FakeClock:
    """Test clock that returns a fixed or manually advanced time."""

    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def report(**fields) -> dict:
    """Wrap fields the way Bambu firmware does: under a ``print`` object."""
    return {"print": dict(fields)}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def normalizer(clock: FakeClock) -> TelemetryNormalizer:
    return TelemetryNormalizer(clock=clock)


@pytest.fixture
def recorded(normalizer: TelemetryNormalizer) -> List[StatusEvent]:
    events: List[StatusEvent] = []
    normalizer.subscribe(events.append)
    return events

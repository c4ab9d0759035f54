"""Progress-update cadence for printing printers.

Bambu printers push a report roughly every second while printing, and most
of them only move a temperature by a fraction of a degree. Subscribers want
an update when something meaningful moved, plus a periodic heartbeat so a
slow print still shows signs of life.

The decision for each candidate update is:

- fingerprint unchanged since the last emitted update: never emit
- progress moved by at least ``min_progress_delta`` (or the layer changed)
- any temperature moved by at least ``min_temperature_delta``
- the reported state text changed
- ``min_interval_seconds`` elapsed since the last emitted update

Timing uses the receipt timestamps of the messages themselves, so replaying
a capture produces the same decisions as the live run did.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from .models import NormalizedSnapshot

LOGGER = logging.getLogger(__name__)

# Precision for float normalization in hash computation
HASH_FLOAT_PRECISION = 4


class TelemetryCadenceError(ValueError):
    """Raised when cadence thresholds are invalid."""


@dataclass(frozen=True)
class ProgressThresholds:
    """Thresholds for progress-update emission.

    Attributes:
        min_progress_delta: Percentage points of progress that count as movement
        min_temperature_delta: Degrees Celsius on any sensor that count as movement
        min_interval_seconds: Heartbeat; emit a changed fingerprint after this long
    """

    min_progress_delta: float = 1.0
    min_temperature_delta: float = 1.0
    min_interval_seconds: float = 30.0

    def __post_init__(self) -> None:
        for name in ("min_progress_delta", "min_temperature_delta", "min_interval_seconds"):
            if getattr(self, name) < 0:
                raise TelemetryCadenceError(f"{name} must not be negative")


@dataclass
class ProgressCadenceState:
    """Per-printer record of the last emitted progress update."""

    fingerprint: Optional[str] = None
    last_snapshot: Optional[NormalizedSnapshot] = None
    last_emitted_at: Optional[datetime] = None

    def reset(self) -> None:
        self.fingerprint = None
        self.last_snapshot = None
        self.last_emitted_at = None


@dataclass(frozen=True)
class CadenceDecision:
    """Result of cadence evaluation.

    Attributes:
        should_emit: True if a progress-update should go out
        reason: Short tag explaining the decision, useful in debug logs
    """

    should_emit: bool
    reason: str


def _normalize_for_hash(value: Any) -> Any:
    """Normalize a value for deterministic hashing."""
    if isinstance(value, dict):
        return {key: _normalize_for_hash(value[key]) for key in sorted(value.keys())}
    if isinstance(value, list):
        return [_normalize_for_hash(item) for item in value]
    if isinstance(value, float):
        return round(value, HASH_FLOAT_PRECISION)
    return value


def compute_payload_hash(payload: Any) -> str:
    """Compute a deterministic hash for a JSON-compatible payload."""
    normalized = _normalize_for_hash(payload)
    blob = json.dumps(normalized, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.md5(blob).hexdigest()


def progress_fingerprint(snapshot: NormalizedSnapshot) -> str:
    """Hash of the readings a progress update reports."""
    return compute_payload_hash(
        {
            "temperatures": snapshot.temperatures.as_dict(),
            "progress": snapshot.progress.as_dict(),
            "state": snapshot.status.state,
        }
    )


class ProgressCadence:
    """Decides whether a printing snapshot deserves a progress-update.

    Thread-safety: This class holds no state of its own; callers pass the
    per-printer :class:`ProgressCadenceState` and must serialise access to it.
    """

    def __init__(self, thresholds: Optional[ProgressThresholds] = None) -> None:
        self._thresholds = thresholds or ProgressThresholds()

    @property
    def thresholds(self) -> ProgressThresholds:
        return self._thresholds

    def evaluate(
        self,
        state: ProgressCadenceState,
        snapshot: NormalizedSnapshot,
        *,
        force: bool = False,
    ) -> CadenceDecision:
        """Evaluate ``snapshot`` against the last emitted update.

        ``force`` is used for phase transitions (start, pause, resume), which
        always emit. The state is updated when the decision is to emit.
        """

        fingerprint = progress_fingerprint(snapshot)
        decision = self._decide(state, snapshot, fingerprint, force)
        if decision.should_emit:
            state.fingerprint = fingerprint
            state.last_snapshot = snapshot
            state.last_emitted_at = snapshot.timestamp
        else:
            LOGGER.debug(
                "Progress update for %s suppressed (%s)",
                snapshot.printer_id,
                decision.reason,
            )
        return decision

    def _decide(
        self,
        state: ProgressCadenceState,
        snapshot: NormalizedSnapshot,
        fingerprint: str,
        force: bool,
    ) -> CadenceDecision:
        if force:
            return CadenceDecision(True, "forced")

        previous = state.last_snapshot
        if previous is None:
            return CadenceDecision(True, "first")

        if fingerprint == state.fingerprint:
            return CadenceDecision(False, "dedup")

        thresholds = self._thresholds
        if _moved(
            previous.progress.percentage,
            snapshot.progress.percentage,
            thresholds.min_progress_delta,
        ):
            return CadenceDecision(True, "progress")

        if previous.progress.current_layer != snapshot.progress.current_layer:
            return CadenceDecision(True, "layer")

        if previous.status.state != snapshot.status.state:
            return CadenceDecision(True, "state")

        before = previous.temperatures.as_dict()
        after = snapshot.temperatures.as_dict()
        for sensor, value in after.items():
            if _moved(before.get(sensor), value, thresholds.min_temperature_delta):
                return CadenceDecision(True, f"temperature:{sensor}")

        if state.last_emitted_at is not None:
            elapsed = (snapshot.timestamp - state.last_emitted_at).total_seconds()
            if elapsed >= thresholds.min_interval_seconds:
                return CadenceDecision(True, "interval")

        return CadenceDecision(False, "below-threshold")


def _moved(before: Optional[float], after: Optional[float], delta: float) -> bool:
    if before is None and after is None:
        return False
    if before is None or after is None:
        return True
    return abs(after - before) >= delta

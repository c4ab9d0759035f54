"""Printer phase resolution for Bambu-style reports.

Two layers:

1. ``resolve_reported_state`` maps what the firmware says (``gcode_state``,
   falling back to the numeric ``mc_print_stage``) onto a small canonical
   vocabulary. It is stateless.
2. ``classify`` combines the reported state with the printer's current phase
   and job flag to produce the next phase plus the job outcome, if any.

Neither function has side effects; the normalizer owns the session state and
turns outcomes into events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

__all__ = [
    "JobOutcome",
    "PhaseContext",
    "PhaseTransition",
    "PrinterPhase",
    "ReportedState",
    "STAGE_NAMES",
    "classify",
    "resolve_reported_state",
]


class PrinterPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    IDLE = "idle"
    PRINTING = "printing"
    PAUSED = "paused"
    ERROR = "error"


class ReportedState(str, Enum):
    """Canonical firmware state."""

    IDLE = "idle"
    PRINTING = "printing"
    PAUSED = "paused"
    FINISHED = "finished"
    FAILED = "failed"
    ERROR = "error"
    UNKNOWN = "unknown"


class JobOutcome(str, Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


_GCODE_STATE_MAP = {
    "idle": ReportedState.IDLE,
    "prepare": ReportedState.PRINTING,
    "slicing": ReportedState.PRINTING,
    "running": ReportedState.PRINTING,
    "printing": ReportedState.PRINTING,
    "pause": ReportedState.PAUSED,
    "paused": ReportedState.PAUSED,
    "finish": ReportedState.FINISHED,
    "finished": ReportedState.FINISHED,
    "failed": ReportedState.FAILED,
    "error": ReportedState.ERROR,
}

_STAGE_MAP = {
    0: ReportedState.IDLE,
    1: ReportedState.PRINTING,
    2: ReportedState.PAUSED,
    3: ReportedState.ERROR,
    4: ReportedState.FINISHED,
}

STAGE_NAMES = {
    0: "IDLE",
    1: "RUNNING",
    2: "PAUSE",
    3: "ERROR",
    4: "FINISH",
}


def resolve_reported_state(
    gcode_state: Optional[str], stage: Optional[int] = None
) -> ReportedState:
    """Map firmware state fields onto :class:`ReportedState`.

    ``gcode_state`` wins when it is a known value; the numeric stage is only
    consulted when the text state is missing or unrecognised.
    """

    normalized = (gcode_state or "").strip().lower()
    if normalized in _GCODE_STATE_MAP:
        return _GCODE_STATE_MAP[normalized]
    if stage is not None and stage in _STAGE_MAP:
        return _STAGE_MAP[stage]
    return ReportedState.UNKNOWN


@dataclass(slots=True, frozen=True)
class PhaseContext:
    """Inputs for one classification step, taken from the merged snapshot."""

    reported: ReportedState
    has_job: bool
    progress: Optional[float]
    error_active: bool


@dataclass(slots=True, frozen=True)
class PhaseTransition:
    phase: PrinterPhase
    job_active: bool
    outcome: Optional[JobOutcome] = None


def classify(
    current: PrinterPhase, job_active: bool, context: PhaseContext
) -> PhaseTransition:
    """Return the next phase for a printer that just reported ``context``.

    ``job_active`` is true between the start of a job and its completion or
    failure. It survives disconnects and error phases so a job that ends
    while the printer is in either still produces exactly one outcome.
    """

    reported = context.reported
    progress_done = context.progress is not None and context.progress >= 100

    if job_active:
        if reported is ReportedState.FAILED:
            return PhaseTransition(PrinterPhase.ERROR, False, JobOutcome.FAILED)
        if reported is ReportedState.FINISHED or progress_done:
            phase = PrinterPhase.ERROR if context.error_active else PrinterPhase.IDLE
            return PhaseTransition(phase, False, JobOutcome.COMPLETED)
        if reported is ReportedState.IDLE:
            # Bambu firmware drops straight to IDLE when a job is cancelled.
            phase = PrinterPhase.ERROR if context.error_active else PrinterPhase.IDLE
            return PhaseTransition(phase, False, JobOutcome.ABORTED)

    if context.error_active or reported in (ReportedState.FAILED, ReportedState.ERROR):
        return PhaseTransition(PrinterPhase.ERROR, job_active)

    if job_active:
        if reported is ReportedState.PAUSED:
            outcome = JobOutcome.PAUSED if current is not PrinterPhase.PAUSED else None
            return PhaseTransition(PrinterPhase.PAUSED, True, outcome)
        if reported is ReportedState.PRINTING:
            outcome = JobOutcome.RESUMED if current is not PrinterPhase.PRINTING else None
            return PhaseTransition(PrinterPhase.PRINTING, True, outcome)
        # State not reported in this message: keep whatever we were doing.
        if current in (PrinterPhase.PRINTING, PrinterPhase.PAUSED):
            return PhaseTransition(current, True)
        return PhaseTransition(PrinterPhase.PRINTING, True, JobOutcome.RESUMED)

    starting = (
        context.has_job
        and not progress_done
        and reported
        in (ReportedState.PRINTING, ReportedState.PAUSED, ReportedState.UNKNOWN)
    )
    if starting:
        phase = (
            PrinterPhase.PAUSED
            if reported is ReportedState.PAUSED
            else PrinterPhase.PRINTING
        )
        return PhaseTransition(phase, True, JobOutcome.STARTED)

    return PhaseTransition(PrinterPhase.IDLE, False)

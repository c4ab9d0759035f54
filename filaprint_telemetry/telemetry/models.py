"""Immutable snapshot records produced by the telemetry normalizer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .ams import AmsReport


@dataclass(frozen=True, slots=True)
class Temperatures:
    nozzle1: Optional[float] = None
    nozzle2: Optional[float] = None
    bed: Optional[float] = None
    chamber: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "nozzle1": self.nozzle1,
            "nozzle2": self.nozzle2,
            "bed": self.bed,
            "chamber": self.chamber,
        }


@dataclass(frozen=True, slots=True)
class Humidity:
    slot1: Optional[float] = None
    slot2: Optional[float] = None
    slot3: Optional[float] = None
    slot4: Optional[float] = None
    average: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "slot1": self.slot1,
            "slot2": self.slot2,
            "slot3": self.slot3,
            "slot4": self.slot4,
            "average": self.average,
        }


@dataclass(frozen=True, slots=True)
class Progress:
    percentage: Optional[float] = None
    current_layer: Optional[int] = None
    total_layers: Optional[int] = None
    remaining_minutes: Optional[int] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "percentage": self.percentage,
            "currentLayer": self.current_layer,
            "totalLayers": self.total_layers,
            "remainingMinutes": self.remaining_minutes,
        }


@dataclass(frozen=True, slots=True)
class JobStatus:
    """Job status as reported by the printer.

    ``state`` is the vendor state string (``RUNNING``, ``FINISH``...) when the
    firmware sends one, otherwise the name derived from the numeric stage.
    Error codes are passed through untouched.
    """

    state: Optional[str] = None
    job_name: Optional[str] = None
    filename: Optional[str] = None
    error_code: Any = None
    error_message: Optional[str] = None

    @property
    def job_label(self) -> Optional[str]:
        return self.job_name or self.filename

    def as_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state,
            "jobName": self.job_name,
            "filename": self.filename,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
        }


@dataclass(frozen=True, slots=True)
class NormalizedSnapshot:
    """Latest normalized telemetry for one printer.

    Every leaf is either a resolved reading or ``None``; a zero is always a
    real reading.
    """

    printer_id: str
    timestamp: datetime
    temperatures: Temperatures = Temperatures()
    humidity: Humidity = Humidity()
    progress: Progress = Progress()
    status: JobStatus = JobStatus()
    ams: Optional[AmsReport] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "printerId": self.printer_id,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "temperatures": self.temperatures.as_dict(),
            "humidity": self.humidity.as_dict(),
            "progress": self.progress.as_dict(),
            "status": self.status.as_dict(),
            "ams": self.ams.as_dict() if self.ams else None,
        }

    def same_readings(self, other: Optional["NormalizedSnapshot"]) -> bool:
        """True when ``other`` differs from this snapshot only by timestamp."""

        if other is None:
            return False
        return (
            self.temperatures == other.temperatures
            and self.humidity == other.humidity
            and self.progress == other.progress
            and self.status == other.status
            and self.ams == other.ams
        )

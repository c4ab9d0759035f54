"""Event type definitions for the telemetry pipeline.

Status events are emitted by the normalizer whenever a printer's lifecycle
changes in a way downstream listeners care about:

- connected / disconnected: transport-level notifications
- progress-update: meaningful progress or temperature movement while printing
- print-completed / print-failed: end of a job, with filament usage if known
- error: a vendor error code, passed through verbatim

Events carry the snapshot that was current when they were emitted.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .models import NormalizedSnapshot


class EventSeverity(str, Enum):
    """Event severity levels for display and log routing."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class StatusEventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    PROGRESS_UPDATE = "progress-update"
    PRINT_COMPLETED = "print-completed"
    PRINT_FAILED = "print-failed"
    ERROR = "error"


EVENT_SEVERITY: Dict[StatusEventKind, EventSeverity] = {
    StatusEventKind.CONNECTED: EventSeverity.INFO,
    StatusEventKind.DISCONNECTED: EventSeverity.WARNING,
    StatusEventKind.PROGRESS_UPDATE: EventSeverity.INFO,
    StatusEventKind.PRINT_COMPLETED: EventSeverity.INFO,
    StatusEventKind.PRINT_FAILED: EventSeverity.ERROR,
    StatusEventKind.ERROR: EventSeverity.ERROR,
}


def generate_event_id() -> str:
    """Generate a time-ordered event ID where the runtime supports UUID v7."""
    try:
        return str(uuid.uuid7())  # type: ignore[attr-defined]
    except AttributeError:
        return str(uuid.uuid4())


@dataclass(frozen=True)
class StatusEvent:
    """A printer lifecycle transition.

    Attributes:
        kind: Which transition occurred
        printer_id: Printer the event belongs to
        snapshot: Snapshot current at emission time (None before the first report)
        occurred_at: Receipt time of the message that caused the event (UTC)
        event_id: Unique identifier
        data: Kind-specific details (filament usage, raw error code/message)
    """

    kind: StatusEventKind
    printer_id: str
    snapshot: Optional[NormalizedSnapshot]
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=generate_event_id)
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def severity(self) -> EventSeverity:
        return EVENT_SEVERITY[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "kind": self.kind.value,
            "printerId": self.printer_id,
            "severity": self.severity.value,
            "occurredAtUtc": self.occurred_at.isoformat().replace("+00:00", "Z"),
            "snapshot": self.snapshot.as_dict() if self.snapshot else None,
        }
        if self.data:
            result["data"] = self.data
        return result

    def __repr__(self) -> str:
        return (
            f"StatusEvent(kind={self.kind.value}, "
            f"printer={self.printer_id}, "
            f"id={self.event_id[:8]}...)"
        )

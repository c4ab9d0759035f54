"""Snapshot store and last-raw-message buffer for the telemetry pipeline."""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .models import NormalizedSnapshot

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawMessage:
    """The most recent payload received from any printer, as received."""

    printer_id: str
    topic: str
    timestamp: datetime
    payload: Any

    def as_dict(self) -> Dict[str, Any]:
        return {
            "printerId": self.printer_id,
            "topic": self.topic,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "payload": self.payload,
        }


class RawMessageBuffer:
    """Single-slot buffer holding the last raw message across all printers.

    Every message overwrites the slot, malformed ones included, so the
    diagnostics endpoint shows exactly what arrived last.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._latest: Optional[RawMessage] = None

    def record(
        self, printer_id: str, topic: str, payload: Any, timestamp: datetime
    ) -> RawMessage:
        message = RawMessage(
            printer_id=printer_id,
            topic=topic,
            timestamp=timestamp,
            payload=copy.deepcopy(payload),
        )
        with self._lock:
            self._latest = message
        return message

    def latest(self) -> Optional[RawMessage]:
        with self._lock:
            return self._latest

    def clear(self) -> None:
        with self._lock:
            self._latest = None


class SnapshotStore:
    """Latest :class:`NormalizedSnapshot` per printer.

    Snapshots are immutable, so publishing is a reference swap and readers
    never observe a partially built snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snapshots: Dict[str, NormalizedSnapshot] = {}

    def publish(self, snapshot: NormalizedSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.printer_id] = snapshot

    def get(self, printer_id: str) -> Optional[NormalizedSnapshot]:
        with self._lock:
            return self._snapshots.get(printer_id)

    def remove(self, printer_id: str) -> Optional[NormalizedSnapshot]:
        with self._lock:
            removed = self._snapshots.pop(printer_id, None)
        if removed is not None:
            LOGGER.debug("Dropped snapshot for printer %s", printer_id)
        return removed

    def printer_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._snapshots)

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            snapshots = list(self._snapshots.values())
        return {snapshot.printer_id: snapshot.as_dict() for snapshot in snapshots}

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshots)

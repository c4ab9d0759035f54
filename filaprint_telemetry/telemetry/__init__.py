"""Printer report normalization: field resolution, AMS mapping, status events."""

from __future__ import annotations

from .ams import AmsReport, AmsStatus, SlotMapping, SlotState, map_slots, tray_to_slot
from .cadence import ProgressCadence, ProgressThresholds
from .event_types import EventSeverity, StatusEvent, StatusEventKind
from .events import EventBus, EventHandler
from .models import Humidity, JobStatus, NormalizedSnapshot, Progress, Temperatures
from .normalizer import TelemetryNormalizer
from .resolver import (
    MetricKind,
    MetricSpec,
    PathExpression,
    PathSyntaxError,
    Resolution,
    Retention,
    ScaleRule,
    resolve,
)
from .state_engine import PrinterPhase
from .state_store import RawMessage
from .usage import USAGE_UNKNOWN, FilamentUsage, extract_usage

__all__ = [
    "AmsReport",
    "AmsStatus",
    "EventBus",
    "EventHandler",
    "EventSeverity",
    "FilamentUsage",
    "Humidity",
    "JobStatus",
    "MetricKind",
    "MetricSpec",
    "NormalizedSnapshot",
    "PathExpression",
    "PathSyntaxError",
    "PrinterPhase",
    "Progress",
    "ProgressCadence",
    "ProgressThresholds",
    "RawMessage",
    "Resolution",
    "Retention",
    "ScaleRule",
    "SlotMapping",
    "SlotState",
    "StatusEvent",
    "StatusEventKind",
    "TelemetryNormalizer",
    "Temperatures",
    "USAGE_UNKNOWN",
    "extract_usage",
    "map_slots",
    "resolve",
    "tray_to_slot",
]

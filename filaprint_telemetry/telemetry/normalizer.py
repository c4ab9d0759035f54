"""Telemetry normalizer: raw printer reports in, snapshots and status events out.

For every report message the normalizer

1. stores a copy in the global last-raw-message slot,
2. resolves each metric of the table against the payload and merges the
   result into the printer's retained values (sticky or fresh per metric),
3. maps AMS trays to slots,
4. publishes a new immutable :class:`NormalizedSnapshot`,
5. classifies the printer's phase and emits :class:`StatusEvent`s.

Ingestion for one printer is serialised by a per-printer lock; different
printers proceed in parallel. Events are dispatched while that lock is held,
so subscribers see one printer's events in emission order.

Nothing here raises into the transport. Malformed payloads are logged and
dropped; unexpected failures are logged with a traceback and the prior
snapshot is kept.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from . import metrics as m
from .ams import AmsReport, map_slots
from .cadence import ProgressCadence, ProgressCadenceState, ProgressThresholds
from .event_types import StatusEvent, StatusEventKind
from .events import EventBus, EventHandler
from .models import Humidity, JobStatus, NormalizedSnapshot, Progress, Temperatures
from .resolver import MetricSpec, Retention, resolve
from .state_engine import (
    STAGE_NAMES,
    JobOutcome,
    PhaseContext,
    PrinterPhase,
    classify,
    resolve_reported_state,
)
from .state_store import RawMessage, RawMessageBuffer, SnapshotStore
from .usage import UNKNOWN_USAGE, FilamentUsage, extract_usage

if TYPE_CHECKING:
    from ..config import TelemetryConfig

LOGGER = logging.getLogger(__name__)

_FORCED_OUTCOMES = (JobOutcome.STARTED, JobOutcome.PAUSED, JobOutcome.RESUMED)


@dataclass
class PrinterSession:
    """Mutable per-printer state. Only touched while ``lock`` is held."""

    printer_id: str
    lock: threading.RLock = field(default_factory=threading.RLock)
    phase: PrinterPhase = PrinterPhase.DISCONNECTED
    job_active: bool = False
    values: Dict[str, Any] = field(default_factory=dict)
    sources: Dict[str, str] = field(default_factory=dict)
    snapshot: Optional[NormalizedSnapshot] = None
    cadence: ProgressCadenceState = field(default_factory=ProgressCadenceState)
    reported_error: Any = None
    usage: FilamentUsage = UNKNOWN_USAGE
    # Set by remove_printer; late callers holding this session must not publish.
    removed: bool = False


class TelemetryNormalizer:
    """Normalizes printer reports and classifies printer lifecycle events."""

    def __init__(
        self,
        *,
        metrics: Optional[Mapping[str, MetricSpec]] = None,
        derived_retention: Optional[Mapping[str, Retention]] = None,
        thresholds: Optional[ProgressThresholds] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._metrics: Dict[str, MetricSpec] = dict(
            metrics if metrics is not None else m.build_metric_table()
        )
        self._derived_retention: Dict[str, Retention] = dict(
            derived_retention
            if derived_retention is not None
            else m.derived_retention()
        )
        self._cadence = ProgressCadence(thresholds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._registry_lock = threading.Lock()
        self._sessions: Dict[str, PrinterSession] = {}
        self._store = SnapshotStore()
        self._raw = RawMessageBuffer()
        self._bus = EventBus()

    @classmethod
    def from_config(
        cls,
        config: "TelemetryConfig",
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "TelemetryNormalizer":
        metrics = m.build_metric_table(
            default_retention=config.default_retention,
            retention_overrides=config.retention_overrides,
            scale_overrides=config.scale_overrides,
        )
        derived = m.derived_retention(
            default_retention=config.default_retention,
            retention_overrides=config.retention_overrides,
        )
        thresholds = ProgressThresholds(
            min_progress_delta=config.progress_min_delta,
            min_temperature_delta=config.temperature_min_delta,
            min_interval_seconds=config.progress_min_interval_seconds,
        )
        return cls(
            metrics=metrics,
            derived_retention=derived,
            thresholds=thresholds,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Subscriptions and queries

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        return self._bus.subscribe(handler)

    def unsubscribe(self, handler: EventHandler) -> bool:
        return self._bus.unsubscribe(handler)

    def get_current_snapshot(self, printer_id: str) -> Optional[NormalizedSnapshot]:
        return self._store.get(printer_id)

    def get_last_raw_message(self) -> Optional[RawMessage]:
        return self._raw.latest()

    def get_phase(self, printer_id: str) -> Optional[PrinterPhase]:
        session = self._existing_session(printer_id)
        if session is None:
            return None
        with session.lock:
            return session.phase

    def get_field_sources(self, printer_id: str) -> Dict[str, str]:
        """Path each retained metric was last resolved from."""

        session = self._existing_session(printer_id)
        if session is None:
            return {}
        with session.lock:
            return dict(session.sources)

    def printer_ids(self) -> List[str]:
        with self._registry_lock:
            return sorted(self._sessions)

    @property
    def metric_table(self) -> Mapping[str, MetricSpec]:
        return dict(self._metrics)

    # ------------------------------------------------------------------
    # Connection lifecycle

    def notify_connected(
        self, printer_id: str, at: Optional[datetime] = None
    ) -> Optional[StatusEvent]:
        session = self._session(printer_id)
        with session.lock:
            if session.removed or session.phase is not PrinterPhase.DISCONNECTED:
                return None
            event = self._connected_event(session, at or self._clock())
            session.phase = PrinterPhase.CONNECTED
            self._dispatch([event])
        return event

    def notify_disconnected(
        self, printer_id: str, at: Optional[datetime] = None
    ) -> Optional[StatusEvent]:
        session = self._existing_session(printer_id)
        if session is None:
            return None
        with session.lock:
            if session.removed or session.phase is PrinterPhase.DISCONNECTED:
                return None
            LOGGER.info(
                "Printer %s disconnected (was %s)", printer_id, session.phase.value
            )
            session.phase = PrinterPhase.DISCONNECTED
            event = StatusEvent(
                kind=StatusEventKind.DISCONNECTED,
                printer_id=printer_id,
                snapshot=session.snapshot,
                occurred_at=at or self._clock(),
            )
            self._dispatch([event])
        return event

    def remove_printer(self, printer_id: str) -> bool:
        """Forget a printer entirely, including its retained snapshot."""

        with self._registry_lock:
            session = self._sessions.pop(printer_id, None)
        if session is None:
            return False
        with session.lock:
            session.removed = True
            self._store.remove(printer_id)
        LOGGER.info("Removed printer %s", printer_id)
        return True

    # ------------------------------------------------------------------
    # Ingestion

    def ingest(
        self,
        printer_id: str,
        topic: str,
        payload: Any,
        received_at: Optional[datetime] = None,
    ) -> List[StatusEvent]:
        """Normalize one report message and return the events it produced."""

        received_at = received_at or self._clock()
        self._raw.record(printer_id, topic, payload, received_at)

        if not isinstance(payload, Mapping):
            LOGGER.error(
                "Dropping malformed report from %s on %s: expected an object, got %s",
                printer_id,
                topic,
                type(payload).__name__,
            )
            return []

        session = self._session(printer_id)
        with session.lock:
            if session.removed:
                LOGGER.debug(
                    "Dropping report from %s on %s: printer was removed", printer_id, topic
                )
                return []
            try:
                events = self._ingest_locked(session, payload, received_at)
            except Exception:
                LOGGER.exception(
                    "Failed to normalize report from %s on %s; keeping previous snapshot",
                    printer_id,
                    topic,
                )
                return []
            self._dispatch(events)
        return events

    def _ingest_locked(
        self,
        session: PrinterSession,
        payload: Mapping[str, Any],
        received_at: datetime,
    ) -> List[StatusEvent]:
        events: List[StatusEvent] = []
        current_phase = session.phase
        if current_phase is PrinterPhase.DISCONNECTED:
            events.append(self._connected_event(session, received_at))
            current_phase = PrinterPhase.CONNECTED

        values = dict(session.values)
        sources = dict(session.sources)
        self._merge_metrics(payload, values, sources)
        self._merge_ams(map_slots(payload), values, sources)

        snapshot = self._build_snapshot(session.printer_id, values, received_at)

        context = PhaseContext(
            reported=resolve_reported_state(values.get(m.STATE), values.get(m.STAGE)),
            has_job=bool(snapshot.status.job_label),
            progress=snapshot.progress.percentage,
            error_active=m.error_reported(values.get(m.ERROR_CODE)),
        )
        transition = classify(current_phase, session.job_active, context)

        usage = extract_usage(payload)
        if transition.outcome is JobOutcome.STARTED:
            job_usage = usage if usage.reported else UNKNOWN_USAGE
        else:
            job_usage = usage if usage.reported else session.usage

        # Everything below mutates the session; nothing after this point
        # is expected to fail.
        session.values = values
        session.sources = sources
        session.snapshot = snapshot
        session.phase = transition.phase
        session.job_active = transition.job_active
        session.usage = job_usage
        self._store.publish(snapshot)

        if current_phase is not transition.phase:
            LOGGER.info(
                "Printer %s: %s -> %s",
                session.printer_id,
                current_phase.value,
                transition.phase.value,
            )

        events.extend(self._job_events(session, transition.outcome, snapshot, received_at))
        error_event = self._error_event(session, values, snapshot, received_at)
        if error_event is not None:
            events.append(error_event)
        return events

    def _merge_metrics(
        self,
        payload: Mapping[str, Any],
        values: Dict[str, Any],
        sources: Dict[str, str],
    ) -> None:
        for name, spec in self._metrics.items():
            resolution = resolve(payload, spec)
            if resolution.resolved:
                values[name] = resolution.value
                sources[name] = resolution.path
            elif spec.retention is Retention.FRESH:
                values.pop(name, None)
                sources.pop(name, None)

    def _merge_ams(
        self, report: AmsReport, values: Dict[str, Any], sources: Dict[str, str]
    ) -> None:
        derived: Dict[str, Any] = {}
        if report.present:
            derived[m.AMS] = report
            if report.mapping is not None:
                for name, slot in zip(m.HUMIDITY_SLOTS, report.mapping.slots):
                    derived[name] = slot.humidity
                derived[m.HUMIDITY_AVERAGE] = report.mapping.average_humidity

        for name in m.DERIVED_METRICS:
            value = derived.get(name)
            if value is not None:
                values[name] = value
                if name != m.AMS and report.trace.humidity_path:
                    sources[name] = report.trace.humidity_path
                elif name == m.AMS and report.trace.source:
                    sources[name] = report.trace.source
            elif self._derived_retention.get(name, Retention.STICKY) is Retention.FRESH:
                values.pop(name, None)
                sources.pop(name, None)

    @staticmethod
    def _build_snapshot(
        printer_id: str, values: Mapping[str, Any], timestamp: datetime
    ) -> NormalizedSnapshot:
        state = values.get(m.STATE)
        if state is None and values.get(m.STAGE) is not None:
            state = STAGE_NAMES.get(values[m.STAGE])

        return NormalizedSnapshot(
            printer_id=printer_id,
            timestamp=timestamp,
            temperatures=Temperatures(
                nozzle1=values.get(m.NOZZLE1),
                nozzle2=values.get(m.NOZZLE2),
                bed=values.get(m.BED),
                chamber=values.get(m.CHAMBER),
            ),
            humidity=Humidity(
                slot1=values.get(m.HUMIDITY_SLOTS[0]),
                slot2=values.get(m.HUMIDITY_SLOTS[1]),
                slot3=values.get(m.HUMIDITY_SLOTS[2]),
                slot4=values.get(m.HUMIDITY_SLOTS[3]),
                average=values.get(m.HUMIDITY_AVERAGE),
            ),
            progress=Progress(
                percentage=values.get(m.PROGRESS),
                current_layer=values.get(m.CURRENT_LAYER),
                total_layers=values.get(m.TOTAL_LAYERS),
                remaining_minutes=values.get(m.REMAINING_MINUTES),
            ),
            status=JobStatus(
                state=state,
                job_name=values.get(m.JOB_NAME),
                filename=values.get(m.FILENAME),
                error_code=values.get(m.ERROR_CODE),
                error_message=values.get(m.ERROR_MESSAGE),
            ),
            ams=values.get(m.AMS),
        )

    def _job_events(
        self,
        session: PrinterSession,
        outcome: Optional[JobOutcome],
        snapshot: NormalizedSnapshot,
        received_at: datetime,
    ) -> List[StatusEvent]:
        printer_id = session.printer_id

        if outcome is JobOutcome.COMPLETED:
            session.cadence.reset()
            LOGGER.info(
                "Printer %s completed %s", printer_id, snapshot.status.job_label
            )
            return [
                self._job_end_event(
                    StatusEventKind.PRINT_COMPLETED, session, snapshot, received_at
                )
            ]

        if outcome in (JobOutcome.FAILED, JobOutcome.ABORTED):
            session.cadence.reset()
            LOGGER.warning(
                "Printer %s %s %s",
                printer_id,
                outcome.value,
                snapshot.status.job_label,
            )
            return [
                self._job_end_event(
                    StatusEventKind.PRINT_FAILED,
                    session,
                    snapshot,
                    received_at,
                    reason=outcome.value,
                )
            ]

        if session.phase not in (PrinterPhase.PRINTING, PrinterPhase.PAUSED):
            return []

        if outcome is JobOutcome.STARTED:
            session.cadence.reset()
        decision = self._cadence.evaluate(
            session.cadence, snapshot, force=outcome in _FORCED_OUTCOMES
        )
        if not decision.should_emit:
            return []
        return [
            StatusEvent(
                kind=StatusEventKind.PROGRESS_UPDATE,
                printer_id=printer_id,
                snapshot=snapshot,
                occurred_at=received_at,
                data={"reason": decision.reason},
            )
        ]

    @staticmethod
    def _job_end_event(
        kind: StatusEventKind,
        session: PrinterSession,
        snapshot: NormalizedSnapshot,
        received_at: datetime,
        *,
        reason: Optional[str] = None,
    ) -> StatusEvent:
        data: Dict[str, Any] = {
            "jobName": snapshot.status.job_label,
            "filamentUsage": session.usage.as_dict(),
        }
        if reason is not None:
            data["reason"] = reason
        session.usage = UNKNOWN_USAGE
        return StatusEvent(
            kind=kind,
            printer_id=session.printer_id,
            snapshot=snapshot,
            occurred_at=received_at,
            data=data,
        )

    @staticmethod
    def _error_event(
        session: PrinterSession,
        values: Mapping[str, Any],
        snapshot: NormalizedSnapshot,
        received_at: datetime,
    ) -> Optional[StatusEvent]:
        code = values.get(m.ERROR_CODE)
        if not m.error_reported(code):
            if session.reported_error is not None:
                LOGGER.info("Printer %s error cleared", session.printer_id)
            session.reported_error = None
            return None
        if code == session.reported_error:
            return None

        session.reported_error = code
        message = values.get(m.ERROR_MESSAGE)
        LOGGER.warning(
            "Printer %s reported error %s: %s", session.printer_id, code, message
        )
        return StatusEvent(
            kind=StatusEventKind.ERROR,
            printer_id=session.printer_id,
            snapshot=snapshot,
            occurred_at=received_at,
            data={"code": code, "message": message},
        )

    # ------------------------------------------------------------------
    # Internals

    @staticmethod
    def _connected_event(session: PrinterSession, at: datetime) -> StatusEvent:
        LOGGER.info("Printer %s connected", session.printer_id)
        return StatusEvent(
            kind=StatusEventKind.CONNECTED,
            printer_id=session.printer_id,
            snapshot=session.snapshot,
            occurred_at=at,
        )

    def _dispatch(self, events: List[StatusEvent]) -> None:
        for event in events:
            self._bus.publish(event)

    def _session(self, printer_id: str) -> PrinterSession:
        with self._registry_lock:
            session = self._sessions.get(printer_id)
            if session is None:
                session = PrinterSession(printer_id=printer_id)
                self._sessions[printer_id] = session
                LOGGER.debug("Tracking new printer %s", printer_id)
            return session

    def _existing_session(self, printer_id: str) -> Optional[PrinterSession]:
        with self._registry_lock:
            return self._sessions.get(printer_id)

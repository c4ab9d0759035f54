"""Main application entry-point for filaprint-telemetry."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Dict, List, Optional, Set

from .adapters import MQTTConnectionError, PrinterReportClient
from .config import AppConfig, PrinterConfig, load_config
from .health import DiagnosticsServer, HealthReporter
from .logging import configure_logging
from .telemetry import StatusEvent, StatusEventKind, TelemetryNormalizer

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[[PrinterConfig, TelemetryNormalizer], PrinterReportClient]

RECONNECT_INITIAL_SECONDS = 1.0
RECONNECT_MAX_SECONDS = 30.0


class FilaprintTelemetryApp:
    """Coordinates application startup and shutdown.

    Wires one :class:`PrinterReportClient` per configured printer into a
    shared :class:`TelemetryNormalizer`, keeps per-printer health up to date
    from the normalizer's connection events, and optionally serves the
    diagnostics endpoint.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        *,
        normalizer: Optional[TelemetryNormalizer] = None,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._config = config or load_config()
        self._normalizer = normalizer or TelemetryNormalizer.from_config(
            self._config.telemetry
        )
        self._client_factory: ClientFactory = client_factory or PrinterReportClient
        self._clients: Dict[str, PrinterReportClient] = {}
        self._connect_tasks: List[asyncio.Task[None]] = []
        # Health updates scheduled from paho threads; held until they finish.
        self._health_tasks: Set[asyncio.Task[None]] = set()
        self._health = HealthReporter()
        self._diagnostics: Optional[DiagnosticsServer] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def normalizer(self) -> TelemetryNormalizer:
        return self._normalizer

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        """Run until :meth:`request_shutdown` is called or the task is cancelled."""

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()

        LOGGER.info("filaprint-telemetry starting with config: %s", self._config.path)
        await self._start_services()

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("filaprint-telemetry received shutdown signal")
            raise
        finally:
            await self._stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    @classmethod
    def start(cls, config: Optional[AppConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("filaprint-telemetry received shutdown signal")

    async def _start_services(self) -> None:
        self._unsubscribe = self._normalizer.subscribe(self._handle_event)

        await self._start_diagnostics_server()

        if not self._config.printers:
            LOGGER.warning("No [printer <id>] sections configured; nothing to do")

        for printer in self._config.printers:
            client = self._client_factory(printer, self._normalizer)
            self._clients[printer.printer_id] = client
            await self._health.update(_component(printer.printer_id), False, "connecting")
            self._connect_tasks.append(
                asyncio.create_task(
                    self._connect_with_retry(client),
                    name=f"connect-{printer.printer_id}",
                )
            )

    async def _start_diagnostics_server(self) -> None:
        diagnostics = self._config.diagnostics
        if not diagnostics.enabled or diagnostics.port <= 0:
            return

        server = DiagnosticsServer(
            self._health,
            self._normalizer,
            diagnostics.host,
            diagnostics.port,
        )
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start diagnostics endpoint: %s", exc)
            await self._health.update("diagnostics", False, str(exc))
        else:
            self._diagnostics = server
            await self._health.update("diagnostics", True, None)

    async def _connect_with_retry(self, client: PrinterReportClient) -> None:
        # paho handles reconnects once the first connection succeeded; this
        # loop only covers printers that are unreachable at startup.
        delay = RECONNECT_INITIAL_SECONDS
        while True:
            try:
                await client.connect()
            except MQTTConnectionError as exc:
                LOGGER.warning("%s; retrying in %.0fs", exc, delay)
                await self._health.update(_component(client.printer_id), False, str(exc))
                await asyncio.sleep(delay)
                delay = min(delay * 2, RECONNECT_MAX_SECONDS)
                continue
            return

    def _handle_event(self, event: StatusEvent) -> None:
        """Log every status event and mirror connection state into health."""

        LOGGER.info(
            "Status event %s for %s%s",
            event.kind.value,
            event.printer_id,
            f" {event.data}" if event.data else "",
        )
        if event.kind is StatusEventKind.CONNECTED:
            self._schedule_health_update(_component(event.printer_id), True, None)
        elif event.kind is StatusEventKind.DISCONNECTED:
            self._schedule_health_update(
                _component(event.printer_id), False, "disconnected"
            )

    def _schedule_health_update(
        self, name: str, healthy: bool, detail: Optional[str]
    ) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._spawn_health_update, name, healthy, detail)

    def _spawn_health_update(
        self, name: str, healthy: bool, detail: Optional[str]
    ) -> None:
        task = asyncio.create_task(self._health.update(name, healthy, detail))
        self._health_tasks.add(task)
        task.add_done_callback(self._health_tasks.discard)

    async def _stop_services(self) -> None:
        for task in self._connect_tasks:
            task.cancel()
        for task in self._connect_tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._connect_tasks.clear()

        for printer_id, client in list(self._clients.items()):
            try:
                await client.disconnect()
            except MQTTConnectionError as exc:
                LOGGER.warning("Error disconnecting printer %s: %s", printer_id, exc)
        self._clients.clear()

        if self._diagnostics is not None:
            await self._diagnostics.stop()
            self._diagnostics = None

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        # Let updates queued by the disconnects above start, then wait for them.
        await asyncio.sleep(0)
        if self._health_tasks:
            await asyncio.gather(*list(self._health_tasks))

        if self._shutdown_event is not None:
            self._shutdown_event.set()


def _component(printer_id: str) -> str:
    return f"printer:{printer_id}"

"""Health reporting and read-only diagnostics endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from aiohttp import web

from .telemetry import TelemetryNormalizer, map_slots

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            "updatedAt": self.updated_at.isoformat(timespec="seconds"),
        }


class HealthReporter:
    """Tracks component statuses (one per printer connection) for the service."""

    def __init__(self) -> None:
        self._status: Dict[str, ComponentStatus] = {}
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._status[name] = ComponentStatus(
                name=name, healthy=healthy, detail=detail
            )

    async def snapshot(self) -> Dict[str, object]:
        async with self._lock:
            components = [status.as_dict() for status in self._status.values()]

        overall = "ok" if all(item["healthy"] for item in components) else "degraded"
        return {"status": overall, "components": components}


class DiagnosticsServer:
    """HTTP server exposing `/healthz` and read-only normalizer state.

    Routes:
        GET /healthz                   component health
        GET /printers                  tracked printers and their phases
        GET /printers/{id}/snapshot    latest normalized snapshot
        GET /debug/raw-message         last raw message from any printer
        GET /debug/slot-mapping        AMS mapping recomputed from that message
    """

    def __init__(
        self,
        reporter: HealthReporter,
        normalizer: TelemetryNormalizer,
        host: str,
        port: int,
    ) -> None:
        self._reporter = reporter
        self._normalizer = normalizer
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/printers", self._handle_printers)
        app.router.add_get("/printers/{printer_id}/snapshot", self._handle_snapshot)
        app.router.add_get("/debug/raw-message", self._handle_raw_message)
        app.router.add_get("/debug/slot-mapping", self._handle_slot_mapping)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        LOGGER.info(
            "Diagnostics endpoint listening on http://%s:%s", self._host, self._port
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)

    async def _handle_printers(self, request: web.Request) -> web.Response:
        printers = []
        for printer_id in self._normalizer.printer_ids():
            phase = self._normalizer.get_phase(printer_id)
            snapshot = self._normalizer.get_current_snapshot(printer_id)
            printers.append(
                {
                    "printerId": printer_id,
                    "phase": phase.value if phase else None,
                    "lastUpdate": snapshot.as_dict()["timestamp"] if snapshot else None,
                }
            )
        return web.json_response({"printers": printers})

    async def _handle_snapshot(self, request: web.Request) -> web.Response:
        printer_id = request.match_info["printer_id"]
        snapshot = self._normalizer.get_current_snapshot(printer_id)
        if snapshot is None:
            return web.json_response(
                {"error": f"no snapshot for printer {printer_id}"}, status=404
            )
        return web.json_response(
            {
                "snapshot": snapshot.as_dict(),
                "sources": self._normalizer.get_field_sources(printer_id),
            }
        )

    async def _handle_raw_message(self, request: web.Request) -> web.Response:
        message = self._normalizer.get_last_raw_message()
        if message is None:
            return web.json_response({"error": "no message received yet"}, status=404)
        return web.json_response(message.as_dict(), dumps=_dumps)

    async def _handle_slot_mapping(self, request: web.Request) -> web.Response:
        message = self._normalizer.get_last_raw_message()
        if message is None:
            return web.json_response({"error": "no message received yet"}, status=404)
        report = map_slots(message.payload)
        return web.json_response(
            {
                "printerId": message.printer_id,
                "topic": message.topic,
                "timestamp": message.as_dict()["timestamp"],
                "ams": report.as_dict(),
            },
            dumps=_dumps,
        )


def _dumps(value: object) -> str:
    # Raw payloads may hold anything the transport handed over.
    return json.dumps(value, default=repr)

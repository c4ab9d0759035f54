"""MQTT adapter feeding printer report messages into the normalizer.

Bambu printers run their own MQTT broker in LAN mode. Each printer gets one
:class:`PrinterReportClient` that connects over TLS (the printer presents a
self-signed certificate), subscribes to the printer's ``device/<serial>/*``
channels (``report``, ``status``, ``progress`` and ``ams`` by default) and hands
every decoded message to :class:`TelemetryNormalizer`.

paho-mqtt runs its network loop on its own thread. The normalizer is
thread-safe, so report messages are ingested directly on that thread; only
the asyncio events used by ``connect``/``disconnect`` are bridged back to the
event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import ssl
from datetime import datetime, timezone
from typing import Any, Optional

import paho.mqtt.client as mqtt

from ..config import PrinterConfig
from ..telemetry import TelemetryNormalizer

LOGGER = logging.getLogger(__name__)


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to establish a connection."""


def _reason_value(reason_code: Any) -> Any:
    # paho 2.x passes ReasonCode objects; plain ints compare the same way.
    return getattr(reason_code, "value", reason_code)


class PrinterReportClient:
    """Async-friendly wrapper over the threaded paho-mqtt client for one printer."""

    def __init__(
        self,
        printer: PrinterConfig,
        normalizer: TelemetryNormalizer,
        *,
        client_id: Optional[str] = None,
    ) -> None:
        self.printer = printer
        self.normalizer = normalizer
        self.client_id = client_id or f"filaprint-{printer.printer_id}"

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._last_connect_rc: Any = None
        self._connected = False

    @property
    def printer_id(self) -> str:
        return self.printer.printer_id

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the printer's broker and wait for acknowledgement."""

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id
        )
        client.enable_logger(logging.getLogger(f"paho.{self.printer_id}"))

        if self.printer.username:
            client.username_pw_set(self.printer.username, self.printer.access_code)

        client.tls_set(
            cert_reqs=ssl.CERT_NONE if self.printer.tls_insecure else ssl.CERT_REQUIRED
        )
        client.tls_insecure_set(self.printer.tls_insecure)
        client.reconnect_delay_set(min_delay=1, max_delay=30)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info(
            "Connecting to printer %s at %s:%s",
            self.printer_id,
            self.printer.host,
            self.printer.port,
        )

        client.connect_async(self.printer.host, self.printer.port, self.printer.keepalive)
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._last_connect_rc != 0:
                raise MQTTConnectionError(
                    f"Printer {self.printer_id} rejected connection "
                    f"(rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            client.loop_stop()
            self._client = None
            raise MQTTConnectionError(
                f"Timed out connecting to printer {self.printer_id}"
            ) from exc
        except MQTTConnectionError:
            client.loop_stop()
            self._client = None
            raise

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the printer."""

        if not self._client:
            return

        assert self._disconnect_event is not None

        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Printer %s did not acknowledge disconnect", self.printer_id)
        finally:
            self._client.loop_stop()
            self._client = None
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Internal callbacks running on the paho network thread
    # ------------------------------------------------------------------
    def _on_connect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        self._last_connect_rc = rc
        if rc == 0:
            LOGGER.info("Connected to printer %s", self.printer_id)
            self._connected = True
            # Subscribing here also restores the subscriptions after paho reconnects.
            for topic in self.printer.topics:
                result, _ = client.subscribe(topic, qos=0)
                if result != mqtt.MQTT_ERR_SUCCESS:
                    LOGGER.error("Subscribe to %s failed with rc=%s", topic, result)
            self.normalizer.notify_connected(self.printer_id)
        else:
            LOGGER.error(
                "Printer %s refused connection with rc=%s", self.printer_id, rc
            )
            self._connected = False
        self._set_event(self._connected_event)

    def _on_disconnect(
        self, client: mqtt.Client, userdata, flags, reason_code, properties=None
    ) -> None:
        LOGGER.info(
            "Disconnected from printer %s (rc=%s)",
            self.printer_id,
            _reason_value(reason_code),
        )
        self._connected = False
        self.normalizer.notify_disconnected(self.printer_id)
        self._set_event(self._disconnect_event)

    def _on_message(
        self, client: mqtt.Client, userdata, message: mqtt.MQTTMessage
    ) -> None:
        received_at = datetime.now(timezone.utc)
        try:
            payload = json.loads(message.payload)
        except (UnicodeDecodeError, ValueError) as exc:
            LOGGER.warning(
                "Dropping undecodable message from %s on %s: %s",
                self.printer_id,
                message.topic,
                exc,
            )
            return
        self.normalizer.ingest(self.printer_id, message.topic, payload, received_at)

    def _set_event(self, event: Optional[asyncio.Event]) -> None:
        if event is None:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(event.set)

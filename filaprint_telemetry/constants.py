"""Constants used across the filaprint-telemetry package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "filaprint-telemetry"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "filaprint" / DEFAULT_CONFIG_FILENAME

DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / "filaprint" / f"{APP_NAME}.log"

# Bambu LAN-mode MQTT broker on the printer itself.
DEFAULT_PRINTER_PORT = 8883
DEFAULT_PRINTER_USERNAME = "bblp"
DEFAULT_KEEPALIVE_SECONDS = 60
TOPIC_TEMPLATE = "device/{serial}/{channel}"
# Full reports arrive on "report"; some models split status, progress and AMS
# updates onto their own channels.
PRINTER_TOPIC_CHANNELS = ("report", "status", "progress", "ams")

DEFAULT_DIAGNOSTICS_HOST = "127.0.0.1"
DEFAULT_DIAGNOSTICS_PORT = 8765

PRINTER_SECTION_PREFIX = "printer "

"""Adapter modules for external integrations."""

from .mqtt import MQTTConnectionError, PrinterReportClient

__all__ = [
    "MQTTConnectionError",
    "PrinterReportClient",
]

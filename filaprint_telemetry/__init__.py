"""Telemetry normalizer for Bambu-style 3D printers."""

__version__ = "0.1.0"

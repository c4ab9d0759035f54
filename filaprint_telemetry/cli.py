"""Command-line interface for filaprint-telemetry."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Iterator, List, Optional, Tuple

from . import constants
from .app import FilaprintTelemetryApp
from .config import load_config
from .telemetry import StatusEvent, TelemetryNormalizer

LOGGER = logging.getLogger(__name__)

CaptureRecord = Tuple[str, str, Optional[datetime], object]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Normalize Bambu printer telemetry and classify status events",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("start", help="Connect to configured printers and run")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    replay_parser = subparsers.add_parser(
        "replay", help="Feed a JSONL capture through the normalizer and print events"
    )
    replay_parser.add_argument("capture", type=Path, help="Capture file (.jsonl)")
    replay_parser.add_argument(
        "--snapshots",
        action="store_true",
        help="Also print the final snapshot of every printer",
    )

    return parser


def iter_capture(stream: IO[str]) -> Iterator[CaptureRecord]:
    """Yield ``(printer_id, topic, timestamp, payload)`` from capture lines.

    Each line is a JSON object with ``printer_id``, ``topic``, ``payload`` and
    an optional ISO-8601 ``timestamp``. Blank lines and ``#`` comments are
    skipped; unreadable lines are logged and skipped.
    """

    for line_number, line in enumerate(stream, start=1):
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        try:
            record = json.loads(text)
        except ValueError as exc:
            LOGGER.warning("Skipping line %d: invalid JSON (%s)", line_number, exc)
            continue
        if not isinstance(record, dict) or "printer_id" not in record:
            LOGGER.warning("Skipping line %d: missing printer_id", line_number)
            continue

        try:
            timestamp = _parse_timestamp(record.get("timestamp"))
        except ValueError:
            LOGGER.warning("Skipping line %d: invalid timestamp", line_number)
            continue

        yield (
            str(record["printer_id"]),
            str(record.get("topic", "")),
            timestamp,
            record.get("payload"),
        )


def replay_capture(
    normalizer: TelemetryNormalizer, stream: IO[str]
) -> List[StatusEvent]:
    """Ingest every capture record in order and return the emitted events."""

    events: List[StatusEvent] = []
    for printer_id, topic, timestamp, payload in iter_capture(stream):
        events.extend(normalizer.ingest(printer_id, topic, payload, timestamp))
    return events


def _parse_timestamp(value: object) -> Optional[datetime]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.command == "start":
        FilaprintTelemetryApp.start(config)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if key == "access_code":
                    value = "********"
                print(f"{key} = {value}")
            print()
        return 0

    if args.command == "replay":
        try:
            stream = args.capture.open("r", encoding="utf-8")
        except OSError as exc:
            LOGGER.error("Cannot open capture %s: %s", args.capture, exc)
            return 1

        normalizer = TelemetryNormalizer.from_config(config.telemetry)
        with stream:
            events = replay_capture(normalizer, stream)

        for event in events:
            print(json.dumps(event.to_dict(), default=repr))

        if args.snapshots:
            for printer_id in normalizer.printer_ids():
                snapshot = normalizer.get_current_snapshot(printer_id)
                if snapshot is not None:
                    print(json.dumps({"snapshot": snapshot.as_dict()}, default=repr))
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())

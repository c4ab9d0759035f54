"""Configuration loader for filaprint-telemetry."""

from __future__ import annotations

import logging
from configparser import ConfigParser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from . import constants
from .telemetry.metrics import known_metric_names
from .telemetry.resolver import Retention, ScaleRule

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = constants.DEFAULT_LOG_PATH
    log_network: bool = False


@dataclass(slots=True)
class TelemetryConfig:
    progress_min_delta: float = 1.0
    temperature_min_delta: float = 1.0
    progress_min_interval_seconds: float = 30.0
    default_retention: Retention = Retention.STICKY
    retention_overrides: Dict[str, Retention] = field(default_factory=dict)
    # None disables scaling for that metric
    scale_overrides: Dict[str, Optional[ScaleRule]] = field(default_factory=dict)


@dataclass(slots=True)
class DiagnosticsConfig:
    enabled: bool = False
    host: str = constants.DEFAULT_DIAGNOSTICS_HOST
    port: int = constants.DEFAULT_DIAGNOSTICS_PORT


@dataclass(slots=True)
class PrinterConfig:
    printer_id: str
    host: str
    serial: str
    port: int = constants.DEFAULT_PRINTER_PORT
    username: str = constants.DEFAULT_PRINTER_USERNAME
    access_code: Optional[str] = None
    tls_insecure: bool = True
    keepalive: int = constants.DEFAULT_KEEPALIVE_SECONDS
    channels: Tuple[str, ...] = constants.PRINTER_TOPIC_CHANNELS

    def topic(self, channel: str) -> str:
        return constants.TOPIC_TEMPLATE.format(serial=self.serial, channel=channel)

    @property
    def report_topic(self) -> str:
        return self.topic("report")

    @property
    def topics(self) -> List[str]:
        return [self.topic(channel) for channel in self.channels]


@dataclass(slots=True)
class AppConfig:
    logging: LoggingConfig
    telemetry: TelemetryConfig
    diagnostics: DiagnosticsConfig
    printers: List[PrinterConfig]
    raw: ConfigParser
    path: Path

    def printer(self, printer_id: str) -> Optional[PrinterConfig]:
        for printer in self.printers:
            if printer.printer_id == printer_id:
                return printer
        return None


def _parse_list(value: str, *, default: Iterable[str]) -> List[str]:
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_retention(value: str, *, default: Retention) -> Retention:
    try:
        return Retention(value.strip().lower())
    except ValueError:
        LOGGER.warning("Unknown retention policy %r; using %s", value, default.value)
        return default


def _parse_retention_overrides(value: str) -> Dict[str, Retention]:
    known = known_metric_names()
    overrides: Dict[str, Retention] = {}
    for item in _parse_list(value, default=[]):
        name, sep, policy = item.partition(":")
        name = name.strip()
        if not sep or name not in known:
            LOGGER.warning("Ignoring retention override %r", item)
            continue
        try:
            overrides[name] = Retention(policy.strip().lower())
        except ValueError:
            LOGGER.warning("Ignoring retention override %r", item)
    return overrides


def _parse_scale_overrides(value: str) -> Dict[str, Optional[ScaleRule]]:
    known = known_metric_names()
    overrides: Dict[str, Optional[ScaleRule]] = {}
    for item in _parse_list(value, default=[]):
        name, sep, rule = item.partition(":")
        name = name.strip()
        rule = rule.strip().lower()
        if not sep or name not in known:
            LOGGER.warning("Ignoring scale override %r", item)
            continue
        if rule in {"none", "off"}:
            overrides[name] = None
            continue
        threshold, slash, divisor = rule.partition("/")
        try:
            if not slash:
                raise ValueError(rule)
            overrides[name] = ScaleRule(
                threshold=float(threshold), divisor=float(divisor)
            )
        except ValueError:
            LOGGER.warning("Ignoring scale override %r", item)
    return overrides


def _parse_channels(value: str) -> Tuple[str, ...]:
    channels: List[str] = []
    for item in _parse_list(value, default=constants.PRINTER_TOPIC_CHANNELS):
        channel = item.strip("/")
        if not channel or "/" in channel or channel in {"+", "#"}:
            LOGGER.warning("Ignoring topic channel %r", item)
            continue
        if channel not in channels:
            channels.append(channel)
    return tuple(channels) or constants.PRINTER_TOPIC_CHANNELS


def _get_float(parser: ConfigParser, section: str, option: str, default: float) -> float:
    try:
        value = parser.getfloat(section, option, fallback=default)
    except ValueError:
        return default
    return value if value >= 0 else default


def _load_printers(parser: ConfigParser) -> List[PrinterConfig]:
    printers: List[PrinterConfig] = []
    for section in parser.sections():
        if not section.startswith(constants.PRINTER_SECTION_PREFIX):
            continue
        printer_id = section[len(constants.PRINTER_SECTION_PREFIX):].strip()
        host = parser.get(section, "host", fallback="").strip()
        serial = parser.get(section, "serial", fallback="").strip()
        if not printer_id or not host or not serial:
            LOGGER.warning("Skipping [%s]: host and serial are required", section)
            continue

        try:
            port = parser.getint(section, "port", fallback=constants.DEFAULT_PRINTER_PORT)
        except ValueError:
            port = constants.DEFAULT_PRINTER_PORT
        try:
            keepalive = parser.getint(
                section, "keepalive", fallback=constants.DEFAULT_KEEPALIVE_SECONDS
            )
        except ValueError:
            keepalive = constants.DEFAULT_KEEPALIVE_SECONDS

        printers.append(
            PrinterConfig(
                printer_id=printer_id,
                host=host,
                serial=serial,
                port=port,
                username=parser.get(
                    section, "username", fallback=constants.DEFAULT_PRINTER_USERNAME
                ),
                access_code=parser.get(section, "access_code", fallback=None),
                tls_insecure=parser.getboolean(section, "tls_insecure", fallback=True),
                keepalive=max(5, keepalive),
                channels=_parse_channels(parser.get(section, "topics", fallback="")),
            )
        )
    return printers


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "logging": {
                "level": "INFO",
                "path": str(constants.DEFAULT_LOG_PATH),
                "log_network": "false",
            },
            "telemetry": {
                "progress_min_delta": "1.0",
                "temperature_min_delta": "1.0",
                "progress_min_interval_seconds": "30",
                "default_retention": Retention.STICKY.value,
                "retention_overrides": "",
                "scale_overrides": "",
            },
            "diagnostics": {
                "enabled": "false",
                "host": constants.DEFAULT_DIAGNOSTICS_HOST,
                "port": str(constants.DEFAULT_DIAGNOSTICS_PORT),
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(
            parser.get("logging", "path", fallback=str(constants.DEFAULT_LOG_PATH))
        ).expanduser(),
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    defaults = TelemetryConfig()
    default_retention = _parse_retention(
        parser.get("telemetry", "default_retention", fallback=""),
        default=defaults.default_retention,
    )
    telemetry = TelemetryConfig(
        progress_min_delta=_get_float(
            parser, "telemetry", "progress_min_delta", defaults.progress_min_delta
        ),
        temperature_min_delta=_get_float(
            parser, "telemetry", "temperature_min_delta", defaults.temperature_min_delta
        ),
        progress_min_interval_seconds=_get_float(
            parser,
            "telemetry",
            "progress_min_interval_seconds",
            defaults.progress_min_interval_seconds,
        ),
        default_retention=default_retention,
        retention_overrides=_parse_retention_overrides(
            parser.get("telemetry", "retention_overrides", fallback="")
        ),
        scale_overrides=_parse_scale_overrides(
            parser.get("telemetry", "scale_overrides", fallback="")
        ),
    )

    try:
        diagnostics_port = parser.getint(
            "diagnostics", "port", fallback=constants.DEFAULT_DIAGNOSTICS_PORT
        )
    except ValueError:
        diagnostics_port = constants.DEFAULT_DIAGNOSTICS_PORT

    diagnostics = DiagnosticsConfig(
        enabled=parser.getboolean("diagnostics", "enabled", fallback=False),
        host=parser.get(
            "diagnostics", "host", fallback=constants.DEFAULT_DIAGNOSTICS_HOST
        ),
        port=diagnostics_port,
    )

    return AppConfig(
        logging=logging_config,
        telemetry=telemetry,
        diagnostics=diagnostics,
        printers=_load_printers(parser),
        raw=parser,
        path=config_path,
    )


def save_config(config: AppConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)

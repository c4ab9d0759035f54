"""Declarative metric table for Bambu-style printer reports.

Each entry lists candidate paths in priority order: structured ``device``
sections from newer firmware first, legacy flat fields last. Supporting a
newly observed firmware layout is a matter of adding a path here.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, Mapping, Optional

from .resolver import MetricKind, MetricSpec, Retention, ScaleRule, in_range

NOZZLE1 = "nozzle1"
NOZZLE2 = "nozzle2"
BED = "bed"
CHAMBER = "chamber"
PROGRESS = "progress"
CURRENT_LAYER = "current_layer"
TOTAL_LAYERS = "total_layers"
REMAINING_MINUTES = "remaining_minutes"
STATE = "state"
STAGE = "stage"
JOB_NAME = "job_name"
FILENAME = "filename"
ERROR_CODE = "error_code"
ERROR_MESSAGE = "error_message"

# Values derived by the AMS slot mapper rather than by path resolution. They
# take part in retention like any other metric.
HUMIDITY_SLOTS = ("humidity.slot1", "humidity.slot2", "humidity.slot3", "humidity.slot4")
HUMIDITY_AVERAGE = "humidity.average"
AMS = "ams"
DERIVED_METRICS = HUMIDITY_SLOTS + (HUMIDITY_AVERAGE, AMS)

# Legacy chamber sensors report hundred-thousandths of a degree.
CHAMBER_SCALE = ScaleRule(threshold=100, divisor=100000)

_NOZZLE_RANGE = in_range(-40, 500)


def _has_error(value) -> bool:
    return value is not None and value != ""


DEFAULT_METRICS: tuple[MetricSpec, ...] = (
    MetricSpec.build(
        NOZZLE1,
        [
            "print.device.extruder.info[0].temp",
            "print.nozzle_temper.nozzle_1",
            "print.nozzle_temp_1",
            "print.nozzle_temper",
            "nozzle_temper.nozzle_1",
            "nozzle_temper",
        ],
        plausible=_NOZZLE_RANGE,
    ),
    MetricSpec.build(
        NOZZLE2,
        [
            "print.device.extruder.info[1].temp",
            "print.nozzle_temper.nozzle_2",
            "print.nozzle_temp_2",
            "print.nozzle_temper_2",
            "print.right_nozzle_temper",
            "nozzle_temper.nozzle_2",
        ],
        plausible=_NOZZLE_RANGE,
    ),
    MetricSpec.build(
        BED,
        [
            "print.device.bed.info.temp",
            "print.bed_temper",
            "print.device.bed_temp",
            "bed_temper",
        ],
        plausible=in_range(-40, 200),
    ),
    MetricSpec.build(
        CHAMBER,
        [
            "print.device.ctc.info.temp",
            "print.info.temp",
            "print.chamber_temper",
            "print.chamber_temp",
            "print.chamber_temperature",
            "chamber_temper",
        ],
        plausible=in_range(-40, 120),
        scale=CHAMBER_SCALE,
    ),
    MetricSpec.build(
        PROGRESS,
        ["print.mc_percent", "status.mc_percent", "mc_percent"],
        plausible=in_range(0, 100),
    ),
    MetricSpec.build(
        CURRENT_LAYER,
        ["print.layer_num", "status.layer_num", "layer_num"],
        kind=MetricKind.INTEGER,
        plausible=in_range(0, 1_000_000),
    ),
    MetricSpec.build(
        TOTAL_LAYERS,
        ["print.total_layer_num", "status.total_layer_num", "total_layer_num"],
        kind=MetricKind.INTEGER,
        plausible=in_range(0, 1_000_000),
    ),
    MetricSpec.build(
        REMAINING_MINUTES,
        ["print.mc_remaining_time", "status.mc_remaining_time", "mc_remaining_time"],
        kind=MetricKind.INTEGER,
        plausible=in_range(0, 1_000_000),
    ),
    MetricSpec.build(
        STATE,
        ["print.gcode_state", "status.gcode_state", "gcode_state"],
        kind=MetricKind.TEXT,
    ),
    MetricSpec.build(
        STAGE,
        ["print.mc_print_stage", "status.mc_print_stage", "mc_print_stage"],
        kind=MetricKind.INTEGER,
        plausible=in_range(0, 255),
    ),
    MetricSpec.build(
        JOB_NAME,
        ["print.subtask_name", "status.subtask_name", "subtask_name"],
        kind=MetricKind.TEXT,
    ),
    MetricSpec.build(
        FILENAME,
        ["print.gcode_file", "status.gcode_file", "gcode_file"],
        kind=MetricKind.TEXT,
    ),
    # A reported zero is kept: it is how firmware clears a previous error.
    MetricSpec.build(
        ERROR_CODE,
        [
            "print.print_error",
            "print.mc_error_code",
            "status.print_error",
            "status.mc_error_code",
            "print_error",
            "mc_error_code",
        ],
        kind=MetricKind.RAW,
        plausible=_has_error,
    ),
    MetricSpec.build(
        ERROR_MESSAGE,
        ["print.mc_error_msg", "print.err_msg", "status.mc_error_msg", "mc_error_msg"],
        kind=MetricKind.TEXT,
        plausible=lambda value: value is not None,
    ),
)


def error_reported(code) -> bool:
    """True when ``code`` is a vendor error rather than the "no error" marker."""

    if code is None:
        return False
    if isinstance(code, str):
        stripped = code.strip()
        return stripped not in {"", "0"}
    return code != 0


def build_metric_table(
    *,
    default_retention: Retention = Retention.STICKY,
    retention_overrides: Optional[Mapping[str, Retention]] = None,
    scale_overrides: Optional[Mapping[str, Optional[ScaleRule]]] = None,
    metrics: Iterable[MetricSpec] = DEFAULT_METRICS,
) -> Dict[str, MetricSpec]:
    """Apply retention and scaling configuration to the metric table."""

    retention_overrides = retention_overrides or {}
    scale_overrides = scale_overrides or {}

    table: Dict[str, MetricSpec] = {}
    for spec in metrics:
        updated = replace(
            spec, retention=retention_overrides.get(spec.name, default_retention)
        )
        if spec.name in scale_overrides:
            updated = replace(updated, scale=scale_overrides[spec.name])
        table[spec.name] = updated
    return table


def derived_retention(
    *,
    default_retention: Retention = Retention.STICKY,
    retention_overrides: Optional[Mapping[str, Retention]] = None,
) -> Dict[str, Retention]:
    retention_overrides = retention_overrides or {}
    return {
        name: retention_overrides.get(name, default_retention)
        for name in DERIVED_METRICS
    }


def known_metric_names() -> frozenset[str]:
    return frozenset(spec.name for spec in DEFAULT_METRICS) | frozenset(DERIVED_METRICS)

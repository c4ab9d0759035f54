"""Filament usage figures attached to print completion and failure events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from .ams import tray_to_slot
from .resolver import MetricKind, MetricSpec, PathExpression, in_range, resolve

__all__ = [
    "FilamentConsumption",
    "FilamentUsage",
    "UNKNOWN_USAGE",
    "USAGE_UNKNOWN",
    "extract_usage",
]

USAGE_UNKNOWN = "unknown - usage not reported by firmware"

_USAGE_LISTS = tuple(
    PathExpression.parse(path)
    for path in (
        "print.filament_usage",
        "print.actual_filament",
        "filament_usage",
        "actual_filament",
    )
)

_SLOT = MetricSpec.build(
    "usage.slot", ["slot", "ams_slot"], kind=MetricKind.INTEGER, plausible=in_range(1, 4)
)
_TRAY = MetricSpec.build("usage.tray", ["tray_id", "tray_index", "tray"], kind=MetricKind.RAW)
_WEIGHT = MetricSpec.build(
    "usage.weight", ["weight", "weight_g", "used_g"], plausible=in_range(0, 100_000)
)
_LENGTH = MetricSpec.build(
    "usage.length", ["length", "length_mm", "used_mm"], plausible=in_range(0, 10_000_000)
)
_MATERIAL = MetricSpec.build("usage.material", ["material", "tray_type"], kind=MetricKind.TEXT)
_COLOR = MetricSpec.build("usage.color", ["color", "tray_color"], kind=MetricKind.TEXT)


@dataclass(frozen=True, slots=True)
class FilamentConsumption:
    slot: Optional[int] = None
    weight_grams: Optional[float] = None
    length_mm: Optional[float] = None
    material: Optional[str] = None
    color: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "slot": self.slot,
            "weight": self.weight_grams,
            "length": self.length_mm,
            "material": self.material,
            "color": self.color,
        }


@dataclass(frozen=True, slots=True)
class FilamentUsage:
    reported: bool
    entries: Tuple[FilamentConsumption, ...] = ()
    source: Optional[str] = None

    @property
    def total_weight_grams(self) -> Optional[float]:
        weights = [entry.weight_grams for entry in self.entries if entry.weight_grams is not None]
        return sum(weights) if weights else None

    def as_dict(self) -> Dict[str, Any]:
        if not self.reported:
            return {"reported": False, "usage": USAGE_UNKNOWN}
        return {
            "reported": True,
            "source": self.source,
            "totalWeight": self.total_weight_grams,
            "entries": [entry.as_dict() for entry in self.entries],
        }


UNKNOWN_USAGE = FilamentUsage(reported=False)


def extract_usage(payload: Any) -> FilamentUsage:
    """Return the filament usage carried by ``payload`` or ``UNKNOWN_USAGE``."""

    for expression in _USAGE_LISTS:
        node = expression.lookup(payload)
        if not isinstance(node, list):
            continue
        entries = [_consumption(item) for item in node if isinstance(item, Mapping)]
        entries = [entry for entry in entries if entry is not None]
        if entries:
            return FilamentUsage(
                reported=True, entries=tuple(entries), source=expression.text
            )
    return UNKNOWN_USAGE


def _consumption(item: Mapping[str, Any]) -> Optional[FilamentConsumption]:
    slot = _value(item, _SLOT)
    if slot is None:
        tray = _value(item, _TRAY)
        slot = tray_to_slot(tray) if tray is not None else None

    weight = _value(item, _WEIGHT)
    length = _value(item, _LENGTH)
    if weight is None and length is None:
        return None

    return FilamentConsumption(
        slot=slot,
        weight_grams=weight,
        length_mm=length,
        material=_value(item, _MATERIAL),
        color=_value(item, _COLOR),
    )


def _value(item: Mapping[str, Any], spec: MetricSpec) -> Any:
    resolution = resolve(item, spec)
    return resolution.value if resolution.resolved else None

"""AMS tray-to-slot mapping.

The AMS (automatic material system) section of a printer report moves around
between firmware versions: it may be an array under ``print.ams.ams``, an
array at the top level, a bare array, or a single unit object. Messages on
the dedicated ``ams`` topic carry the unit at the payload root. The active
tray index (``tray_now``) lives either inside the first unit or hoisted onto
the parent AMS object.

Vendor tray indices are 0-based; user-facing slots are 1-based. Only tray
indices 0-3 map to a slot. Anything else (255 = nothing loaded, 254 = external
spool) is reported as unmapped rather than forced into a slot.

A unit carries a single humidity sensor, so its reading is applied to every
slot unless a tray reports its own value. This is a hardware approximation,
not a per-slot measurement.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .resolver import (
    MetricKind,
    MetricSpec,
    PathExpression,
    Resolution,
    coerce_number,
    coerce_text,
    in_range,
    resolve,
    resolve_first,
)

__all__ = [
    "AmsReport",
    "AmsStatus",
    "AmsTrace",
    "EMPTY_TRAY_STATE",
    "ROOT_SOURCE",
    "SLOT_COUNT",
    "SlotMapping",
    "SlotState",
    "map_slots",
    "tray_to_slot",
]

SLOT_COUNT = 4
EMPTY_TRAY_STATE = 11
# Trace source used when the payload root is itself an AMS unit.
ROOT_SOURCE = "$"

_LIST = "list"
_UNIT = "unit"

# (path, parent path, expected shape), tried in order.
_AMS_LOCATIONS: Tuple[Tuple[PathExpression, Optional[PathExpression], str], ...] = tuple(
    (
        PathExpression.parse(path),
        PathExpression.parse(parent) if parent else None,
        shape,
    )
    for path, parent, shape in (
        ("print.ams.ams", "print.ams", _LIST),
        ("ams.ams", "ams", _LIST),
        ("print.ams", None, _LIST),
        ("ams", None, _LIST),
        ("print.ams", None, _UNIT),
        ("ams", None, _UNIT),
    )
)
_PRINT_AMS = PathExpression.parse("print.ams")

_UNIT_KEYS = frozenset(
    {"tray", "tray_now", "tray_pre", "tray_tar", "humidity", "humidity_raw"}
)

_TRAY_NOW = MetricSpec.build("ams.tray_now", ["tray_now"], kind=MetricKind.RAW)
_TRAY_PRE = MetricSpec.build("ams.tray_pre", ["tray_pre"], kind=MetricKind.RAW)
_TRAY_TAR = MetricSpec.build("ams.tray_tar", ["tray_tar"], kind=MetricKind.RAW)
_HUMIDITY = MetricSpec.build(
    "ams.humidity", ["humidity_raw", "humidity"], plausible=in_range(0, 100)
)


class AmsStatus(str, Enum):
    ABSENT = "absent"
    UNMAPPED = "unmapped"
    MAPPED = "mapped"


@dataclass(frozen=True, slots=True)
class SlotState:
    slot: int
    tray_index: int
    reported: bool = False
    occupied: Optional[bool] = None
    remain: Optional[float] = None
    humidity: Optional[float] = None
    active: bool = False
    material: Optional[str] = None
    color: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "slot": self.slot,
            "trayIndex": self.tray_index,
            "reported": self.reported,
            "occupied": self.occupied,
            "remain": self.remain,
            "humidity": self.humidity,
            "active": self.active,
            "material": self.material,
            "color": self.color,
        }


@dataclass(frozen=True, slots=True)
class SlotMapping:
    slots: Tuple[SlotState, ...]
    active_slot: Optional[int] = None
    previous_slot: Optional[int] = None
    target_slot: Optional[int] = None

    def slot(self, number: int) -> SlotState:
        if not 1 <= number <= len(self.slots):
            raise KeyError(number)
        return self.slots[number - 1]

    @property
    def average_humidity(self) -> Optional[float]:
        readings = [state.humidity for state in self.slots if state.humidity is not None]
        if not readings:
            return None
        return sum(readings) / len(readings)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "activeSlot": self.active_slot,
            "previousSlot": self.previous_slot,
            "targetSlot": self.target_slot,
            "slots": [state.as_dict() for state in self.slots],
        }


@dataclass(frozen=True, slots=True)
class AmsTrace:
    """Where each AMS value came from, for field debugging."""

    source: Optional[str] = None
    unit_count: int = 0
    tray_now_path: Optional[str] = None
    tray_now_raw: Any = None
    tray_pre_path: Optional[str] = None
    tray_tar_path: Optional[str] = None
    humidity_path: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "unitCount": self.unit_count,
            "trayNowPath": self.tray_now_path,
            "trayNowRaw": self.tray_now_raw,
            "trayPrePath": self.tray_pre_path,
            "trayTarPath": self.tray_tar_path,
            "humidityPath": self.humidity_path,
        }


@dataclass(frozen=True, slots=True)
class AmsReport:
    status: AmsStatus
    mapping: Optional[SlotMapping] = None
    humidity: Optional[float] = None
    trace: AmsTrace = AmsTrace()

    @property
    def present(self) -> bool:
        return self.status is not AmsStatus.ABSENT

    @property
    def active_slot(self) -> Optional[int]:
        return self.mapping.active_slot if self.mapping else None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "humidity": self.humidity,
            "mapping": self.mapping.as_dict() if self.mapping else None,
            "trace": self.trace.as_dict(),
        }


_ABSENT = AmsReport(status=AmsStatus.ABSENT)


def tray_to_slot(value: Any) -> Optional[int]:
    """Map a vendor tray index to a 1-based slot, or None when out of range."""

    number = coerce_number(value)
    if number is None or not number.is_integer():
        return None
    index = int(number)
    if 0 <= index < SLOT_COUNT:
        return index + 1
    return None


def map_slots(payload: Any) -> AmsReport:
    """Build the AMS report for one raw payload. Never raises on odd shapes."""

    if not isinstance(payload, Mapping):
        return _ABSENT

    located = _locate_units(payload)
    if located is None:
        return _ABSENT
    source, units, parent, unit_label = located

    first_unit = units[0]
    roots = _field_roots(payload, first_unit, unit_label, parent, source)

    tray_now = resolve_first(roots, _TRAY_NOW)
    tray_pre = resolve_first(roots, _TRAY_PRE)
    tray_tar = resolve_first(roots, _TRAY_TAR)
    humidity = resolve_first(roots, _HUMIDITY)

    active_slot = _slot_from(tray_now)
    unit_humidity = humidity.value if humidity.resolved else None

    slots = _build_slots(first_unit.get("tray"), active_slot, unit_humidity)
    mapping = SlotMapping(
        slots=slots,
        active_slot=active_slot,
        previous_slot=_slot_from(tray_pre),
        target_slot=_slot_from(tray_tar),
    )

    trace = AmsTrace(
        source=source,
        unit_count=len(units),
        tray_now_path=tray_now.path,
        tray_now_raw=tray_now.value,
        tray_pre_path=tray_pre.path,
        tray_tar_path=tray_tar.path,
        humidity_path=humidity.path,
    )

    status = AmsStatus.MAPPED if active_slot is not None else AmsStatus.UNMAPPED
    return AmsReport(
        status=status, mapping=mapping, humidity=unit_humidity, trace=trace
    )


def _locate_units(
    payload: Mapping[str, Any],
) -> Optional[Tuple[str, List[Mapping[str, Any]], Optional[Mapping[str, Any]], str]]:
    for expression, parent_expression, shape in _AMS_LOCATIONS:
        path = expression.text
        node = expression.lookup(payload)
        if shape == _LIST:
            if isinstance(node, list) and node and isinstance(node[0], Mapping):
                units = [unit for unit in node if isinstance(unit, Mapping)]
                parent = None
                if parent_expression is not None:
                    candidate = parent_expression.lookup(payload)
                    parent = candidate if isinstance(candidate, Mapping) else None
                return path, units, parent, f"{path}[0]"
        elif isinstance(node, Mapping) and _UNIT_KEYS.intersection(node.keys()):
            return path, [node], None, path

    # Messages on the dedicated ``device/<serial>/ams`` topic are the unit itself.
    if isinstance(payload.get("tray"), list):
        return ROOT_SOURCE, [payload], None, ""
    return None


def _field_roots(
    payload: Mapping[str, Any],
    unit: Mapping[str, Any],
    unit_label: str,
    parent: Optional[Mapping[str, Any]],
    source: str,
) -> Sequence[Tuple[str, Any]]:
    roots: List[Tuple[str, Any]] = [(unit_label, unit)]
    seen = {id(unit)}

    def add(label: str, node: Any) -> None:
        if isinstance(node, Mapping) and id(node) not in seen:
            seen.add(id(node))
            roots.append((label, node))

    if parent is not None:
        add(source.rsplit(".", 1)[0], parent)
    add("print.ams", _PRINT_AMS.lookup(payload))
    add("ams", payload.get("ams"))
    return roots


def _slot_from(resolution: Resolution) -> Optional[int]:
    if not resolution.resolved:
        return None
    return tray_to_slot(resolution.value)


def _build_slots(
    trays: Any, active_slot: Optional[int], unit_humidity: Optional[float]
) -> Tuple[SlotState, ...]:
    by_index: Dict[int, Mapping[str, Any]] = {}
    if isinstance(trays, list):
        for position, tray in enumerate(trays):
            if not isinstance(tray, Mapping):
                continue
            slot = tray_to_slot(tray.get("id", position))
            if slot is not None:
                by_index.setdefault(slot - 1, tray)

    slots: List[SlotState] = []
    for index in range(SLOT_COUNT):
        slot = index + 1
        tray = by_index.get(index)
        if tray is None:
            slots.append(
                SlotState(
                    slot=slot,
                    tray_index=index,
                    humidity=unit_humidity,
                    active=slot == active_slot,
                )
            )
            continue

        remain = coerce_number(tray.get("remain"))
        tray_humidity = resolve(tray, _HUMIDITY)
        slots.append(
            SlotState(
                slot=slot,
                tray_index=index,
                reported=True,
                occupied=_occupied(remain, coerce_number(tray.get("state"))),
                remain=remain,
                humidity=tray_humidity.value if tray_humidity.resolved else unit_humidity,
                active=slot == active_slot,
                material=coerce_text(tray.get("tray_type")) or None,
                color=coerce_text(tray.get("tray_color")) or None,
            )
        )
    return tuple(slots)


def _occupied(remain: Optional[float], state: Optional[float]) -> Optional[bool]:
    # Firmware populates one field or the other reliably, never guaranteed both.
    if remain is None and state is None:
        return None
    has_material = remain is not None and remain > 0
    not_empty = state is not None and state != EMPTY_TRAY_STATE
    return has_material or not_empty

"""Ordered candidate-path resolution for loosely structured printer payloads.

Printer firmware places the same logical value at different locations in the
report tree depending on model and firmware version. A metric therefore
declares an ordered list of candidate paths; the first candidate that exists,
coerces to the metric's type and passes the plausibility check wins.

Resolution never raises and never substitutes a default. A missing value is
reported as an unresolved :class:`Resolution` so callers can tell "zero"
apart from "not reported".
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence, Tuple, Union

__all__ = [
    "MetricKind",
    "MetricSpec",
    "PathExpression",
    "PathSyntaxError",
    "Resolution",
    "Retention",
    "ScaleRule",
    "coerce_number",
    "coerce_scalar",
    "coerce_text",
    "in_range",
    "resolve",
    "resolve_first",
]

PathStep = Union[str, int]

_STEP_PATTERN = re.compile(r"([^.\[\]]+)|\[(\d+)\]|(\.)")


class PathSyntaxError(ValueError):
    """Raised when a candidate path expression cannot be parsed."""


class MetricKind(str, Enum):
    NUMBER = "number"
    INTEGER = "integer"
    TEXT = "text"
    # Scalar passed through untouched (vendor codes).
    RAW = "raw"


class Retention(str, Enum):
    """What happens to a metric when a message omits it.

    ``STICKY`` keeps the last resolved value, ``FRESH`` marks it absent.
    """

    STICKY = "sticky"
    FRESH = "fresh"


_MISSING = object()


@dataclass(frozen=True, slots=True)
class PathExpression:
    """A compiled dotted path such as ``print.device.extruder.info[0].temp``."""

    text: str
    steps: Tuple[PathStep, ...]

    @classmethod
    def parse(cls, text: str) -> "PathExpression":
        source = text.strip()
        if not source:
            raise PathSyntaxError("empty path expression")

        steps: list[PathStep] = []
        position = 0
        expect_key = True
        for match in _STEP_PATTERN.finditer(source):
            if match.start() != position:
                raise PathSyntaxError(f"invalid path expression: {text!r}")
            position = match.end()

            key, index, dot = match.groups()
            if dot:
                if expect_key:
                    raise PathSyntaxError(f"empty segment in path: {text!r}")
                expect_key = True
            elif index is not None:
                if not steps or expect_key:
                    raise PathSyntaxError(f"index must follow a key: {text!r}")
                steps.append(int(index))
                expect_key = False
            else:
                if not expect_key:
                    raise PathSyntaxError(f"missing '.' before {key!r} in {text!r}")
                steps.append(key)
                expect_key = False

        if position != len(source) or expect_key:
            raise PathSyntaxError(f"invalid path expression: {text!r}")

        return cls(text=source, steps=tuple(steps))

    def lookup(self, tree: Any) -> Any:
        """Return the value at this path, or the module's missing sentinel."""

        node = tree
        for step in self.steps:
            if isinstance(step, int):
                if not isinstance(node, (list, tuple)) or step >= len(node):
                    return _MISSING
                node = node[step]
            else:
                if not isinstance(node, Mapping) or step not in node:
                    return _MISSING
                node = node[step]
        return node

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class ScaleRule:
    """Divide numeric readings above ``threshold`` by ``divisor``.

    Some firmware reports temperature-like values as scaled integers. The rule
    is declared per metric, never applied globally.
    """

    threshold: float
    divisor: float

    def apply(self, value: float) -> float:
        if self.divisor and value > self.threshold:
            return value / self.divisor
        return value


Plausibility = Callable[[Any], bool]


def in_range(minimum: float, maximum: float) -> Plausibility:
    def check(value: Any) -> bool:
        return minimum <= value <= maximum

    return check


def _non_empty(value: Any) -> bool:
    return bool(value)


def coerce_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings; reject everything else."""

    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (OverflowError, ValueError):
        # JSON integers are unbounded; anything past float range is noise.
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def coerce_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return None


def coerce_scalar(value: Any) -> Any:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return value
    return None


@dataclass(frozen=True, slots=True)
class MetricSpec:
    """Declarative description of where a metric lives and what it may hold."""

    name: str
    candidates: Tuple[PathExpression, ...]
    kind: MetricKind = MetricKind.NUMBER
    plausible: Optional[Plausibility] = None
    scale: Optional[ScaleRule] = None
    retention: Retention = Retention.STICKY

    @classmethod
    def build(
        cls,
        name: str,
        candidates: Iterable[str],
        *,
        kind: MetricKind = MetricKind.NUMBER,
        plausible: Optional[Plausibility] = None,
        scale: Optional[ScaleRule] = None,
        retention: Retention = Retention.STICKY,
    ) -> "MetricSpec":
        if plausible is None and kind is MetricKind.TEXT:
            plausible = _non_empty
        return cls(
            name=name,
            candidates=tuple(PathExpression.parse(item) for item in candidates),
            kind=kind,
            plausible=plausible,
            scale=scale,
            retention=retention,
        )

    def coerce(self, raw: Any) -> Any:
        if self.kind is MetricKind.TEXT:
            return coerce_text(raw)
        if self.kind is MetricKind.RAW:
            return coerce_scalar(raw)

        number = coerce_number(raw)
        if number is not None and self.scale is not None:
            number = self.scale.apply(number)
        if number is not None and self.kind is MetricKind.INTEGER:
            return int(number) if number.is_integer() else None
        return number

    def accepts(self, value: Any) -> bool:
        if value is None:
            return False
        if self.plausible is None:
            return True
        try:
            return bool(self.plausible(value))
        except (TypeError, ValueError):
            return False


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of resolving one metric: the value and the path that produced it."""

    value: Any = None
    path: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.path is not None

    @classmethod
    def unresolved(cls) -> "Resolution":
        return _UNRESOLVED


_UNRESOLVED = Resolution()


def resolve(payload: Any, spec: MetricSpec) -> Resolution:
    """Return the first plausible candidate value for ``spec`` in ``payload``."""

    for candidate in spec.candidates:
        raw = candidate.lookup(payload)
        if raw is _MISSING:
            continue
        value = spec.coerce(raw)
        if spec.accepts(value):
            return Resolution(value=value, path=candidate.text)
    return _UNRESOLVED


def resolve_first(
    roots: Sequence[Tuple[str, Any]], spec: MetricSpec
) -> Resolution:
    """Resolve ``spec`` against several labelled roots in priority order.

    The reported path is prefixed with the root label, e.g. ``ams[0].tray_now``.
    """

    for label, root in roots:
        if root is None:
            continue
        resolution = resolve(root, spec)
        if resolution.resolved:
            path = f"{label}.{resolution.path}" if label else resolution.path
            return Resolution(value=resolution.value, path=path)
    return _UNRESOLVED

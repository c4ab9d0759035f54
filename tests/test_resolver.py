"""Tests for ordered candidate-path resolution."""

import math

import pytest

from filaprint_telemetry.telemetry.resolver import (
    MetricKind,
    MetricSpec,
    PathExpression,
    PathSyntaxError,
    ScaleRule,
    coerce_number,
    in_range,
    resolve,
    resolve_first,
)


class TestPathExpression:
    def test_parses_keys_and_indices(self):
        expression = PathExpression.parse("print.device.extruder.info[0].temp")

        assert expression.steps == ("print", "device", "extruder", "info", 0, "temp")
        assert str(expression) == "print.device.extruder.info[0].temp"

    @pytest.mark.parametrize(
        "text", ["", "   ", "a..b", ".a", "a.", "[0]", "a.[0]", "a[x]", "a[0]b"]
    )
    def test_rejects_malformed_paths(self, text):
        with pytest.raises(PathSyntaxError):
            PathExpression.parse(text)

    def test_lookup_walks_lists_and_mappings(self):
        tree = {"print": {"device": {"extruder": {"info": [{"temp": 215}, {"temp": 30}]}}}}

        assert PathExpression.parse("print.device.extruder.info[1].temp").lookup(tree) == 30

    def test_lookup_out_of_range_index_is_missing(self):
        spec = MetricSpec.build("nozzle", ["info[3].temp"])

        assert not resolve({"info": [{"temp": 200}]}, spec).resolved


class TestResolve:
    def test_first_existing_candidate_wins(self):
        spec = MetricSpec.build("bed", ["print.bed_temper", "bed_temper"])
        payload = {"print": {"bed_temper": 60}, "bed_temper": 99}

        resolution = resolve(payload, spec)

        assert resolution.value == 60.0
        assert resolution.path == "print.bed_temper"

    def test_falls_back_to_later_candidate(self):
        spec = MetricSpec.build("bed", ["print.bed_temper", "bed_temper"])

        resolution = resolve({"bed_temper": 55.5}, spec)

        assert resolution.value == 55.5
        assert resolution.path == "bed_temper"

    def test_implausible_value_falls_through(self):
        spec = MetricSpec.build(
            "nozzle", ["a.temp", "b.temp"], plausible=in_range(-40, 500)
        )

        resolution = resolve({"a": {"temp": 9999}, "b": {"temp": 210}}, spec)

        assert resolution.value == 210.0
        assert resolution.path == "b.temp"

    def test_zero_is_a_real_reading(self):
        spec = MetricSpec.build("progress", ["mc_percent"], plausible=in_range(0, 100))

        resolution = resolve({"mc_percent": 0}, spec)

        assert resolution.resolved
        assert resolution.value == 0.0

    def test_missing_everywhere_is_unresolved(self):
        spec = MetricSpec.build("bed", ["print.bed_temper"])

        resolution = resolve({"print": {}}, spec)

        assert not resolution.resolved
        assert resolution.value is None
        assert resolution.path is None

    def test_never_raises_on_odd_payloads(self):
        spec = MetricSpec.build("bed", ["print.bed_temper"])

        for payload in (None, 42, "text", [1, 2], {"print": "flat"}):
            assert not resolve(payload, spec).resolved

    def test_oversized_integer_falls_through_to_next_candidate(self):
        spec = MetricSpec.build("bed", ["print.bed_temper", "bed_temper"])

        resolution = resolve({"print": {"bed_temper": 10**400}, "bed_temper": 60}, spec)

        assert resolution.value == 60.0
        assert resolution.path == "bed_temper"

    def test_numeric_strings_are_coerced(self):
        spec = MetricSpec.build("humidity", ["humidity"])

        assert resolve({"humidity": " 42.5 "}, spec).value == 42.5

    def test_integer_kind_rejects_fractions(self):
        spec = MetricSpec.build("layer", ["layer_num"], kind=MetricKind.INTEGER)

        assert resolve({"layer_num": "12"}, spec).value == 12
        assert not resolve({"layer_num": 12.5}, spec).resolved

    def test_text_kind_skips_blank_values(self):
        spec = MetricSpec.build("job", ["subtask_name", "gcode_file"], kind=MetricKind.TEXT)

        resolution = resolve({"subtask_name": "  ", "gcode_file": " cube.gcode "}, spec)

        assert resolution.value == "cube.gcode"
        assert resolution.path == "gcode_file"

    def test_raw_kind_passes_codes_through(self):
        spec = MetricSpec.build("error", ["print_error"], kind=MetricKind.RAW)

        assert resolve({"print_error": 50348044}, spec).value == 50348044
        assert resolve({"print_error": "0700_2000"}, spec).value == "0700_2000"


class TestScaling:
    def test_scale_applies_above_threshold_only(self):
        spec = MetricSpec.build(
            "chamber",
            ["chamber_temper"],
            plausible=in_range(-40, 120),
            scale=ScaleRule(threshold=100, divisor=100000),
        )

        assert resolve({"chamber_temper": 3500000}, spec).value == pytest.approx(35.0)
        assert resolve({"chamber_temper": 35}, spec).value == 35.0

    def test_unscaled_raw_value_fails_plausibility(self):
        spec = MetricSpec.build("chamber", ["chamber_temper"], plausible=in_range(-40, 120))

        assert not resolve({"chamber_temper": 3500000}, spec).resolved


class TestCoerceNumber:
    @pytest.mark.parametrize(
        "value", [True, False, None, "abc", "nan", "inf", {"v": 1}, [1], float("nan")]
    )
    def test_rejects_non_numbers(self, value):
        assert coerce_number(value) is None

    def test_rejects_integers_beyond_float_range(self):
        assert coerce_number(10**400) is None
        assert coerce_number(-(10**400)) is None
        assert coerce_number("1e400") is None

    def test_accepts_ints_floats_and_strings(self):
        assert coerce_number(3) == 3.0
        assert coerce_number(2.5) == 2.5
        assert coerce_number("-7") == -7.0
        assert not math.isnan(coerce_number("1e3"))


def test_resolve_first_prefixes_root_label():
    spec = MetricSpec.build("tray_now", ["tray_now"], kind=MetricKind.RAW)
    roots = [("print.ams.ams[0]", {"id": "0"}), ("print.ams", {"tray_now": "2"})]

    resolution = resolve_first(roots, spec)

    assert resolution.value == "2"
    assert resolution.path == "print.ams.tray_now"

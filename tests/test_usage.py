"""Tests for filament usage extraction."""

from filaprint_telemetry.telemetry.usage import (
    UNKNOWN_USAGE,
    USAGE_UNKNOWN,
    extract_usage,
)


def test_usage_from_print_section():
    payload = {
        "print": {
            "filament_usage": [
                {"ams_slot": 1, "weight": 12.5, "length": 4100, "material": "PLA", "color": "FF0000FF"},
                {"tray_id": "2", "weight_g": "3.5"},
            ]
        }
    }

    usage = extract_usage(payload)

    assert usage.reported is True
    assert usage.source == "print.filament_usage"
    assert [entry.slot for entry in usage.entries] == [1, 3]
    assert usage.entries[0].length_mm == 4100.0
    assert usage.entries[0].material == "PLA"
    assert usage.total_weight_grams == 16.0


def test_entries_without_quantities_are_ignored():
    payload = {"actual_filament": [{"slot": 1, "material": "PETG"}, {"slot": 2, "length": 250}]}

    usage = extract_usage(payload)

    assert len(usage.entries) == 1
    assert usage.entries[0].slot == 2
    assert usage.total_weight_grams is None


def test_missing_usage_is_explicitly_unknown():
    usage = extract_usage({"print": {"mc_percent": 100}})

    assert usage is UNKNOWN_USAGE
    assert usage.as_dict() == {"reported": False, "usage": USAGE_UNKNOWN}


def test_malformed_usage_is_unknown():
    assert extract_usage({"print": {"filament_usage": "12g"}}) is UNKNOWN_USAGE
    assert extract_usage({"print": {"filament_usage": [None, 5]}}) is UNKNOWN_USAGE
    assert extract_usage(None) is UNKNOWN_USAGE


def test_as_dict_for_reported_usage():
    usage = extract_usage({"filament_usage": [{"slot": 4, "weight": 2}]})

    assert usage.as_dict() == {
        "reported": True,
        "source": "filament_usage",
        "totalWeight": 2.0,
        "entries": [
            {"slot": 4, "weight": 2.0, "length": None, "material": None, "color": None}
        ],
    }

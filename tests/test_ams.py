"""Tests for AMS tray-to-slot mapping."""

import pytest

from filaprint_telemetry.telemetry.ams import AmsStatus, map_slots, tray_to_slot


def _unit(trays, **fields):
    unit = {"id": "0", "tray": trays}
    unit.update(fields)
    return unit


class TestTrayToSlot:
    @pytest.mark.parametrize("value, slot", [(0, 1), (3, 4), ("2", 3), ("0", 1), (1.0, 2)])
    def test_maps_zero_based_index(self, value, slot):
        assert tray_to_slot(value) == slot

    @pytest.mark.parametrize("value", [4, 254, 255, -1, 2.5, "x", None, True])
    def test_out_of_range_is_unmapped(self, value):
        assert tray_to_slot(value) is None


class TestMapSlots:
    def test_string_tray_now_on_parent_maps_to_slot_three(self):
        payload = {
            "print": {
                "ams": {
                    "ams": [
                        _unit(
                            [
                                {"id": "0", "remain": 80},
                                {"id": "1", "remain": 0, "state": 11},
                                {"id": "2", "remain": 45, "tray_type": "PLA"},
                                {"id": "3"},
                            ],
                            humidity="3",
                        )
                    ],
                    "tray_now": "2",
                }
            }
        }

        report = map_slots(payload)

        assert report.status is AmsStatus.MAPPED
        assert report.active_slot == 3
        slot = report.mapping.slot(3)
        assert slot.remain == 45
        assert slot.occupied is True
        assert slot.active is True
        assert slot.material == "PLA"
        assert report.mapping.slot(2).occupied is False
        assert report.mapping.slot(4).occupied is None
        assert [state.humidity for state in report.mapping.slots] == [3.0] * 4
        assert report.trace.source == "print.ams.ams"
        assert report.trace.tray_now_path == "print.ams.tray_now"
        assert report.trace.tray_now_raw == "2"

    @pytest.mark.parametrize("tray_now", ["255", 254, -1, "abc"])
    def test_tray_now_out_of_range_is_unmapped(self, tray_now):
        payload = {"print": {"ams": {"ams": [_unit([{"id": "0", "remain": 10}])], "tray_now": tray_now}}}

        report = map_slots(payload)

        assert report.status is AmsStatus.UNMAPPED
        assert report.active_slot is None
        assert not any(state.active for state in report.mapping.slots)

    def test_missing_tray_now_is_unmapped(self):
        report = map_slots({"print": {"ams": {"ams": [_unit([])]}}})

        assert report.status is AmsStatus.UNMAPPED
        assert report.trace.tray_now_path is None

    def test_no_ams_is_absent(self):
        assert map_slots({"print": {"nozzle_temper": 210}}).status is AmsStatus.ABSENT
        assert map_slots(["not", "a", "mapping"]).status is AmsStatus.ABSENT
        assert map_slots({"print": {"ams": {"ams": []}}}).status is AmsStatus.ABSENT

    def test_top_level_array_with_tray_now_in_unit(self):
        payload = {"ams": [_unit([{"id": "1", "remain": 30}], tray_now="1")]}

        report = map_slots(payload)

        assert report.trace.source == "ams"
        assert report.trace.tray_now_path == "ams[0].tray_now"
        assert report.active_slot == 2
        assert report.mapping.slot(2).occupied is True

    def test_single_unit_object(self):
        payload = {
            "print": {
                "ams": {
                    "tray_now": "0",
                    "humidity_raw": "45",
                    "humidity": "2",
                    "tray": [{"id": "0", "remain": 5}],
                }
            }
        }

        report = map_slots(payload)

        assert report.trace.source == "print.ams"
        assert report.active_slot == 1
        assert report.humidity == 45.0
        assert report.trace.humidity_path == "print.ams.humidity_raw"

    def test_unit_at_payload_root(self):
        payload = _unit(
            [{"id": "0", "remain": 80}, {"id": "1", "remain": 40}],
            tray_now="1",
            humidity_raw=30,
        )

        report = map_slots(payload)

        assert report.status is AmsStatus.MAPPED
        assert report.active_slot == 2
        assert report.humidity == 30.0
        assert report.mapping.slot(2).remain == 40
        assert report.trace.source == "$"
        assert report.trace.tray_now_path == "tray_now"
        assert report.trace.humidity_path == "humidity_raw"

    def test_nested_ams_wins_over_root_trays(self):
        payload = {
            "tray": [{"id": "3"}],
            "print": {"ams": {"ams": [_unit([{"id": "0", "remain": 10}])], "tray_now": "0"}},
        }

        report = map_slots(payload)

        assert report.trace.source == "print.ams.ams"
        assert report.active_slot == 1

    def test_root_without_tray_list_is_absent(self):
        assert map_slots({"tray_now": "1", "humidity": "3"}).status is AmsStatus.ABSENT

    def test_tray_humidity_overrides_unit_value(self):
        trays = [{"id": "0"}, {"id": "1", "humidity": "20"}, {"id": "2"}, {"id": "3"}]
        payload = {"print": {"ams": {"ams": [_unit(trays, humidity="40")], "tray_now": "0"}}}

        report = map_slots(payload)

        assert [state.humidity for state in report.mapping.slots] == [40.0, 20.0, 40.0, 40.0]
        assert report.mapping.average_humidity == pytest.approx(35.0)

    def test_tray_position_used_when_id_missing(self):
        trays = [{"remain": 10}, {"remain": 0, "state": 11}]
        payload = {"print": {"ams": {"ams": [_unit(trays)], "tray_now": "1"}}}

        report = map_slots(payload)

        assert report.mapping.slot(1).occupied is True
        assert report.mapping.slot(2).occupied is False
        assert report.mapping.slot(2).active is True
        assert report.mapping.slot(3).reported is False

    def test_occupied_when_state_not_empty_even_without_remain(self):
        trays = [{"id": "0", "remain": -1, "state": 3}]
        report = map_slots({"print": {"ams": {"ams": [_unit(trays)]}}})

        assert report.mapping.slot(1).occupied is True

    def test_previous_and_target_slots(self):
        payload = {
            "print": {
                "ams": {
                    "ams": [_unit([])],
                    "tray_now": "1",
                    "tray_pre": "0",
                    "tray_tar": "255",
                }
            }
        }

        mapping = map_slots(payload).mapping

        assert mapping.active_slot == 2
        assert mapping.previous_slot == 1
        assert mapping.target_slot is None

    def test_unit_count_in_trace(self):
        payload = {"print": {"ams": {"ams": [_unit([]), {"id": "1", "tray": []}], "tray_now": "0"}}}

        assert map_slots(payload).trace.unit_count == 2

    def test_slot_numbers_always_one_to_four(self):
        trays = [{"id": str(index), "remain": 10} for index in range(6)]
        report = map_slots({"print": {"ams": {"ams": [_unit(trays)], "tray_now": "5"}}})

        assert [state.slot for state in report.mapping.slots] == [1, 2, 3, 4]
        assert report.status is AmsStatus.UNMAPPED

    def test_as_dict_is_json_shaped(self):
        payload = {"print": {"ams": {"ams": [_unit([{"id": "0", "remain": 5}])], "tray_now": "0"}}}

        result = map_slots(payload).as_dict()

        assert result["status"] == "mapped"
        assert result["mapping"]["activeSlot"] == 1
        assert result["trace"]["source"] == "print.ams.ams"

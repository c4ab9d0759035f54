"""Tests for progress-update cadence.

The cadence decides whether a printing snapshot is worth an event: an
unchanged fingerprint never emits, meaningful movement always does, and a
heartbeat interval lets slow changes through eventually.
"""

from datetime import timedelta

import pytest

from conftest import T0
from filaprint_telemetry.telemetry.cadence import (
    ProgressCadence,
    ProgressCadenceState,
    ProgressThresholds,
    TelemetryCadenceError,
    compute_payload_hash,
    progress_fingerprint,
)
from filaprint_telemetry.telemetry.models import (
    JobStatus,
    NormalizedSnapshot,
    Progress,
    Temperatures,
)


def _snapshot(seconds=0.0, *, nozzle=220.0, bed=60.0, percent=10.0, layer=5, state="RUNNING"):
    return NormalizedSnapshot(
        printer_id="p1",
        timestamp=T0 + timedelta(seconds=seconds),
        temperatures=Temperatures(nozzle1=nozzle, bed=bed),
        progress=Progress(percentage=percent, current_layer=layer, total_layers=100),
        status=JobStatus(state=state, job_name="Benchy"),
    )


class TestProgressCadence:
    def setup_method(self):
        self.cadence = ProgressCadence(ProgressThresholds())
        self.state = ProgressCadenceState()

    def _emit_first(self):
        decision = self.cadence.evaluate(self.state, _snapshot())
        assert decision.should_emit is True
        assert decision.reason == "first"

    def test_unchanged_fingerprint_never_emits(self):
        self._emit_first()

        for seconds in (1, 45, 600):
            decision = self.cadence.evaluate(self.state, _snapshot(seconds))
            assert decision.should_emit is False
            assert decision.reason == "dedup"

    def test_small_temperature_drift_is_suppressed(self):
        self._emit_first()

        decision = self.cadence.evaluate(self.state, _snapshot(2, nozzle=220.4))

        assert decision.should_emit is False
        assert decision.reason == "below-threshold"

    def test_temperature_move_emits(self):
        self._emit_first()

        decision = self.cadence.evaluate(self.state, _snapshot(2, bed=61.5))

        assert decision.should_emit is True
        assert decision.reason == "temperature:bed"

    def test_progress_move_emits(self):
        self._emit_first()

        decision = self.cadence.evaluate(self.state, _snapshot(2, percent=11.0))

        assert decision.should_emit is True
        assert decision.reason == "progress"

    def test_layer_change_emits(self):
        self._emit_first()

        decision = self.cadence.evaluate(self.state, _snapshot(2, layer=6))

        assert decision.reason == "layer"

    def test_interval_lets_small_changes_through(self):
        self._emit_first()

        early = self.cadence.evaluate(self.state, _snapshot(10, nozzle=220.2))
        late = self.cadence.evaluate(self.state, _snapshot(31, nozzle=220.3))

        assert early.should_emit is False
        assert late.should_emit is True
        assert late.reason == "interval"
        assert self.state.last_emitted_at == T0 + timedelta(seconds=31)

    def test_suppressed_updates_do_not_move_the_baseline(self):
        self._emit_first()

        for step in range(1, 6):
            self.cadence.evaluate(self.state, _snapshot(step, nozzle=220.0 + step * 0.15))

        assert self.state.last_snapshot.temperatures.nozzle1 == 220.0

    def test_force_always_emits(self):
        self._emit_first()

        decision = self.cadence.evaluate(self.state, _snapshot(1), force=True)

        assert decision.should_emit is True
        assert decision.reason == "forced"

    def test_reset_starts_over(self):
        self._emit_first()
        self.state.reset()

        assert self.cadence.evaluate(self.state, _snapshot(1)).reason == "first"

    def test_sensor_appearing_counts_as_movement(self):
        self._emit_first()
        snapshot = NormalizedSnapshot(
            printer_id="p1",
            timestamp=T0 + timedelta(seconds=1),
            temperatures=Temperatures(nozzle1=220.0, bed=60.0, chamber=30.0),
            progress=Progress(percentage=10.0, current_layer=5, total_layers=100),
            status=JobStatus(state="RUNNING", job_name="Benchy"),
        )

        assert self.cadence.evaluate(self.state, snapshot).reason == "temperature:chamber"


def test_negative_threshold_rejected():
    with pytest.raises(TelemetryCadenceError):
        ProgressThresholds(min_progress_delta=-1)


def test_fingerprint_ignores_timestamp():
    assert progress_fingerprint(_snapshot(0)) == progress_fingerprint(_snapshot(99))
    assert progress_fingerprint(_snapshot(0)) != progress_fingerprint(_snapshot(0, percent=11))


def test_payload_hash_is_order_independent():
    assert compute_payload_hash({"a": 1.00001, "b": [1, 2]}) == compute_payload_hash(
        {"b": [1, 2], "a": 1.0}
    )

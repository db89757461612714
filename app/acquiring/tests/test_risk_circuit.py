"""
Tests for RiskCircuit, the cache-backed guard around the risk scorer.
"""

from unittest.mock import patch

import pytest
from django.core.cache import cache
from freezegun import freeze_time

from acquiring.risk.circuit import CircuitOpenError, CircuitState, RiskCircuit


class ScorerDown(Exception):
    pass


@pytest.fixture
def circuit():
    return RiskCircuit(name="scorer-under-test", failure_threshold=3, recovery_timeout=30)


def trip(circuit):
    for _ in range(circuit.failure_threshold):
        circuit.record_failure()


class TestThreshold:
    def test_new_circuit_is_closed(self, circuit):
        assert circuit.state == CircuitState.CLOSED
        assert circuit.failures == 0
        assert circuit.allow_request() is True

    def test_stays_closed_below_threshold(self, circuit):
        circuit.record_failure()
        circuit.record_failure()

        assert circuit.allow_request() is True
        assert circuit.failures == 2

    def test_opens_at_threshold(self, circuit):
        trip(circuit)

        assert circuit.state == CircuitState.OPEN
        assert circuit.allow_request() is False

    def test_success_clears_failure_streak(self, circuit):
        circuit.record_failure()
        circuit.record_failure()
        circuit.record_success()
        circuit.record_failure()

        assert circuit.state == CircuitState.CLOSED
        assert circuit.failures == 1


class TestRecovery:
    def test_half_open_after_recovery_timeout(self, circuit):
        with freeze_time("2026-03-01 12:00:00") as frozen:
            trip(circuit)
            frozen.tick(29)
            assert circuit.state == CircuitState.OPEN

            frozen.tick(2)
            assert circuit.state == CircuitState.HALF_OPEN

    def test_half_open_admits_one_trial_call(self, circuit):
        with freeze_time("2026-03-01 12:00:00") as frozen:
            trip(circuit)
            frozen.tick(31)

            assert circuit.allow_request() is True
            assert circuit.allow_request() is False

    def test_successful_trial_call_closes(self, circuit):
        with freeze_time("2026-03-01 12:00:00") as frozen:
            trip(circuit)
            frozen.tick(31)

            with circuit.call():
                pass

            assert circuit.state == CircuitState.CLOSED
            assert circuit.failures == 0

    def test_failed_trial_call_reopens_for_a_new_window(self, circuit):
        with freeze_time("2026-03-01 12:00:00") as frozen:
            trip(circuit)
            frozen.tick(31)

            with pytest.raises(ScorerDown):
                with circuit.call():
                    raise ScorerDown("still down")

            assert circuit.state == CircuitState.OPEN
            frozen.tick(29)
            assert circuit.allow_request() is False
            frozen.tick(2)
            assert circuit.allow_request() is True

    def test_reset_closes_open_circuit(self, circuit):
        trip(circuit)

        circuit.reset()

        assert circuit.allow_request() is True
        assert circuit.failures == 0


class TestCall:
    def test_exception_counts_as_failure_and_propagates(self, circuit):
        with pytest.raises(ScorerDown):
            with circuit.call():
                raise ScorerDown("timeout")

        assert circuit.failures == 1

    def test_open_circuit_fails_fast(self, circuit):
        trip(circuit)
        calls = []

        with pytest.raises(CircuitOpenError):
            with circuit.call():
                calls.append("scored")

        assert calls == []


class TestSharedState:
    def test_instances_with_same_name_share_state(self):
        first = RiskCircuit("shared-scorer", failure_threshold=2)
        second = RiskCircuit("shared-scorer", failure_threshold=2)

        first.record_failure()
        first.record_failure()

        assert second.allow_request() is False

    def test_names_are_isolated(self):
        scorer = RiskCircuit("scorer-a", failure_threshold=1)
        other = RiskCircuit("scorer-b", failure_threshold=1)

        scorer.record_failure()

        assert scorer.allow_request() is False
        assert other.allow_request() is True

    def test_cache_outage_leaves_scoring_unguarded(self, circuit):
        with patch.object(cache, "get", side_effect=ConnectionError("cache down")):
            assert circuit.allow_request() is True
            circuit.record_failure()
            circuit.record_success()

    def test_status_reports_recovery_window(self, circuit):
        with freeze_time("2026-03-01 12:00:00") as frozen:
            trip(circuit)
            frozen.tick(10)

            status = circuit.get_status()

        assert status["state"] == "open"
        assert status["failure_count"] == 3
        assert status["recovery_in_seconds"] == 20
        assert "scorer-under-test" in repr(circuit)

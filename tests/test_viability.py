"""Tests for the odjax.observation_models.viability module.

Tests cover:
- Registry misses are always viable
- Minimum elevation checks: vacuous truth, threshold behavior, AND semantics
- Equivalence of the short-circuit and evaluate-all combinators
- Index validation
- Construction of elevation checks from link ends
"""

import itertools

import jax.numpy as jnp
import pytest

from odjax.constants import DEG2RAD
from odjax.observation_models import (
    LinkEndId,
    MinimumElevationAngleCalculator,
    ObservableType,
    ObservationViabilityCalculator,
    PointingAngleCalculator,
    StationPointingAngleCalculator,
    ViabilityCalculatorSet,
    are_all_viable,
    create_minimum_elevation_calculators,
    is_observation_viable,
    observed_body_link_ends,
    one_way_link_ends,
)

# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

# Station on the equator at lon=0: zenith is +x, east is +y (no rotation)
_STATION = StationPointingAngleCalculator(jnp.array([0.0, 0.0, 0.0]))


def _state_at_elevation(elevation_deg, distance=1.0e6):
    """Target state seen from a station at the origin with the given elevation."""
    el = elevation_deg * DEG2RAD
    return jnp.array([distance * jnp.sin(el), distance * jnp.cos(el), 0.0, 0.0, 0.0, 0.0])


class _Constant(ObservationViabilityCalculator):
    """Viability calculator with a fixed answer that counts its calls."""

    def __init__(self, answer):
        self.answer = answer
        self.calls = 0

    def is_observation_viable(self, link_end_states, link_end_times):
        self.calls += 1
        return self.answer


class _RecordingPointing(PointingAngleCalculator):
    """Pointing calculator returning a fixed elevation and recording its inputs."""

    def __init__(self, elevation):
        self.elevation = elevation
        self.inputs = []

    def elevation_angle(self, relative_position, time):
        self.inputs.append((relative_position, float(time)))
        return self.elevation

    def azimuth_angle(self, relative_position, time):
        return 0.0


# ──────────────────────────────────────────────
# Registry behaviour
# ──────────────────────────────────────────────


class TestRegistry:
    def test_empty_registry_is_viable(self):
        """Scenario A: no registered calculators means always viable."""
        states = jnp.zeros((2, 6))
        times = jnp.array([0.0, 1.0])
        link_ends = one_way_link_ends(("Earth", "Station1"), "Vehicle")
        assert is_observation_viable(states, times, link_ends, {}) is True

    def test_unregistered_link_ends_are_viable(self):
        registered = one_way_link_ends(("Earth", "Station1"), "Vehicle")
        other = one_way_link_ends(("Earth", "Station2"), "Vehicle")
        viability = ViabilityCalculatorSet()
        viability.register(registered, [_Constant(False)])
        assert viability.is_observation_viable(jnp.zeros((2, 6)), jnp.zeros(2), other) is True
        assert viability.is_observation_viable(jnp.zeros((2, 6)), jnp.zeros(2), registered) is False

    def test_registry_short_circuits(self):
        """Calculators after the first rejection are not evaluated."""
        first, second = _Constant(False), _Constant(True)
        link_ends = observed_body_link_ends("Vehicle")
        assert not is_observation_viable(jnp.zeros((1, 6)), jnp.zeros(1), link_ends, {link_ends: [first, second]})
        assert first.calls == 1
        assert second.calls == 0

    def test_list_form_evaluates_all(self):
        first, second = _Constant(False), _Constant(True)
        assert not are_all_viable(jnp.zeros((1, 6)), jnp.zeros(1), [first, second])
        assert first.calls == 1
        assert second.calls == 1

    @pytest.mark.parametrize("answers", list(itertools.product([True, False], repeat=3)))
    def test_combinators_agree_in_any_order(self, answers):
        """Both combinators equal the AND of the answers for every permutation."""
        link_ends = observed_body_link_ends("Vehicle")
        for ordering in itertools.permutations(answers):
            calculators = [_Constant(answer) for answer in ordering]
            registry = {link_ends: calculators}
            expected = all(ordering)
            assert is_observation_viable(jnp.zeros((1, 6)), jnp.zeros(1), link_ends, registry) == expected
            assert are_all_viable(jnp.zeros((1, 6)), jnp.zeros(1), calculators) == expected

    def test_register_appends(self):
        link_ends = observed_body_link_ends("Vehicle")
        a, b = _Constant(True), _Constant(True)
        viability = ViabilityCalculatorSet({link_ends: [a]})
        viability.register(link_ends, [b])
        assert viability[link_ends] == (a, b)
        assert len(viability) == 1
        assert list(viability) == [link_ends]

    def test_register_rejects_non_calculators(self):
        viability = ViabilityCalculatorSet()
        with pytest.raises(ValueError, match="ObservationViabilityCalculator"):
            viability.register(observed_body_link_ends("Vehicle"), [object()])

    def test_register_rejects_non_link_ends(self):
        viability = ViabilityCalculatorSet()
        with pytest.raises(ValueError, match="Expected LinkEnds"):
            viability.register({"a": 1}, [_Constant(True)])


# ──────────────────────────────────────────────
# Minimum elevation angle
# ──────────────────────────────────────────────


class TestMinimumElevationAngleCalculator:
    def test_no_pairs_is_viable(self):
        calc = MinimumElevationAngleCalculator([], 10.0 * DEG2RAD, _STATION)
        assert calc.is_observation_viable(jnp.zeros((2, 6)), jnp.zeros(2)) is True

    @pytest.mark.parametrize("elevation_deg, expected", [(5.0, False), (15.0, True)])
    def test_threshold(self, elevation_deg, expected):
        """Scenario B: 10 deg threshold, pair (0, 1)."""
        calc = MinimumElevationAngleCalculator([(0, 1)], 10.0 * DEG2RAD, _STATION)
        states = jnp.stack([jnp.zeros(6), _state_at_elevation(elevation_deg)])
        assert calc.is_observation_viable(states, jnp.zeros(2)) is expected

    def test_threshold_with_stub_pointing(self):
        """Scenario B with the pointing calculator returning the elevation directly."""
        below = MinimumElevationAngleCalculator([(0, 1)], 10.0 * DEG2RAD, _RecordingPointing(5.0 * DEG2RAD))
        above = MinimumElevationAngleCalculator([(0, 1)], 10.0 * DEG2RAD, _RecordingPointing(15.0 * DEG2RAD))
        states = jnp.zeros((2, 6))
        assert not below.is_observation_viable(states, jnp.zeros(2))
        assert above.is_observation_viable(states, jnp.zeros(2))

    def test_exact_threshold_is_not_viable(self):
        calc = MinimumElevationAngleCalculator([(0, 1)], 0.2, _RecordingPointing(0.2))
        assert not calc.is_observation_viable(jnp.zeros((2, 6)), jnp.zeros(2))

    def test_relative_vector_and_station_time(self):
        """The target minus station position is checked at the station time."""
        pointing = _RecordingPointing(1.0)
        calc = MinimumElevationAngleCalculator([(1, 0)], 0.0, pointing)
        states = jnp.array([[10.0, 20.0, 30.0, 1.0, 1.0, 1.0], [1.0, 2.0, 3.0, 9.0, 9.0, 9.0]])
        times = jnp.array([100.0, 200.0])
        calc.is_observation_viable(states, times)
        relative_position, time = pointing.inputs[0]
        assert jnp.allclose(relative_position, jnp.array([9.0, 18.0, 27.0]))
        assert time == pytest.approx(200.0)

    def test_and_over_pairs(self):
        """Dropping any single target below the horizon makes the result false."""
        calc = MinimumElevationAngleCalculator([(0, 1), (0, 2), (0, 3)], 10.0 * DEG2RAD, _STATION)
        visible = [_state_at_elevation(e) for e in (20.0, 45.0, 80.0)]
        states = jnp.stack([jnp.zeros(6)] + visible)
        times = jnp.zeros(4)
        assert calc.is_observation_viable(states, times)
        for index in range(1, 4):
            blocked = states.at[index].set(_state_at_elevation(-5.0))
            assert not calc.is_observation_viable(blocked, times)

    def test_evaluates_every_pair(self):
        pointing = _RecordingPointing(-1.0)
        calc = MinimumElevationAngleCalculator([(0, 1), (1, 0)], 0.0, pointing)
        assert not calc.is_observation_viable(jnp.zeros((2, 6)), jnp.zeros(2))
        assert len(pointing.inputs) == 2

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            MinimumElevationAngleCalculator([(0, -1)], 0.0, _STATION)

    def test_out_of_range_index_raises(self):
        calc = MinimumElevationAngleCalculator([(0, 2)], 0.0, _STATION)
        with pytest.raises(IndexError, match="out of range"):
            calc.is_observation_viable(jnp.zeros((2, 6)), jnp.zeros(2))


class TestCreateMinimumElevationCalculators:
    def test_station_as_transmitter(self):
        station = LinkEndId("Earth", "Station1")
        link_ends = one_way_link_ends(station, "Vehicle")
        calculators = create_minimum_elevation_calculators(
            link_ends, ObservableType.ONE_WAY_RANGE, {station: _STATION}, 10.0 * DEG2RAD
        )
        assert len(calculators) == 1
        assert calculators[0].link_end_indices == ((0, 1),)
        assert calculators[0].pointing_angle_calculator is _STATION

    def test_station_as_receiver(self):
        station = LinkEndId("Earth", "Station1")
        link_ends = one_way_link_ends("Vehicle", station)
        calculators = create_minimum_elevation_calculators(
            link_ends, ObservableType.ONE_WAY_DOPPLER, {station: _STATION}, 0.0
        )
        assert calculators[0].link_end_indices == ((1, 0),)

    def test_no_stations(self):
        calculators = create_minimum_elevation_calculators(
            one_way_link_ends("Earth", "Mars"), ObservableType.ONE_WAY_RANGE, {}, 0.0
        )
        assert calculators == []

    def test_invalid_link_ends(self):
        with pytest.raises(ValueError, match="requires link end roles"):
            create_minimum_elevation_calculators(
                observed_body_link_ends("Vehicle"), ObservableType.ONE_WAY_RANGE, {}, 0.0
            )

"""Tests for the odjax.observation_models types, observables and station geometry.

Tests cover:
- LinkEnds structural equality, hashing, ordering and validation
- ObservableType roles and sizes
- Observable value functions and their autodiff partials
- Station geodetic conversion, ENZ rotation and pointing angles
"""

import jax
import jax.numpy as jnp
import pytest

from odjax.constants import C_LIGHT, DEG2RAD, OMEGA_EARTH, WGS84_a
from odjax.observation_models import (
    LinkEndId,
    LinkEnds,
    LinkEndType,
    ObservableType,
    SingleObservationSet,
    StationPointingAngleCalculator,
    angular_position_observable,
    concatenate_observations,
    count_observations,
    get_observable_function,
    iterate_observation_sets,
    observed_body_link_ends,
    one_way_doppler_observable,
    one_way_link_ends,
    one_way_range_observable,
    position_geodetic_to_body_fixed,
    position_observable,
    rotation_body_fixed_to_enz,
    station_inertial_state,
    uniform_rotation,
    validate_link_ends,
)

# ──────────────────────────────────────────────
# Link ends
# ──────────────────────────────────────────────


class TestLinkEnds:
    def test_structural_equality(self):
        """LinkEnds built in different orders are equal and hash equal."""
        a = LinkEnds({LinkEndType.TRANSMITTER: "Earth", LinkEndType.RECEIVER: "Mars"})
        b = LinkEnds({LinkEndType.RECEIVER: "Mars", LinkEndType.TRANSMITTER: "Earth"})
        assert a == b
        assert hash(a) == hash(b)

    def test_usable_as_dict_key(self):
        a = one_way_link_ends("Earth", "Mars")
        b = one_way_link_ends(LinkEndId("Earth"), ("Mars", ""))
        table = {a: 1}
        assert table[b] == 1

    def test_station_distinguishes(self):
        a = one_way_link_ends(("Earth", "Station1"), "Vehicle")
        b = one_way_link_ends(("Earth", "Station2"), "Vehicle")
        assert a != b
        assert len({a, b}) == 2

    def test_ordering_is_total_and_stable(self):
        a = one_way_link_ends(("Earth", "Station1"), "Vehicle")
        b = one_way_link_ends(("Earth", "Station2"), "Vehicle")
        c = observed_body_link_ends("Vehicle")
        assert sorted([c, b, a]) == sorted([a, b, c])
        assert sorted([b, a])[0] == a

    def test_mapping_access(self):
        link_ends = one_way_link_ends(("Earth", "Station1"), "Vehicle")
        assert link_ends[LinkEndType.TRANSMITTER] == LinkEndId("Earth", "Station1")
        assert LinkEndType.RECEIVER in link_ends
        assert LinkEndType.OBSERVED_BODY not in link_ends
        assert len(link_ends) == 2
        assert list(link_ends) == [LinkEndType.TRANSMITTER, LinkEndType.RECEIVER]

    def test_missing_role_raises_key_error(self):
        with pytest.raises(KeyError):
            observed_body_link_ends("Vehicle")[LinkEndType.RECEIVER]

    def test_not_equal_to_plain_dict(self):
        link_ends = observed_body_link_ends("Vehicle")
        assert link_ends != {LinkEndType.OBSERVED_BODY: LinkEndId("Vehicle")}

    def test_invalid_participant_raises(self):
        with pytest.raises(ValueError, match="Cannot interpret"):
            LinkEnds({LinkEndType.RECEIVER: 42})

    def test_link_end_id_str(self):
        assert str(LinkEndId("Earth", "Station1")) == "Earth/Station1"
        assert str(LinkEndId("Vehicle")) == "Vehicle"
        assert LinkEndId("Earth", "Station1").is_ground_station
        assert not LinkEndId("Vehicle").is_ground_station


class TestObservableType:
    def test_roles_and_sizes(self):
        assert ObservableType.POSITION.link_end_roles == (LinkEndType.OBSERVED_BODY,)
        assert ObservableType.ONE_WAY_RANGE.link_end_roles == (
            LinkEndType.TRANSMITTER,
            LinkEndType.RECEIVER,
        )
        assert ObservableType.POSITION.size == 3
        assert ObservableType.ONE_WAY_RANGE.size == 1
        assert ObservableType.ANGULAR_POSITION.size == 2
        assert ObservableType.ONE_WAY_DOPPLER.size == 1

    def test_validate_link_ends_accepts_required_roles(self):
        validate_link_ends(ObservableType.ONE_WAY_RANGE, one_way_link_ends("Earth", "Mars"))
        validate_link_ends(ObservableType.POSITION, observed_body_link_ends("Earth"))

    def test_validate_link_ends_rejects_missing_role(self):
        with pytest.raises(ValueError, match="requires link end roles"):
            validate_link_ends(ObservableType.ONE_WAY_RANGE, observed_body_link_ends("Earth"))

    def test_validate_link_ends_rejects_extra_role(self):
        link_ends = LinkEnds({
            LinkEndType.TRANSMITTER: "Earth",
            LinkEndType.RECEIVER: "Mars",
            LinkEndType.OBSERVED_BODY: "Moon",
        })
        with pytest.raises(ValueError, match="requires link end roles"):
            validate_link_ends(ObservableType.ONE_WAY_DOPPLER, link_ends)


class TestObservationCollection:
    def _collection(self):
        a = one_way_link_ends(("Earth", "Station2"), "Vehicle")
        b = one_way_link_ends(("Earth", "Station1"), "Vehicle")
        return {
            ObservableType.ONE_WAY_RANGE: {
                a: SingleObservationSet(jnp.array([[3.0], [4.0]]), jnp.array([0.0, 1.0]), LinkEndType.RECEIVER),
                b: SingleObservationSet(jnp.array([[1.0], [2.0]]), jnp.array([0.0, 1.0]), LinkEndType.RECEIVER),
            },
            ObservableType.POSITION: {
                observed_body_link_ends("Vehicle"): SingleObservationSet(
                    jnp.array([[5.0, 6.0, 7.0]]), jnp.array([0.0]), LinkEndType.OBSERVED_BODY
                ),
            },
        }

    def test_canonical_order(self):
        """Observable type first, then sorted link ends."""
        order = [(t, le) for t, le, _ in iterate_observation_sets(self._collection())]
        assert order[0][0] == ObservableType.POSITION
        assert order[1][1][LinkEndType.TRANSMITTER].station == "Station1"
        assert order[2][1][LinkEndType.TRANSMITTER].station == "Station2"

    def test_count_and_concatenate(self):
        collection = self._collection()
        assert count_observations(collection) == 7
        flat = concatenate_observations(collection)
        assert jnp.allclose(flat, jnp.array([5.0, 6.0, 7.0, 1.0, 2.0, 3.0, 4.0]))

    def test_empty_collection(self):
        assert count_observations({}) == 0
        assert concatenate_observations({}).shape == (0,)


# ──────────────────────────────────────────────
# Observable functions
# ──────────────────────────────────────────────


def _two_states():
    transmitter = jnp.array([1.0e6, 2.0e6, -0.5e6, 10.0, -20.0, 5.0])
    receiver = jnp.array([4.0e6, 6.0e6, 0.5e6, -30.0, 40.0, 0.0])
    return jnp.stack([transmitter, receiver]), jnp.zeros(2)


class TestObservables:
    def test_position(self):
        states = jnp.array([[1.0, 2.0, 3.0, 4.0, 5.0, 6.0]])
        assert jnp.allclose(position_observable(states, jnp.zeros(1)), jnp.array([1.0, 2.0, 3.0]))

    def test_one_way_range(self):
        states, times = _two_states()
        expected = jnp.linalg.norm(states[1, :3] - states[0, :3])
        value = one_way_range_observable(states, times)
        assert value.shape == (1,)
        assert float(value[0]) == pytest.approx(float(expected))

    def test_angular_position_on_axes(self):
        """Transmitter along +y from receiver gives ra = 90 deg, dec = 0."""
        states = jnp.array([[0.0, 5.0, 0.0, 0.0, 0.0, 0.0], [0.0] * 6])
        value = angular_position_observable(states, jnp.zeros(2))
        assert float(value[0]) == pytest.approx(90.0 * DEG2RAD)
        assert float(value[1]) == pytest.approx(0.0, abs=1e-12)

    def test_angular_position_declination(self):
        states = jnp.array([[1.0, 0.0, 1.0, 0.0, 0.0, 0.0], [0.0] * 6])
        value = angular_position_observable(states, jnp.zeros(2))
        assert float(value[1]) == pytest.approx(45.0 * DEG2RAD)

    def test_one_way_doppler_receding_is_negative(self):
        """A receding receiver lowers the received frequency."""
        states = jnp.array([[0.0] * 6, [1.0e6, 0.0, 0.0, 1000.0, 0.0, 0.0]])
        value = one_way_doppler_observable(states, jnp.zeros(2))
        assert float(value[0]) == pytest.approx(-1000.0 / C_LIGHT)

    def test_one_way_doppler_transverse_is_zero(self):
        states = jnp.array([[0.0] * 6, [1.0e6, 0.0, 0.0, 0.0, 1000.0, 0.0]])
        value = one_way_doppler_observable(states, jnp.zeros(2))
        assert float(value[0]) == pytest.approx(0.0, abs=1e-15)

    def test_registry(self):
        assert get_observable_function(ObservableType.ONE_WAY_RANGE) is one_way_range_observable
        assert get_observable_function(0) is position_observable

    def test_range_partials_are_line_of_sight(self):
        """d(range)/d(receiver position) is the unit line-of-sight vector."""
        states, times = _two_states()
        jacobian = jax.jacfwd(one_way_range_observable)(states, times)
        line_of_sight = states[1, :3] - states[0, :3]
        line_of_sight = line_of_sight / jnp.linalg.norm(line_of_sight)
        assert jacobian.shape == (1, 2, 6)
        assert jnp.allclose(jacobian[0, 1, :3], line_of_sight)
        assert jnp.allclose(jacobian[0, 0, :3], -line_of_sight)
        assert jnp.allclose(jacobian[0, :, 3:], 0.0)


# ──────────────────────────────────────────────
# Ground stations
# ──────────────────────────────────────────────


class TestStationGeometry:
    def test_geodetic_origin(self):
        """lon=0, lat=0, alt=0 is on the equator at the semi-major axis."""
        position = position_geodetic_to_body_fixed(jnp.array([0.0, 0.0, 0.0]))
        assert float(position[0]) == pytest.approx(WGS84_a)
        assert float(position[1]) == pytest.approx(0.0, abs=1e-6)
        assert float(position[2]) == pytest.approx(0.0, abs=1e-6)

    def test_geodetic_degrees(self):
        position = position_geodetic_to_body_fixed(jnp.array([90.0, 0.0, 100.0]), use_degrees=True)
        assert float(position[1]) == pytest.approx(WGS84_a + 100.0)

    def test_enz_rotation_orthonormal(self):
        rotation = rotation_body_fixed_to_enz(0.3, -0.7)
        assert jnp.allclose(rotation @ rotation.T, jnp.eye(3), atol=1e-12)

    def test_uniform_rotation(self):
        rotation = uniform_rotation(rotation_rate=jnp.pi / 2.0)
        assert jnp.allclose(rotation(0.0), jnp.eye(3))
        # After a quarter turn the inertial y-axis is the body-fixed x-axis
        assert jnp.allclose(rotation(1.0) @ jnp.array([0.0, 1.0, 0.0]), jnp.array([1.0, 0.0, 0.0]), atol=1e-12)

    def test_station_inertial_state_velocity(self):
        state = station_inertial_state(jnp.array([WGS84_a, 0.0, 0.0]), 0.0)
        assert jnp.allclose(state[:3], jnp.array([WGS84_a, 0.0, 0.0]))
        assert float(state[4]) == pytest.approx(OMEGA_EARTH * WGS84_a)


class TestStationPointingAngleCalculator:
    def test_zenith(self):
        calc = StationPointingAngleCalculator(jnp.array([0.0, 0.0, 0.0]))
        assert calc.elevation_angle(jnp.array([1000.0, 0.0, 0.0]), 0.0) == pytest.approx(jnp.pi / 2.0)

    def test_horizon_and_below(self):
        calc = StationPointingAngleCalculator(jnp.array([0.0, 0.0, 0.0]))
        assert calc.elevation_angle(jnp.array([0.0, 1000.0, 0.0]), 0.0) == pytest.approx(0.0, abs=1e-12)
        assert calc.elevation_angle(jnp.array([-1000.0, 0.0, 0.0]), 0.0) == pytest.approx(-jnp.pi / 2.0)

    def test_elevation_angle_value(self):
        """A vector 30 deg above the eastern horizon has elevation 30 deg."""
        calc = StationPointingAngleCalculator(jnp.array([0.0, 0.0, 0.0]))
        vector = jnp.array([jnp.sin(30.0 * DEG2RAD), jnp.cos(30.0 * DEG2RAD), 0.0])
        assert calc.elevation_angle(vector, 0.0) == pytest.approx(30.0 * DEG2RAD)
        assert calc.azimuth_angle(vector, 0.0) == pytest.approx(90.0 * DEG2RAD)

    def test_rotation_applied(self):
        """With the body rotated a quarter turn, inertial +y is the local zenith."""
        calc = StationPointingAngleCalculator(
            jnp.array([0.0, 0.0, 0.0]), rotation_to_body_fixed=uniform_rotation(jnp.pi / 2.0)
        )
        assert calc.elevation_angle(jnp.array([0.0, 1000.0, 0.0]), 1.0) == pytest.approx(jnp.pi / 2.0)

    def test_custom_ellipsoid(self):
        """The station sits on the ellipsoid it is given, not on WGS84."""
        radius = 3.3962e6
        geodetic = jnp.array([1.0, 0.5, 250.0])
        calc = StationPointingAngleCalculator(geodetic, equatorial_radius=radius, flattening=0.0)
        expected = (radius + 250.0) * jnp.array([
            jnp.cos(0.5) * jnp.cos(1.0), jnp.cos(0.5) * jnp.sin(1.0), jnp.sin(0.5),
        ])
        assert jnp.allclose(calc.body_fixed_position, expected, rtol=0.0, atol=1e-6)
        assert jnp.allclose(
            calc.body_fixed_position,
            position_geodetic_to_body_fixed(geodetic, equatorial_radius=radius, flattening=0.0),
        )
        # On a sphere the local vertical is radial
        assert calc.elevation_angle(expected, 0.0) == pytest.approx(jnp.pi / 2.0)

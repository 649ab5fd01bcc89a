"""Ground station geometry and pointing angles.

Provides the station-side geometry consumed by the viability checks:

- :func:`position_geodetic_to_body_fixed`: WGS84-style geodetic to
  body-fixed Cartesian conversion for a station location.
- :func:`rotation_body_fixed_to_enz`: rotation from the body-fixed frame to
  the station's local East-North-Zenith (ENZ) frame.
- :func:`uniform_rotation`: a constant-rate rotation model from the
  inertial frame to the body-fixed frame, standing in for a full frame
  provider.
- :func:`station_inertial_state`: inertial position and velocity of a
  station on a uniformly rotating body.
- :class:`StationPointingAngleCalculator`: elevation and azimuth of an
  inertial relative position vector as seen from one station.

The ENZ frame is right-handed: East and North are tangent to the
reference ellipsoid, Zenith is along the ellipsoid normal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype
from odjax.constants import OMEGA_EARTH, WGS84_a, WGS84_f


def position_geodetic_to_body_fixed(
    x_geod: ArrayLike,
    equatorial_radius: float = WGS84_a,
    flattening: float = WGS84_f,
    use_degrees: bool = False,
) -> Array:
    """Convert a geodetic station location to body-fixed Cartesian coordinates.

    Args:
        x_geod: Geodetic coordinates ``[lon, lat, alt]``. Longitude and
            latitude in *rad* (or *deg* if ``use_degrees=True``), altitude
            in *m* above the reference ellipsoid.
        equatorial_radius: Ellipsoid semi-major axis [m]. Default: WGS84.
        flattening: Ellipsoid flattening. Default: WGS84.
        use_degrees: If ``True``, interpret longitude and latitude as degrees.

    Returns:
        jax.Array: Body-fixed position ``[x, y, z]`` in *m*.
    """
    x_geod = jnp.asarray(x_geod, dtype=get_dtype())

    lon = x_geod[0]
    lat = x_geod[1]
    alt = x_geod[2]

    if use_degrees:
        lon = jnp.deg2rad(lon)
        lat = jnp.deg2rad(lat)

    ecc2 = flattening * (2.0 - flattening)
    sin_lat = jnp.sin(lat)
    cos_lat = jnp.cos(lat)

    # Prime vertical radius of curvature
    N = equatorial_radius / jnp.sqrt(1.0 - ecc2 * sin_lat * sin_lat)

    x = (N + alt) * cos_lat * jnp.cos(lon)
    y = (N + alt) * cos_lat * jnp.sin(lon)
    z = ((1.0 - ecc2) * N + alt) * sin_lat

    return jnp.array([x, y, z])


def rotation_body_fixed_to_enz(
    longitude: float,
    latitude: float,
    use_degrees: bool = False,
) -> Array:
    """Rotation matrix from the body-fixed frame to the local ENZ frame.

    Args:
        longitude: Station longitude in *rad* (or *deg*).
        latitude: Station geodetic latitude in *rad* (or *deg*).
        use_degrees: If ``True``, interpret the angles as degrees.

    Returns:
        jax.Array: 3x3 rotation matrix (body-fixed -> ENZ).
    """
    lon = jnp.asarray(longitude, dtype=get_dtype())
    lat = jnp.asarray(latitude, dtype=get_dtype())

    if use_degrees:
        lon = jnp.deg2rad(lon)
        lat = jnp.deg2rad(lat)

    sin_lon = jnp.sin(lon)
    cos_lon = jnp.cos(lon)
    sin_lat = jnp.sin(lat)
    cos_lat = jnp.cos(lat)

    # Rows are E, N, Z basis vectors expressed in the body-fixed frame
    return jnp.array([
        [-sin_lon, cos_lon, 0.0],                             # East
        [-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat],    # North
        [cos_lat * cos_lon, cos_lat * sin_lon, sin_lat],      # Zenith
    ])


def uniform_rotation(
    rotation_rate: float = OMEGA_EARTH,
    reference_angle: float = 0.0,
    reference_time: float = 0.0,
) -> Callable[[float], Array]:
    """Create a constant-rate inertial to body-fixed rotation model.

    The body-fixed frame rotates about the inertial z-axis by
    ``theta(t) = reference_angle + rotation_rate * (t - reference_time)``.

    Args:
        rotation_rate: Rotation rate about the z-axis [rad/s].
        reference_angle: Rotation angle at *reference_time* [rad].
        reference_time: Epoch of *reference_angle* [s].

    Returns:
        Callable mapping a time [s] to the 3x3 inertial -> body-fixed
        rotation matrix.

    Examples:
        ```python
        from odjax.constants import JULIAN_DAY
        from odjax.observation_models import uniform_rotation

        rotation = uniform_rotation(2.0 * 3.141592653589793 / JULIAN_DAY)
        rotation(0.0)  # identity
        ```
    """

    def rotation(time: float) -> Array:
        angle = reference_angle + rotation_rate * (jnp.asarray(time, dtype=get_dtype()) - reference_time)
        c = jnp.cos(angle)
        s = jnp.sin(angle)
        return jnp.array([[c, s, 0.0],
                          [-s, c, 0.0],
                          [0.0, 0.0, 1.0]])

    return rotation


def station_inertial_state(
    body_fixed_position: ArrayLike,
    time: float,
    rotation_rate: float = OMEGA_EARTH,
    reference_angle: float = 0.0,
    reference_time: float = 0.0,
) -> Array:
    """Inertial state of a station fixed to a uniformly rotating body.

    Consistent with :func:`uniform_rotation` for the same arguments.  The
    result is differentiable with respect to *body_fixed_position*, which
    allows station positions to be estimated.

    Args:
        body_fixed_position: Station position in the body-fixed frame [m].
        time: Evaluation time [s].
        rotation_rate: Rotation rate about the z-axis [rad/s].
        reference_angle: Rotation angle at *reference_time* [rad].
        reference_time: Epoch of *reference_angle* [s].

    Returns:
        jax.Array: Inertial state ``[x, y, z, vx, vy, vz]`` relative to the
            body's center [m, m/s].
    """
    r_bf = jnp.asarray(body_fixed_position, dtype=get_dtype())
    rotation = uniform_rotation(rotation_rate, reference_angle, reference_time)(time)
    r_inertial = rotation.T @ r_bf
    omega = jnp.array([0.0, 0.0, rotation_rate], dtype=get_dtype())
    v_inertial = jnp.cross(omega, r_inertial)
    return jnp.concatenate([r_inertial, v_inertial])


class PointingAngleCalculator(ABC):
    """Computes pointing angles of inertial vectors as seen from one station."""

    @abstractmethod
    def elevation_angle(self, relative_position: ArrayLike, time: float) -> float:
        """Elevation [rad] of *relative_position* above the local horizon at *time*."""

    @abstractmethod
    def azimuth_angle(self, relative_position: ArrayLike, time: float) -> float:
        """Azimuth [rad], clockwise from North, of *relative_position* at *time*."""


class StationPointingAngleCalculator(PointingAngleCalculator):
    """Pointing angles for a station at a fixed geodetic location.

    Relative position vectors are given in the inertial frame.  They are
    rotated into the body-fixed frame with *rotation_to_body_fixed* and
    then into the station's ENZ frame.

    Args:
        geodetic_position: Station location ``[lon, lat, alt]`` in *rad*
            (or *deg*) and *m*.
        rotation_to_body_fixed: Callable mapping time [s] to the 3x3
            inertial -> body-fixed rotation. ``None`` means the inertial and
            body-fixed frames coincide.
        use_degrees: If ``True``, interpret longitude and latitude as degrees.
        equatorial_radius: Equatorial radius of the central body's reference
            ellipsoid [m]. Default: WGS84.
        flattening: Flattening of the reference ellipsoid. Default: WGS84.

    Examples:
        ```python
        import jax.numpy as jnp
        from odjax.observation_models import StationPointingAngleCalculator

        calc = StationPointingAngleCalculator(jnp.array([0.0, 0.0, 0.0]))
        calc.elevation_angle(jnp.array([1.0, 0.0, 0.0]), 0.0)  # pi / 2
        ```
    """

    def __init__(
        self,
        geodetic_position: ArrayLike,
        rotation_to_body_fixed: Callable[[float], Array] | None = None,
        use_degrees: bool = False,
        equatorial_radius: float = WGS84_a,
        flattening: float = WGS84_f,
    ) -> None:
        geodetic_position = jnp.asarray(geodetic_position, dtype=get_dtype())
        self.body_fixed_position = position_geodetic_to_body_fixed(
            geodetic_position,
            equatorial_radius=equatorial_radius,
            flattening=flattening,
            use_degrees=use_degrees,
        )
        self._rotation_to_enz = rotation_body_fixed_to_enz(
            geodetic_position[0], geodetic_position[1], use_degrees=use_degrees
        )
        self._rotation_to_body_fixed = rotation_to_body_fixed

    def convert_to_topocentric(self, relative_position: ArrayLike, time: float) -> Array:
        """Express an inertial relative position in the station's ENZ frame."""
        vector = jnp.asarray(relative_position, dtype=get_dtype())
        if self._rotation_to_body_fixed is not None:
            vector = self._rotation_to_body_fixed(time) @ vector
        return self._rotation_to_enz @ vector

    def elevation_angle(self, relative_position: ArrayLike, time: float) -> float:
        enz = self.convert_to_topocentric(relative_position, time)
        horizontal = jnp.sqrt(enz[0] * enz[0] + enz[1] * enz[1])
        return float(jnp.arctan2(enz[2], horizontal))

    def azimuth_angle(self, relative_position: ArrayLike, time: float) -> float:
        enz = self.convert_to_topocentric(relative_position, time)
        azimuth = jnp.arctan2(enz[0], enz[1])
        return float(jnp.where(azimuth >= 0.0, azimuth, azimuth + 2.0 * jnp.pi))

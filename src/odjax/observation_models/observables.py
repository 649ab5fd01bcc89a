"""Observable value functions.

Each function maps the per-epoch link-end states and times of one
observation to the observed quantity.  States are stacked in the role
order given by :attr:`ObservableType.link_end_roles`, so ``states`` has
shape ``(k, 6)`` (position and velocity, SI units) and ``times`` has shape
``(k,)``.

The functions are pure JAX expressions; :mod:`odjax.estimation.partials`
differentiates them with ``jax.jacfwd`` to obtain observation-to-state
partials.

Geometry is instantaneous: light-time and relativistic corrections are
resolved by the state provider (see :class:`ObservationSimulator`), not
here.
"""

from __future__ import annotations

from collections.abc import Callable

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.constants import C_LIGHT
from odjax.observation_models._types import ObservableType


def position_observable(states: ArrayLike, times: ArrayLike) -> Array:
    """Cartesian position of the observed body.

    Args:
        states: Link-end states of shape ``(1, 6)`` (observed body).
        times: Link-end times of shape ``(1,)``. Unused.

    Returns:
        jax.Array: Position ``[x, y, z]`` in *m*.
    """
    states = jnp.asarray(states)
    return states[0, :3]


def one_way_range_observable(states: ArrayLike, times: ArrayLike) -> Array:
    """Geometric distance from transmitter to receiver.

    Args:
        states: Link-end states of shape ``(2, 6)`` (transmitter, receiver).
        times: Link-end times of shape ``(2,)``. Unused.

    Returns:
        jax.Array: Range of shape ``(1,)`` in *m*.

    Examples:
        ```python
        import jax.numpy as jnp
        from odjax.observation_models import one_way_range_observable

        states = jnp.array([[0.0] * 6, [3.0, 4.0, 0.0, 0.0, 0.0, 0.0]])
        one_way_range_observable(states, jnp.zeros(2))  # [5.0]
        ```
    """
    states = jnp.asarray(states)
    relative = states[1, :3] - states[0, :3]
    return jnp.reshape(jnp.linalg.norm(relative), (1,))


def angular_position_observable(states: ArrayLike, times: ArrayLike) -> Array:
    """Right ascension and declination of the transmitter seen from the receiver.

    Args:
        states: Link-end states of shape ``(2, 6)`` (transmitter, receiver).
        times: Link-end times of shape ``(2,)``. Unused.

    Returns:
        jax.Array: ``[right_ascension, declination]`` in *rad*. Right
            ascension is in ``(-pi, pi]``.
    """
    states = jnp.asarray(states)
    relative = states[0, :3] - states[1, :3]
    right_ascension = jnp.arctan2(relative[1], relative[0])
    declination = jnp.arcsin(relative[2] / jnp.linalg.norm(relative))
    return jnp.array([right_ascension, declination])


def one_way_doppler_observable(states: ArrayLike, times: ArrayLike) -> Array:
    """First-order one-way Doppler shift.

    Computes ``-rho_dot / c``, the fractional frequency shift ``f_r / f_t - 1``
    to first order in ``v / c``, where ``rho_dot`` is the rate of change of
    the transmitter-receiver distance.

    Args:
        states: Link-end states of shape ``(2, 6)`` (transmitter, receiver).
        times: Link-end times of shape ``(2,)``. Unused.

    Returns:
        jax.Array: Dimensionless Doppler shift of shape ``(1,)``.
    """
    states = jnp.asarray(states)
    relative_position = states[1, :3] - states[0, :3]
    relative_velocity = states[1, 3:6] - states[0, 3:6]
    line_of_sight = relative_position / jnp.linalg.norm(relative_position)
    range_rate = jnp.dot(line_of_sight, relative_velocity)
    return jnp.reshape(-range_rate / C_LIGHT, (1,))


_OBSERVABLE_FUNCTIONS: dict[ObservableType, Callable[[ArrayLike, ArrayLike], Array]] = {
    ObservableType.POSITION: position_observable,
    ObservableType.ONE_WAY_RANGE: one_way_range_observable,
    ObservableType.ANGULAR_POSITION: angular_position_observable,
    ObservableType.ONE_WAY_DOPPLER: one_way_doppler_observable,
}


def get_observable_function(
    observable_type: ObservableType,
) -> Callable[[ArrayLike, ArrayLike], Array]:
    """Return the value function for *observable_type*."""
    return _OBSERVABLE_FUNCTIONS[ObservableType(observable_type)]

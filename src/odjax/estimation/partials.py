"""Observation partial derivatives.

The design matrix ``H`` relates parameter perturbations to observation
perturbations.  For an observation ``h(s_1, ..., s_k)`` of the link-end
states ``s_i``, the chain rule gives

.. math::

    \\frac{\\partial h}{\\partial p} = \\sum_i
        \\frac{\\partial h}{\\partial s_i} \\frac{\\partial s_i}{\\partial p}

``dh/ds_i`` is obtained with ``jax.jacfwd`` of the observable function and
``ds_i/dp`` comes from the trajectory.  Observation biases add a direct
identity contribution.  Rows are ordered epoch-major, then observable
component, matching the flattening of ``SingleObservationSet.values``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype
from odjax.observation_models._types import LinkEnds, ObservableType

if TYPE_CHECKING:
    from odjax.propagation import Trajectory


def observation_partials_wrt_states(
    observation_function: Callable[[ArrayLike, ArrayLike], Array],
    link_end_states: ArrayLike,
    link_end_times: ArrayLike,
) -> Array:
    """Partials of each observation with respect to its link-end states.

    Args:
        observation_function: Observable value function ``f(states, times)``.
        link_end_states: States of shape ``(n, k, 6)``.
        link_end_times: Times of shape ``(n, k)``.

    Returns:
        jax.Array: Partials of shape ``(n, size, k, 6)``.
    """
    link_end_states = jnp.asarray(link_end_states, dtype=get_dtype())
    link_end_times = jnp.asarray(link_end_times, dtype=get_dtype())
    jacobian = jax.jacfwd(observation_function, argnums=0)
    return jax.vmap(jacobian)(link_end_states, link_end_times)


def link_end_state_partials(
    trajectory: Trajectory,
    link_ends: LinkEnds,
    observable_type: ObservableType,
    link_end_times: ArrayLike,
) -> Array:
    """Sensitivity of every link-end state to the parameters.

    Args:
        trajectory: Reference trajectory.
        link_ends: Link ends of the observations.
        observable_type: Observable type, fixing the link-end order.
        link_end_times: Link-end times of shape ``(n, k)``.

    Returns:
        jax.Array: Partials of shape ``(n, k, 6, p)``.
    """
    roles = observable_type.link_end_roles
    return jnp.stack([
        jnp.stack([
            trajectory.state_partials_at(link_ends[role], epoch_times[index])
            for index, role in enumerate(roles)
        ])
        for epoch_times in jnp.asarray(link_end_times)
    ])


def observation_partials(
    observation_function: Callable[[ArrayLike, ArrayLike], Array],
    link_end_states: ArrayLike,
    link_end_times: ArrayLike,
    state_partials: ArrayLike,
) -> Array:
    """Design matrix rows for one observation set.

    Args:
        observation_function: Observable value function ``f(states, times)``.
        link_end_states: States of shape ``(n, k, 6)``.
        link_end_times: Times of shape ``(n, k)``.
        state_partials: ``d state / d parameters`` of shape ``(n, k, 6, p)``.

    Returns:
        jax.Array: Design matrix of shape ``(n * size, p)``.
    """
    dh_ds = observation_partials_wrt_states(observation_function, link_end_states, link_end_times)
    state_partials = jnp.asarray(state_partials, dtype=get_dtype())
    num_parameters = state_partials.shape[-1]
    rows = jnp.einsum("nski,nkip->nsp", dh_ds, state_partials)
    return jnp.reshape(rows, (-1, num_parameters))


def observation_bias_partials(
    observable_type: ObservableType,
    num_observations: int,
    bias_slice: slice,
    num_parameters: int,
    unbiased_values: ArrayLike | None = None,
) -> Array:
    """Design matrix contribution of a constant observation bias.

    An absolute bias of size 1 adds a column of ones; one of the
    observable's size adds an identity block per epoch.  For a relative
    bias pass *unbiased_values*: every row is then scaled by the unbiased
    observable value it belongs to, since ``d h (1 + b) / d b = h``.

    Args:
        observable_type: Biased observable.
        num_observations: Number of epochs.
        bias_slice: Slice of the bias block in the parameter vector.
        num_parameters: Length of the parameter vector.
        unbiased_values: Unbiased observable values of shape
            ``(num_observations, size)``, for a relative bias only.

    Returns:
        jax.Array: Matrix of shape ``(num_observations * size, num_parameters)``.
    """
    size = observable_type.size
    bias_size = bias_slice.stop - bias_slice.start
    if bias_size == 1:
        block = jnp.ones((size, 1), dtype=get_dtype())
    else:
        block = jnp.eye(size, dtype=get_dtype())
    block = jnp.tile(block, (num_observations, 1))
    if unbiased_values is not None:
        block = block * jnp.reshape(jnp.asarray(unbiased_values, dtype=get_dtype()), (-1, 1))
    partials = jnp.zeros((num_observations * size, num_parameters), dtype=get_dtype())
    return partials.at[:, bias_slice].set(block)

"""Observation bias model.

A biased observation is

.. math::

    h_b = h (1 + b_{rel}) + b_{abs}

where :math:`h` is the unbiased observable value, :math:`b_{abs}` the sum
of all constant absolute biases and :math:`b_{rel}` the sum of all constant
relative biases on the same observable and link ends.  Both biases are
evaluated from the unbiased value, so an absolute and a relative bias can
act on one link at the same time.

The simulator applies :class:`ObservationBias` when generating
observations, and the estimator applies the same object to its predicted
observations, so simulated data and estimator predictions share one
observation model.
"""

from __future__ import annotations

from typing import NamedTuple

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype
from odjax.observation_models._types import ObservableType


class ObservationBias(NamedTuple):
    """Combined constant biases of one observable for one set of link ends.

    Attributes:
        absolute: Additive bias per observable component, shape ``(size,)``.
        relative: Relative bias per observable component, shape ``(size,)``.
    """

    absolute: Array
    relative: Array

    def apply(self, values: ArrayLike) -> Array:
        """Bias unbiased *values* of shape ``(n, size)``."""
        values = jnp.asarray(values, dtype=get_dtype())
        return values * (1.0 + self.relative) + self.absolute

    def scale_factor(self, num_observations: int) -> Array:
        """``1 + b_rel`` for every design matrix row, shape ``(n * size, 1)``."""
        factor = jnp.broadcast_to(1.0 + self.relative, (num_observations, self.relative.shape[0]))
        return jnp.reshape(factor, (-1, 1))


def zero_observation_bias(observable_type: ObservableType) -> ObservationBias:
    """Bias that leaves observations of *observable_type* unchanged."""
    size = ObservableType(observable_type).size
    zeros = jnp.zeros((size,), dtype=get_dtype())
    return ObservationBias(absolute=zeros, relative=zeros)

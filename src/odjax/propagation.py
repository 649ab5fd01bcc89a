"""State provider interfaces used by observation simulation and estimation.

The estimator never integrates equations of motion itself.  It asks a
:class:`StateProvider` to *propagate* a parameter vector into a
:class:`Trajectory`, and then queries that trajectory for link-end states
and for the sensitivity of those states to the parameters.

:class:`FunctionStateProvider` adapts any differentiable JAX function
``state_fn(parameters, link_end, time) -> state`` to this interface and
derives the sensitivity matrices with ``jax.jacfwd``, in the same way the
EKF building blocks obtain a state transition matrix by autodiff.  The
function may close over an integrator, an ephemeris, or an analytical
model; it must be composed of JAX operations.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype
from odjax.observation_models._types import LinkEndId


class Trajectory(Protocol):
    """Reference trajectory produced for one parameter vector."""

    def state_at(self, link_end: LinkEndId, time: float) -> Array:
        """Inertial state ``[x, y, z, vx, vy, vz]`` of *link_end* at *time*."""
        ...

    def state_partials_at(self, link_end: LinkEndId, time: float) -> Array:
        """Sensitivity ``d state / d parameters`` of shape ``(6, n)``."""
        ...


class StateProvider(Protocol):
    """Propagates parameter vectors into trajectories."""

    def propagate(self, parameters: ArrayLike) -> Trajectory:
        ...


class FunctionTrajectory:
    """Trajectory defined by a differentiable state function.

    Args:
        state_fn: ``state_fn(parameters, link_end, time) -> (6,)`` state.
        parameters: Parameter vector the trajectory was propagated with.
    """

    def __init__(
        self,
        state_fn: Callable[[Array, LinkEndId, float], Array],
        parameters: ArrayLike,
    ) -> None:
        self._state_fn = state_fn
        self.parameters = jnp.asarray(parameters, dtype=get_dtype())

    def state_at(self, link_end: LinkEndId, time: float) -> Array:
        return jnp.asarray(self._state_fn(self.parameters, link_end, time), dtype=get_dtype())

    def state_partials_at(self, link_end: LinkEndId, time: float) -> Array:
        def state_of(parameters):
            return self._state_fn(parameters, link_end, time)

        return jnp.asarray(jax.jacfwd(state_of)(self.parameters), dtype=get_dtype())


class FunctionStateProvider:
    """State provider backed by a differentiable state function.

    Args:
        state_fn: ``state_fn(parameters, link_end, time) -> (6,)`` inertial
            state of *link_end* at *time* for the given parameter vector.
            Must be differentiable by JAX with respect to *parameters*.

    Examples:
        ```python
        import jax.numpy as jnp
        from odjax.observation_models import LinkEndId
        from odjax.propagation import FunctionStateProvider

        def state_fn(parameters, link_end, time):
            if link_end.body == "Vehicle":
                r0, v = parameters[:3], parameters[3:6]
                return jnp.concatenate([r0 + v * time, v])
            return jnp.zeros(6)

        provider = FunctionStateProvider(state_fn)
        trajectory = provider.propagate(jnp.array([7e6, 0, 0, 0, 7.5e3, 0]))
        trajectory.state_partials_at(LinkEndId("Vehicle"), 10.0).shape  # (6, 6)
        ```
    """

    def __init__(self, state_fn: Callable[[Array, LinkEndId, float], Array]) -> None:
        self._state_fn = state_fn

    def propagate(self, parameters: ArrayLike) -> FunctionTrajectory:
        return FunctionTrajectory(self._state_fn, parameters)

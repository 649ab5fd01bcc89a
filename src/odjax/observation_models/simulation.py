"""Observation simulation.

:class:`ObservationSimulator` turns a reference trajectory into predicted
observations of one observable type.  For every requested epoch it

1. resolves the link-end times (instantaneous by default),
2. queries the trajectory for every link-end state,
3. evaluates the observable function,
4. drops the epoch if the viability calculators reject it, and
5. applies the constant observation biases, if any.

Surviving epochs keep their input order.  :func:`simulate_observations`
runs a complete simulation request and returns an observation collection
(``ObservableType -> LinkEnds -> SingleObservationSet``) ready to be used
as the observed data of an estimation.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, NamedTuple

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype
from odjax.observation_models._types import (
    LinkEndType,
    LinkEnds,
    ObservableType,
    SingleObservationSet,
    iterate_observation_sets,
    validate_link_ends,
)
from odjax.observation_models.biases import ObservationBias
from odjax.observation_models.observables import get_observable_function
from odjax.observation_models.viability import (
    ObservationViabilityCalculator,
    is_observation_viable,
)

if TYPE_CHECKING:
    from odjax.estimation.parameters import ParameterSet
    from odjax.propagation import Trajectory

logger = logging.getLogger(__name__)


def instantaneous_link_end_times(
    link_ends: LinkEnds,
    observable_type: ObservableType,
    time: float,
    reference_link_end: LinkEndType,
) -> Array:
    """Link-end times ignoring signal travel time: every link end at *time*."""
    return jnp.full((len(observable_type.link_end_roles),), time, dtype=get_dtype())


class SimulatedObservations(NamedTuple):
    """Output of :meth:`ObservationSimulator.simulate`.

    Attributes:
        observation_set: Values and times of the viable epochs.
        link_end_states: Link-end states of the viable epochs, shape
            ``(n, k, 6)``.
        link_end_times: Link-end times of the viable epochs, shape ``(n, k)``.
        viable: Boolean mask over the *requested* epochs, shape ``(N,)``.
        unbiased_values: Observable values of the viable epochs before
            biases are applied, shape ``(n, size)``.
    """

    observation_set: SingleObservationSet
    link_end_states: Array
    link_end_times: Array
    viable: Array
    unbiased_values: Array


class ObservationSimulator:
    """Simulates one observable type from a reference trajectory.

    Args:
        observable_type: Observable to simulate.
        viability_calculators: Registry of viability calculators per link
            ends (a mapping or :class:`ViabilityCalculatorSet`). ``None``
            means every epoch is viable.
        observation_function: Override of the observable value function
            ``f(states, times) -> (size,)``. Defaults to the built-in
            function for *observable_type*.
        link_end_times_fn: Override of the link-end time resolution
            ``f(link_ends, observable_type, time, reference_link_end) -> (k,)``,
            e.g. to apply light-time corrections. Defaults to
            :func:`instantaneous_link_end_times`.
    """

    def __init__(
        self,
        observable_type: ObservableType,
        viability_calculators: Mapping[LinkEnds, Sequence[ObservationViabilityCalculator]] | None = None,
        observation_function: Callable[[ArrayLike, ArrayLike], Array] | None = None,
        link_end_times_fn: Callable[..., Array] | None = None,
    ) -> None:
        self.observable_type = ObservableType(observable_type)
        self.viability_calculators = viability_calculators if viability_calculators is not None else {}
        self.observation_function = observation_function or get_observable_function(self.observable_type)
        self.link_end_times_fn = link_end_times_fn or instantaneous_link_end_times

    def link_end_states_and_times(
        self,
        trajectory: Trajectory,
        link_ends: LinkEnds,
        time: float,
        reference_link_end: LinkEndType,
    ) -> tuple[Array, Array]:
        """Link-end states ``(k, 6)`` and times ``(k,)`` for one observation epoch."""
        times = jnp.asarray(
            self.link_end_times_fn(link_ends, self.observable_type, time, reference_link_end),
            dtype=get_dtype(),
        )
        states = jnp.stack([
            trajectory.state_at(link_ends[role], times[index])
            for index, role in enumerate(self.observable_type.link_end_roles)
        ])
        return states, times

    def simulate(
        self,
        trajectory: Trajectory,
        link_ends: LinkEnds,
        times: ArrayLike,
        reference_link_end: LinkEndType,
        apply_viability: bool = True,
        observation_bias: ObservationBias | None = None,
    ) -> SimulatedObservations:
        """Simulate observations at *times*, dropping infeasible epochs.

        Args:
            trajectory: Reference trajectory to observe.
            link_ends: Link ends of the observation; must hold the roles
                required by the observable type.
            times: Requested observation times [s], shape ``(N,)``.
            reference_link_end: Link end whose clock tags *times*.
            apply_viability: If ``False``, keep every epoch.
            observation_bias: Constant biases added to the observable
                values. ``None`` simulates unbiased observations.

        Returns:
            SimulatedObservations: Viable observations, their link-end
                geometry and the viability mask over *times*.
        """
        validate_link_ends(self.observable_type, link_ends)
        dtype = get_dtype()
        times = jnp.atleast_1d(jnp.asarray(times, dtype=dtype))
        num_roles = len(self.observable_type.link_end_roles)
        size = self.observable_type.size

        values, all_states, all_times, viable = [], [], [], []
        for time in times:
            states, link_end_times = self.link_end_states_and_times(
                trajectory, link_ends, time, reference_link_end
            )
            is_viable = True
            if apply_viability:
                is_viable = is_observation_viable(
                    states, link_end_times, link_ends, self.viability_calculators
                )
            viable.append(is_viable)
            if not is_viable:
                continue
            values.append(jnp.reshape(self.observation_function(states, link_end_times), (size,)))
            all_states.append(states)
            all_times.append(link_end_times)

        viable = jnp.asarray(np.array(viable, dtype=bool).reshape((-1,)))
        if values:
            values = jnp.stack(values).astype(dtype)
            all_states = jnp.stack(all_states).astype(dtype)
            all_times = jnp.stack(all_times).astype(dtype)
        else:
            values = jnp.zeros((0, size), dtype=dtype)
            all_states = jnp.zeros((0, num_roles, 6), dtype=dtype)
            all_times = jnp.zeros((0, num_roles), dtype=dtype)

        biased = values if observation_bias is None else observation_bias.apply(values)

        num_dropped = int(times.shape[0]) - int(values.shape[0])
        if num_dropped:
            logger.debug(
                "Dropped %d of %d %r epochs for %r as not viable",
                num_dropped, int(times.shape[0]), self.observable_type, link_ends,
            )

        return SimulatedObservations(
            observation_set=SingleObservationSet(
                values=biased,
                times=times[viable],
                reference_link_end=LinkEndType(reference_link_end),
            ),
            link_end_states=all_states,
            link_end_times=all_times,
            viable=viable,
            unbiased_values=values,
        )


def create_observation_simulators(
    observable_types,
    viability_calculators: Mapping[LinkEnds, Sequence[ObservationViabilityCalculator]] | None = None,
) -> dict[ObservableType, ObservationSimulator]:
    """Create a default simulator per observable type sharing one viability registry."""
    return {
        ObservableType(observable_type): ObservationSimulator(observable_type, viability_calculators)
        for observable_type in observable_types
    }


def simulate_observations(
    simulation_settings: Mapping[ObservableType, Mapping[LinkEnds, tuple[ArrayLike, LinkEndType]]],
    observation_simulators: Mapping[ObservableType, ObservationSimulator],
    trajectory: Trajectory,
    parameters: ParameterSet | None = None,
) -> dict[ObservableType, dict[LinkEnds, SingleObservationSet]]:
    """Simulate a full observation request.

    Args:
        simulation_settings: ``ObservableType -> LinkEnds -> (times,
            reference_link_end)``.
        observation_simulators: Simulator per observable type.
        trajectory: Reference trajectory to observe.
        parameters: Parameter set the trajectory was propagated from. Its
            observation bias parameters are applied to the matching
            observable and link ends, exactly as the estimator applies
            them to its predictions.

    Returns:
        dict: Observation collection with only the viable epochs. Link ends
            whose epochs are all rejected map to empty sets.

    Raises:
        ValueError: If no simulator exists for a requested observable type.
    """
    observations: dict[ObservableType, dict[LinkEnds, SingleObservationSet]] = {}
    for observable_type, per_link_ends in simulation_settings.items():
        observable_type = ObservableType(observable_type)
        if observable_type not in observation_simulators:
            raise ValueError(f"No observation simulator for {observable_type!r}")
        simulator = observation_simulators[observable_type]
        observations[observable_type] = {}
        for link_ends, (times, reference_link_end) in per_link_ends.items():
            bias = None
            if parameters is not None:
                bias = parameters.observation_bias(parameters.full_values(), observable_type, link_ends)
            simulated = simulator.simulate(
                trajectory, link_ends, times, reference_link_end, observation_bias=bias
            )
            observations[observable_type][link_ends] = simulated.observation_set
    return observations


def add_observation_noise(
    observations: Mapping[ObservableType, Mapping[LinkEnds, SingleObservationSet]],
    standard_deviation: float | Mapping[ObservableType, float],
    key: Array,
) -> dict[ObservableType, dict[LinkEnds, SingleObservationSet]]:
    """Add zero-mean Gaussian noise to every observation value.

    Args:
        observations: Observation collection.
        standard_deviation: Noise 1-sigma, either one value for all
            observables or a value per observable type.
        key: ``jax.random`` PRNG key.

    Returns:
        dict: New observation collection with noisy values.
    """
    noisy: dict[ObservableType, dict[LinkEnds, SingleObservationSet]] = {}
    for observable_type, link_ends, obs_set in iterate_observation_sets(observations):
        if isinstance(standard_deviation, Mapping):
            sigma = standard_deviation[observable_type]
        else:
            sigma = standard_deviation
        key, subkey = jax.random.split(key)
        noise = sigma * jax.random.normal(subkey, obs_set.values.shape, dtype=get_dtype())
        noisy.setdefault(observable_type, {})[link_ends] = obs_set._replace(
            values=obs_set.values + noise
        )
    return noisy

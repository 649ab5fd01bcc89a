"""Observation viability checks.

Decides whether a simulated observation could actually be made, given the
states and times of all its link ends at one epoch.

- :class:`ObservationViabilityCalculator`: base class for a single
  geometric test.
- :class:`MinimumElevationAngleCalculator`: target must be above a
  station's minimum elevation.
- :class:`ViabilityCalculatorSet`: registry of ordered calculators per
  :class:`LinkEnds`; link ends without an entry are always viable.
- :func:`is_observation_viable` / :func:`are_all_viable`: AND-combination
  of calculators.  The registry form stops at the first failing
  calculator, the list form evaluates every calculator.  Calculators are
  side-effect free, so both give the same answer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping, Sequence

import jax.numpy as jnp
from jax.typing import ArrayLike

from odjax.observation_models._types import LinkEnds, ObservableType, validate_link_ends
from odjax.observation_models.ground_stations import PointingAngleCalculator

logger = logging.getLogger(__name__)


class ObservationViabilityCalculator(ABC):
    """A single feasibility test on the link-end states of one observation."""

    @abstractmethod
    def is_observation_viable(
        self,
        link_end_states: ArrayLike,
        link_end_times: ArrayLike,
    ) -> bool:
        """Return whether the observation is feasible.

        Args:
            link_end_states: Link-end states of shape ``(k, 6)``.
            link_end_times: Link-end times of shape ``(k,)`` [s].
        """


class MinimumElevationAngleCalculator(ObservationViabilityCalculator):
    """Requires a target to be above a station's minimum elevation angle.

    Each configured pair ``(i, j)`` names the station link end ``i`` and the
    target link end ``j``.  The pair passes when the elevation of
    ``states[j][:3] - states[i][:3]``, evaluated by the station's pointing
    angle calculator at ``times[i]``, is strictly greater than the minimum.
    The observation is viable when every pair passes; with no pairs it is
    always viable.

    Args:
        link_end_indices: ``(station_index, target_index)`` pairs into the
            per-epoch state and time vectors.
        minimum_elevation_angle: Minimum elevation [rad].
        pointing_angle_calculator: Pointing angles for the station.

    Raises:
        ValueError: If an index is negative.
    """

    def __init__(
        self,
        link_end_indices: Sequence[tuple[int, int]],
        minimum_elevation_angle: float,
        pointing_angle_calculator: PointingAngleCalculator,
    ) -> None:
        indices = [(int(i), int(j)) for i, j in link_end_indices]
        for i, j in indices:
            if i < 0 or j < 0:
                raise ValueError(f"Link end indices must be non-negative, got ({i}, {j})")
        self.link_end_indices = tuple(indices)
        self.minimum_elevation_angle = float(minimum_elevation_angle)
        self.pointing_angle_calculator = pointing_angle_calculator

    def is_observation_viable(
        self,
        link_end_states: ArrayLike,
        link_end_times: ArrayLike,
    ) -> bool:
        states = jnp.asarray(link_end_states)
        times = jnp.asarray(link_end_times)
        num_states = states.shape[0]
        num_times = times.shape[0]

        is_viable = True
        for station, target in self.link_end_indices:
            # jnp indexing clamps instead of raising
            if station >= num_times or station >= num_states or target >= num_states:
                raise IndexError(
                    f"Link end index pair ({station}, {target}) out of range for "
                    f"{num_states} states and {num_times} times"
                )
            relative_position = states[target, :3] - states[station, :3]
            elevation = self.pointing_angle_calculator.elevation_angle(
                relative_position, times[station]
            )
            if not elevation > self.minimum_elevation_angle:
                is_viable = False
        return is_viable


def are_all_viable(
    link_end_states: ArrayLike,
    link_end_times: ArrayLike,
    viability_calculators: Sequence[ObservationViabilityCalculator],
) -> bool:
    """AND of all *viability_calculators*, evaluating every one of them."""
    results = [
        calculator.is_observation_viable(link_end_states, link_end_times)
        for calculator in viability_calculators
    ]
    return all(results)


def is_observation_viable(
    link_end_states: ArrayLike,
    link_end_times: ArrayLike,
    link_ends: LinkEnds,
    viability_calculators: Mapping[LinkEnds, Sequence[ObservationViabilityCalculator]],
) -> bool:
    """Check an observation against the calculators registered for its link ends.

    Link ends without registered calculators are always viable.  Evaluation
    stops at the first calculator that rejects the observation.

    Args:
        link_end_states: Link-end states of shape ``(k, 6)``.
        link_end_times: Link-end times of shape ``(k,)`` [s].
        link_ends: Link ends of the observation.
        viability_calculators: Registry of calculators per link ends, a
            plain mapping or a :class:`ViabilityCalculatorSet`.

    Returns:
        bool: ``True`` when the observation is feasible.
    """
    if link_ends not in viability_calculators:
        return True
    for calculator in viability_calculators[link_ends]:
        if not calculator.is_observation_viable(link_end_states, link_end_times):
            return False
    return True


class ViabilityCalculatorSet(Mapping):
    """Ordered viability calculators keyed by :class:`LinkEnds`.

    Populated at setup time with :meth:`register` and read-only afterwards.
    Behaves as a read-only mapping from link ends to calculator tuples.

    Examples:
        ```python
        from odjax.observation_models import ViabilityCalculatorSet

        viability = ViabilityCalculatorSet()
        viability.register(link_ends, [elevation_check])
        viability.is_observation_viable(states, times, link_ends)
        ```
    """

    def __init__(
        self,
        calculators: Mapping[LinkEnds, Sequence[ObservationViabilityCalculator]] | None = None,
    ) -> None:
        self._calculators: dict[LinkEnds, tuple[ObservationViabilityCalculator, ...]] = {}
        for link_ends, link_calculators in (calculators or {}).items():
            self.register(link_ends, link_calculators)

    def register(
        self,
        link_ends: LinkEnds,
        calculators: Sequence[ObservationViabilityCalculator],
    ) -> None:
        """Append *calculators* to the checks applied to *link_ends*."""
        if not isinstance(link_ends, LinkEnds):
            raise ValueError(f"Expected LinkEnds, got {type(link_ends).__name__}")
        for calculator in calculators:
            if not isinstance(calculator, ObservationViabilityCalculator):
                raise ValueError(
                    f"Expected ObservationViabilityCalculator, got {type(calculator).__name__}"
                )
        existing = self._calculators.get(link_ends, ())
        self._calculators[link_ends] = existing + tuple(calculators)
        logger.debug(
            "Registered %d viability calculator(s) for %r", len(calculators), link_ends
        )

    def is_observation_viable(
        self,
        link_end_states: ArrayLike,
        link_end_times: ArrayLike,
        link_ends: LinkEnds,
    ) -> bool:
        return is_observation_viable(link_end_states, link_end_times, link_ends, self)

    def __getitem__(self, link_ends: LinkEnds) -> tuple[ObservationViabilityCalculator, ...]:
        return self._calculators[link_ends]

    def __iter__(self) -> Iterator[LinkEnds]:
        return iter(self._calculators)

    def __len__(self) -> int:
        return len(self._calculators)


def create_minimum_elevation_calculators(
    link_ends: LinkEnds,
    observable_type: ObservableType,
    pointing_angle_calculators: Mapping,
    minimum_elevation_angle: float,
) -> list[MinimumElevationAngleCalculator]:
    """Build elevation checks for every ground station in *link_ends*.

    For each link end that has a pointing angle calculator, a
    :class:`MinimumElevationAngleCalculator` is created that checks every
    other link end of the observation against that station's horizon.

    Args:
        link_ends: Link ends of the observation.
        observable_type: Observable type, fixing the per-epoch state order.
        pointing_angle_calculators: Mapping from :class:`LinkEndId` of a
            ground station to its :class:`PointingAngleCalculator`.
        minimum_elevation_angle: Minimum elevation [rad].

    Returns:
        list: One calculator per station found in *link_ends* (possibly
            empty).
    """
    validate_link_ends(observable_type, link_ends)
    roles = observable_type.link_end_roles
    calculators = []
    for station_index, role in enumerate(roles):
        participant = link_ends[role]
        if participant not in pointing_angle_calculators:
            continue
        pairs = [
            (station_index, target_index)
            for target_index in range(len(roles))
            if target_index != station_index
        ]
        calculators.append(
            MinimumElevationAngleCalculator(
                pairs, minimum_elevation_angle, pointing_angle_calculators[participant]
            )
        )
    return calculators

"""Observation models, viability checks and observation simulation.

Available components:

- :class:`LinkEndType`, :class:`LinkEndId`, :class:`LinkEnds` -- link-end
  roles and participants
- :class:`ObservableType` -- position, one-way range, angular position and
  one-way Doppler observables
- :class:`SingleObservationSet` -- observation values and times for one
  observable and one set of link ends
- :class:`MinimumElevationAngleCalculator`,
  :class:`ViabilityCalculatorSet` -- observation viability checks
- :class:`StationPointingAngleCalculator` -- station elevation/azimuth
- :class:`ObservationBias` -- constant absolute and relative observation
  biases
- :class:`ObservationSimulator`, :func:`simulate_observations` --
  observation simulation from a reference trajectory
"""

from odjax.observation_models._types import (
    LinkEndId,
    LinkEnds,
    LinkEndType,
    ObservableType,
    SingleObservationSet,
    concatenate_observations,
    count_observations,
    iterate_observation_sets,
    observed_body_link_ends,
    one_way_link_ends,
    validate_link_ends,
)
from odjax.observation_models.biases import ObservationBias, zero_observation_bias
from odjax.observation_models.ground_stations import (
    PointingAngleCalculator,
    StationPointingAngleCalculator,
    position_geodetic_to_body_fixed,
    rotation_body_fixed_to_enz,
    station_inertial_state,
    uniform_rotation,
)
from odjax.observation_models.observables import (
    angular_position_observable,
    get_observable_function,
    one_way_doppler_observable,
    one_way_range_observable,
    position_observable,
)
from odjax.observation_models.simulation import (
    ObservationSimulator,
    SimulatedObservations,
    add_observation_noise,
    create_observation_simulators,
    instantaneous_link_end_times,
    simulate_observations,
)
from odjax.observation_models.viability import (
    MinimumElevationAngleCalculator,
    ObservationViabilityCalculator,
    ViabilityCalculatorSet,
    are_all_viable,
    create_minimum_elevation_calculators,
    is_observation_viable,
)

__all__ = [
    # Types
    "LinkEndType",
    "LinkEndId",
    "LinkEnds",
    "ObservableType",
    "SingleObservationSet",
    "one_way_link_ends",
    "observed_body_link_ends",
    "validate_link_ends",
    "iterate_observation_sets",
    "count_observations",
    "concatenate_observations",
    # Observables
    "position_observable",
    "one_way_range_observable",
    "angular_position_observable",
    "one_way_doppler_observable",
    "get_observable_function",
    # Biases
    "ObservationBias",
    "zero_observation_bias",
    # Ground stations
    "PointingAngleCalculator",
    "StationPointingAngleCalculator",
    "position_geodetic_to_body_fixed",
    "rotation_body_fixed_to_enz",
    "station_inertial_state",
    "uniform_rotation",
    # Viability
    "ObservationViabilityCalculator",
    "MinimumElevationAngleCalculator",
    "ViabilityCalculatorSet",
    "are_all_viable",
    "is_observation_viable",
    "create_minimum_elevation_calculators",
    # Simulation
    "ObservationSimulator",
    "SimulatedObservations",
    "instantaneous_link_end_times",
    "create_observation_simulators",
    "simulate_observations",
    "add_observation_noise",
]

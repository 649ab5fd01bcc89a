"""Batch least-squares parameter estimation.

Estimates a parameter vector (initial states, gravitational parameters,
station positions, absolute and relative observation biases, radiation
pressure and drag coefficients, rotation poles, gravity coefficients) from an
observation batch by iterating weighted normal equations about a reference
trajectory.

Available components:

- :class:`ParameterSet` -- ordered estimatable parameter blocks
- :class:`EstimationInput` -- validated observations, weights and a-priori
  information
- :class:`EstimationOptions` -- per-run estimation switches
- :class:`ConvergenceChecker` -- stopping policy
- :class:`EstimationOutput` -- estimate, covariance and diagnostics
- :func:`estimate_parameters` -- the batch estimator
- :func:`observation_partials` -- design matrix rows via autodiff
"""

from odjax.estimation._types import (
    ConvergenceChecker,
    EstimationInput,
    EstimationOptions,
    EstimationOutput,
    EstimationStatus,
)
from odjax.estimation.batch import (
    NormalEquations,
    estimate_parameters,
    solve_normal_equations,
    weighted_rms,
)
from odjax.estimation.parameters import (
    EstimatableParameter,
    ParameterKind,
    ParameterSet,
    combine_observation_biases,
    drag_coefficient_parameter,
    gravitational_parameter,
    ground_station_position_parameter,
    initial_state_parameter,
    observation_bias_parameter,
    radiation_pressure_coefficient_parameter,
    relative_observation_bias_parameter,
    rotation_pole_position_parameter,
    spherical_harmonic_coefficients_parameter,
)
from odjax.estimation.partials import (
    link_end_state_partials,
    observation_bias_partials,
    observation_partials,
    observation_partials_wrt_states,
)

__all__ = [
    "ConvergenceChecker",
    "EstimationInput",
    "EstimationOptions",
    "EstimationOutput",
    "EstimationStatus",
    "NormalEquations",
    "estimate_parameters",
    "solve_normal_equations",
    "weighted_rms",
    "EstimatableParameter",
    "ParameterKind",
    "ParameterSet",
    "combine_observation_biases",
    "drag_coefficient_parameter",
    "gravitational_parameter",
    "ground_station_position_parameter",
    "initial_state_parameter",
    "observation_bias_parameter",
    "radiation_pressure_coefficient_parameter",
    "relative_observation_bias_parameter",
    "rotation_pole_position_parameter",
    "spherical_harmonic_coefficients_parameter",
    "link_end_state_partials",
    "observation_bias_partials",
    "observation_partials",
    "observation_partials_wrt_states",
]

"""
odjax is a batch least-squares orbit determination library implemented in JAX.
"""

from .constants import (
    DEG2RAD,
    RAD2DEG,
    C_LIGHT,
    JULIAN_DAY,
    WGS84_a,
    WGS84_f,
    GM_EARTH,
    OMEGA_EARTH,
)

from .config import set_dtype, get_dtype

from .observation_models import (
    LinkEndType,
    LinkEndId,
    LinkEnds,
    ObservableType,
    SingleObservationSet,
    MinimumElevationAngleCalculator,
    ViabilityCalculatorSet,
    StationPointingAngleCalculator,
    ObservationSimulator,
    simulate_observations,
)

from .propagation import (
    FunctionStateProvider,
    StateProvider,
    Trajectory,
)

from .estimation import (
    ParameterSet,
    EstimationInput,
    EstimationOptions,
    EstimationOutput,
    ConvergenceChecker,
    estimate_parameters,
)

__all__ = [
    # Constants
    "DEG2RAD",
    "RAD2DEG",
    "C_LIGHT",
    "JULIAN_DAY",
    "WGS84_a",
    "WGS84_f",
    "GM_EARTH",
    "OMEGA_EARTH",
    # Config
    "set_dtype",
    "get_dtype",
    # Observation models
    "LinkEndType",
    "LinkEndId",
    "LinkEnds",
    "ObservableType",
    "SingleObservationSet",
    "MinimumElevationAngleCalculator",
    "ViabilityCalculatorSet",
    "StationPointingAngleCalculator",
    "ObservationSimulator",
    "simulate_observations",
    # Propagation
    "FunctionStateProvider",
    "StateProvider",
    "Trajectory",
    # Estimation
    "ParameterSet",
    "EstimationInput",
    "EstimationOptions",
    "EstimationOutput",
    "ConvergenceChecker",
    "estimate_parameters",
]

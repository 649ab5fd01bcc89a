"""Type definitions for batch estimation.

Provides the data types exchanged with :func:`estimate_parameters`:

- :class:`EstimationStatus`: State of an estimation run.
- :class:`ConvergenceChecker`: Stopping policy consulted after every
  iteration.
- :class:`EstimationOptions`: Per-run switches controlling what is saved
  and how viability is handled across iterations.
- :class:`EstimationInput`: Immutable snapshot of observations, initial
  parameters, weights and a-priori information. Build it with
  :meth:`EstimationInput.create`, which validates the configuration.
- :class:`EstimationOutput`: Final estimate, covariance and per-iteration
  diagnostics.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype, get_symmetry_tolerance
from odjax.estimation.parameters import ParameterSet
from odjax.observation_models._types import (
    LinkEnds,
    ObservableType,
    SingleObservationSet,
    count_observations,
    iterate_observation_sets,
    validate_link_ends,
)


class EstimationStatus(Enum):
    """State of an estimation run.

    A run starts ``INITIALIZED``, is ``ITERATING`` while corrections are
    computed, and ends either ``CONVERGED`` or ``MAX_ITERATIONS_REACHED``.
    """

    INITIALIZED = "initialized"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class ConvergenceChecker(NamedTuple):
    """Stopping policy for the batch estimator.

    After each iteration the estimator passes the number of completed
    iterations and the weighted residual RMS history to
    :meth:`termination_status`.  Iteration stops when any criterion holds:

    - the iteration count reaches ``maximum_iterations``;
    - the latest RMS is below ``minimum_residual``;
    - ``minimum_residual_change`` is set and the RMS improved by less than
      it between the last two iterations;
    - the lowest RMS so far is ``iterations_without_improvement`` or more
      iterations old.

    ``maximum_iterations=0`` makes the estimator perform a single pass with
    no correction applied, which yields the pre-fit residuals and
    covariance.

    Attributes:
        maximum_iterations: Maximum number of iterations. Default: 5.
        minimum_residual_change: Minimum RMS improvement between iterations,
            or ``None`` to disable. Default: ``None``.
        minimum_residual: RMS below which the estimation is converged.
            Default: 0.0.
        iterations_without_improvement: Number of iterations without a new
            lowest RMS after which iteration stops. Default: 2.
    """

    maximum_iterations: int = 5
    minimum_residual_change: float | None = None
    minimum_residual: float = 0.0
    iterations_without_improvement: int = 2

    def termination_status(
        self, iteration: int, rms_history: list[float]
    ) -> EstimationStatus | None:
        """Terminal status if iteration should stop, ``None`` otherwise.

        Args:
            iteration: Number of completed iterations.
            rms_history: Weighted residual RMS of every completed iteration.
        """
        if iteration >= self.maximum_iterations:
            return EstimationStatus.MAX_ITERATIONS_REACHED
        if not rms_history:
            return None
        if rms_history[-1] < self.minimum_residual:
            return EstimationStatus.CONVERGED
        if self.minimum_residual_change is not None and len(rms_history) >= 2:
            if rms_history[-2] - rms_history[-1] < self.minimum_residual_change:
                return EstimationStatus.CONVERGED
        best_iteration = min(range(len(rms_history)), key=rms_history.__getitem__)
        if len(rms_history) - 1 - best_iteration >= self.iterations_without_improvement:
            return EstimationStatus.CONVERGED
        return None

    def is_estimation_converged(self, iteration: int, rms_history: list[float]) -> bool:
        return self.termination_status(iteration, rms_history) is not None


class EstimationOptions(NamedTuple):
    """Per-run estimation switches.

    Attributes:
        reset_reference_to_estimate: Re-propagate the trajectory at the
            final estimate and return it in the output. Default: ``True``.
        save_residuals_and_parameters_per_iteration: Keep the residual
            vector and parameter vector of every iteration. Default: ``True``.
        save_design_matrix: Keep the final design matrix (observation
            partials). Default: ``False``.
        save_covariance: Keep the final covariance ``N^-1``. Default: ``True``.
        reevaluate_viability: Re-run viability checks on every iteration.
            By default the viable epochs found on the first iteration are
            frozen, which keeps residual vectors comparable between
            iterations. Default: ``False``.
        max_workers: Number of threads used to process (observable, link
            ends) partitions within an iteration; ``None`` or 1 processes
            them sequentially. Default: ``None``.
    """

    reset_reference_to_estimate: bool = True
    save_residuals_and_parameters_per_iteration: bool = True
    save_design_matrix: bool = False
    save_covariance: bool = True
    reevaluate_viability: bool = False
    max_workers: int | None = None


def _check_weight(weight: Any, label: str) -> float:
    try:
        value = float(weight)
    except (TypeError, ValueError):
        raise ValueError(f"Weight for {label} must be a number, got {weight!r}") from None
    if not math.isfinite(value) or value <= 0.0:
        raise ValueError(f"Weight for {label} must be strictly positive and finite, got {value}")
    return value


def _validate_observations(observations: Mapping) -> dict[ObservableType, dict[LinkEnds, SingleObservationSet]]:
    validated: dict[ObservableType, dict[LinkEnds, SingleObservationSet]] = {}
    for observable_type, link_ends, obs_set in iterate_observation_sets(observations):
        observable_type = ObservableType(observable_type)
        validate_link_ends(observable_type, link_ends)
        values = jnp.asarray(obs_set.values, dtype=get_dtype())
        times = jnp.asarray(obs_set.times, dtype=get_dtype())
        if times.ndim != 1 or values.shape != (times.shape[0], observable_type.size):
            raise ValueError(
                f"Observations of {observable_type!r} for {link_ends!r} must have values of "
                f"shape ({times.shape[0]}, {observable_type.size}), got {values.shape}"
            )
        validated.setdefault(observable_type, {})[link_ends] = obs_set._replace(values=values, times=times)
    return validated


@dataclass(frozen=True)
class EstimationInput:
    """Immutable input of one estimation run.

    Prefer :meth:`create`, which validates every field and fills defaults.

    Args:
        observations: Observed data, ``ObservableType -> LinkEnds ->
            SingleObservationSet``.
        parameters: Parameters to estimate; their current values are the
            initial estimate.
        weights: Observation weight, a single value or one per observable
            type.
        inverse_apriori_covariance: A-priori information matrix ``P0^-1``,
            shape ``(n, n)``.
        apriori_parameters: Parameter vector the a-priori information is
            centered on, shape ``(n,)``.
        options: Estimation switches.
    """

    observations: dict[ObservableType, dict[LinkEnds, SingleObservationSet]]
    parameters: ParameterSet
    weights: float | dict[ObservableType, float]
    inverse_apriori_covariance: Array
    apriori_parameters: Array
    options: EstimationOptions = field(default_factory=EstimationOptions)

    @classmethod
    def create(
        cls,
        observations: Mapping,
        parameters: ParameterSet,
        weights: float | Mapping[ObservableType, float] = 1.0,
        inverse_apriori_covariance: ArrayLike | None = None,
        apriori_parameters: ArrayLike | None = None,
        options: EstimationOptions | None = None,
    ) -> EstimationInput:
        """Validate and build an estimation input.

        Args:
            observations: Observed data.
            parameters: Parameters to estimate, holding the initial estimate.
            weights: Single weight, or mapping from observable type to weight
                covering every observable type in *observations*.
            inverse_apriori_covariance: ``P0^-1``; zero matrix if ``None``.
            apriori_parameters: Center of the a-priori information; the
                initial estimate if ``None``.
            options: Estimation switches; defaults if ``None``.

        Returns:
            EstimationInput: Validated input.

        Raises:
            ValueError: On inconsistent link ends or observation shapes,
                non-positive or non-finite weights, mis-dimensioned,
                asymmetric or indefinite a-priori information, an empty
                observation batch, or an observation bias without
                observations on its observable type and link ends.
        """
        dtype = get_dtype()
        observations = _validate_observations(observations)
        if count_observations(observations) == 0:
            raise ValueError("Observation batch is empty")
        for _, bias in parameters.observation_biases():
            biased = observations.get(bias.observable_type, {}).get(bias.link_ends)
            if biased is None or biased.num_observations == 0:
                raise ValueError(
                    f"Observation bias {bias.name} has no {bias.observable_type!r} "
                    f"observations for {bias.link_ends!r}"
                )

        if isinstance(weights, Mapping):
            checked_weights = {
                ObservableType(observable_type): _check_weight(weight, repr(ObservableType(observable_type)))
                for observable_type, weight in weights.items()
            }
            missing = [t for t in observations if t not in checked_weights]
            if missing:
                raise ValueError(f"No weight given for observable types {missing}")
        else:
            checked_weights = _check_weight(weights, "all observables")

        n = parameters.size
        if inverse_apriori_covariance is None:
            inverse_apriori_covariance = jnp.zeros((n, n), dtype=dtype)
        inverse_apriori_covariance = jnp.asarray(inverse_apriori_covariance, dtype=dtype)
        if inverse_apriori_covariance.shape != (n, n):
            raise ValueError(
                f"Inverse a-priori covariance must have shape ({n}, {n}), "
                f"got {inverse_apriori_covariance.shape}"
            )
        if not bool(jnp.all(jnp.isfinite(inverse_apriori_covariance))):
            raise ValueError("Inverse a-priori covariance contains non-finite values")
        scale = float(jnp.max(jnp.abs(inverse_apriori_covariance)))
        if scale > 0.0:
            tolerance = get_symmetry_tolerance() * scale
            asymmetry = float(jnp.max(jnp.abs(inverse_apriori_covariance - inverse_apriori_covariance.T)))
            if asymmetry > tolerance:
                raise ValueError(
                    f"Inverse a-priori covariance is not symmetric (max asymmetry {asymmetry:.3e})"
                )
            min_eigenvalue = float(jnp.min(jnp.linalg.eigvalsh(inverse_apriori_covariance)))
            if min_eigenvalue < -tolerance:
                raise ValueError(
                    f"Inverse a-priori covariance is not positive semi-definite "
                    f"(minimum eigenvalue {min_eigenvalue:.3e})"
                )

        if apriori_parameters is None:
            apriori_parameters = parameters.full_values()
        apriori_parameters = jnp.asarray(apriori_parameters, dtype=dtype)
        if apriori_parameters.shape != (n,):
            raise ValueError(
                f"A-priori parameters must have shape ({n},), got {apriori_parameters.shape}"
            )

        return cls(
            observations=observations,
            parameters=parameters,
            weights=checked_weights,
            inverse_apriori_covariance=inverse_apriori_covariance,
            apriori_parameters=apriori_parameters,
            options=options if options is not None else EstimationOptions(),
        )

    @property
    def initial_parameter_estimate(self) -> Array:
        return self.parameters.full_values()

    def weight_for(self, observable_type: ObservableType) -> float:
        """Weight applied to every component of *observable_type*."""
        if isinstance(self.weights, dict):
            return self.weights[observable_type]
        return self.weights


class EstimationOutput(NamedTuple):
    """Result of :func:`estimate_parameters`.

    Residual quantities refer to the last reference trajectory used inside
    the iteration loop, i.e. the residuals that produced the final
    correction.

    Attributes:
        parameter_estimate: Final parameter vector, shape ``(n,)``.
        parameters: Parameter set holding the final values.
        residuals: Observed minus predicted values of the last iteration,
            shape ``(m,)``, in canonical observation order.
        weights: Per-row observation weights, shape ``(m,)``.
        rms_history: Weighted residual RMS of every iteration.
        residual_history: Residual vector of every iteration, if saved.
        parameter_history: Parameter vector at the start of every
            iteration, followed by the final estimate, if saved.
        information_matrix: Normal-equations matrix ``N`` of the last
            iteration, shape ``(n, n)``.
        covariance: ``N^-1``, if saved.
        design_matrix: Observation partials of the last iteration, shape
            ``(m, n)``, if saved.
        number_of_iterations: Number of passes through the loop.
        status: ``CONVERGED`` or ``MAX_ITERATIONS_REACHED``.
        trajectory: Reference trajectory at the final estimate if
            ``reset_reference_to_estimate``, otherwise the last reference.
    """

    parameter_estimate: Array
    parameters: ParameterSet
    residuals: Array
    weights: Array
    rms_history: list[float]
    residual_history: list[Array] | None
    parameter_history: list[Array] | None
    information_matrix: Array
    covariance: Array | None
    design_matrix: Array | None
    number_of_iterations: int
    status: EstimationStatus
    trajectory: Any

    def unnormalized_covariance(self) -> Array:
        """Covariance ``N^-1``, computed from the information matrix if not saved."""
        if self.covariance is not None:
            return self.covariance
        return jnp.linalg.inv(self.information_matrix)

    def formal_errors(self) -> Array:
        """1-sigma formal errors ``sqrt(diag(P))``, shape ``(n,)``."""
        return jnp.sqrt(jnp.diag(self.unnormalized_covariance()))

    def correlations(self) -> Array:
        """Parameter correlation matrix ``P_ij / (sigma_i sigma_j)``."""
        sigma = self.formal_errors()
        return self.unnormalized_covariance() / jnp.outer(sigma, sigma)

    def estimation_error(self, truth: ArrayLike) -> Array:
        """Difference between the estimate and a known *truth* vector."""
        return self.parameter_estimate - jnp.asarray(truth, dtype=self.parameter_estimate.dtype)

"""Iterative batch weighted least-squares estimation.

Each iteration linearizes the observations about the current reference
trajectory and solves the normal equations

.. math::

    (H^T W H + P_0^{-1}) \\Delta x = H^T W r - P_0^{-1} (x - x_0)

for the parameter correction :math:`\\Delta x`, where :math:`r` are the
observed minus predicted residuals, :math:`W` the diagonal observation
weights and :math:`P_0^{-1}` the a-priori information centered on
:math:`x_0`.

The observation batch is split into partitions, one per (observable type,
link ends) pair.  Each partition is processed against the same immutable
reference trajectory and yields its residual segment, design matrix rows
and its additive contribution to ``H^T W H`` and ``H^T W r``.  Partitions
can therefore run on worker threads; results are combined in canonical
order.

Viable epochs are determined on the first iteration and then frozen, so
that residual vectors have the same layout on every iteration.  Set
``EstimationOptions.reevaluate_viability`` to re-check them each time.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, NamedTuple

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.scipy.linalg import cho_factor, cho_solve

from odjax.config import get_dtype
from odjax.estimation._types import (
    ConvergenceChecker,
    EstimationInput,
    EstimationOutput,
    EstimationStatus,
)
from odjax.estimation.parameters import (
    EstimatableParameter,
    ParameterKind,
    combine_observation_biases,
)
from odjax.estimation.partials import (
    link_end_state_partials,
    observation_bias_partials,
    observation_partials,
)
from odjax.observation_models._types import (
    LinkEnds,
    ObservableType,
    SingleObservationSet,
    iterate_observation_sets,
)
from odjax.observation_models.simulation import ObservationSimulator

if TYPE_CHECKING:
    from odjax.propagation import StateProvider, Trajectory

logger = logging.getLogger(__name__)


class _Partition(NamedTuple):
    observable_type: ObservableType
    link_ends: LinkEnds
    observations: SingleObservationSet
    simulator: ObservationSimulator
    weight: float
    biases: list[tuple[slice, EstimatableParameter]]


class _PartitionResult(NamedTuple):
    residuals: Array
    design_matrix: Array
    weights: Array
    normal_matrix: Array
    normal_vector: Array
    viable: Array


class NormalEquations(NamedTuple):
    """Assembled normal equations of one iteration.

    Attributes:
        residuals: Observed minus predicted values, shape ``(m,)``.
        design_matrix: Observation partials, shape ``(m, n)``.
        weights: Diagonal of ``W``, shape ``(m,)``.
        information_matrix: ``H^T W H + P0^-1``, shape ``(n, n)``.
        right_hand_side: ``H^T W r - P0^-1 (x - x0)``, shape ``(n,)``.
    """

    residuals: Array
    design_matrix: Array
    weights: Array
    information_matrix: Array
    right_hand_side: Array


def weighted_rms(residuals: Array, weights: Array) -> float:
    """Weighted residual RMS ``sqrt(r^T W r / m)``."""
    if residuals.shape[0] == 0:
        return 0.0
    return float(jnp.sqrt(jnp.sum(weights * residuals * residuals) / residuals.shape[0]))


def _process_partition(
    partition: _Partition,
    trajectory: Trajectory,
    parameter_values: Array,
    viable: Array | None,
    iteration: int,
) -> _PartitionResult:
    dtype = get_dtype()
    num_parameters = parameter_values.shape[0]
    observed = partition.observations
    bias = combine_observation_biases(partition.biases, parameter_values, partition.observable_type)

    if viable is None:
        simulated = partition.simulator.simulate(
            trajectory, partition.link_ends, observed.times, observed.reference_link_end,
            apply_viability=True, observation_bias=bias,
        )
        viable = simulated.viable
    else:
        simulated = partition.simulator.simulate(
            trajectory, partition.link_ends, observed.times[viable], observed.reference_link_end,
            apply_viability=False, observation_bias=bias,
        )

    num_epochs = int(simulated.observation_set.num_observations)
    if num_epochs == 0:
        return _PartitionResult(
            residuals=jnp.zeros((0,), dtype=dtype),
            design_matrix=jnp.zeros((0, num_parameters), dtype=dtype),
            weights=jnp.zeros((0,), dtype=dtype),
            normal_matrix=jnp.zeros((num_parameters, num_parameters), dtype=dtype),
            normal_vector=jnp.zeros((num_parameters,), dtype=dtype),
            viable=viable,
        )

    if not bool(jnp.all(jnp.isfinite(simulated.link_end_states))):
        raise RuntimeError(
            f"Non-finite link-end state in iteration {iteration} for "
            f"{partition.observable_type!r} with {partition.link_ends!r}"
        )

    predicted = simulated.observation_set.values
    state_partials = link_end_state_partials(
        trajectory, partition.link_ends, partition.observable_type, simulated.link_end_times
    )
    design_matrix = observation_partials(
        partition.simulator.observation_function,
        simulated.link_end_states,
        simulated.link_end_times,
        state_partials,
    )
    if bias is not None:
        design_matrix = design_matrix * bias.scale_factor(num_epochs)
    for bias_slice, parameter in partition.biases:
        relative = parameter.kind == ParameterKind.CONSTANT_RELATIVE_OBSERVATION_BIAS
        design_matrix = design_matrix + observation_bias_partials(
            partition.observable_type, num_epochs, bias_slice, num_parameters,
            unbiased_values=simulated.unbiased_values if relative else None,
        )

    residuals = jnp.reshape(observed.values[viable] - predicted, (-1,))
    weights = jnp.full(residuals.shape, partition.weight, dtype=dtype)
    weighted_design = design_matrix.T * weights

    return _PartitionResult(
        residuals=residuals,
        design_matrix=design_matrix,
        weights=weights,
        normal_matrix=weighted_design @ design_matrix,
        normal_vector=weighted_design @ residuals,
        viable=viable,
    )


def _create_partitions(
    estimation_input: EstimationInput,
    observation_simulators: Mapping[ObservableType, ObservationSimulator],
) -> list[_Partition]:
    parameters = estimation_input.parameters
    partitions = []
    for observable_type, link_ends, observations in iterate_observation_sets(
        estimation_input.observations
    ):
        if observable_type not in observation_simulators:
            raise ValueError(f"No observation simulator for {observable_type!r}")
        partitions.append(_Partition(
            observable_type=observable_type,
            link_ends=link_ends,
            observations=observations,
            simulator=observation_simulators[observable_type],
            weight=estimation_input.weight_for(observable_type),
            biases=parameters.observation_biases(observable_type, link_ends),
        ))
    return partitions


def _assemble_normal_equations(
    partitions: list[_Partition],
    trajectory: Trajectory,
    parameter_values: Array,
    estimation_input: EstimationInput,
    viable_epochs: list[Array | None],
    iteration: int,
    executor: ThreadPoolExecutor | None = None,
) -> tuple[NormalEquations, list[Array]]:
    """Build the normal equations of one iteration.

    Returns:
        The normal equations and the viability mask of every partition.
    """
    def run(args):
        partition, viable = args
        return _process_partition(partition, trajectory, parameter_values, viable, iteration)

    jobs = list(zip(partitions, viable_epochs))
    if executor is not None:
        results = list(executor.map(run, jobs))
    else:
        results = [run(job) for job in jobs]

    residuals = jnp.concatenate([result.residuals for result in results])
    design_matrix = jnp.concatenate([result.design_matrix for result in results], axis=0)
    weights = jnp.concatenate([result.weights for result in results])
    if design_matrix.shape[0] != residuals.shape[0]:
        raise RuntimeError(
            f"Design matrix has {design_matrix.shape[0]} rows but there are "
            f"{residuals.shape[0]} residuals in iteration {iteration}"
        )
    if residuals.shape[0] == 0:
        raise ValueError(
            "No viable observations remain in the batch; relax the viability "
            "settings or provide more observations"
        )

    information_matrix = sum(result.normal_matrix for result in results)
    right_hand_side = sum(result.normal_vector for result in results)

    inverse_apriori = estimation_input.inverse_apriori_covariance
    information_matrix = information_matrix + inverse_apriori
    right_hand_side = right_hand_side - inverse_apriori @ (
        parameter_values - estimation_input.apriori_parameters
    )

    normal_equations = NormalEquations(
        residuals=residuals,
        design_matrix=design_matrix,
        weights=weights,
        information_matrix=information_matrix,
        right_hand_side=right_hand_side,
    )
    return normal_equations, [result.viable for result in results]


def solve_normal_equations(
    information_matrix: Array,
    right_hand_side: Array,
    iteration: int = 0,
) -> tuple[Array, Array]:
    """Solve ``N dx = b`` by Cholesky decomposition.

    ``N`` is first scaled to unit diagonal, ``D N D`` with
    ``D = diag(N)^-1/2``, so that parameters of very different magnitude
    (positions, velocities, gravitational parameters) do not ruin the
    conditioning of the factorization.

    Args:
        information_matrix: Symmetric positive-definite ``N``.
        right_hand_side: ``b``.
        iteration: Iteration number, for error reporting.

    Returns:
        tuple: Correction ``dx`` and covariance ``N^-1``.

    Raises:
        RuntimeError: If ``N`` is not positive definite.
    """
    diagonal = jnp.diag(information_matrix)
    unobservable = np.flatnonzero(~(np.asarray(diagonal) > 0.0)).tolist()
    if unobservable:
        raise RuntimeError(
            f"Normal equations matrix is not positive definite in iteration {iteration}; "
            f"parameter indices {unobservable} have no information"
        )
    scaling = 1.0 / jnp.sqrt(diagonal)
    normalized = information_matrix * jnp.outer(scaling, scaling)

    factor, lower = cho_factor(normalized, lower=True)
    if not bool(jnp.all(jnp.isfinite(factor))):
        raise RuntimeError(
            f"Normal equations matrix is not positive definite in iteration {iteration}; "
            f"the parameters are not observable from this observation batch"
        )
    correction = scaling * cho_solve((factor, lower), scaling * right_hand_side)
    identity = jnp.eye(information_matrix.shape[0], dtype=information_matrix.dtype)
    covariance = cho_solve((factor, lower), identity) * jnp.outer(scaling, scaling)
    return correction, covariance


def estimate_parameters(
    estimation_input: EstimationInput,
    state_provider: StateProvider,
    observation_simulators: Mapping[ObservableType, ObservationSimulator],
    convergence_checker: ConvergenceChecker | None = None,
) -> EstimationOutput:
    """Estimate parameters from an observation batch by iterative least squares.

    Each iteration propagates the current estimate, re-simulates the
    observations, assembles and solves the weighted normal equations and
    applies the correction, until *convergence_checker* stops the loop.

    Args:
        estimation_input: Observations, initial estimate, weights, a-priori
            information and options.
        state_provider: Propagates parameter vectors into trajectories.
        observation_simulators: Simulator per observable type in the batch.
        convergence_checker: Stopping policy. Default:
            ``ConvergenceChecker()``.

    Returns:
        EstimationOutput: Final estimate, covariance and diagnostics.

    Raises:
        ValueError: If an observable type has no simulator or no viable
            observation remains.
        RuntimeError: If the normal equations are not positive definite or
            a propagated state is not finite.

    Examples:
        ```python
        from odjax.estimation import ConvergenceChecker, EstimationInput, estimate_parameters
        from odjax.observation_models import create_observation_simulators

        estimation_input = EstimationInput.create(observations, parameters, weights=1.0)
        simulators = create_observation_simulators(observations.keys(), viability)
        output = estimate_parameters(
            estimation_input, provider, simulators, ConvergenceChecker(maximum_iterations=4)
        )
        output.parameter_estimate, output.formal_errors()
        ```
    """
    if convergence_checker is None:
        convergence_checker = ConvergenceChecker()
    options = estimation_input.options

    if get_dtype() != jnp.float64:
        logger.warning(
            "Estimating in %s; set odjax.config.set_dtype(jnp.float64) for "
            "well-conditioned normal equations", jnp.dtype(get_dtype()).name,
        )

    partitions = _create_partitions(estimation_input, observation_simulators)
    viable_epochs: list[Array | None] = [None] * len(partitions)

    current = estimation_input.initial_parameter_estimate
    rms_history: list[float] = []
    residual_history: list[Array] | None = [] if options.save_residuals_and_parameters_per_iteration else None
    parameter_history: list[Array] | None = [] if options.save_residuals_and_parameters_per_iteration else None
    apply_corrections = convergence_checker.maximum_iterations > 0

    status = EstimationStatus.INITIALIZED
    logger.info(
        "Starting batch estimation of %d parameters from %d partition(s)",
        current.shape[0], len(partitions),
    )

    executor = None
    if options.max_workers is not None and options.max_workers > 1:
        executor = ThreadPoolExecutor(max_workers=options.max_workers)

    iteration = 0
    try:
        status = EstimationStatus.ITERATING
        while True:
            trajectory = state_provider.propagate(current)
            normal_equations, masks = _assemble_normal_equations(
                partitions, trajectory, current, estimation_input, viable_epochs, iteration, executor
            )
            if not options.reevaluate_viability:
                viable_epochs = masks

            correction, covariance = solve_normal_equations(
                normal_equations.information_matrix, normal_equations.right_hand_side, iteration
            )
            rms = weighted_rms(normal_equations.residuals, normal_equations.weights)
            rms_history.append(rms)
            if parameter_history is not None:
                parameter_history.append(current)
                residual_history.append(normal_equations.residuals)

            if apply_corrections:
                current = current + correction
            iteration += 1

            logger.info(
                "Iteration %d: %d observations, weighted RMS %.6e, correction norm %.6e",
                iteration, normal_equations.residuals.shape[0], rms,
                float(jnp.linalg.norm(correction)),
            )

            termination = convergence_checker.termination_status(iteration, rms_history)
            if termination is not None:
                status = termination
                break
    finally:
        if executor is not None:
            executor.shutdown()

    if status == EstimationStatus.MAX_ITERATIONS_REACHED and apply_corrections:
        logger.warning("Maximum number of iterations (%d) reached", convergence_checker.maximum_iterations)
    else:
        logger.info("Estimation finished after %d iteration(s): %s", iteration, status.value)

    if parameter_history is not None:
        parameter_history.append(current)
    if options.reset_reference_to_estimate:
        trajectory = state_provider.propagate(current)

    return EstimationOutput(
        parameter_estimate=current,
        parameters=estimation_input.parameters.with_values(current),
        residuals=normal_equations.residuals,
        weights=normal_equations.weights,
        rms_history=rms_history,
        residual_history=residual_history,
        parameter_history=parameter_history,
        information_matrix=normal_equations.information_matrix,
        covariance=covariance if options.save_covariance else None,
        design_matrix=normal_equations.design_matrix if options.save_design_matrix else None,
        number_of_iterations=iteration,
        status=status,
        trajectory=trajectory,
    )

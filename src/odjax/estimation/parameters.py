"""Estimatable parameters.

A :class:`ParameterSet` is an ordered list of :class:`EstimatableParameter`
blocks.  Their values are concatenated into one parameter vector whose
layout is fixed when the set is created; each block owns one contiguous
slice of that vector.

Block sizes by kind:

- ``INITIAL_TRANSLATIONAL_STATE``: 6 (position and velocity)
- ``GRAVITATIONAL_PARAMETER``: 1
- ``GROUND_STATION_POSITION``: 3 (body-fixed position)
- ``RADIATION_PRESSURE_COEFFICIENT``: 1
- ``CONSTANT_DRAG_COEFFICIENT``: 1
- ``ROTATION_POLE_POSITION``: 2 (pole right ascension and declination)
- ``CONSTANT_OBSERVATION_BIAS``: 1, or the observable size
- ``CONSTANT_RELATIVE_OBSERVATION_BIAS``: 1, or the observable size
- ``SPHERICAL_HARMONIC_COEFFICIENTS``: any positive number

Observation biases act directly on the observations of their observable
type and link ends, through :meth:`ParameterSet.observation_bias`, both when
observations are simulated and when the estimator predicts them.  An
absolute and a relative bias may share link ends.  All other blocks only
enter the estimation through the state provider.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from enum import Enum
from typing import NamedTuple

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from odjax.config import get_dtype
from odjax.observation_models._types import (
    LinkEnds,
    LinkEndType,
    ObservableType,
    validate_link_ends,
)
from odjax.observation_models.biases import ObservationBias, zero_observation_bias


class ParameterKind(Enum):
    """Kind of estimatable parameter."""

    INITIAL_TRANSLATIONAL_STATE = "initial_translational_state"
    GRAVITATIONAL_PARAMETER = "gravitational_parameter"
    GROUND_STATION_POSITION = "ground_station_position"
    RADIATION_PRESSURE_COEFFICIENT = "radiation_pressure_coefficient"
    CONSTANT_DRAG_COEFFICIENT = "constant_drag_coefficient"
    ROTATION_POLE_POSITION = "rotation_pole_position"
    CONSTANT_OBSERVATION_BIAS = "constant_observation_bias"
    CONSTANT_RELATIVE_OBSERVATION_BIAS = "constant_relative_observation_bias"
    SPHERICAL_HARMONIC_COEFFICIENTS = "spherical_harmonic_coefficients"

    def __str__(self) -> str:
        return self.value


_FIXED_SIZES: dict[ParameterKind, int] = {
    ParameterKind.INITIAL_TRANSLATIONAL_STATE: 6,
    ParameterKind.GRAVITATIONAL_PARAMETER: 1,
    ParameterKind.GROUND_STATION_POSITION: 3,
    ParameterKind.RADIATION_PRESSURE_COEFFICIENT: 1,
    ParameterKind.CONSTANT_DRAG_COEFFICIENT: 1,
    ParameterKind.ROTATION_POLE_POSITION: 2,
}

_BIAS_KINDS = frozenset({
    ParameterKind.CONSTANT_OBSERVATION_BIAS,
    ParameterKind.CONSTANT_RELATIVE_OBSERVATION_BIAS,
})


class EstimatableParameter(NamedTuple):
    """One block of the parameter vector.

    Attributes:
        kind: Kind of parameter.
        body: Body the parameter belongs to.
        value: Current value, shape ``(size,)``.
        identifier: Secondary identifier (station name, coefficient set
            label), ``""`` if unused.
        observable_type: Observable type of an observation bias.
        link_ends: Link ends of an observation bias.
    """

    kind: ParameterKind
    body: str
    value: Array
    identifier: str = ""
    observable_type: ObservableType | None = None
    link_ends: LinkEnds | None = None

    @property
    def size(self) -> int:
        return int(self.value.shape[0])

    @property
    def name(self) -> str:
        parts = [str(self.kind), self.body]
        if self.identifier:
            parts.append(self.identifier)
        if self.observable_type is not None:
            parts.append(self.observable_type.name.lower())
        if self.link_ends is not None:
            parts.append(repr(self.link_ends))
        return ":".join(parts)


def _as_vector(value: ArrayLike) -> Array:
    return jnp.atleast_1d(jnp.asarray(value, dtype=get_dtype())).reshape((-1,))


def initial_state_parameter(body: str, state: ArrayLike) -> EstimatableParameter:
    """Initial Cartesian state ``[x, y, z, vx, vy, vz]`` of *body*."""
    return EstimatableParameter(ParameterKind.INITIAL_TRANSLATIONAL_STATE, body, _as_vector(state))


def gravitational_parameter(body: str, mu: float) -> EstimatableParameter:
    """Gravitational parameter of *body* [m^3/s^2]."""
    return EstimatableParameter(ParameterKind.GRAVITATIONAL_PARAMETER, body, _as_vector(mu))


def ground_station_position_parameter(
    body: str, station: str, position: ArrayLike
) -> EstimatableParameter:
    """Body-fixed position of *station* on *body* [m]."""
    return EstimatableParameter(
        ParameterKind.GROUND_STATION_POSITION, body, _as_vector(position), identifier=station
    )


def radiation_pressure_coefficient_parameter(body: str, coefficient: float) -> EstimatableParameter:
    """Radiation pressure coefficient :math:`C_r` of *body*."""
    return EstimatableParameter(ParameterKind.RADIATION_PRESSURE_COEFFICIENT, body, _as_vector(coefficient))


def drag_coefficient_parameter(body: str, coefficient: float) -> EstimatableParameter:
    """Constant aerodynamic drag coefficient :math:`C_D` of *body*."""
    return EstimatableParameter(ParameterKind.CONSTANT_DRAG_COEFFICIENT, body, _as_vector(coefficient))


def rotation_pole_position_parameter(body: str, pole: ArrayLike) -> EstimatableParameter:
    """Rotation pole of *body* as ``[right_ascension, declination]`` [rad]."""
    return EstimatableParameter(ParameterKind.ROTATION_POLE_POSITION, body, _as_vector(pole))


def spherical_harmonic_coefficients_parameter(
    body: str, coefficients: ArrayLike, label: str = "cosine"
) -> EstimatableParameter:
    """Block of spherical harmonic gravity coefficients of *body*."""
    return EstimatableParameter(
        ParameterKind.SPHERICAL_HARMONIC_COEFFICIENTS, body, _as_vector(coefficients), identifier=label
    )


def observation_bias_parameter(
    observable_type: ObservableType, link_ends: LinkEnds, bias: ArrayLike, relative: bool = False
) -> EstimatableParameter:
    """Constant bias on one observable for one set of link ends.

    An absolute bias :math:`b` turns an observable value :math:`h` into
    :math:`h + b`; a relative bias turns it into :math:`h (1 + b)`.  A bias
    of size 1 acts on every component of the observable; a bias of the
    observable's size acts component-wise.

    Args:
        observable_type: Biased observable.
        link_ends: Link ends of the biased observations.
        bias: Initial bias value(s).
        relative: Create a relative instead of an absolute bias.
    """
    observable_type = ObservableType(observable_type)
    observer = link_ends.get(LinkEndType.RECEIVER) or link_ends.get(LinkEndType.OBSERVED_BODY)
    kind = (
        ParameterKind.CONSTANT_RELATIVE_OBSERVATION_BIAS
        if relative
        else ParameterKind.CONSTANT_OBSERVATION_BIAS
    )
    return EstimatableParameter(
        kind,
        observer.body if observer is not None else "",
        _as_vector(bias),
        observable_type=observable_type,
        link_ends=link_ends,
    )


def relative_observation_bias_parameter(
    observable_type: ObservableType, link_ends: LinkEnds, bias: ArrayLike
) -> EstimatableParameter:
    """Constant relative bias; shorthand for ``observation_bias_parameter(..., relative=True)``."""
    return observation_bias_parameter(observable_type, link_ends, bias, relative=True)


def combine_observation_biases(
    blocks: Sequence[tuple[slice, EstimatableParameter]],
    values: ArrayLike,
    observable_type: ObservableType,
) -> ObservationBias | None:
    """Sum bias blocks into one :class:`ObservationBias`.

    Args:
        blocks: ``(slice, parameter)`` of the bias blocks acting on one
            observable and one set of link ends.
        values: Full parameter vector the slices index into.
        observable_type: Biased observable.

    Returns:
        ObservationBias | None: Combined bias, or ``None`` if *blocks* is
            empty.
    """
    if not blocks:
        return None
    values = jnp.asarray(values, dtype=get_dtype())
    absolute, relative = zero_observation_bias(observable_type)
    size = ObservableType(observable_type).size
    for block, parameter in blocks:
        contribution = jnp.broadcast_to(values[block], (size,))
        if parameter.kind == ParameterKind.CONSTANT_RELATIVE_OBSERVATION_BIAS:
            relative = relative + contribution
        else:
            absolute = absolute + contribution
    return ObservationBias(absolute=absolute, relative=relative)


def _validate_parameter(parameter: EstimatableParameter) -> None:
    if parameter.value.ndim != 1 or parameter.size == 0:
        raise ValueError(f"Parameter {parameter.name} must be a non-empty vector")
    expected = _FIXED_SIZES.get(parameter.kind)
    if expected is not None and parameter.size != expected:
        raise ValueError(
            f"Parameter {parameter.name} must have size {expected}, got {parameter.size}"
        )
    if parameter.kind in _BIAS_KINDS:
        if parameter.observable_type is None or parameter.link_ends is None:
            raise ValueError(f"Observation bias {parameter.name} needs an observable type and link ends")
        validate_link_ends(parameter.observable_type, parameter.link_ends)
        if parameter.size not in (1, parameter.observable_type.size):
            raise ValueError(
                f"Observation bias {parameter.name} must have size 1 or "
                f"{parameter.observable_type.size}, got {parameter.size}"
            )
    if parameter.kind == ParameterKind.GROUND_STATION_POSITION and not parameter.identifier:
        raise ValueError(f"Ground station position {parameter.name} needs a station name")


class ParameterSet:
    """Ordered set of estimatable parameters with a fixed vector layout.

    Args:
        parameters: Parameter blocks, in vector order.

    Raises:
        ValueError: If the set is empty, a block is mis-sized, or two
            blocks share a name.

    Examples:
        ```python
        from odjax.estimation import (
            ParameterSet, gravitational_parameter, initial_state_parameter,
        )

        params = ParameterSet([
            initial_state_parameter("Vehicle", x0),
            gravitational_parameter("Earth", 3.986004415e14),
        ])
        params.size                    # 7
        params.slice_of(params.names[1])  # slice(6, 7)
        ```
    """

    def __init__(self, parameters: Sequence[EstimatableParameter]) -> None:
        parameters = tuple(parameters)
        if not parameters:
            raise ValueError("A parameter set needs at least one parameter")

        slices: dict[str, slice] = {}
        start = 0
        for parameter in parameters:
            _validate_parameter(parameter)
            if parameter.name in slices:
                raise ValueError(f"Duplicate parameter {parameter.name}")
            slices[parameter.name] = slice(start, start + parameter.size)
            start += parameter.size

        self._parameters = parameters
        self._slices = slices
        self.size = start

    @property
    def names(self) -> list[str]:
        return [parameter.name for parameter in self._parameters]

    def __iter__(self) -> Iterator[EstimatableParameter]:
        return iter(self._parameters)

    def __len__(self) -> int:
        return len(self._parameters)

    def __getitem__(self, index: int) -> EstimatableParameter:
        return self._parameters[index]

    def slice_of(self, name: str) -> slice:
        """Slice of the parameter vector owned by the block called *name*."""
        try:
            return self._slices[name]
        except KeyError:
            raise ValueError(f"Unknown parameter {name}") from None

    def full_values(self) -> Array:
        """Concatenated parameter vector of shape ``(size,)``."""
        return jnp.concatenate([parameter.value for parameter in self._parameters]).astype(get_dtype())

    def split(self, values: ArrayLike) -> dict[str, Array]:
        """Split a parameter vector into per-block values keyed by name."""
        values = self._check_vector(values)
        return {name: values[block] for name, block in self._slices.items()}

    def with_values(self, values: ArrayLike) -> ParameterSet:
        """New set with the same layout and the block values taken from *values*."""
        values = self._check_vector(values)
        return ParameterSet([
            parameter._replace(value=values[self._slices[parameter.name]])
            for parameter in self._parameters
        ])

    def observation_biases(
        self,
        observable_type: ObservableType | None = None,
        link_ends: LinkEnds | None = None,
    ) -> list[tuple[slice, EstimatableParameter]]:
        """``(slice, parameter)`` for every absolute and relative bias block.

        Args:
            observable_type: Only return biases on this observable.
            link_ends: Only return biases on these link ends.
        """
        return [
            (self._slices[parameter.name], parameter)
            for parameter in self._parameters
            if parameter.kind in _BIAS_KINDS
            and (observable_type is None or parameter.observable_type == observable_type)
            and (link_ends is None or parameter.link_ends == link_ends)
        ]

    def observation_bias(
        self, values: ArrayLike, observable_type: ObservableType, link_ends: LinkEnds
    ) -> ObservationBias | None:
        """Combined bias on *observable_type* and *link_ends* for parameter vector *values*.

        Returns ``None`` if no bias block acts on those observations.
        """
        values = self._check_vector(values)
        return combine_observation_biases(
            self.observation_biases(observable_type, link_ends), values, observable_type
        )

    def _check_vector(self, values: ArrayLike) -> Array:
        values = jnp.asarray(values, dtype=get_dtype())
        if values.shape != (self.size,):
            raise ValueError(
                f"Parameter vector must have shape ({self.size},), got {values.shape}"
            )
        return values

    def __repr__(self) -> str:
        return f"ParameterSet({self.names})"

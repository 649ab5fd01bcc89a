"""Type definitions for observation models.

Provides the core data types shared by observation simulation, viability
checks and batch estimation:

- :class:`LinkEndType`: Role of a participant in an observation geometry.
- :class:`LinkEndId`: Body (and optional ground station) filling a role.
- :class:`LinkEnds`: Immutable role-to-participant mapping with structural
  equality, hashing and ordering, used as a dictionary key.
- :class:`ObservableType`: Kind of measurement, with its required link-end
  roles and number of components.
- :class:`SingleObservationSet`: Values and times of one observable for one
  set of link ends.

An *observation collection* is a plain nested ``dict`` mapping
``ObservableType -> LinkEnds -> SingleObservationSet``.  All code that
flattens a collection walks it in the canonical order returned by
:func:`iterate_observation_sets`: observable type, then link ends, then
time, then component.
"""

from __future__ import annotations

import functools
from collections.abc import Iterator, Mapping
from enum import IntEnum
from typing import NamedTuple

import jax.numpy as jnp
from jax import Array

from odjax.config import get_dtype


class LinkEndType(IntEnum):
    """Role of a participant in an observation geometry."""

    TRANSMITTER = 0
    RECEIVER = 1
    OBSERVED_BODY = 2

    def __repr__(self) -> str:
        return f"LinkEndType.{self.name}"


class LinkEndId(NamedTuple):
    """Identifier of a link-end participant.

    Attributes:
        body: Name of the body (e.g. ``"Earth"``, ``"Vehicle"``).
        station: Name of a ground station on *body*, or ``""`` when the
            link end is the body's center of mass.
    """

    body: str
    station: str = ""

    @property
    def is_ground_station(self) -> bool:
        return self.station != ""

    def __str__(self) -> str:
        if self.station:
            return f"{self.body}/{self.station}"
        return self.body


def _to_link_end_id(value) -> LinkEndId:
    if isinstance(value, LinkEndId):
        return value
    if isinstance(value, str):
        return LinkEndId(value)
    if isinstance(value, tuple) and len(value) == 2:
        return LinkEndId(str(value[0]), str(value[1]))
    raise ValueError(
        f"Cannot interpret {value!r} as a link end; expected a LinkEndId, "
        f"a body name or a (body, station) tuple"
    )


@functools.total_ordering
class LinkEnds(Mapping):
    """Immutable mapping from :class:`LinkEndType` to :class:`LinkEndId`.

    Two ``LinkEnds`` are equal when they hold the same ``(role, id)`` pairs,
    regardless of construction order.  Instances are hashable and totally
    ordered (by their sorted pairs), so they can key dictionaries and be
    sorted deterministically.

    Args:
        link_ends: Mapping from role to participant.  Participants may be
            given as :class:`LinkEndId`, a body name, or a
            ``(body, station)`` tuple.

    Examples:
        ```python
        from odjax.observation_models import LinkEnds, LinkEndType

        link_ends = LinkEnds({
            LinkEndType.TRANSMITTER: ("Earth", "Station1"),
            LinkEndType.RECEIVER: "Vehicle",
        })
        link_ends[LinkEndType.RECEIVER]  # LinkEndId(body='Vehicle', station='')
        ```
    """

    __slots__ = ("_items",)

    def __init__(self, link_ends: Mapping | None = None) -> None:
        link_ends = {} if link_ends is None else link_ends
        items = []
        for role, participant in link_ends.items():
            items.append((LinkEndType(role), _to_link_end_id(participant)))
        self._items: tuple[tuple[LinkEndType, LinkEndId], ...] = tuple(sorted(items))

    def __getitem__(self, role: LinkEndType) -> LinkEndId:
        for item_role, participant in self._items:
            if item_role == role:
                return participant
        raise KeyError(role)

    def __iter__(self) -> Iterator[LinkEndType]:
        return (role for role, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other) -> bool:
        if isinstance(other, LinkEnds):
            return self._items == other._items
        return NotImplemented

    def __lt__(self, other) -> bool:
        if isinstance(other, LinkEnds):
            return self._items < other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        inner = ", ".join(f"{role.name}: {participant}" for role, participant in self._items)
        return f"LinkEnds({{{inner}}})"


def one_way_link_ends(transmitter, receiver) -> LinkEnds:
    """Build link ends for a one-way link from *transmitter* to *receiver*."""
    return LinkEnds({LinkEndType.TRANSMITTER: transmitter, LinkEndType.RECEIVER: receiver})


def observed_body_link_ends(body) -> LinkEnds:
    """Build link ends for a direct observation of *body*."""
    return LinkEnds({LinkEndType.OBSERVED_BODY: body})


_ONE_WAY_ROLES = (LinkEndType.TRANSMITTER, LinkEndType.RECEIVER)

_OBSERVABLE_ROLES: dict[int, tuple[LinkEndType, ...]] = {
    0: (LinkEndType.OBSERVED_BODY,),
    1: _ONE_WAY_ROLES,
    2: _ONE_WAY_ROLES,
    3: _ONE_WAY_ROLES,
}

_OBSERVABLE_SIZES: dict[int, int] = {
    0: 3,
    1: 1,
    2: 2,
    3: 1,
}


class ObservableType(IntEnum):
    """Kind of measurement.

    The integer values fix the order in which observable types appear in
    stacked residual vectors and design matrices.
    """

    POSITION = 0
    ONE_WAY_RANGE = 1
    ANGULAR_POSITION = 2
    ONE_WAY_DOPPLER = 3

    @property
    def link_end_roles(self) -> tuple[LinkEndType, ...]:
        """Roles required by this observable, in per-epoch state order."""
        return _OBSERVABLE_ROLES[self.value]

    @property
    def size(self) -> int:
        """Number of scalar components of one observation."""
        return _OBSERVABLE_SIZES[self.value]

    def __repr__(self) -> str:
        return f"ObservableType.{self.name}"


def validate_link_ends(observable_type: ObservableType, link_ends: LinkEnds) -> None:
    """Check that *link_ends* holds exactly the roles *observable_type* needs.

    Raises:
        ValueError: If a role is missing or an unexpected role is present.
    """
    required = set(observable_type.link_end_roles)
    present = set(link_ends)
    if required != present:
        raise ValueError(
            f"{observable_type!r} requires link end roles "
            f"{sorted(r.name for r in required)}, got "
            f"{sorted(r.name for r in present)} in {link_ends!r}"
        )


class SingleObservationSet(NamedTuple):
    """Observations of one observable type for one set of link ends.

    Attributes:
        values: Observation values of shape ``(n, size)``.
        times: Observation times of shape ``(n,)`` [s], in the order in
            which they were requested.
        reference_link_end: Link end whose clock tags the observation
            times.
    """

    values: Array
    times: Array
    reference_link_end: LinkEndType

    @property
    def num_observations(self) -> int:
        return int(self.times.shape[0])


def iterate_observation_sets(
    observations: Mapping[ObservableType, Mapping[LinkEnds, SingleObservationSet]],
) -> Iterator[tuple[ObservableType, LinkEnds, SingleObservationSet]]:
    """Yield ``(observable_type, link_ends, set)`` in canonical order."""
    for observable_type in sorted(observations):
        per_link_ends = observations[observable_type]
        for link_ends in sorted(per_link_ends):
            yield observable_type, link_ends, per_link_ends[link_ends]


def count_observations(
    observations: Mapping[ObservableType, Mapping[LinkEnds, SingleObservationSet]],
) -> int:
    """Total number of scalar observation components in a collection."""
    return sum(
        obs_set.num_observations * observable_type.size
        for observable_type, _, obs_set in iterate_observation_sets(observations)
    )


def concatenate_observations(
    observations: Mapping[ObservableType, Mapping[LinkEnds, SingleObservationSet]],
) -> Array:
    """Flatten all observation values into one vector in canonical order.

    Returns:
        jax.Array: Vector of length :func:`count_observations`.
    """
    segments = [
        jnp.reshape(obs_set.values, (-1,))
        for _, _, obs_set in iterate_observation_sets(observations)
    ]
    if not segments:
        return jnp.zeros((0,), dtype=get_dtype())
    return jnp.concatenate(segments).astype(get_dtype())

"""
Common types for the n-body simulation.

This module provides the fundamental value types used across the package:
- Vector3: Immutable 3-component vector (positions, velocities, forces)
- Body: Immutable point mass with position, velocity and merge radius
- EventType: Simulation lifecycle events
- Event: Event payload for callbacks
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Iterator, Optional, Sequence, TypedDict, Union

from .constants import MERGE_RADIUS_FACTOR
from .validation import validate_mass

if TYPE_CHECKING:
    from .spatial.octree import Octree


class EventType(IntEnum):
    """
    Simulation lifecycle events.

    - start: The run has begun (initial tree is available)
    - tick: Fired once per completed step
    - end: All steps are done and output has been flushed
    """

    start = 0
    tick = 1
    end = 2


class Event(TypedDict, total=False):
    """Event payload passed to event listeners."""

    type: EventType
    step: int
    time: float
    tree: Optional[Octree]


@dataclass(frozen=True)
class Vector3:
    """An immutable 3D vector."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def zero(cls) -> Vector3:
        return cls(0.0, 0.0, 0.0)

    @classmethod
    def of(cls, values: VectorLike) -> Vector3:
        """Build a vector from a Vector3 or any (x, y, z) sequence."""
        if isinstance(values, Vector3):
            return values
        x, y, z = values
        return cls(float(x), float(y), float(z))

    def __add__(self, other: Vector3) -> Vector3:
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: Vector3) -> Vector3:
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, s: float) -> Vector3:
        return Vector3(self.x * s, self.y * s, self.z * s)

    __rmul__ = __mul__

    def __truediv__(self, s: float) -> Vector3:
        return Vector3(self.x / s, self.y / s, self.z / s)

    def __neg__(self) -> Vector3:
        return Vector3(-self.x, -self.y, -self.z)

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.z

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def dot(self, other: Vector3) -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def displacement_to(self, other: Vector3) -> Vector3:
        """Vector pointing from this point to ``other``."""
        return other - self

    def distance_to(self, other: Vector3) -> float:
        """Euclidean distance between two points."""
        return self.displacement_to(other).magnitude()

    def __repr__(self) -> str:
        return f"Vector3({self.x:.6g}, {self.y:.6g}, {self.z:.6g})"


VectorLike = Union[Vector3, Sequence[float]]


@dataclass(frozen=True)
class Body:
    """
    A point mass.

    Bodies are values: moving one produces a new Body. The merge radius
    is derived from the mass once, at construction.

    Attributes:
        mass: Mass (> 0 for real bodies, 0 only for the empty aggregate)
        position: Position vector
        velocity: Velocity vector
        merge_radius: Distance below which another body collides with this one
    """

    mass: float
    position: Vector3 = field(default_factory=Vector3.zero)
    velocity: Vector3 = field(default_factory=Vector3.zero)
    merge_radius: float = field(init=False, compare=False, repr=False)

    def __post_init__(self) -> None:
        mass = validate_mass(self.mass, allow_zero=True)
        object.__setattr__(self, "mass", mass)
        object.__setattr__(self, "position", Vector3.of(self.position))
        object.__setattr__(self, "velocity", Vector3.of(self.velocity))
        object.__setattr__(self, "merge_radius", MERGE_RADIUS_FACTOR * mass)

    @classmethod
    def zero(cls) -> Body:
        """The empty aggregate: no mass at the origin, at rest."""
        return cls(0.0)

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Body:
        """Build a body from a (mass, x, y, z, vx, vy, vz) row."""
        m, x, y, z, vx, vy, vz = (float(v) for v in row)
        return cls(m, Vector3(x, y, z), Vector3(vx, vy, vz))

    def as_row(self) -> tuple[float, float, float, float, float, float, float]:
        p, v = self.position, self.velocity
        return (self.mass, p.x, p.y, p.z, v.x, v.y, v.z)

    @property
    def momentum(self) -> Vector3:
        return self.velocity * self.mass

    @property
    def kinetic_energy(self) -> float:
        return 0.5 * self.mass * self.velocity.dot(self.velocity)

    def combined(self, other: Body) -> Body:
        """
        Aggregate two bodies into one.

        The result carries the summed mass, the mass-weighted mean position
        and the momentum-weighted mean velocity, so that momentum is
        conserved. Combining with a massless body returns the other body
        unchanged.
        """
        if self.mass == 0:
            return other
        if other.mass == 0:
            return self

        total = self.mass + other.mass
        position = (self.position * self.mass + other.position * other.mass) / total
        velocity = (self.momentum + other.momentum) / total
        return Body(total, position, velocity)

    def advanced(self, force: Vector3, dt: float) -> Body:
        """
        Apply ``force`` over one step of length ``dt``.

        Semi-implicit Euler: the velocity is kicked first and the position
        drifts with the updated velocity.
        """
        velocity = self.velocity + force * (dt / self.mass)
        position = self.position + velocity * dt
        return Body(self.mass, position, velocity)


BodyLike = Union[Body, Sequence[float]]


__all__ = [
    "EventType",
    "Event",
    "Vector3",
    "VectorLike",
    "Body",
    "BodyLike",
]

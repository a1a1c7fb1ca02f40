"""
Input validation utilities and error types for the simulation.

Provides centralized validation functions for bodies, regions, time steps
and tree parameters. Raises descriptive exceptions on invalid input.
"""

from __future__ import annotations

import math
import warnings
from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from .types import Body, Vector3


class ValidationError(ValueError):
    """Base exception for simulation validation errors."""

    pass


class InvalidBodyError(ValidationError):
    """Raised when a body has an invalid mass."""

    pass


class InvalidRegionError(ValidationError):
    """Raised when a bounding region is malformed."""

    pass


class InvalidTimeStepError(ValidationError):
    """Raised when a time step or run length is invalid."""

    pass


class OutOfBoundsError(ValidationError):
    """
    Raised when a body cannot be placed inside a node's cube.

    Attributes:
        body: The offending body
        origin: Minimum corner of the cube it failed to match
        edge_length: Edge length of that cube
    """

    def __init__(self, body: Body, origin: Vector3, edge_length: float) -> None:
        self.body = body
        self.origin = origin
        self.edge_length = edge_length
        p = body.position
        super().__init__(
            f"Body at ({p.x}, {p.y}, {p.z}) is outside the region starting at "
            f"({origin.x}, {origin.y}, {origin.z}) with edge length {edge_length}"
        )


class InvariantViolationError(AssertionError):
    """Raised when the octree structure is found to be inconsistent."""

    pass


class AccuracyWarning(UserWarning):
    """Warning for parameters that make the force approximation unreliable."""

    pass


def validate_mass(mass: float, allow_zero: bool = False) -> float:
    """
    Validate a body mass.

    Args:
        mass: Mass value
        allow_zero: Accept exactly zero (used for empty aggregates)

    Returns:
        Validated mass as float

    Raises:
        InvalidBodyError: If mass is negative, non-finite, or zero when not allowed
    """
    mass = float(mass)
    if not math.isfinite(mass):
        raise InvalidBodyError(f"mass must be finite, got {mass}")
    if mass < 0 or (mass == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise InvalidBodyError(f"mass must be {bound}, got {mass}")
    return mass


def validate_opening_angle(theta: float) -> float:
    """
    Validate the Barnes-Hut opening angle.

    Values above 1.0 are accepted but trigger an AccuracyWarning.

    Raises:
        ValidationError: If theta is not a positive finite number
    """
    theta = float(theta)
    if not math.isfinite(theta) or theta <= 0:
        raise ValidationError(f"opening angle must be > 0, got {theta}")
    if theta > 1.0:
        warnings.warn(
            f"Opening angle {theta} is above 1.0; forces from nearby clusters "
            "will be badly approximated.",
            AccuracyWarning,
            stacklevel=3,
        )
    return theta


def validate_time_step(dt: float) -> float:
    """
    Validate a time step.

    Raises:
        InvalidTimeStepError: If dt is not a positive finite number
    """
    dt = float(dt)
    if not math.isfinite(dt) or dt <= 0:
        raise InvalidTimeStepError(f"time step must be > 0, got {dt}")
    return dt


def validate_steps(steps: int) -> int:
    """
    Validate a step count.

    Raises:
        InvalidTimeStepError: If steps < 1
    """
    if steps < 1:
        raise InvalidTimeStepError(f"steps must be >= 1, got {steps}")
    return int(steps)


def validate_region(origin: Sequence[float], edge: float) -> tuple[tuple[float, float, float], float]:
    """
    Validate a cubic region.

    Args:
        origin: Minimum corner (x, y, z)
        edge: Edge length of the cube

    Returns:
        Validated ((x, y, z), edge) tuple

    Raises:
        InvalidRegionError: If origin is not 3 finite values or edge is not positive
    """
    values = tuple(float(v) for v in origin)
    if len(values) != 3:
        raise InvalidRegionError(f"region origin must have 3 elements (x, y, z), got {len(values)}")
    if not all(math.isfinite(v) for v in values):
        raise InvalidRegionError(f"region origin must be finite, got {values}")

    edge = float(edge)
    if not math.isfinite(edge) or edge <= 0:
        raise InvalidRegionError(f"region edge must be positive, got {edge}")

    return (values[0], values[1], values[2]), edge


def validate_max_workers(max_workers: Optional[int]) -> Optional[int]:
    """
    Validate a worker pool size (None means the executor default).

    Raises:
        ValidationError: If max_workers < 1
    """
    if max_workers is None:
        return None
    if max_workers < 1:
        raise ValidationError(f"max_workers must be >= 1, got {max_workers}")
    return int(max_workers)


def validate_positive(name: str, value: Any) -> float:
    """Validate that a named parameter is a positive finite number."""
    value = float(value)
    if not math.isfinite(value) or value <= 0:
        raise ValidationError(f"{name} must be > 0, got {value}")
    return value


__all__ = [
    "ValidationError",
    "InvalidBodyError",
    "InvalidRegionError",
    "InvalidTimeStepError",
    "OutOfBoundsError",
    "InvariantViolationError",
    "AccuracyWarning",
    "validate_mass",
    "validate_opening_angle",
    "validate_time_step",
    "validate_steps",
    "validate_region",
    "validate_max_workers",
    "validate_positive",
]

"""
Initial-condition generators.

Places bodies at random positions inside a cube or a sphere, with masses
drawn from a chosen distribution. Randomness is always passed in
explicitly (a seed or a numpy Generator) so runs are reproducible.

Example:
    from octree_nbody.generators import log_uniform_mass, uniform_sphere

    bodies = uniform_sphere(
        1000,
        radius=1e12,
        masses=log_uniform_mass(1e28, 1e31),
        rng=42,
    )
"""

from __future__ import annotations

from typing import Callable, Union

import numpy as np

from .types import Body, Vector3, VectorLike
from .validation import ValidationError, validate_positive

MassSampler = Callable[[int, np.random.Generator], np.ndarray]
MassSpec = Union[float, MassSampler]
RandomState = Union[None, int, np.random.Generator]


def constant_mass(value: float) -> MassSampler:
    """Every body gets the same mass."""
    value = validate_positive("mass", value)

    def sample(n: int, rng: np.random.Generator) -> np.ndarray:
        return np.full(n, value, dtype=float)

    return sample


def uniform_mass(low: float, high: float) -> MassSampler:
    """Masses uniformly distributed in [low, high)."""
    low, high = _validate_range(low, high)

    def sample(n: int, rng: np.random.Generator) -> np.ndarray:
        return rng.uniform(low, high, size=n)

    return sample


def log_uniform_mass(low: float, high: float) -> MassSampler:
    """Masses whose logarithm is uniform in [log(low), log(high))."""
    low, high = _validate_range(low, high)

    def sample(n: int, rng: np.random.Generator) -> np.ndarray:
        return np.exp(rng.uniform(np.log(low), np.log(high), size=n))

    return sample


def uniform_cube(
    n: int,
    edge: float,
    origin: VectorLike = (0.0, 0.0, 0.0),
    masses: MassSpec = 1.0,
    velocity_dispersion: float = 0.0,
    rng: RandomState = None,
) -> list[Body]:
    """
    Bodies uniformly distributed in the cube [origin, origin + edge).

    Args:
        n: Number of bodies
        edge: Edge length of the cube
        origin: Minimum corner of the cube
        masses: Constant mass or a mass sampler
        velocity_dispersion: Standard deviation of each velocity component
        rng: Seed or numpy Generator

    Returns:
        List of n bodies
    """
    n = _validate_count(n)
    edge = validate_positive("edge", edge)
    gen = np.random.default_rng(rng)
    o = np.array(Vector3.of(origin).as_tuple(), dtype=float)

    positions = o + gen.uniform(0.0, edge, size=(n, 3))
    # Keep the open upper bound after rounding
    positions = np.minimum(positions, np.nextafter(o + edge, o))
    return _make_bodies(positions, masses, velocity_dispersion, gen)


def uniform_sphere(
    n: int,
    radius: float,
    center: VectorLike = (0.0, 0.0, 0.0),
    masses: MassSpec = 1.0,
    velocity_dispersion: float = 0.0,
    rng: RandomState = None,
) -> list[Body]:
    """
    Bodies uniformly distributed inside a ball.

    Directions are drawn from an isotropic Gaussian and radii from
    radius * u^(1/3), which gives uniform density over the volume.

    Args:
        n: Number of bodies
        radius: Radius of the ball
        center: Center of the ball
        masses: Constant mass or a mass sampler
        velocity_dispersion: Standard deviation of each velocity component
        rng: Seed or numpy Generator

    Returns:
        List of n bodies
    """
    n = _validate_count(n)
    radius = validate_positive("radius", radius)
    gen = np.random.default_rng(rng)
    c = np.array(Vector3.of(center).as_tuple(), dtype=float)

    directions = gen.normal(size=(n, 3))
    norms = np.linalg.norm(directions, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    directions /= norms
    radii = radius * np.cbrt(gen.uniform(0.0, 1.0, size=(n, 1)))
    positions = c + directions * radii
    return _make_bodies(positions, masses, velocity_dispersion, gen)


def _make_bodies(
    positions: np.ndarray,
    masses: MassSpec,
    velocity_dispersion: float,
    gen: np.random.Generator,
) -> list[Body]:
    n = positions.shape[0]
    sampler = masses if callable(masses) else constant_mass(masses)
    mass_values = np.asarray(sampler(n, gen), dtype=float)

    if velocity_dispersion < 0:
        raise ValidationError(f"velocity_dispersion must be >= 0, got {velocity_dispersion}")
    if velocity_dispersion > 0:
        velocities = gen.normal(0.0, velocity_dispersion, size=(n, 3))
    else:
        velocities = np.zeros((n, 3))

    return [
        Body(float(m), Vector3(*map(float, p)), Vector3(*map(float, v)))
        for m, p, v in zip(mass_values, positions, velocities)
    ]


def _validate_count(n: int) -> int:
    if n < 0:
        raise ValidationError(f"body count must be >= 0, got {n}")
    return int(n)


def _validate_range(low: float, high: float) -> tuple[float, float]:
    low = validate_positive("low", low)
    high = validate_positive("high", high)
    if high <= low:
        raise ValidationError(f"high must be > low, got low={low}, high={high}")
    return low, high


__all__ = [
    "MassSampler",
    "constant_mass",
    "uniform_mass",
    "log_uniform_mass",
    "uniform_cube",
    "uniform_sphere",
]

"""
Simulation diagnostics.

Provides quantitative measures of a body set:
- Conservation quantities: total mass, center of mass, total momentum
- Energies: kinetic and (direct-sum) potential energy
- Force accuracy: exact O(n^2) reference forces and the tree's error against them

All metrics work with any sequence of bodies, e.g. ``tree.bodies()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

import numpy as np

from .constants import G
from .physics import gravitational_force
from .types import Body, Vector3

if TYPE_CHECKING:
    from .spatial.octree import Octree


def total_mass(bodies: Sequence[Body]) -> float:
    """Sum of all masses."""
    return float(sum(b.mass for b in bodies))


def center_of_mass(bodies: Sequence[Body]) -> Vector3:
    """
    Mass-weighted mean position.

    Returns:
        Center of mass, or the origin for an empty sequence
    """
    mass = total_mass(bodies)
    if mass == 0:
        return Vector3.zero()
    x = sum(b.position.x * b.mass for b in bodies)
    y = sum(b.position.y * b.mass for b in bodies)
    z = sum(b.position.z * b.mass for b in bodies)
    return Vector3(x / mass, y / mass, z / mass)


def total_momentum(bodies: Sequence[Body]) -> Vector3:
    """Vector sum of m * v over all bodies."""
    px = py = pz = 0.0
    for b in bodies:
        p = b.momentum
        px += p.x
        py += p.y
        pz += p.z
    return Vector3(px, py, pz)


def kinetic_energy(bodies: Sequence[Body]) -> float:
    """Total kinetic energy, sum of m * |v|^2 / 2."""
    return float(sum(b.kinetic_energy for b in bodies))


def potential_energy(bodies: Sequence[Body], g: float = G) -> float:
    """
    Total gravitational potential energy by direct pair summation.

    Coincident pairs are skipped.

    Time Complexity: O(n^2)
    """
    n = len(bodies)
    if n < 2:
        return 0.0

    pos = np.array([b.position.as_tuple() for b in bodies], dtype=float)
    mass = np.array([b.mass for b in bodies], dtype=float)

    delta = pos[:, np.newaxis, :] - pos[np.newaxis, :, :]
    dist = np.sqrt((delta**2).sum(axis=-1))
    iu = np.triu_indices(n, k=1)
    d = dist[iu]
    mm = (mass[:, np.newaxis] * mass[np.newaxis, :])[iu]
    valid = d > 0
    return float(-g * np.sum(mm[valid] / d[valid]))


def total_energy(bodies: Sequence[Body], g: float = G) -> float:
    """Kinetic plus potential energy."""
    return kinetic_energy(bodies) + potential_energy(bodies, g)


def direct_force(body: Body, bodies: Sequence[Body], g: float = G) -> Vector3:
    """
    Exact net force on ``body`` from every other body.

    Bodies at exactly the same position as ``body`` (including itself)
    contribute nothing.
    """
    fx = fy = fz = 0.0
    for other in bodies:
        if other is body:
            continue
        f = gravitational_force(body, other, g)
        fx += f.x
        fy += f.y
        fz += f.z
    return Vector3(fx, fy, fz)


def direct_forces(bodies: Sequence[Body], g: float = G) -> list[Vector3]:
    """Exact forces on every body. Time Complexity: O(n^2)"""
    return [direct_force(b, bodies, g) for b in bodies]


def force_error(tree: Octree, bodies: Sequence[Body]) -> float:
    """
    Mean relative error of the tree's forces against direct summation.

    Args:
        tree: Octree holding ``bodies``
        bodies: Bodies to evaluate (normally ``tree.bodies()``)

    Returns:
        mean(|F_tree - F_exact| / |F_exact|) over bodies with non-zero exact force
    """
    errors = []
    for body in bodies:
        exact = direct_force(body, bodies, tree.gravitational_constant)
        norm = exact.magnitude()
        if norm == 0:
            continue
        approx = tree.force_on(body)
        errors.append((approx - exact).magnitude() / norm)
    if not errors:
        return 0.0
    return float(np.mean(errors))


def summary(bodies: Sequence[Body], g: float = G) -> dict[str, float]:
    """
    Compute the conservation and energy metrics at once.

    Returns:
        Dict with count, total_mass, center_of_mass_{x,y,z},
        momentum_{x,y,z}, kinetic_energy, potential_energy, total_energy
    """
    com = center_of_mass(bodies)
    momentum = total_momentum(bodies)
    kinetic = kinetic_energy(bodies)
    potential = potential_energy(bodies, g)
    return {
        "count": float(len(bodies)),
        "total_mass": total_mass(bodies),
        "center_of_mass_x": com.x,
        "center_of_mass_y": com.y,
        "center_of_mass_z": com.z,
        "momentum_x": momentum.x,
        "momentum_y": momentum.y,
        "momentum_z": momentum.z,
        "kinetic_energy": kinetic,
        "potential_energy": potential,
        "total_energy": kinetic + potential,
    }


__all__ = [
    "total_mass",
    "center_of_mass",
    "total_momentum",
    "kinetic_energy",
    "potential_energy",
    "total_energy",
    "direct_force",
    "direct_forces",
    "force_error",
    "summary",
]

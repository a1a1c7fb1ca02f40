"""
Newtonian two-body force law and the close-encounter merge policy.

No softening length is applied to the force law. Denominators are kept
away from zero by merging bodies that come within a merge radius of
each other, so the two functions here must be changed together.
"""

from __future__ import annotations

from .constants import G
from .types import Body, Vector3


def gravitational_force(target: Body, source: Body, g: float = G) -> Vector3:
    """
    Force exerted by ``source`` on ``target``.

    F = g * m1 * m2 / d^2, directed from ``target`` toward ``source``.

    Args:
        target: Body the force acts on
        source: Attracting body (or aggregate)
        g: Gravitational constant

    Returns:
        Force vector acting on ``target``. Zero if the two positions coincide.
    """
    displacement = target.position.displacement_to(source.position)
    dist_sq = displacement.dot(displacement)
    if dist_sq == 0.0:
        return Vector3.zero()

    dist = dist_sq**0.5
    magnitude = g * target.mass * source.mass / dist_sq
    return displacement * (magnitude / dist)


def should_merge(a: Body, b: Body) -> bool:
    """True if ``a`` and ``b`` are within either body's merge radius."""
    dist = a.position.distance_to(b.position)
    return dist <= a.merge_radius or dist <= b.merge_radius


__all__ = ["gravitational_force", "should_merge"]

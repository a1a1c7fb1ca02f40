"""
Physical constants and defaults shared across the simulation.

All quantities are SI unless a tree is given an explicit
``gravitational_constant`` for normalized units.
"""

from __future__ import annotations

# Newtonian gravitational constant (m^3 kg^-1 s^-2)
G = 6.67430e-11

# Reference speed used to scale the merge radius (speed of light, m/s)
REFERENCE_SPEED = 299_792_458.0

# merge_radius = MERGE_RADIUS_FACTOR * mass (Schwarzschild radius)
MERGE_RADIUS_FACTOR = 2.0 * G / (REFERENCE_SPEED * REFERENCE_SPEED)

DEFAULT_OPENING_ANGLE = 0.5

# Padding added on every side when refitting the region after a step
DEFAULT_MARGIN = 1.0

__all__ = [
    "G",
    "REFERENCE_SPEED",
    "MERGE_RADIUS_FACTOR",
    "DEFAULT_OPENING_ANGLE",
    "DEFAULT_MARGIN",
]

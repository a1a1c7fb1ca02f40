"""
octree-nbody: Barnes-Hut gravitational n-body simulation in Python.

This package simulates point masses under Newtonian gravity, using an
octree to approximate long-range forces in O(n log n) per step.

Available components:
- types: Vector3 and Body value types
- spatial: Octree / OctreeNode (insertion, force evaluation, time stepping)
- simulation: Simulation step driver with events and background output
- generators: Initial conditions (uniform cube, uniform sphere, mass distributions)
- export: Per-step CSV output
- checkpoint: Time-ordered checkpoint store
- metrics: Conservation and accuracy diagnostics
"""

__version__ = "0.1.0"

# Checkpoint persistence
from .checkpoint import CheckpointStore, CheckpointWarning, StorageError

# Physical constants
from .constants import G, MERGE_RADIUS_FACTOR, REFERENCE_SPEED

# Output
from .export import BackgroundWriter, OutputWarning, to_csv, write_csv

# Initial conditions
from .generators import (
    constant_mass,
    log_uniform_mass,
    uniform_cube,
    uniform_mass,
    uniform_sphere,
)

# Diagnostics
from .metrics import (
    center_of_mass,
    direct_force,
    direct_forces,
    force_error,
    kinetic_energy,
    potential_energy,
    total_mass,
    total_momentum,
)

# Force law and merge policy
from .physics import gravitational_force, should_merge

# Step driver
from .simulation import Simulation

# Spatial data structures
from .spatial import Octree, OctreeNode, fit_region

# Shared types
from .types import Body, BodyLike, Event, EventType, Vector3, VectorLike

# Validation utilities
from .validation import (
    AccuracyWarning,
    InvalidBodyError,
    InvalidRegionError,
    InvalidTimeStepError,
    InvariantViolationError,
    OutOfBoundsError,
    ValidationError,
)

__all__ = [
    # Version
    "__version__",
    # Shared types
    "Vector3",
    "Body",
    "EventType",
    "Event",
    # Type aliases for API
    "VectorLike",
    "BodyLike",
    # Constants
    "G",
    "REFERENCE_SPEED",
    "MERGE_RADIUS_FACTOR",
    # Physics
    "gravitational_force",
    "should_merge",
    # Spatial data structures
    "Octree",
    "OctreeNode",
    "fit_region",
    # Step driver
    "Simulation",
    # Initial conditions
    "uniform_cube",
    "uniform_sphere",
    "constant_mass",
    "uniform_mass",
    "log_uniform_mass",
    # Metrics
    "total_mass",
    "center_of_mass",
    "total_momentum",
    "kinetic_energy",
    "potential_energy",
    "direct_force",
    "direct_forces",
    "force_error",
    # Output
    "to_csv",
    "write_csv",
    "BackgroundWriter",
    "OutputWarning",
    # Checkpoints
    "CheckpointStore",
    "CheckpointWarning",
    "StorageError",
    # Validation
    "ValidationError",
    "InvalidBodyError",
    "InvalidRegionError",
    "InvalidTimeStepError",
    "OutOfBoundsError",
    "InvariantViolationError",
    "AccuracyWarning",
]

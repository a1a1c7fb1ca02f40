"""
Export functionality for simulation state.

This module provides functions to write simulation steps to disk:
- CSV: one file per step, one (mass, x, y, z, vx, vy, vz) row per body
- BackgroundWriter: bounded fire-and-forget writer used by the step driver

Example usage:
    from octree_nbody.export import step_path, to_csv, write_csv

    csv_content = to_csv(tree)
    write_csv(step_path("output", 0), tree)
"""

from .tabular import read_csv, step_path, to_csv, to_rows, write_csv
from .writer import BackgroundWriter, OutputWarning

__all__ = [
    # CSV export
    "to_rows",
    "to_csv",
    "write_csv",
    "read_csv",
    "step_path",
    # Background output
    "BackgroundWriter",
    "OutputWarning",
]

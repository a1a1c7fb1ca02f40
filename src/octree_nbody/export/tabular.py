"""
CSV export of simulation state.

Each row is (mass, x, y, z, vx, vy, vz) for one leaf body. Rows are in
tree leaf order and no header is written.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Union

from ..types import Body

if TYPE_CHECKING:
    from ..spatial.octree import Octree

Row = tuple[float, float, float, float, float, float, float]
BodySource = Union["Octree", Iterable[Body]]


def to_rows(source: BodySource) -> list[Row]:
    """
    Convert a tree (or any iterable of bodies) to table rows.

    Args:
        source: An Octree or an iterable of Body objects

    Returns:
        List of (mass, x, y, z, vx, vy, vz) tuples
    """
    bodies = source.bodies() if hasattr(source, "bodies") else source
    return [body.as_row() for body in bodies]


def to_csv(source: BodySource) -> str:
    """
    Export bodies to CSV text.

    Args:
        source: An Octree or an iterable of Body objects

    Returns:
        CSV content, one body per line
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(to_rows(source))
    return buffer.getvalue()


def write_csv(path: Union[str, Path], source: BodySource) -> Path:
    """
    Write bodies to a CSV file, creating parent directories as needed.

    Returns:
        The path written
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="") as f:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerows(to_rows(source))
    return path


def read_csv(path: Union[str, Path]) -> list[Body]:
    """Read bodies back from a file written by write_csv()."""
    with open(path, newline="") as f:
        return [Body.from_row(row) for row in csv.reader(f) if row]


def step_path(output_dir: Union[str, Path], step: int) -> Path:
    """File name used for the output of a given step."""
    return Path(output_dir) / f"step_{step:06d}.csv"


__all__ = ["to_rows", "to_csv", "write_csv", "read_csv", "step_path"]

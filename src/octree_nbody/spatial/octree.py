"""
Octree implementation for Barnes-Hut gravitational simulation.

The octree recursively subdivides 3D space into octants, enabling
O(n log n) approximate n-body force calculations. Each step of the
simulation builds a fresh tree from the previous one's bodies.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Iterable, Iterator, List, Optional

from ..constants import DEFAULT_MARGIN, DEFAULT_OPENING_ANGLE, G
from ..physics import gravitational_force, should_merge
from ..types import Body, BodyLike, Vector3, VectorLike
from ..validation import (
    InvariantViolationError,
    OutOfBoundsError,
    ValidationError,
    validate_mass,
    validate_max_workers,
    validate_opening_angle,
    validate_positive,
    validate_region,
    validate_time_step,
)

logger = logging.getLogger(__name__)


class OctreeNode:
    """
    A node in the octree, covering the half-open cube
    [origin, origin + edge_length) on every axis.

    Attributes:
        origin: Minimum corner of this region
        edge_length: Edge length of this region
        count: Number of bodies in this subtree
        aggregate: Total mass, center of mass and mean velocity of the subtree
        leaf_body: The single body if this is an occupied leaf
        children: Eight child octants if internal, empty list if leaf
    """

    __slots__ = ("origin", "edge_length", "count", "aggregate", "leaf_body", "children")

    def __init__(self, origin: Vector3, edge_length: float) -> None:
        self.origin = origin
        self.edge_length = edge_length
        self.count = 0
        self.aggregate = Body.zero()
        self.leaf_body: Optional[Body] = None
        self.children: List[OctreeNode] = []

    def __repr__(self) -> str:
        return (
            f"OctreeNode(origin={self.origin!r}, edge_length={self.edge_length:.6g}, "
            f"count={self.count})"
        )

    def is_leaf(self) -> bool:
        """True if this node has no children."""
        return not self.children

    def is_empty(self) -> bool:
        """True if this node contains no bodies."""
        return self.count == 0

    def contains(self, point: Vector3) -> bool:
        """Check if a point is within this node's half-open cube."""
        o, e = self.origin, self.edge_length
        return (
            o.x <= point.x < o.x + e
            and o.y <= point.y < o.y + e
            and o.z <= point.z < o.z + e
        )

    def get_octant(self, point: Vector3) -> int:
        """
        Get the child index for a point.

        Bit 2 is set for the upper x half, bit 1 for y, bit 0 for z.
        """
        half = self.edge_length / 2
        o = self.origin
        ix = 1 if point.x >= o.x + half else 0
        iy = 1 if point.y >= o.y + half else 0
        iz = 1 if point.z >= o.z + half else 0
        return (ix << 2) | (iy << 1) | iz

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def insert(self, body: Body) -> None:
        """Insert a body that lies within this node's cube."""
        self.aggregate = self.aggregate.combined(body)
        self.count += 1

        if self.children:
            self._insert_into_child(body)
            self.count = sum(child.count for child in self.children)
            return

        if self.count == 1:
            # First body in an empty leaf
            self.leaf_body = body
            return

        existing = self.leaf_body
        if existing is None:
            raise InvariantViolationError(f"{self!r} has count {self.count} but no stored body")

        if should_merge(existing, body):
            # Close encounter: both bodies continue as their aggregate
            self.leaf_body = self.aggregate
            self.count = 1
            logger.debug(
                "merged bodies at %r and %r into mass %g",
                existing.position,
                body.position,
                self.aggregate.mass,
            )
            return

        self._split()
        self.leaf_body = None
        self._insert_into_child(existing)
        self._insert_into_child(body)
        self.count = sum(child.count for child in self.children)

    def _split(self) -> None:
        """Subdivide this leaf into eight equal octants."""
        half = self.edge_length / 2
        o = self.origin
        self.children = [
            OctreeNode(Vector3(x, y, z), half)
            for x in (o.x, o.x + half)
            for y in (o.y, o.y + half)
            for z in (o.z, o.z + half)
        ]

    def _insert_into_child(self, body: Body) -> None:
        """Route a body into the child octant whose cube contains it."""
        child = self.children[self.get_octant(body.position)]
        if not child.contains(body.position):
            # Midpoint rounding can disagree with the child bounds
            for candidate in self.children:
                if candidate.contains(body.position):
                    child = candidate
                    break
            else:
                raise OutOfBoundsError(body, self.origin, self.edge_length)
        child.insert(body)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def force_on(self, body: Body, theta: float, g: float = G) -> Vector3:
        """
        Approximate gravitational force exerted by this subtree on ``body``.

        Uses the Barnes-Hut criterion: if edge_length / distance < theta the
        whole subtree acts as a single mass at its center of mass, otherwise
        its children are visited. A node whose cube contains ``body`` is
        always opened, so a body is never attracted by an aggregate that
        includes itself. Read-only; safe to call concurrently.
        """
        if self.count == 0 or self.aggregate.position == body.position:
            return Vector3.zero()

        if not self.children:
            return gravitational_force(body, self.aggregate, g)

        dist = self.aggregate.position.distance_to(body.position)
        if self.edge_length / dist < theta and not self.contains(body.position):
            return gravitational_force(body, self.aggregate, g)

        fx = fy = fz = 0.0
        for child in self.children:
            if child.count == 0:
                continue
            f = child.force_on(body, theta, g)
            fx += f.x
            fy += f.y
            fz += f.z
        return Vector3(fx, fy, fz)

    def iter_bodies(self) -> Iterator[Body]:
        """Yield every body stored in this subtree's leaves."""
        if self.children:
            for child in self.children:
                if child.count:
                    yield from child.iter_bodies()
        elif self.leaf_body is not None:
            yield self.leaf_body

    def depth(self) -> int:
        """Height of this subtree (0 for a leaf)."""
        if not self.children:
            return 0
        return 1 + max(child.depth() for child in self.children)

    def node_count(self) -> int:
        """Number of nodes in this subtree, including this one."""
        return 1 + sum(child.node_count() for child in self.children)

    # -------------------------------------------------------------------------
    # Consistency checks
    # -------------------------------------------------------------------------

    def validate(self, rel_tol: float = 1e-9) -> None:
        """
        Walk the subtree and check every structural invariant.

        Raises:
            InvariantViolationError: On the first inconsistency found
        """
        if self.children:
            if len(self.children) != 8:
                raise InvariantViolationError(f"{self!r} has {len(self.children)} children, expected 8")
            if self.leaf_body is not None:
                raise InvariantViolationError(f"branch {self!r} holds a direct body")

            for child in self.children:
                child.validate(rel_tol)

            total = sum(child.count for child in self.children)
            if self.count != total:
                raise InvariantViolationError(
                    f"{self!r} count {self.count} != sum of children counts {total}"
                )

            expected = Body.zero()
            for child in self.children:
                expected = expected.combined(child.aggregate)
            if not math.isclose(self.aggregate.mass, expected.mass, rel_tol=rel_tol):
                raise InvariantViolationError(
                    f"{self!r} aggregate mass {self.aggregate.mass} != children total {expected.mass}"
                )
            abs_tol = 1e-6 * self.edge_length
            if not all(
                math.isclose(a, b, rel_tol=1e-6, abs_tol=abs_tol)
                for a, b in zip(self.aggregate.position, expected.position)
            ):
                raise InvariantViolationError(
                    f"{self!r} center of mass {self.aggregate.position!r} != "
                    f"children center of mass {expected.position!r}"
                )
            return

        if self.count == 0:
            if self.leaf_body is not None or self.aggregate != Body.zero():
                raise InvariantViolationError(f"empty leaf {self!r} is not cleared")
            return

        if self.count != 1:
            raise InvariantViolationError(f"leaf {self!r} holds {self.count} bodies")
        if self.leaf_body is None:
            raise InvariantViolationError(f"leaf {self!r} has count 1 but no stored body")
        if self.aggregate != self.leaf_body:
            raise InvariantViolationError(f"leaf {self!r} aggregate does not mirror its body")

        p, o, e = self.leaf_body.position, self.origin, self.edge_length
        if not all(lo <= v < lo + e for v, lo in zip(p, o)):
            raise InvariantViolationError(f"body at {p!r} lies outside leaf {self!r}")


def fit_region(positions: Iterable[Vector3], margin: float = DEFAULT_MARGIN) -> tuple[Vector3, float]:
    """
    Compute a cube that contains every position.

    Args:
        positions: Points to enclose (must be non-empty)
        margin: Padding added below the minimum and above the maximum corner

    Returns:
        (origin, edge_length) of the enclosing cube
    """
    points = list(positions)
    if not points:
        raise ValueError("Cannot fit a region around zero positions")

    lows = [min(p.x for p in points), min(p.y for p in points), min(p.z for p in points)]
    highs = [max(p.x for p in points), max(p.y for p in points), max(p.z for p in points)]
    origin = [lo - margin for lo in lows]
    edge = max(hi + margin - o for hi, o in zip(highs, origin))

    # At large magnitudes the margin rounds away; grow the edge until the
    # half-open upper bound lies strictly above every body.
    for o, hi in zip(origin, highs):
        while o + edge <= hi:
            edge += math.ulp(max(abs(o), abs(hi), edge))

    return Vector3(*origin), edge


class Octree:
    """
    Barnes-Hut octree for approximate gravitational forces.

    For distant clusters the algorithm treats the cluster as a single body
    at its center of mass, reducing complexity from O(n^2) to O(n log n).

    A tree is built by sequential insertion and is read-only afterwards.
    advance() derives the next simulation state as a brand-new tree.

    Usage:
        tree = Octree(region_origin=(-1, -1, -1), region_edge=12.0)
        for body in bodies:
            tree.insert(body)

        force = tree.force_on(body)
        next_tree = tree.advance(dt=1.0)

    The opening angle controls the accuracy/speed tradeoff:
    - theta -> 0: Exact pairwise summation
    - theta = 0.5: Good balance (recommended)
    - theta = 1.0: Fast but less accurate
    """

    def __init__(
        self,
        region_origin: VectorLike = (0.0, 0.0, 0.0),
        region_edge: float = 1.0,
        opening_angle: float = DEFAULT_OPENING_ANGLE,
        gravitational_constant: float = G,
        margin: float = DEFAULT_MARGIN,
    ) -> None:
        """
        Initialize an empty octree.

        Args:
            region_origin: Minimum corner of the root cube
            region_edge: Edge length of the root cube
            opening_angle: Barnes-Hut threshold (smaller = more accurate)
            gravitational_constant: G used by the force law
            margin: Padding used when refitting the region in advance()
        """
        origin, edge = validate_region(Vector3.of(region_origin), region_edge)
        self.region_origin = Vector3(*origin)
        self.region_edge = edge
        self.opening_angle = validate_opening_angle(opening_angle)
        self.gravitational_constant = validate_positive("gravitational_constant", gravitational_constant)
        self.margin = float(margin)
        if self.margin < 0:
            raise ValidationError(f"margin must be >= 0, got {self.margin}")
        self.root = OctreeNode(self.region_origin, self.region_edge)

    @classmethod
    def from_bodies(
        cls,
        bodies: Iterable[BodyLike],
        opening_angle: float = DEFAULT_OPENING_ANGLE,
        gravitational_constant: float = G,
        margin: float = DEFAULT_MARGIN,
        region_origin: Optional[VectorLike] = None,
        region_edge: Optional[float] = None,
    ) -> Octree:
        """
        Build an octree over a list of bodies.

        If no region is given, one is fitted around the bodies with
        ``margin`` padding on every side.

        Args:
            bodies: Body objects or (mass, x, y, z, vx, vy, vz) rows
            opening_angle: Barnes-Hut threshold
            gravitational_constant: G used by the force law
            margin: Padding around the fitted region
            region_origin: Explicit root cube origin
            region_edge: Explicit root cube edge length

        Returns:
            Octree with all bodies inserted
        """
        items = [b if isinstance(b, Body) else Body.from_row(b) for b in bodies]

        if region_origin is None or region_edge is None:
            if items:
                region_origin, region_edge = fit_region((b.position for b in items), margin)
            else:
                region_origin, region_edge = Vector3.zero(), 1.0

        tree = cls(
            region_origin=region_origin,
            region_edge=region_edge,
            opening_angle=opening_angle,
            gravitational_constant=gravitational_constant,
            margin=margin,
        )
        tree.insert_all(items)
        return tree

    def __len__(self) -> int:
        return self.root.count

    def __repr__(self) -> str:
        return (
            f"Octree(count={self.root.count}, region_origin={self.region_origin!r}, "
            f"region_edge={self.region_edge:.6g}, opening_angle={self.opening_angle})"
        )

    @property
    def count(self) -> int:
        """Number of bodies currently resident in the tree."""
        return self.root.count

    @property
    def total_mass(self) -> float:
        return self.root.aggregate.mass

    @property
    def center_of_mass(self) -> Vector3:
        return self.root.aggregate.position

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    def insert(self, body: Body) -> None:
        """
        Insert a body into the tree.

        Raises:
            InvalidBodyError: If the body's mass is not positive
            OutOfBoundsError: If the body lies outside the root cube
        """
        validate_mass(body.mass)
        if not self.root.contains(body.position):
            raise OutOfBoundsError(body, self.region_origin, self.region_edge)
        self.root.insert(body)

    def insert_all(self, bodies: Iterable[Body]) -> None:
        """Insert bodies one at a time, in order."""
        for body in bodies:
            self.insert(body)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def force_on(self, body: Body) -> Vector3:
        """Approximate net gravitational force of the tree's contents on ``body``."""
        return self.root.force_on(body, self.opening_angle, self.gravitational_constant)

    def bodies(self) -> list[Body]:
        """Every body resident in the tree, in leaf order."""
        return list(self.root.iter_bodies())

    def validate(self) -> None:
        """
        Check every structural invariant of the tree.

        Raises:
            InvariantViolationError: If the tree is inconsistent
        """
        self.root.validate()

    # -------------------------------------------------------------------------
    # Time stepping
    # -------------------------------------------------------------------------

    def advance(
        self,
        dt: float,
        executor: Optional[Executor] = None,
        max_workers: Optional[int] = None,
    ) -> Octree:
        """
        Advance every body by one time step and return the next tree.

        Forces are evaluated against this (unchanged) tree in parallel, the
        region is refitted around the moved bodies, and a fresh tree is
        built by sequential insertion.

        Args:
            dt: Time step
            executor: Executor for the force pass. If None, a thread pool of
                ``max_workers`` is created for this call.
            max_workers: Pool size when no executor is given; 1 runs serially.

        Returns:
            A new Octree holding the moved bodies
        """
        dt = validate_time_step(dt)
        max_workers = validate_max_workers(max_workers)
        bodies = self.bodies()

        if not bodies:
            return self._empty_like(self.region_origin, self.region_edge)

        def step(body: Body) -> Body:
            return body.advanced(self.force_on(body), dt)

        if executor is not None:
            moved = list(executor.map(step, bodies))
        elif max_workers == 1:
            moved = [step(b) for b in bodies]
        else:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                moved = list(pool.map(step, bodies))

        origin, edge = fit_region((b.position for b in moved), self.margin)
        logger.debug("rebuilding %d bodies in region %r edge %g", len(moved), origin, edge)

        tree = self._empty_like(origin, edge)
        tree.insert_all(moved)
        return tree

    def _empty_like(self, origin: Vector3, edge: float) -> Octree:
        return Octree(
            region_origin=origin,
            region_edge=edge,
            opening_angle=self.opening_angle,
            gravitational_constant=self.gravitational_constant,
            margin=self.margin,
        )


__all__ = ["Octree", "OctreeNode", "fit_region"]

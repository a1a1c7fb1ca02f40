"""Tests for Octree construction, invariants and Barnes-Hut force approximation."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from octree_nbody import (
    Body,
    InvalidBodyError,
    InvariantViolationError,
    Octree,
    OctreeNode,
    OutOfBoundsError,
    Vector3,
    force_error,
    gravitational_force,
    uniform_cube,
)


def walk(node):
    """Yield every node of a subtree."""
    yield node
    for child in node.children:
        yield from walk(child)


def leaf_path(tree, body):
    """Nodes visited from the root down to the leaf holding ``body``."""
    path = [tree.root]
    node = tree.root
    while node.children:
        node = next(c for c in node.children if c.contains(body.position))
        path.append(node)
    return path


class TestOctreeNode:
    """Tests for OctreeNode geometry."""

    def test_node_creation(self):
        """A new node is an empty leaf."""
        node = OctreeNode(Vector3(0.0, 0.0, 0.0), 8.0)
        assert node.is_leaf()
        assert node.is_empty()
        assert node.count == 0
        assert node.leaf_body is None
        assert node.aggregate == Body.zero()

    def test_contains_is_half_open(self):
        """Lower bounds are inclusive, upper bounds exclusive."""
        node = OctreeNode(Vector3(0.0, 0.0, 0.0), 8.0)
        assert node.contains(Vector3(0.0, 0.0, 0.0))
        assert node.contains(Vector3(4.0, 7.999, 0.5))
        assert not node.contains(Vector3(8.0, 1.0, 1.0))
        assert not node.contains(Vector3(1.0, 1.0, 8.0))
        assert not node.contains(Vector3(-0.001, 1.0, 1.0))

    def test_get_octant(self):
        """Octant bits are x=4, y=2, z=1."""
        node = OctreeNode(Vector3(0.0, 0.0, 0.0), 8.0)
        assert node.get_octant(Vector3(1.0, 1.0, 1.0)) == 0
        assert node.get_octant(Vector3(1.0, 1.0, 5.0)) == 1
        assert node.get_octant(Vector3(1.0, 5.0, 1.0)) == 2
        assert node.get_octant(Vector3(5.0, 1.0, 1.0)) == 4
        assert node.get_octant(Vector3(5.0, 5.0, 5.0)) == 7
        # Midpoint belongs to the upper half
        assert node.get_octant(Vector3(4.0, 4.0, 4.0)) == 7

    def test_split_tiles_parent(self):
        """The eight children tile the parent cube exactly."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0)
        tree.insert(Body(1.0, Vector3(1.0, 1.0, 1.0)))
        tree.insert(Body(1.0, Vector3(7.0, 7.0, 7.0)))

        children = tree.root.children
        assert len(children) == 8
        assert all(child.edge_length == 4.0 for child in children)
        origins = {child.origin.as_tuple() for child in children}
        assert origins == {(x, y, z) for x in (0.0, 4.0) for y in (0.0, 4.0) for z in (0.0, 4.0)}
        for i, child in enumerate(children):
            assert tree.root.get_octant(child.origin) == i


class TestOctreeInsertion:
    """Tests for Octree insertion operations."""

    def test_empty_tree(self):
        """Test empty tree state."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=100.0)
        assert tree.count == 0
        assert len(tree) == 0
        assert tree.root.is_empty()
        assert tree.bodies() == []
        tree.validate()

    def test_single_body_insertion(self):
        """A single body is stored directly in the root leaf."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=100.0)
        body = Body(2.0, Vector3(25.0, 25.0, 25.0))
        tree.insert(body)

        assert tree.count == 1
        assert tree.root.leaf_body is body
        assert tree.root.aggregate == body
        assert tree.root.is_leaf()
        tree.validate()

    def test_two_body_insertion_splits(self):
        """A second body subdivides the leaf."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=100.0)
        a = Body(1.0, Vector3(25.0, 25.0, 25.0))
        b = Body(1.0, Vector3(75.0, 75.0, 75.0))
        tree.insert(a)
        tree.insert(b)

        assert tree.count == 2
        assert not tree.root.is_leaf()
        assert tree.root.leaf_body is None
        assert tree.root.children[0].leaf_body is a
        assert tree.root.children[7].leaf_body is b
        tree.validate()

    def test_same_octant_splits_recursively(self):
        """Bodies sharing an octant are separated further down."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=64.0)
        a = Body(1.0, Vector3(1.0, 1.0, 1.0))
        b = Body(1.0, Vector3(3.0, 3.0, 3.0))
        tree.insert(a)
        tree.insert(b)

        assert tree.count == 2
        assert tree.root.depth() >= 4
        assert set(tree.bodies()) == {a, b}
        tree.validate()

    def test_bodies_enumerates_every_leaf(self):
        """bodies() returns every inserted body exactly once."""
        bodies = uniform_cube(40, edge=100.0, rng=3)
        tree = Octree(region_origin=(0, 0, 0), region_edge=100.0)
        tree.insert_all(bodies)

        found = tree.bodies()
        assert len(found) == 40
        assert set(found) == set(bodies)

    def test_from_bodies_fits_region(self):
        """from_bodies() fits a padded region around the bodies."""
        bodies = [Body(1.0, Vector3(0.0, 0.0, 0.0)), Body(1.0, Vector3(10.0, 4.0, -2.0))]
        tree = Octree.from_bodies(bodies, margin=1.0)

        assert tree.region_origin == Vector3(-1.0, -1.0, -3.0)
        assert tree.region_edge == 12.0
        assert tree.count == 2

    def test_from_bodies_accepts_rows(self):
        """Rows of (mass, x, y, z, vx, vy, vz) are accepted."""
        tree = Octree.from_bodies([(1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0), (2.0, 5.0, 5.0, 5.0, 1.0, 0.0, 0.0)])
        assert tree.count == 2
        assert tree.total_mass == 3.0


class TestOctreeAggregates:
    """Tests for count, mass and center-of-mass bookkeeping."""

    def test_conservation_without_merges(self):
        """Root mass and count match the inserted bodies."""
        bodies = uniform_cube(60, edge=100.0, masses=2.5, rng=11)
        tree = Octree(region_origin=(0, 0, 0), region_edge=100.0)
        tree.insert_all(bodies)

        assert tree.count == 60
        assert tree.total_mass == pytest.approx(60 * 2.5)
        tree.validate()

    def test_center_of_mass_two_bodies(self):
        """Center of mass is (m1*p1 + m2*p2) / (m1 + m2)."""
        a = Body(3.0, Vector3(0.0, 0.0, 0.0))
        b = Body(1.0, Vector3(8.0, 4.0, 0.0))
        tree = Octree(region_origin=(-1, -1, -1), region_edge=12.0)
        tree.insert(a)
        tree.insert(b)

        com = tree.center_of_mass
        assert com.x == pytest.approx(2.0)
        assert com.y == pytest.approx(1.0)
        assert com.z == pytest.approx(0.0)

    def test_center_of_mass_order_independent(self):
        """Insertion order does not change the center of mass."""
        a = Body(3.0, Vector3(0.5, 2.0, 7.0))
        b = Body(1.5, Vector3(9.0, 4.0, 1.0))
        forward = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        forward.insert_all([a, b])
        backward = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        backward.insert_all([b, a])

        for u, v in zip(forward.center_of_mass, backward.center_of_mass):
            assert u == pytest.approx(v)
        assert forward.total_mass == backward.total_mass

    def test_aggregate_momentum(self):
        """aggregate.velocity * aggregate.mass is the total momentum."""
        bodies = [
            Body(1.0, Vector3(1.0, 1.0, 1.0), Vector3(1.0, 0.0, 0.0)),
            Body(2.0, Vector3(6.0, 6.0, 6.0), Vector3(0.0, -1.0, 0.0)),
            Body(4.0, Vector3(2.0, 7.0, 3.0), Vector3(0.0, 0.0, 0.5)),
        ]
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0)
        tree.insert_all(bodies)

        momentum = tree.root.aggregate.momentum
        assert momentum.x == pytest.approx(1.0)
        assert momentum.y == pytest.approx(-2.0)
        assert momentum.z == pytest.approx(2.0)


class TestOctreeInvariants:
    """Structural invariants after arbitrary insertions."""

    def test_structure(self):
        """Every node has 0 or 8 children and consistent counts."""
        bodies = uniform_cube(200, edge=50.0, origin=(-25, -25, -25), rng=5)
        tree = Octree(region_origin=(-25, -25, -25), region_edge=50.0)
        tree.insert_all(bodies)

        for node in walk(tree.root):
            assert len(node.children) in (0, 8)
            if node.children:
                assert node.leaf_body is None
                assert node.count == sum(c.count for c in node.children)
            elif node.count == 1:
                assert node.leaf_body is not None
            else:
                assert node.count == 0
                assert node.leaf_body is None
        tree.validate()

    def test_containment(self):
        """Every body lies inside every node on its path."""
        bodies = uniform_cube(100, edge=10.0, rng=8)
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        tree.insert_all(bodies)

        for body in bodies:
            path = leaf_path(tree, body)
            assert path[-1].leaf_body is body
            for node in path:
                assert node.contains(body.position)

    def test_validate_detects_count_mismatch(self):
        """A corrupted count fails validation."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0)
        tree.insert_all([Body(1.0, Vector3(1.0, 1.0, 1.0)), Body(1.0, Vector3(7.0, 7.0, 7.0))])
        tree.root.count = 3

        with pytest.raises(InvariantViolationError, match="count"):
            tree.validate()

    def test_validate_detects_stray_body(self):
        """A branch holding a direct body fails validation."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0)
        a = Body(1.0, Vector3(1.0, 1.0, 1.0))
        tree.insert_all([a, Body(1.0, Vector3(7.0, 7.0, 7.0))])
        tree.root.leaf_body = a

        with pytest.raises(InvariantViolationError, match="direct body"):
            tree.validate()

    def test_validate_detects_partial_children(self):
        """A node with 1-7 children fails validation."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0)
        tree.insert_all([Body(1.0, Vector3(1.0, 1.0, 1.0)), Body(1.0, Vector3(7.0, 7.0, 7.0))])
        tree.root.children = tree.root.children[:3]

        with pytest.raises(InvariantViolationError, match="children"):
            tree.validate()

    def test_validate_detects_body_on_upper_face(self):
        """A leaf body on the excluded upper face fails validation."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0)
        tree.insert(Body(1.0, Vector3(1.0, 1.0, 1.0)))
        moved = Body(1.0, Vector3(8.0, 1.0, 1.0))
        tree.root.leaf_body = moved
        tree.root.aggregate = moved

        with pytest.raises(InvariantViolationError, match="outside"):
            tree.validate()


class TestOctreeErrors:
    """Out-of-bounds and invalid insertions fail hard."""

    def test_outside_root_raises(self):
        """A body outside the region is rejected."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        body = Body(1.0, Vector3(11.0, 5.0, 5.0))

        with pytest.raises(OutOfBoundsError) as excinfo:
            tree.insert(body)

        err = excinfo.value
        assert err.body is body
        assert err.origin == Vector3(0.0, 0.0, 0.0)
        assert err.edge_length == 10.0
        assert "11.0" in str(err)
        assert tree.count == 0

    def test_upper_boundary_raises(self):
        """The upper face of the region is outside the half-open cube."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        with pytest.raises(OutOfBoundsError):
            tree.insert(Body(1.0, Vector3(10.0, 0.0, 0.0)))

    def test_zero_mass_raises(self):
        """Only positive masses can be inserted."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        with pytest.raises(InvalidBodyError):
            tree.insert(Body(0.0, Vector3(1.0, 1.0, 1.0)))


class TestOctreeMerging:
    """Tests for the close-encounter merge policy during insertion."""

    def test_close_bodies_merge(self):
        """Two bodies within a merge radius become one leaf."""
        a = Body(1e30, Vector3(1000.0, 1000.0, 1000.0), Vector3(1.0, 0.0, 0.0))
        b = Body(1e30, Vector3(1100.0, 1000.0, 1000.0), Vector3(-3.0, 0.0, 0.0))
        tree = Octree(region_origin=(0, 0, 0), region_edge=1e4)
        tree.insert(a)
        tree.insert(b)

        assert tree.count == 1
        assert tree.root.is_leaf()
        merged = tree.root.leaf_body
        assert merged is not None
        assert merged.mass == 2e30
        assert merged.position.x == pytest.approx(1050.0)
        assert merged.velocity.x == pytest.approx(-1.0)
        assert tree.bodies() == [merged]
        tree.validate()

    def test_coincident_bodies_merge(self):
        """Bodies at the same position always merge."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        tree.insert(Body(1.0, Vector3(5.0, 5.0, 5.0)))
        tree.insert(Body(2.0, Vector3(5.0, 5.0, 5.0)))

        assert tree.count == 1
        assert tree.total_mass == 3.0
        assert tree.root.leaf_body.position == Vector3(5.0, 5.0, 5.0)

    def test_merged_body_splits_from_distant_body(self):
        """A merged leaf still splits when a distant body arrives."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=1e4)
        tree.insert(Body(1e30, Vector3(1000.0, 1000.0, 1000.0)))
        tree.insert(Body(1e30, Vector3(1100.0, 1000.0, 1000.0)))
        tree.insert(Body(1e30, Vector3(9000.0, 9000.0, 9000.0)))

        assert tree.count == 2
        assert tree.total_mass == pytest.approx(3e30)
        assert len(tree.root.children) == 8
        tree.validate()

    def test_merge_deep_in_tree(self):
        """Merges below the root keep ancestor counts exact."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=1e5)
        tree.insert(Body(1e30, Vector3(90000.0, 90000.0, 90000.0)))
        tree.insert(Body(1e30, Vector3(1000.0, 1000.0, 1000.0)))
        tree.insert(Body(1e30, Vector3(1100.0, 1000.0, 1000.0)))

        assert tree.count == 2
        assert tree.total_mass == pytest.approx(3e30)
        tree.validate()


class TestOctreeForce:
    """Tests for Barnes-Hut force evaluation."""

    def test_empty_tree_no_force(self):
        """An empty tree exerts no force."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        assert tree.force_on(Body(1.0, Vector3(5.0, 5.0, 5.0))) == Vector3.zero()

    def test_single_body_no_self_force(self):
        """A body feels no force from itself."""
        tree = Octree(region_origin=(0, 0, 0), region_edge=10.0)
        body = Body(1.0, Vector3(5.0, 5.0, 5.0))
        tree.insert(body)
        assert tree.force_on(body) == Vector3.zero()

    def test_two_body_force_is_exact(self):
        """With two bodies the tree force equals the direct force."""
        a = Body(2.0, Vector3(1.0, 2.0, 3.0))
        b = Body(5.0, Vector3(8.0, 6.0, 4.0))
        for theta in (0.1, 0.5, 1.0):
            tree = Octree(region_origin=(0, 0, 0), region_edge=10.0, opening_angle=theta, gravitational_constant=1.0)
            tree.insert_all([a, b])

            expected = gravitational_force(a, b, g=1.0)
            actual = tree.force_on(a)
            for u, v in zip(actual, expected):
                assert u == pytest.approx(v, rel=1e-12)

    def test_containing_node_is_opened(self):
        """A node whose cube holds the body is opened even when theta would accept it."""
        light = Body(1.0, Vector3(0.5, 0.5, 0.5))
        heavy = Body(3.0, Vector3(7.5, 7.5, 7.5))
        tree = Octree(region_origin=(0, 0, 0), region_edge=8.0, opening_angle=1.0, gravitational_constant=1.0)
        tree.insert_all([light, heavy])

        # The root aggregate sits about 9.1 away, so edge / distance < theta.
        root_distance = tree.root.aggregate.position.distance_to(light.position)
        assert tree.region_edge / root_distance < tree.opening_angle

        assert tree.force_on(light) == gravitational_force(light, heavy, g=1.0)

    def test_external_body(self):
        """Force on a body outside the tree is the sum of attractions."""
        a = Body(1.0, Vector3(1.0, 1.0, 1.0))
        b = Body(1.0, Vector3(3.0, 1.0, 1.0))
        tree = Octree(region_origin=(0, 0, 0), region_edge=4.0, opening_angle=0.01, gravitational_constant=1.0)
        tree.insert_all([a, b])

        target = Body(1.0, Vector3(2.0, 11.0, 1.0))
        f = tree.force_on(target)
        assert f.y < 0
        assert f.x == pytest.approx(0.0, abs=1e-15)

    def test_far_cluster_collapses(self):
        """A distant cluster acts as a point mass at its center of mass."""
        cluster = [
            Body(1.0, Vector3(1000.0, 1000.0, 1000.0)),
            Body(1.0, Vector3(1001.0, 1000.0, 1000.0)),
            Body(2.0, Vector3(1000.0, 1001.0, 1000.0)),
        ]
        target = Body(1.0, Vector3(1.0, 1.0, 1.0))
        tree = Octree(region_origin=(0, 0, 0), region_edge=1024.0, opening_angle=0.5, gravitational_constant=1.0)
        tree.insert_all(cluster + [target])

        aggregate = cluster[0].combined(cluster[1]).combined(cluster[2])
        expected = gravitational_force(target, aggregate, g=1.0)
        actual = tree.force_on(target)
        for u, v in zip(actual, expected):
            assert u == pytest.approx(v, rel=1e-9)

    def test_small_theta_matches_direct_sum(self):
        """A vanishing opening angle reproduces the exact pairwise sum."""
        bodies = uniform_cube(30, edge=100.0, masses=1.0, rng=2)
        tree = Octree(region_origin=(0, 0, 0), region_edge=100.0, opening_angle=1e-9, gravitational_constant=1.0)
        tree.insert_all(bodies)

        assert force_error(tree, bodies) < 1e-10

    def test_opening_angle_monotonicity(self):
        """Error against direct summation shrinks as theta decreases."""
        bodies = (
            uniform_cube(20, edge=6.0, origin=(2, 2, 2), rng=21)
            + uniform_cube(20, edge=6.0, origin=(1000, 1000, 1000), rng=22)
            + uniform_cube(20, edge=40.0, origin=(300, 900, 100), rng=23)
        )
        errors = []
        for theta in (1.0, 0.5, 0.1):
            tree = Octree(
                region_origin=(0, 0, 0),
                region_edge=1024.0,
                opening_angle=theta,
                gravitational_constant=1.0,
            )
            tree.insert_all(bodies)
            errors.append(force_error(tree, bodies))

        assert errors[0] >= errors[1] - 1e-12
        assert errors[1] >= errors[2] - 1e-12
        assert errors[2] < errors[0]

    def test_concurrent_queries_match_serial(self):
        """Force queries are read-only and deterministic across threads."""
        bodies = uniform_cube(50, edge=20.0, rng=4)
        tree = Octree(region_origin=(0, 0, 0), region_edge=20.0, gravitational_constant=1.0)
        tree.insert_all(bodies)

        serial = [tree.force_on(b) for b in bodies]
        with ThreadPoolExecutor(max_workers=4) as pool:
            parallel = list(pool.map(tree.force_on, bodies))
        assert parallel == serial

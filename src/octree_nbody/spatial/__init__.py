"""
Spatial data structures for efficient force calculations.

Provides the octree used for Barnes-Hut O(n log n) gravitational force
approximation.
"""

from .octree import Octree, OctreeNode, fit_region

__all__ = ["Octree", "OctreeNode", "fit_region"]

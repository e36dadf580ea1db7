"""
Geometry provider contract and its trimesh implementation.

The optimizer only needs read-only geometric queries: a placed object's
world-space mesh, its world AABB, and a batched "cast ray, get nearest hit
distance" query that ignores hits on the casting object.
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence, Tuple

import numpy as np
import trimesh
from scipy.spatial.transform import Rotation

from scene_synth.catalog import CatalogEntry, ObjectCatalog
from scene_synth.contracts import Aabb, PlacedObject
from scene_synth.errors import UngeometriedObjectError

logger = logging.getLogger(__name__)


def object_transform(obj: PlacedObject) -> np.ndarray:
    """4x4 local-to-world matrix: translate @ rotate @ scale."""
    matrix = np.eye(4)
    rot = Rotation.from_euler("xyz", obj.rotation, degrees=True).as_matrix()
    matrix[:3, :3] = rot @ np.diag(np.asarray(obj.scale, dtype=float))
    matrix[:3, 3] = obj.position
    return matrix


class RayScene(ABC):
    """Ray query over a fixed set of placed objects."""

    @abstractmethod
    def cast(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        max_distance: float,
        exclude: np.ndarray,
    ) -> np.ndarray:
        """Nearest hit distance per ray, ``inf`` where nothing is hit in range.

        ``exclude[i]`` is the index of the object that cast ray ``i``; hits on
        that object are ignored.
        """
        ...


class GeometryProvider(ABC):
    """Read-only geometric queries for placed objects."""

    @abstractmethod
    def world_mesh(self, obj: PlacedObject) -> trimesh.Trimesh:
        """World-space mesh. Raises UngeometriedObjectError without geometry.

        Returned meshes may be shared; callers must not modify them.
        """
        ...

    @abstractmethod
    def world_bounds(self, obj: PlacedObject) -> Aabb:
        ...

    @abstractmethod
    def ray_scene(self, objects: Sequence[PlacedObject]) -> RayScene:
        ...


class TrimeshRayScene(RayScene):
    """All world meshes concatenated into one trimesh for batched queries."""

    def __init__(self, meshes: Sequence[trimesh.Trimesh]):
        self._mesh = None
        self._owner = np.zeros(0, dtype=int)
        if meshes:
            self._mesh = trimesh.util.concatenate(list(meshes))
            self._owner = np.repeat(
                np.arange(len(meshes)), [len(m.faces) for m in meshes]
            )

    def cast(self, origins, directions, max_distance, exclude):
        origins = np.asarray(origins, dtype=float).reshape(-1, 3)
        directions = np.asarray(directions, dtype=float).reshape(-1, 3)
        exclude = np.asarray(exclude, dtype=int).reshape(-1)
        distances = np.full(len(origins), np.inf)
        if self._mesh is None or len(origins) == 0:
            return distances

        locations, index_ray, index_tri = self._mesh.ray.intersects_location(
            ray_origins=origins,
            ray_directions=directions,
            multiple_hits=True,
        )
        if len(index_ray) == 0:
            return distances

        hit_dist = np.linalg.norm(locations - origins[index_ray], axis=1)
        keep = (self._owner[index_tri] != exclude[index_ray]) & (hit_dist <= max_distance)
        np.minimum.at(distances, index_ray[keep], hit_dist[keep])
        return distances


class TrimeshGeometryProvider(GeometryProvider):
    """Geometry provider backed by an ObjectCatalog of trimesh meshes.

    World meshes and bounds are cached by pose; the cache is cleared when it
    reaches ``cache_size`` entries.
    """

    def __init__(self, catalog: ObjectCatalog, cache_size: int = 4096):
        self.catalog = catalog
        self._cache_size = max(1, int(cache_size))
        self._mesh_cache: Dict[Tuple, trimesh.Trimesh] = {}
        self._bounds_cache: Dict[Tuple, Aabb] = {}

    @staticmethod
    def _pose_key(obj: PlacedObject) -> Tuple:
        return (obj.type_name.lower(), obj.position, obj.rotation, obj.scale)

    def _entry(self, obj: PlacedObject) -> CatalogEntry:
        entry = self.catalog.get(obj.type_name)
        if entry is None or not entry.has_geometry:
            raise UngeometriedObjectError(
                f"Placed object {obj.uid} of type {obj.type_name!r} has no mesh geometry"
            )
        return entry

    def world_mesh(self, obj: PlacedObject) -> trimesh.Trimesh:
        key = self._pose_key(obj)
        cached = self._mesh_cache.get(key)
        if cached is not None:
            return cached

        mesh = self._entry(obj).mesh.copy()
        mesh.apply_transform(object_transform(obj))
        if len(self._mesh_cache) >= self._cache_size:
            self._mesh_cache.clear()
        self._mesh_cache[key] = mesh
        return mesh

    def world_bounds(self, obj: PlacedObject) -> Aabb:
        key = self._pose_key(obj)
        cached = self._bounds_cache.get(key)
        if cached is not None:
            return cached

        lo, hi = self._entry(obj).mesh.bounds
        corners = np.array([
            [x, y, z] for x in (lo[0], hi[0]) for y in (lo[1], hi[1]) for z in (lo[2], hi[2])
        ])
        world = trimesh.transformations.transform_points(corners, object_transform(obj))
        bounds = Aabb.from_points(world)
        if len(self._bounds_cache) >= self._cache_size:
            self._bounds_cache.clear()
        self._bounds_cache[key] = bounds
        return bounds

    def ray_scene(self, objects: Sequence[PlacedObject]) -> RayScene:
        meshes: List[trimesh.Trimesh] = [self.world_mesh(o) for o in objects]
        return TrimeshRayScene(meshes)

"""
Surface sampling and boundary-edge utilities for triangle meshes.

The sampler draws area-weighted points: triangles are chosen by binary search
on a cumulative-area prefix, so larger triangles receive proportionally more
samples, and points inside a triangle are uniform because draws that land in
the far half of the (u, v) parallelogram are folded back.
"""
from typing import Tuple

import numpy as np


def triangle_areas(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    tris = np.asarray(vertices, dtype=float)[np.asarray(faces, dtype=int)]
    if len(tris) == 0:
        return np.zeros(0)
    cross = np.cross(tris[:, 1] - tris[:, 0], tris[:, 2] - tris[:, 0])
    return 0.5 * np.linalg.norm(cross, axis=1)


def surface_area(vertices: np.ndarray, faces: np.ndarray) -> float:
    return float(triangle_areas(vertices, faces).sum())


def sample_triangle(
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    rng: np.random.Generator,
    count: int,
) -> np.ndarray:
    """Uniform points inside a triangle.

    The corners may be single vertices or ``(count, 3)`` arrays giving each
    point its own triangle.
    """
    v0, v1, v2 = (np.asarray(v, dtype=float) for v in (v0, v1, v2))
    u = rng.random(count)
    v = rng.random(count)
    fold = (u + v) > 1.0
    u[fold] = 1.0 - u[fold]
    v[fold] = 1.0 - v[fold]
    return v0 + u[:, None] * (v1 - v0) + v[:, None] * (v2 - v0)


def sample_surface(
    vertices: np.ndarray,
    faces: np.ndarray,
    rng: np.random.Generator,
    density: float = 1.0,
    max_samples: int = 200,
) -> Tuple[np.ndarray, np.ndarray]:
    """Area-weighted random points on a mesh surface.

    The count is ``min(ceil(density * area), max_samples)``. Every call draws
    a fresh independent set.

    Returns:
        (points (N, 3), face_index (N,)) with the source triangle of each point.
    """
    vertices = np.asarray(vertices, dtype=float)
    faces = np.asarray(faces, dtype=int).reshape(-1, 3)
    areas = triangle_areas(vertices, faces)
    if len(areas) == 0:
        return np.zeros((0, 3)), np.zeros(0, dtype=int)

    cumulative = np.cumsum(areas)
    total = float(cumulative[-1])
    if total <= 0.0:
        return np.zeros((0, 3)), np.zeros(0, dtype=int)

    count = int(min(np.ceil(density * total), max_samples))
    if count <= 0:
        return np.zeros((0, 3)), np.zeros(0, dtype=int)

    r = rng.uniform(0.0, total, size=count)
    # first triangle whose cumulative area >= r
    face_index = np.searchsorted(cumulative, r, side="left")
    face_index = np.minimum(face_index, len(areas) - 1)

    tris = vertices[faces[face_index]]
    points = sample_triangle(tris[:, 0], tris[:, 1], tris[:, 2], rng, count)
    return points, face_index


def boundary_edges(faces: np.ndarray) -> np.ndarray:
    """Unordered vertex-index pairs used by exactly one triangle.

    Returns:
        (M, 2) array of sorted vertex index pairs.
    """
    faces = np.asarray(faces, dtype=int).reshape(-1, 3)
    if len(faces) == 0:
        return np.zeros((0, 2), dtype=int)
    edges = faces[:, [0, 1, 1, 2, 2, 0]].reshape(-1, 2)
    edges = np.sort(edges, axis=1)
    unique, counts = np.unique(edges, axis=0, return_counts=True)
    return unique[counts == 1]


def boundary_length(vertices: np.ndarray, faces: np.ndarray) -> float:
    edges = boundary_edges(faces)
    if len(edges) == 0:
        return 0.0
    vertices = np.asarray(vertices, dtype=float)
    seg = vertices[edges[:, 1]] - vertices[edges[:, 0]]
    return float(np.linalg.norm(seg, axis=1).sum())

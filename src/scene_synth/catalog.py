"""
Catalog of placeable object types.

Each entry pairs a type name with a trimesh mesh in local space (Y up, base
resting on y=0). Lookups are case-insensitive so persisted scenes round-trip
regardless of how names were capitalised when they were written.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np
import trimesh

from scene_synth.errors import CatalogError, SceneLoadError

logger = logging.getLogger(__name__)

MESH_EXTENSIONS = (".stl", ".obj", ".ply", ".glb", ".gltf", ".off")


@dataclass
class CatalogEntry:
    """A placeable type. ``mesh`` is None when the source had no geometry."""

    name: str
    mesh: Optional[trimesh.Trimesh]
    source: str = "primitive"

    @property
    def has_geometry(self) -> bool:
        return self.mesh is not None and len(self.mesh.faces) > 0


class ObjectCatalog:
    """Ordered collection of placeable types."""

    def __init__(self, entries: Sequence[CatalogEntry]):
        if not entries:
            raise CatalogError("Object catalog is empty")
        self._entries: List[CatalogEntry] = list(entries)
        self._lookup: Dict[str, CatalogEntry] = {}
        for entry in self._entries:
            key = entry.name.lower()
            if key in self._lookup:
                logger.warning("Duplicate catalog name %r; keeping the first", entry.name)
                continue
            self._lookup[key] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._lookup

    @property
    def names(self) -> List[str]:
        return [e.name for e in self._entries]

    def get(self, name: str) -> Optional[CatalogEntry]:
        return self._lookup.get(name.lower())

    def resolve(self, name: str) -> CatalogEntry:
        entry = self.get(name)
        if entry is None:
            raise CatalogError(f"Unknown object type: {name!r}")
        return entry

    def random_entry(self, rng: np.random.Generator) -> CatalogEntry:
        return self._entries[int(rng.integers(len(self._entries)))]

    @classmethod
    def from_directory(
        cls,
        directory: str,
        extensions: Sequence[str] = MESH_EXTENSIONS,
        ground: bool = True,
    ) -> "ObjectCatalog":
        """Load every mesh file in *directory*; the file stem is the type name.

        Files that load without faces are kept as geometry-less entries so that
        evaluation fails loudly instead of scoring them as empty.
        """
        root = Path(directory)
        if not root.is_dir():
            raise SceneLoadError(f"Catalog directory not found: {directory}")

        entries: List[CatalogEntry] = []
        for path in sorted(root.iterdir()):
            if path.suffix.lower() not in extensions:
                continue
            try:
                loaded = trimesh.load(str(path), force="mesh")
            except Exception as exc:
                logger.warning("Could not load %s: %s", path.name, exc)
                entries.append(CatalogEntry(path.stem, None, source=str(path)))
                continue
            mesh = loaded if isinstance(loaded, trimesh.Trimesh) else None
            if mesh is not None and len(mesh.faces) > 0 and ground:
                mesh = ground_mesh(mesh)
            entries.append(CatalogEntry(path.stem, mesh, source=str(path)))

        logger.info("Loaded %d catalog types from %s", len(entries), root)
        return cls(entries)


def ground_mesh(mesh: trimesh.Trimesh) -> trimesh.Trimesh:
    """Copy of *mesh* centred on x/z with its lowest point at y=0."""
    grounded = mesh.copy()
    lo, hi = grounded.bounds
    grounded.apply_translation([-(lo[0] + hi[0]) * 0.5, -lo[1], -(lo[2] + hi[2]) * 0.5])
    return grounded


def _y_up_cylinder(radius: float, height: float) -> trimesh.Trimesh:
    # trimesh builds cylinders along Z
    mesh = trimesh.creation.cylinder(radius=radius, height=height, sections=24)
    mesh.apply_transform(trimesh.transformations.rotation_matrix(-np.pi / 2, [1, 0, 0]))
    return mesh


def _open_top_box(extents: Sequence[float]) -> trimesh.Trimesh:
    """Box with its top face removed; the rim is a boundary loop."""
    box = trimesh.creation.box(extents=extents)
    keep = box.face_normals[:, 1] < 0.9
    return trimesh.Trimesh(vertices=box.vertices, faces=box.faces[keep], process=False)


def primitive_catalog() -> ObjectCatalog:
    """Small built-in catalog of closed and open primitives."""
    meshes = {
        "crate": trimesh.creation.box(extents=[0.8, 0.8, 0.8]),
        "cabinet": trimesh.creation.box(extents=[1.0, 1.8, 0.5]),
        "barrel": _y_up_cylinder(radius=0.35, height=0.9),
        "ball": trimesh.creation.icosphere(subdivisions=2, radius=0.3),
        "open_bin": _open_top_box([0.6, 0.6, 0.6]),
    }
    return ObjectCatalog([
        CatalogEntry(name, ground_mesh(mesh)) for name, mesh in meshes.items()
    ])

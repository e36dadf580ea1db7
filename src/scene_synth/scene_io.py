"""
Persisted scene records.

On-disk layout (JSON):

    {
      "sceneName": "Optimized Scene",
      "objects": [{"name": "crate", "position": {"x":..,"y":..,"z":..},
                   "rotation": {...}, "scale": {...}}],
      "lights":  [{"position": {...}, "intensity": 1.0}]
    }

Vectors are written as ``{"x", "y", "z"}`` objects; three-element lists are
also accepted on load. Object names are matched against the catalog
case-insensitively and written back with the catalog's spelling.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import trimesh

from scene_synth.catalog import ObjectCatalog
from scene_synth.contracts import PlacedLight, PlacedObject, SynthConfig, Vec3
from scene_synth.errors import SceneLoadError
from scene_synth.geometry import GeometryProvider
from scene_synth.scene_state import SceneState

logger = logging.getLogger(__name__)

DEFAULT_SCENE_NAME = "Optimized Scene"


@dataclass
class LoadReport:
    scene_name: str = ""
    loaded_objects: int = 0
    loaded_lights: int = 0
    skipped_objects: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


def vector_to_record(vec: Vec3) -> Dict[str, float]:
    return {"x": float(vec[0]), "y": float(vec[1]), "z": float(vec[2])}


def vector_from_record(value: Any, default: Optional[Vec3] = None) -> Vec3:
    if value is None:
        if default is None:
            raise SceneLoadError("Missing vector")
        return default
    try:
        if isinstance(value, dict):
            return (float(value["x"]), float(value["y"]), float(value["z"]))
        if isinstance(value, (list, tuple)) and len(value) == 3:
            return (float(value[0]), float(value[1]), float(value[2]))
    except (KeyError, TypeError, ValueError) as exc:
        raise SceneLoadError(f"Malformed vector {value!r}: {exc}") from exc
    raise SceneLoadError(f"Malformed vector {value!r}")


def scene_to_record(
    state: SceneState,
    catalog: Optional[ObjectCatalog] = None,
    scene_name: str = DEFAULT_SCENE_NAME,
) -> Dict[str, Any]:
    objects = []
    for obj in state.objects:
        name = obj.type_name
        if catalog is not None:
            entry = catalog.get(name)
            if entry is not None:
                name = entry.name
        objects.append({
            "name": name,
            "position": vector_to_record(obj.position),
            "rotation": vector_to_record(obj.rotation),
            "scale": vector_to_record(obj.scale),
        })
    lights = [
        {"position": vector_to_record(l.position), "intensity": float(l.intensity)}
        for l in state.lights
    ]
    return {"sceneName": scene_name, "objects": objects, "lights": lights}


def scene_from_record(
    record: Dict[str, Any],
    config: SynthConfig,
    catalog: ObjectCatalog,
) -> Tuple[SceneState, LoadReport]:
    """Build a SceneState from a parsed record.

    Entries naming unknown catalog types, and lights with non-positive
    intensity, are skipped and reported. A record that is not a JSON object
    or whose lists have the wrong shape raises SceneLoadError.
    """
    if not isinstance(record, dict):
        raise SceneLoadError("Scene record must be a JSON object")
    report = LoadReport(scene_name=str(record.get("sceneName") or ""))

    raw_objects = record.get("objects") or []
    raw_lights = record.get("lights") or []
    if not isinstance(raw_objects, list) or not isinstance(raw_lights, list):
        raise SceneLoadError("'objects' and 'lights' must be lists")

    objects: List[PlacedObject] = []
    for index, item in enumerate(raw_objects):
        if not isinstance(item, dict) or "name" not in item:
            raise SceneLoadError(f"Object entry {index} has no name")
        name = str(item["name"])
        entry = catalog.get(name)
        if entry is None:
            report.skipped_objects.append(name)
            report.warn(f"Object type {name!r} not found in catalog; skipped")
            continue
        objects.append(PlacedObject(
            type_name=entry.name,
            position=vector_from_record(item.get("position")),
            rotation=vector_from_record(item.get("rotation"), (0.0, 0.0, 0.0)),
            scale=vector_from_record(item.get("scale"), (1.0, 1.0, 1.0)),
        ))

    lights: List[PlacedLight] = []
    for index, item in enumerate(raw_lights):
        if not isinstance(item, dict):
            raise SceneLoadError(f"Light entry {index} is not an object")
        try:
            intensity = float(item.get("intensity", 1.0))
        except (TypeError, ValueError) as exc:
            raise SceneLoadError(f"Light entry {index} has a bad intensity") from exc
        if intensity <= 0.0:
            report.warn(f"Light {index} has non-positive intensity {intensity}; skipped")
            continue
        lights.append(PlacedLight(vector_from_record(item.get("position")), intensity))

    report.loaded_objects = len(objects)
    report.loaded_lights = len(lights)
    n = len(objects)
    if n < config.min_objects or n > config.max_objects:
        report.warn(
            f"Loaded {n} objects, outside the configured range "
            f"[{config.min_objects}, {config.max_objects}]"
        )
    return SceneState(config, objects, lights), report


def load_scene(
    path: str,
    config: SynthConfig,
    catalog: ObjectCatalog,
) -> Tuple[SceneState, LoadReport]:
    scene_path = Path(path)
    if not scene_path.is_file():
        raise SceneLoadError(f"Scene file not found: {path}")
    try:
        record = json.loads(scene_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SceneLoadError(f"Scene file {path} is not valid JSON: {exc}") from exc

    state, report = scene_from_record(record, config, catalog)
    logger.info(
        "Loaded scene %r from %s: %d objects, %d lights, %d skipped",
        report.scene_name, scene_path, report.loaded_objects,
        report.loaded_lights, len(report.skipped_objects),
    )
    return state, report


def save_scene(
    state: SceneState,
    path: str,
    catalog: Optional[ObjectCatalog] = None,
    scene_name: str = DEFAULT_SCENE_NAME,
) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    record = scene_to_record(state, catalog, scene_name)
    out.write_text(json.dumps(record, indent=4), encoding="utf-8")
    logger.info("Scene saved to %s", out)
    return out


def export_scene_mesh(state: SceneState, provider: GeometryProvider, path: str) -> Path:
    """Write the placed objects as one mesh file (format from the suffix)."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    scene = trimesh.Scene()
    for obj in state.objects:
        scene.add_geometry(
            provider.world_mesh(obj).copy(),
            node_name=f"{obj.type_name}_{obj.uid}",
        )
    scene.export(str(out))
    logger.info("Exported %d objects to %s", len(state.objects), out)
    return out

"""
Scene state: placed objects and lights plus cached evaluation scores.

A SceneState owns no engine resources. Geometry is queried through a
GeometryProvider for the duration of an evaluate() call only.

Evaluators (all non-negative):
1. Holes: boundary-edge length per unit surface area, saturated into [0, 1].
2. Lighting: squared excess irradiance outside [darkness, saturation].
3. Occlusion: 1 - mean ray visibility from surface samples.
4. Constraint penalties: count deviation, pairwise overlap, out-of-room distance.
"""
import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from scene_synth.catalog import ObjectCatalog
from scene_synth.contracts import (
    Aabb,
    PlacedLight,
    PlacedObject,
    SceneScores,
    SynthConfig,
    to_vec3,
)
from scene_synth.errors import ScoresNotEvaluatedError
from scene_synth.geometry import GeometryProvider
from scene_synth.mesh_sampler import boundary_length, sample_surface, surface_area

logger = logging.getLogger(__name__)

_EPS = 1e-6
# Irradiance distances are floored so a light touching a vertex stays finite.
_MIN_LIGHT_DISTANCE = 1e-3


class SceneState:
    """Mutable layout of objects and lights inside the room."""

    def __init__(
        self,
        config: SynthConfig,
        objects: Optional[Sequence[PlacedObject]] = None,
        lights: Optional[Sequence[PlacedLight]] = None,
    ):
        self.config = config
        self.objects: List[PlacedObject] = list(objects or [])
        self.lights: List[PlacedLight] = list(lights or [])
        self.generation = 0
        self._scores: Optional[SceneScores] = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create_random(
        cls,
        config: SynthConfig,
        catalog: ObjectCatalog,
        provider: GeometryProvider,
        rng: np.random.Generator,
    ) -> "SceneState":
        """Random layout that already passes the hard-constraint filter.

        Each object is retried up to ``placement_attempts`` times against the
        room and the objects placed so far; objects that never fit are dropped
        with a warning.
        """
        state = cls(config)
        room_box = config.room.as_aabb()
        placed_bounds: List[Aabb] = []
        target = config.initial_object_count
        attempts = config.mutation.placement_attempts

        for _ in range(target):
            for _ in range(attempts):
                candidate = random_object(config, catalog, rng)
                bounds = provider.world_bounds(candidate)
                if not bounds.intersects(room_box):
                    continue
                if any(bounds.intersects(other) for other in placed_bounds):
                    continue
                state.objects.append(candidate)
                placed_bounds.append(bounds)
                break
            else:
                logger.warning(
                    "Could not place object %d/%d without collisions after %d attempts",
                    len(state.objects) + 1, target, attempts,
                )

        lo, hi = config.mutation.initial_intensity_range
        margin = config.mutation.light_vertical_margin
        for _ in range(config.init_lights):
            position = config.room.random_light_point(rng, margin)
            state.lights.append(
                PlacedLight(to_vec3(position), float(rng.uniform(lo, hi)))
            )

        logger.info(
            "Random scene: %d objects (target %d), %d lights",
            len(state.objects), target, len(state.lights),
        )
        return state

    def clone(self) -> "SceneState":
        """Copy sharing the immutable object/light records, one generation newer."""
        copy = SceneState(self.config, self.objects, self.lights)
        copy.generation = self.generation + 1
        copy._scores = self._scores
        return copy

    # ------------------------------------------------------------------
    # Score cache
    # ------------------------------------------------------------------

    @property
    def is_evaluated(self) -> bool:
        return self._scores is not None

    @property
    def scores(self) -> SceneScores:
        if self._scores is None:
            raise ScoresNotEvaluatedError(
                f"Scene generation {self.generation} changed since its last evaluation"
            )
        return self._scores

    def mark_dirty(self) -> None:
        self._scores = None

    def snapshot_scores(self) -> Optional[SceneScores]:
        return self._scores

    def restore_scores(self, scores: Optional[SceneScores]) -> None:
        self._scores = scores

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, provider: GeometryProvider, rng: np.random.Generator) -> SceneScores:
        """Run all evaluators and cache the result."""
        count_penalty, intersection_penalty, bounds_penalty = self.evaluate_penalties(provider)
        self._scores = SceneScores(
            holes=self.evaluate_holes(provider),
            lighting=self.evaluate_lighting(provider, rng),
            occlusion=self.evaluate_occlusion(provider, rng),
            intersection_penalty=intersection_penalty,
            bounds_penalty=bounds_penalty,
            count_penalty=count_penalty,
        )
        return self._scores

    def evaluate_holes(self, provider: GeometryProvider) -> float:
        """Saturated ratio of open boundary length to surface area."""
        total_boundary = 0.0
        total_area = 0.0
        for obj in self.objects:
            mesh = provider.world_mesh(obj)
            total_area += surface_area(mesh.vertices, mesh.faces)
            total_boundary += boundary_length(mesh.vertices, mesh.faces)
        if total_area <= 0.0:
            return 0.0
        ratio = total_boundary / max(total_area, _EPS)
        return float(1.0 - np.exp(-ratio * self.config.sampling.holes_scale))

    def evaluate_lighting(self, provider: GeometryProvider, rng: np.random.Generator) -> float:
        """Mean squared irradiance excess over vertex samples, clamped to [0, 1]."""
        sampling = self.config.sampling
        if not self.objects:
            return 0.0

        if self.lights:
            light_pos = np.array([l.position for l in self.lights], dtype=float)
            light_int = np.array([l.intensity for l in self.lights], dtype=float)
        else:
            light_pos = np.zeros((0, 3))
            light_int = np.zeros(0)

        object_scores = []
        for obj in self.objects:
            mesh = provider.world_mesh(obj)
            n_vertices = len(mesh.vertices)
            if n_vertices == 0:
                continue
            take = min(n_vertices, sampling.max_samples)
            idx = rng.choice(n_vertices, size=take, replace=False)
            points = np.asarray(mesh.vertices)[idx]
            normals = np.asarray(mesh.vertex_normals)[idx]

            to_light = light_pos[None, :, :] - points[:, None, :]  # (S, K, 3)
            dist = np.maximum(np.linalg.norm(to_light, axis=2), _MIN_LIGHT_DISTANCE)
            n_dot_l = np.einsum("skc,sc->sk", to_light, normals) / dist
            irradiance = np.where(
                n_dot_l > 0.0, n_dot_l * light_int[None, :] / dist**2, 0.0
            ).sum(axis=1)

            over = np.maximum(irradiance - sampling.light_saturation, 0.0)
            under = np.maximum(sampling.light_darkness - irradiance, 0.0)
            object_scores.append(float(np.mean(over**2 + under**2)))

        if not object_scores:
            return 0.0
        return float(np.clip(np.mean(object_scores), 0.0, 1.0))

    def evaluate_occlusion(self, provider: GeometryProvider, rng: np.random.Generator) -> float:
        """1 - mean visibility of hemisphere rays cast from surface samples.

        A ray hitting another object within ``occlusion_range`` contributes
        visibility ``exp(-alpha * distance)``; a miss contributes 1.
        """
        sampling = self.config.sampling
        if not self.objects or sampling.ray_count <= 0:
            return 0.0

        origins, directions, owners = [], [], []
        for idx, obj in enumerate(self.objects):
            mesh = provider.world_mesh(obj)
            points, face_index = sample_surface(
                mesh.vertices, mesh.faces, rng,
                density=sampling.sample_density,
                max_samples=sampling.max_samples,
            )
            if len(points) == 0:
                logger.debug("No surface samples for %s; skipped for occlusion", obj.type_name)
                continue
            normals = np.asarray(mesh.face_normals)[face_index]
            dirs = hemisphere_directions(normals, sampling.ray_count, rng)  # (S, R, 3)
            ray_origins = points[:, None, :] + dirs * sampling.ray_offset
            origins.append(ray_origins.reshape(-1, 3))
            directions.append(dirs.reshape(-1, 3))
            owners.append(np.full(len(points) * sampling.ray_count, idx))

        if not origins:
            return 0.0

        ray_scene = provider.ray_scene(self.objects)
        owner = np.concatenate(owners)
        distances = ray_scene.cast(
            np.concatenate(origins),
            np.concatenate(directions),
            sampling.occlusion_range,
            owner,
        )
        hit = np.isfinite(distances)
        visibility = np.ones(len(distances))
        visibility[hit] = np.exp(-sampling.occlusion_alpha * distances[hit])

        per_object = [
            float(visibility[owner == idx].mean()) for idx in np.unique(owner)
        ]
        return float(np.clip(1.0 - np.mean(per_object), 0.0, 1.0))

    def evaluate_penalties(self, provider: GeometryProvider) -> Tuple[float, float, float]:
        """(count_penalty, intersection_penalty, bounds_penalty)."""
        config = self.config
        span = max(config.max_objects - config.min_objects, 1)
        count_penalty = ((len(self.objects) - config.ideal_object_count) / span) ** 2

        bounds = self.object_bounds(provider)
        intersection_penalty = 0.0
        for i in range(len(bounds)):
            for j in range(i + 1, len(bounds)):
                if not bounds[i].intersects(bounds[j]):
                    continue
                reach = (
                    np.linalg.norm(bounds[i].half_extents)
                    + np.linalg.norm(bounds[j].half_extents)
                )
                gap = np.linalg.norm(bounds[i].center - bounds[j].center)
                intersection_penalty += max(0.0, float(reach - gap)) ** 2

        room_box = config.room.as_aabb()
        bounds_penalty = sum(room_box.distance_to_point(o.position) ** 2 for o in self.objects)
        bounds_penalty += sum(room_box.distance_to_point(l.position) ** 2 for l in self.lights)
        return float(count_penalty), float(intersection_penalty), float(bounds_penalty)

    # ------------------------------------------------------------------
    # Hard constraints
    # ------------------------------------------------------------------

    def object_bounds(self, provider: GeometryProvider) -> List[Aabb]:
        return [provider.world_bounds(o) for o in self.objects]

    def constraint_violations(self, provider: GeometryProvider) -> List[str]:
        """Human-readable list of violated hard constraints (empty = valid).

        Objects need only intersect the room, not be fully contained in it.
        """
        config = self.config
        violations: List[str] = []
        n = len(self.objects)
        if n < config.min_objects or n > config.max_objects:
            violations.append(
                f"object count {n} outside [{config.min_objects}, {config.max_objects}]"
            )

        room_box = config.room.as_aabb()
        bounds = self.object_bounds(provider)
        for obj, box in zip(self.objects, bounds):
            if not box.intersects(room_box):
                violations.append(f"object {obj.type_name}#{obj.uid} outside room")

        for i in range(n):
            for j in range(i + 1, n):
                if bounds[i].intersects(bounds[j]):
                    violations.append(
                        f"objects {self.objects[i].type_name}#{self.objects[i].uid} and "
                        f"{self.objects[j].type_name}#{self.objects[j].uid} intersect"
                    )

        for k, light in enumerate(self.lights):
            if not room_box.contains_point(light.position):
                violations.append(f"light {k} outside room at {light.position}")

        for message in violations:
            logger.debug("Hard constraint: %s", message)
        return violations

    def is_valid(self, provider: GeometryProvider) -> bool:
        return not self.constraint_violations(provider)

    def __repr__(self) -> str:
        return (
            f"SceneState(gen={self.generation}, objects={len(self.objects)}, "
            f"lights={len(self.lights)}, evaluated={self.is_evaluated})"
        )


def random_object(
    config: SynthConfig,
    catalog: ObjectCatalog,
    rng: np.random.Generator,
) -> PlacedObject:
    """Random catalog type on the floor with a random yaw."""
    entry = catalog.random_entry(rng)
    position = config.room.random_floor_point(rng)
    return PlacedObject(
        type_name=entry.name,
        position=to_vec3(position),
        rotation=(0.0, float(rng.uniform(0.0, 360.0)), 0.0),
    )


def hemisphere_directions(
    normals: np.ndarray,
    count: int,
    rng: np.random.Generator,
) -> np.ndarray:
    """``count`` unit directions per normal, reflected into its outward hemisphere.

    Directions are uniform on the sphere; any that point into the surface are
    mirrored across the tangent plane.

    Returns:
        (S, count, 3) array.
    """
    normals = np.asarray(normals, dtype=float).reshape(-1, 3)
    dirs = rng.normal(size=(len(normals), count, 3))
    dirs /= np.maximum(np.linalg.norm(dirs, axis=2, keepdims=True), _EPS)
    dots = np.einsum("src,sc->sr", dirs, normals)
    inward = dots < 0.0
    dirs[inward] -= 2.0 * dots[inward][:, None] * np.broadcast_to(
        normals[:, None, :], dirs.shape
    )[inward]
    return dirs

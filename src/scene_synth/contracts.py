"""Contracts for difficulty-targeted scene synthesis."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]


class ConstraintMode(Enum):
    """How physical constraints gate proposals."""

    HARD_REJECT = "hard_reject"  # invalid proposals are discarded before costing
    SOFT_PENALTY = "soft_penalty"  # invalid proposals are costed with penalties


class ProposalStrategy(Enum):
    """How a proposal is derived from the current state."""

    CLONE = "clone"  # mutate a copy, drop it on rejection
    IN_PLACE = "in_place"  # mutate the current state, revert on rejection


class ConvergenceMode(Enum):
    """Trailing-window convergence test used by the annealer."""

    MEAN_STEP = "mean_step"  # mean |step-to-step change| and temperature floor
    RELATIVE_RANGE = "relative_range"  # (max - min) / |mean| of the window


def to_vec3(values: Sequence[float]) -> Vec3:
    return (float(values[0]), float(values[1]), float(values[2]))


def new_object_uid() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Aabb:
    """World-space axis-aligned bounding box."""

    min_corner: Vec3
    max_corner: Vec3

    @classmethod
    def from_points(cls, points) -> "Aabb":
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        return cls(to_vec3(pts.min(axis=0)), to_vec3(pts.max(axis=0)))

    @property
    def center(self) -> np.ndarray:
        return (np.asarray(self.min_corner) + np.asarray(self.max_corner)) * 0.5

    @property
    def half_extents(self) -> np.ndarray:
        return (np.asarray(self.max_corner) - np.asarray(self.min_corner)) * 0.5

    def intersects(self, other: "Aabb") -> bool:
        """Inclusive overlap test; touching faces count as intersecting."""
        a_min, a_max = np.asarray(self.min_corner), np.asarray(self.max_corner)
        b_min, b_max = np.asarray(other.min_corner), np.asarray(other.max_corner)
        return bool(np.all(a_min <= b_max) and np.all(b_min <= a_max))

    def contains_point(self, point: Sequence[float]) -> bool:
        p = np.asarray(point, dtype=float)
        return bool(
            np.all(p >= np.asarray(self.min_corner))
            and np.all(p <= np.asarray(self.max_corner))
        )

    def distance_to_point(self, point: Sequence[float]) -> float:
        """Euclidean distance from *point* to the box (0 inside)."""
        p = np.asarray(point, dtype=float)
        below = np.asarray(self.min_corner) - p
        above = p - np.asarray(self.max_corner)
        excess = np.maximum(np.maximum(below, above), 0.0)
        return float(np.linalg.norm(excess))


@dataclass(frozen=True)
class RoomBounds:
    """The room as a center and full edge lengths. Y is up."""

    center: Vec3 = (0.0, 2.0, 0.0)
    size: Vec3 = (10.0, 4.0, 10.0)

    @property
    def half_extents(self) -> np.ndarray:
        return np.asarray(self.size, dtype=float) * 0.5

    @property
    def min_corner(self) -> np.ndarray:
        return np.asarray(self.center, dtype=float) - self.half_extents

    @property
    def max_corner(self) -> np.ndarray:
        return np.asarray(self.center, dtype=float) + self.half_extents

    @property
    def floor_y(self) -> float:
        return float(self.min_corner[1])

    def as_aabb(self) -> Aabb:
        return Aabb(to_vec3(self.min_corner), to_vec3(self.max_corner))

    def clamp(self, point: Sequence[float], vertical_margin: float = 0.0) -> np.ndarray:
        lo = self.min_corner.copy()
        hi = self.max_corner.copy()
        lo[1] += vertical_margin
        hi[1] -= vertical_margin
        return np.clip(np.asarray(point, dtype=float), lo, hi)

    def random_floor_point(self, rng: np.random.Generator) -> np.ndarray:
        lo, hi = self.min_corner, self.max_corner
        return np.array([
            rng.uniform(lo[0], hi[0]),
            self.floor_y,
            rng.uniform(lo[2], hi[2]),
        ])

    def random_light_point(
        self, rng: np.random.Generator, vertical_margin: float
    ) -> np.ndarray:
        lo, hi = self.min_corner, self.max_corner
        return np.array([
            rng.uniform(lo[0], hi[0]),
            rng.uniform(lo[1] + vertical_margin, hi[1] - vertical_margin),
            rng.uniform(lo[2], hi[2]),
        ])


@dataclass(frozen=True)
class PlacedObject:
    """One catalog object placed in the room.

    ``uid`` is a stable identity that survives swaps and re-typing; list
    position inside a scene is only a container detail.
    """

    type_name: str
    position: Vec3
    rotation: Vec3 = (0.0, 0.0, 0.0)  # Euler degrees, extrinsic XYZ
    scale: Vec3 = (1.0, 1.0, 1.0)
    uid: str = field(default_factory=new_object_uid)


@dataclass(frozen=True)
class PlacedLight:
    """A point light."""

    position: Vec3
    intensity: float


@dataclass(frozen=True)
class SceneScores:
    """Raw evaluator outputs cached on a SceneState."""

    holes: float
    lighting: float
    occlusion: float
    intersection_penalty: float
    bounds_penalty: float
    count_penalty: float

    def to_dict(self) -> Dict[str, float]:
        return {k: float(v) for k, v in asdict(self).items()}


@dataclass(frozen=True)
class DifficultyTargets:
    """User difficulty levels on a 1-10 scale."""

    holes: int = 5
    lighting: int = 5
    occlusion: int = 5

    @property
    def holes_fraction(self) -> float:
        return self.holes / 10.0

    @property
    def lighting_fraction(self) -> float:
        return self.lighting / 10.0

    @property
    def occlusion_fraction(self) -> float:
        return self.occlusion / 10.0


@dataclass(frozen=True)
class AnnealingSettings:
    initial_temperature: float = 1.0
    cooling_rate: float = 0.99
    max_iterations: int = 4000
    convergence_mode: ConvergenceMode = ConvergenceMode.MEAN_STEP
    convergence_window: int = 100
    convergence_threshold: float = 1e-4
    temperature_floor: float = 1e-2  # MEAN_STEP only
    max_proposal_retries: int = 1000
    progress_interval: int = 100

    @classmethod
    def relative_range(cls, **overrides) -> "AnnealingSettings":
        """Settings for the windowed relative-range convergence test."""
        values = dict(
            convergence_mode=ConvergenceMode.RELATIVE_RANGE,
            convergence_window=50,
            convergence_threshold=0.05,
        )
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class CostWeights:
    holes: float = 1.0
    lighting: float = 1.0
    occlusion: float = 1.0
    count: float = 0.2
    intersection: float = 1.0
    bounds: float = 0.5


@dataclass(frozen=True)
class SamplingSettings:
    sample_density: float = 1.0  # surface samples per unit area
    max_samples: int = 200  # per object, for lighting and occlusion
    ray_count: int = 12
    ray_offset: float = 0.01
    occlusion_alpha: float = 1.0
    occlusion_range: float = 2.0
    holes_scale: float = 1.0
    light_saturation: float = 1.0
    light_darkness: float = 0.05


@dataclass(frozen=True)
class MutationSettings:
    position_nudge: float = 1.0
    light_nudge: float = 1.0
    light_nudge_y: float = 0.5
    intensity_nudge: float = 0.2
    min_light_intensity: float = 0.05
    max_light_intensity: float = 5.0
    light_vertical_margin: float = 0.5
    initial_intensity_range: Tuple[float, float] = (0.5, 2.0)
    placement_attempts: int = 50


@dataclass(frozen=True)
class SynthConfig:
    """Run-scoped constants for one optimization run."""

    room: RoomBounds = field(default_factory=RoomBounds)
    min_objects: int = 4
    max_objects: int = 25
    init_objects: Optional[int] = None  # None -> ideal count for the occlusion target
    init_lights: int = 2
    targets: DifficultyTargets = field(default_factory=DifficultyTargets)
    annealing: AnnealingSettings = field(default_factory=AnnealingSettings)
    weights: CostWeights = field(default_factory=CostWeights)
    sampling: SamplingSettings = field(default_factory=SamplingSettings)
    mutation: MutationSettings = field(default_factory=MutationSettings)
    constraint_mode: ConstraintMode = ConstraintMode.HARD_REJECT
    proposal_strategy: ProposalStrategy = ProposalStrategy.CLONE

    def __post_init__(self) -> None:
        if self.min_objects < 0 or self.min_objects > self.max_objects:
            raise ValueError(
                f"Invalid object count range [{self.min_objects}, {self.max_objects}]"
            )
        for name in ("holes", "lighting", "occlusion"):
            level = getattr(self.targets, name)
            if not 1 <= level <= 10:
                raise ValueError(f"Target {name} difficulty must be in 1..10, got {level}")
        if not 0.0 < self.annealing.cooling_rate < 1.0:
            raise ValueError(
                f"cooling_rate must be in (0, 1), got {self.annealing.cooling_rate}"
            )
        if self.annealing.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.annealing.convergence_window < 2:
            raise ValueError("convergence_window must be at least 2")
        if self.annealing.max_proposal_retries < 1:
            raise ValueError("max_proposal_retries must be at least 1")
        for name, weight in asdict(self.weights).items():
            if weight < 0:
                raise ValueError(f"Cost weight {name} must be non-negative, got {weight}")
        if np.any(np.asarray(self.room.size) <= 0):
            raise ValueError(f"Room size must be positive, got {self.room.size}")
        if self.sampling.max_samples < 1:
            raise ValueError(f"max_samples must be at least 1, got {self.sampling.max_samples}")
        if self.sampling.ray_count < 0:
            raise ValueError(f"ray_count must be non-negative, got {self.sampling.ray_count}")
        lo, hi = self.mutation.initial_intensity_range
        if not 0 < lo <= hi:
            raise ValueError(f"Invalid initial intensity range {lo}..{hi}")
        light_min = self.mutation.min_light_intensity
        light_max = self.mutation.max_light_intensity
        if not 0 < light_min <= light_max:
            raise ValueError(f"Invalid light intensity bounds {light_min}..{light_max}")

    @property
    def ideal_object_count(self) -> float:
        """Linear interpolation biasing higher occlusion targets toward denser scenes."""
        t = self.targets.occlusion_fraction
        return self.min_objects + (self.max_objects - self.min_objects) * t

    @property
    def initial_object_count(self) -> int:
        if self.init_objects is not None:
            count = self.init_objects
        else:
            count = int(round(self.ideal_object_count))
        return int(min(max(count, self.min_objects), self.max_objects))

    def to_dict(self) -> Dict[str, object]:
        return _jsonable(asdict(self))


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value

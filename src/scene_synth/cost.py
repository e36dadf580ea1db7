"""Weighted cost of a scene against the difficulty targets."""
from dataclasses import asdict, dataclass
from typing import Dict

from scene_synth.contracts import SynthConfig
from scene_synth.normalizer import RunningNormalizer
from scene_synth.scene_state import SceneState


@dataclass(frozen=True)
class CostBreakdown:
    """Per-term contributions (already weighted) plus normalized metrics."""

    holes: float
    lighting: float
    occlusion: float
    count: float
    intersection: float
    bounds: float
    holes_normalized: float
    lighting_normalized: float
    occlusion_normalized: float

    @property
    def total(self) -> float:
        return (
            self.holes + self.lighting + self.occlusion
            + self.count + self.intersection + self.bounds
        )

    def to_dict(self) -> Dict[str, float]:
        data = {k: float(v) for k, v in asdict(self).items()}
        data["total"] = self.total
        return data


class CostFunction:
    """Squared distance of the normalized metrics from their targets plus penalties.

    Each of the three difficulty metrics has its own RunningNormalizer that
    is widened with every raw value it sees before normalizing.
    """

    def __init__(self, config: SynthConfig):
        self.config = config
        self.holes_normalizer = RunningNormalizer()
        self.lighting_normalizer = RunningNormalizer()
        self.occlusion_normalizer = RunningNormalizer()

    def breakdown(self, state: SceneState, update: bool = True) -> CostBreakdown:
        scores = state.scores
        weights = self.config.weights
        targets = self.config.targets

        if update:
            self.holes_normalizer.update(scores.holes)
            self.lighting_normalizer.update(scores.lighting)
            self.occlusion_normalizer.update(scores.occlusion)

        h = self.holes_normalizer.normalize(scores.holes)
        l = self.lighting_normalizer.normalize(scores.lighting)
        o = self.occlusion_normalizer.normalize(scores.occlusion)

        return CostBreakdown(
            holes=weights.holes * (h - targets.holes_fraction) ** 2,
            lighting=weights.lighting * (l - targets.lighting_fraction) ** 2,
            occlusion=weights.occlusion * (o - targets.occlusion_fraction) ** 2,
            count=weights.count * scores.count_penalty,
            intersection=weights.intersection * scores.intersection_penalty,
            bounds=weights.bounds * scores.bounds_penalty,
            holes_normalized=h,
            lighting_normalized=l,
            occlusion_normalized=o,
        )

    def compute(self, state: SceneState, update: bool = True) -> float:
        return self.breakdown(state, update=update).total

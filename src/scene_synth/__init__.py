"""Public API for difficulty-targeted scene synthesis."""

from scene_synth.annealer import AnnealingOptimizer, OptimizationResult, OptimizerStatus
from scene_synth.catalog import ObjectCatalog, primitive_catalog
from scene_synth.contracts import (
    ConstraintMode,
    DifficultyTargets,
    ProposalStrategy,
    RoomBounds,
    SynthConfig,
)
from scene_synth.geometry import GeometryProvider, TrimeshGeometryProvider
from scene_synth.pipeline import PipelineOptions, PipelineResult, SynthesisRun, run_synthesis
from scene_synth.scene_io import load_scene, save_scene
from scene_synth.scene_state import SceneState

__all__ = [
    "AnnealingOptimizer",
    "ConstraintMode",
    "DifficultyTargets",
    "GeometryProvider",
    "ObjectCatalog",
    "OptimizationResult",
    "OptimizerStatus",
    "PipelineOptions",
    "PipelineResult",
    "ProposalStrategy",
    "RoomBounds",
    "SceneState",
    "SynthConfig",
    "SynthesisRun",
    "TrimeshGeometryProvider",
    "load_scene",
    "primitive_catalog",
    "run_synthesis",
    "save_scene",
]

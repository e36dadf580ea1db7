"""End-to-end synthesis run: catalog, initial scene, annealing, run artifacts."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from scene_synth.annealer import AnnealingOptimizer, OptimizationResult, StepResult
from scene_synth.catalog import ObjectCatalog, primitive_catalog
from scene_synth.contracts import SynthConfig
from scene_synth.geometry import GeometryProvider, TrimeshGeometryProvider
from scene_synth.run_protocol import RunPaths, prepare_run_dir
from scene_synth.scene_io import LoadReport, export_scene_mesh, load_scene, save_scene, scene_to_record
from scene_synth.trace import OptimizationTrace

logger = logging.getLogger(__name__)


@dataclass
class PipelineOptions:
    """Where inputs come from and where the run folder goes."""

    name: str = "scene_synth"
    runs_dir: str = "runs"
    catalog_dir: Optional[str] = None  # None -> built-in primitive catalog
    scene_path: Optional[str] = None  # None -> random initial scene
    seed: Optional[int] = None
    checkpoint_interval: int = 500
    export_mesh: bool = False
    config: SynthConfig = field(default_factory=SynthConfig)


@dataclass
class PipelineResult:
    run_paths: RunPaths
    optimization: OptimizationResult
    elapsed_s: float
    scene_path: Path
    mesh_path: Optional[Path] = None
    load_report: Optional[LoadReport] = None

    @property
    def run_id(self) -> str:
        return self.run_paths.run_id


class SynthesisRun:
    """One optimization run bound to its run folder.

    ``step()`` advances the annealer by one iteration and writes periodic
    checkpoints; ``finish()`` writes the final artifacts and can be called at
    any time, including before the annealer reaches a terminal status.
    """

    def __init__(
        self,
        options: PipelineOptions,
        catalog: Optional[ObjectCatalog] = None,
        provider: Optional[GeometryProvider] = None,
    ):
        self.options = options
        self.config = options.config
        self.started = time.perf_counter()

        if catalog is None:
            catalog = (
                ObjectCatalog.from_directory(options.catalog_dir)
                if options.catalog_dir
                else primitive_catalog()
            )
        self.catalog = catalog
        self.provider = provider if provider is not None else TrimeshGeometryProvider(catalog)
        self.rng = np.random.default_rng(options.seed)

        # Load inputs before the run folder is created.
        self.load_report: Optional[LoadReport] = None
        initial_state = None
        if options.scene_path:
            initial_state, self.load_report = load_scene(
                str(options.scene_path), self.config, self.catalog
            )

        self.run_paths = prepare_run_dir(options.runs_dir, options.name)
        self.input_scene: Optional[Path] = None
        if options.scene_path:
            self.input_scene = self.run_paths.stage_input_scene(options.scene_path)

        self.trace = OptimizationTrace(self.run_paths)
        self.optimizer = AnnealingOptimizer(
            self.config,
            self.catalog,
            self.provider,
            rng=self.rng,
            initial_state=initial_state,
            trace=self.trace,
        )
        self._last_checkpoint = -1
        self._write_checkpoint()

    @property
    def is_finished(self) -> bool:
        return self.optimizer.is_finished

    def step(self) -> StepResult:
        result = self.optimizer.step()
        interval = self.options.checkpoint_interval
        if interval > 0 and result.iteration % interval == 0:
            self._write_checkpoint()
        return result

    def run_to_completion(self) -> PipelineResult:
        while not self.is_finished:
            self.step()
        return self.finish()

    def finish(self) -> PipelineResult:
        optimization = self.optimizer.result()
        self._write_checkpoint()
        self.trace.finalize()
        elapsed = time.perf_counter() - self.started

        paths = self.run_paths
        scene_path = save_scene(optimization.state, str(paths.scene_path), self.catalog)
        mesh_path = None
        if self.options.export_mesh:
            mesh_path = export_scene_mesh(optimization.state, self.provider, str(paths.mesh_path))

        metrics = {"run_id": paths.run_id, "elapsed_s": round(elapsed, 3)}
        metrics.update(optimization.to_metrics())
        metrics["initial_cost"] = float(self.optimizer.initial_cost)
        paths.write_reports(
            metrics,
            _build_summary(paths.run_id, elapsed, optimization, self.load_report),
            self._manifest(optimization, scene_path, mesh_path),
        )
        paths.mark_latest()

        logger.info(
            "Run %s finished: %s, %d iterations, cost=%.6f",
            paths.run_id, optimization.status.value, optimization.iterations, optimization.cost,
        )
        return PipelineResult(
            run_paths=paths,
            optimization=optimization,
            elapsed_s=elapsed,
            scene_path=scene_path,
            mesh_path=mesh_path,
            load_report=self.load_report,
        )

    def _write_checkpoint(self) -> None:
        iteration = self.optimizer.iteration
        if iteration == self._last_checkpoint:
            return
        state = self.optimizer.state
        self.trace.write_checkpoint(
            iteration=iteration,
            scene=scene_to_record(state, self.catalog),
            metrics={
                "cost": float(self.optimizer.current_cost),
                "temperature": float(self.optimizer.temperature),
                "status": self.optimizer.status.value,
                "scores": state.scores.to_dict() if state.is_evaluated else None,
            },
        )
        self._last_checkpoint = iteration

    def _manifest(
        self,
        optimization: OptimizationResult,
        scene_path: Path,
        mesh_path: Optional[Path],
    ) -> Dict[str, object]:
        paths = self.run_paths
        return {
            "run_id": paths.run_id,
            "name": self.options.name,
            "created_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "seed": self.options.seed,
            "catalog": self.options.catalog_dir or "primitives",
            "catalog_types": self.catalog.names,
            "input_scene": str(self.input_scene) if self.input_scene else None,
            "status": optimization.status.value,
            "config": self.config.to_dict(),
            "artifacts": {
                "scene": str(scene_path),
                "mesh": str(mesh_path) if mesh_path else None,
                "trace": str(paths.trace_path),
                "trace_hash_chain": str(paths.hash_chain_path),
                "checkpoints": [str(c.path) for c in self.trace.checkpoints],
                "metrics": str(paths.metrics_path),
                "summary": str(paths.summary_path),
            },
            "trace_final_hash": self.trace.last_hash,
        }


def _build_summary(
    run_id: str,
    elapsed_s: float,
    optimization: OptimizationResult,
    load_report: Optional[LoadReport],
) -> str:
    breakdown = optimization.breakdown
    lines = [
        f"# Run {run_id}",
        "",
        f"- Status: **{optimization.status.value.upper()}**",
        f"- Duration: {elapsed_s:.2f}s",
        f"- Iterations: {optimization.iterations}",
        f"- Final cost: {optimization.cost:.6f}",
        f"- Accepted / rejected / hard-rejected: "
        f"{optimization.accepted} / {optimization.rejected} / {optimization.hard_rejected}",
        f"- Objects: {len(optimization.state.objects)}, lights: {len(optimization.state.lights)}",
        "",
        "## Normalized metrics",
        f"- Holes: {breakdown.holes_normalized:.3f}",
        f"- Lighting: {breakdown.lighting_normalized:.3f}",
        f"- Occlusion: {breakdown.occlusion_normalized:.3f}",
        "",
    ]
    if optimization.diagnostic:
        lines += ["## Diagnostic", optimization.diagnostic, ""]
    if load_report is not None and load_report.warnings:
        lines += ["## Load warnings"] + [f"- {w}" for w in load_report.warnings] + [""]
    return "\n".join(lines)


def run_synthesis(
    options: PipelineOptions,
    catalog: Optional[ObjectCatalog] = None,
    provider: Optional[GeometryProvider] = None,
) -> PipelineResult:
    return SynthesisRun(options, catalog=catalog, provider=provider).run_to_completion()

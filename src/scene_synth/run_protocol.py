"""Run folders for synthesis runs.

    runs/<UTC stamp>_<slug>/
        input/                          copied input scene, if any
        artifacts/
            optimized_scene.json
            optimized_scene.glb         only with mesh export
            trace.jsonl
            trace_hash_chain.json
            checkpoints/iter_XXXXXX.json
        manifest.json metrics.json summary.md
    runs/latest -> most recent run
"""

from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(scene_name: str) -> str:
    """Lower-case, dash-separated form of a scene name for run ids."""
    return _NON_SLUG.sub("-", scene_name.lower()).strip("-") or "scene"


def create_run_id(scene_name: str, now: Optional[datetime] = None) -> str:
    # microseconds keep back-to-back runs of one scene apart
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d_%H%M%S_%f}_{slugify(scene_name)}"


@dataclass(frozen=True)
class RunPaths:
    """Every file location of one synthesis run, derived from its folder."""

    run_id: str
    run_dir: Path

    @property
    def runs_root(self) -> Path:
        return self.run_dir.parent

    @property
    def input_dir(self) -> Path:
        return self.run_dir / "input"

    @property
    def artifacts_dir(self) -> Path:
        return self.run_dir / "artifacts"

    @property
    def checkpoints_dir(self) -> Path:
        return self.artifacts_dir / "checkpoints"

    @property
    def scene_path(self) -> Path:
        return self.artifacts_dir / "optimized_scene.json"

    @property
    def mesh_path(self) -> Path:
        return self.artifacts_dir / "optimized_scene.glb"

    @property
    def trace_path(self) -> Path:
        return self.artifacts_dir / "trace.jsonl"

    @property
    def hash_chain_path(self) -> Path:
        return self.artifacts_dir / "trace_hash_chain.json"

    @property
    def manifest_path(self) -> Path:
        return self.run_dir / "manifest.json"

    @property
    def metrics_path(self) -> Path:
        return self.run_dir / "metrics.json"

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.md"

    def checkpoint_path(self, iteration: int) -> Path:
        return self.checkpoints_dir / f"iter_{iteration:06d}.json"

    def stage_input_scene(self, scene_file: Union[str, Path]) -> Path:
        """Copy the input scene into ``input/`` and return the copy."""
        source = Path(scene_file)
        staged = self.input_dir / source.name
        if source.resolve() != staged.resolve():
            shutil.copy2(source, staged)
        return staged

    def write_reports(
        self,
        metrics: Dict[str, object],
        summary: str,
        manifest: Dict[str, object],
    ) -> None:
        self.metrics_path.write_text(json.dumps(metrics, indent=2), encoding="utf-8")
        self.summary_path.write_text(summary, encoding="utf-8")
        self.manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")

    def mark_latest(self) -> Path:
        """Point ``<runs_root>/latest`` at this run.

        A relative symlink where the filesystem allows one, otherwise a plain
        file holding the run id.
        """
        latest = self.runs_root / "latest"
        if latest.is_symlink() or latest.is_file():
            latest.unlink()
        elif latest.is_dir():
            shutil.rmtree(latest)

        try:
            latest.symlink_to(self.run_id, target_is_directory=True)
        except OSError:
            latest.write_text(self.run_id + "\n", encoding="utf-8")
        return latest


def prepare_run_dir(runs_root: Union[str, Path], scene_name: str) -> RunPaths:
    """Create a fresh run folder with its ``input`` and checkpoint directories."""
    run_id = create_run_id(scene_name)
    paths = RunPaths(run_id=run_id, run_dir=Path(runs_root) / run_id)
    paths.input_dir.mkdir(parents=True, exist_ok=True)
    paths.checkpoints_dir.mkdir(parents=True, exist_ok=True)
    return paths

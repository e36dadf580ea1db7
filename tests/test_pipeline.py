"""Tests for the end-to-end synthesis run."""

import json
from pathlib import Path

import pytest

from conftest import default_lights, grid_objects
from scene_synth.contracts import AnnealingSettings, SamplingSettings, SynthConfig
from scene_synth.errors import SceneLoadError
from scene_synth.pipeline import PipelineOptions, SynthesisRun, run_synthesis
from scene_synth.scene_io import save_scene
from scene_synth.scene_state import SceneState
from scene_synth.trace import verify_chain


def _options(tmp_path: Path, **overrides) -> PipelineOptions:
    config = SynthConfig(
        min_objects=4,
        max_objects=8,
        sampling=SamplingSettings(max_samples=4, ray_count=2),
        annealing=AnnealingSettings(max_iterations=25, progress_interval=0),
    )
    values = dict(
        name="Test Scene",
        runs_dir=str(tmp_path / "runs"),
        seed=3,
        checkpoint_interval=10,
        config=config,
    )
    values.update(overrides)
    return PipelineOptions(**values)


def test_run_writes_artifacts(tmp_path: Path, catalog, fast_provider):
    result = run_synthesis(_options(tmp_path), catalog=catalog, provider=fast_provider)
    paths = result.run_paths

    assert result.optimization.status.is_terminal
    assert paths.run_id.endswith("test-scene")
    assert result.scene_path.exists()
    assert paths.metrics_path.exists()
    assert paths.summary_path.exists()
    assert paths.manifest_path.exists()
    assert (paths.artifacts_dir / "trace.jsonl").exists()
    assert (paths.artifacts_dir / "trace_hash_chain.json").exists()
    assert verify_chain(paths.artifacts_dir / "trace.jsonl")

    checkpoints = sorted((paths.artifacts_dir / "checkpoints").glob("iter_*.json"))
    names = [p.name for p in checkpoints]
    assert names == ["iter_000000.json", "iter_000010.json", "iter_000020.json", "iter_000025.json"]

    metrics = json.loads(paths.metrics_path.read_text(encoding="utf-8"))
    assert metrics["status"] == result.optimization.status.value
    assert metrics["iterations"] == 25
    assert len(metrics["cost_history"]) == 25
    assert set(metrics["scores"]) >= {"holes", "lighting", "occlusion"}

    manifest = json.loads(paths.manifest_path.read_text(encoding="utf-8"))
    assert manifest["seed"] == 3
    assert manifest["config"]["max_objects"] == 8
    assert manifest["catalog"] == "primitives"

    latest = Path(tmp_path / "runs" / "latest")
    assert latest.exists()


def test_run_from_scene_file(tmp_path: Path, catalog, fast_provider):
    options = _options(tmp_path)
    state = SceneState(options.config, grid_objects(5), default_lights())
    scene_file = save_scene(state, str(tmp_path / "input.json"), catalog)

    options.scene_path = str(scene_file)
    result = run_synthesis(options, catalog=catalog, provider=fast_provider)
    assert (result.run_paths.input_dir / "input.json").exists()
    assert result.load_report is not None
    assert result.load_report.loaded_objects == 5


def test_manual_stepping_can_stop_early(tmp_path: Path, catalog, fast_provider):
    run = SynthesisRun(_options(tmp_path), catalog=catalog, provider=fast_provider)
    for _ in range(3):
        run.step()
    result = run.finish()
    assert result.optimization.iterations == 3
    assert not result.optimization.status.is_terminal
    summary = result.run_paths.summary_path.read_text(encoding="utf-8")
    assert "RUNNING" in summary


def test_mesh_export_option(tmp_path: Path, catalog, fast_provider):
    options = _options(tmp_path, export_mesh=True)
    options.config = SynthConfig(
        min_objects=4,
        max_objects=8,
        sampling=SamplingSettings(max_samples=4, ray_count=2),
        annealing=AnnealingSettings(max_iterations=3, progress_interval=0),
    )
    result = run_synthesis(options, catalog=catalog, provider=fast_provider)
    assert result.mesh_path is not None
    assert result.mesh_path.exists()


def test_missing_scene_file_leaves_no_run_folder(tmp_path: Path, catalog, fast_provider):
    options = _options(tmp_path, scene_path=str(tmp_path / "missing.json"))
    with pytest.raises(SceneLoadError):
        SynthesisRun(options, catalog=catalog, provider=fast_provider)
    runs = tmp_path / "runs"
    assert not runs.exists() or list(runs.iterdir()) == []


def test_malformed_scene_file_leaves_no_run_folder(tmp_path: Path, catalog, fast_provider):
    scene_file = tmp_path / "broken.json"
    scene_file.write_text("{not json", encoding="utf-8")
    options = _options(tmp_path, scene_path=str(scene_file))
    with pytest.raises(SceneLoadError):
        SynthesisRun(options, catalog=catalog, provider=fast_provider)
    assert not (tmp_path / "runs").exists()

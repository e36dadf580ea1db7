from __future__ import annotations

import hashlib
import json
from pathlib import Path

from scene_synth.run_protocol import prepare_run_dir
from scene_synth.trace import OptimizationTrace, verify_chain


def _canonical(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _append(trace: OptimizationTrace, iteration: int, outcome: str = "accepted"):
    return trace.append_step(
        iteration=iteration,
        mutation="swap_objects",
        outcome=outcome,
        cost=1.0 / (iteration + 1),
        proposal_cost=0.5,
        temperature=0.99 ** iteration,
        acceptance_probability=1.0,
    )


def test_step_log_hash_chain(tmp_path: Path):
    trace = OptimizationTrace(prepare_run_dir(tmp_path, "chain_case"))
    for i in range(5):
        _append(trace, i)
    _append(trace, 5, outcome="hard_rejected")
    trace.finalize()

    records = [
        json.loads(line)
        for line in trace.step_log_path.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    assert [r["seq"] for r in records] == list(range(1, 7))

    prev_hash = "0" * 64
    for record in records:
        assert record["previous_hash"] == prev_hash
        payload = {k: v for k, v in record.items() if k != "hash"}
        digest = hashlib.sha256(_canonical(payload).encode("utf-8")).hexdigest()
        assert digest == record["hash"]
        prev_hash = digest

    chain = json.loads(trace.hash_chain_path.read_text(encoding="utf-8"))
    assert chain["step_count"] == 6
    assert chain["final_hash"] == prev_hash
    assert verify_chain(trace.step_log_path)


def test_tampered_log_fails_verification(tmp_path: Path):
    trace = OptimizationTrace(prepare_run_dir(tmp_path, "tamper_case"))
    for i in range(3):
        _append(trace, i)
    lines = trace.step_log_path.read_text(encoding="utf-8").splitlines()
    record = json.loads(lines[1])
    record["cost"] = 123.0
    lines[1] = json.dumps(record, sort_keys=True)
    trace.step_log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    assert not verify_chain(trace.step_log_path)


def test_checkpoints_named_by_iteration(tmp_path: Path):
    trace = OptimizationTrace(prepare_run_dir(tmp_path, "ckpt_case"))
    scene = {"sceneName": "x", "objects": [], "lights": []}
    trace.write_checkpoint(iteration=0, scene=scene, metrics={"cost": 1.0})
    _append(trace, 0)
    handle = trace.write_checkpoint(iteration=250, scene=scene, metrics={"cost": 0.5})

    assert handle.path.name == "iter_000250.json"
    payload = json.loads(handle.path.read_text(encoding="utf-8"))
    assert payload["trace_hash"] == trace.last_hash
    assert payload["payload_sha256"] == handle.payload_sha256
    assert [c.iteration for c in trace.checkpoints] == [0, 250]


def test_trace_files_follow_run_layout(tmp_path: Path):
    paths = prepare_run_dir(tmp_path, "layout case")
    trace = OptimizationTrace(paths)
    _append(trace, 0)
    handle = trace.write_checkpoint(iteration=3, scene={"objects": []}, metrics={})
    trace.finalize()

    assert paths.trace_path.exists()
    assert paths.hash_chain_path.exists()
    assert handle.path == paths.checkpoint_path(3)
    assert handle.path.parent == paths.artifacts_dir / "checkpoints"

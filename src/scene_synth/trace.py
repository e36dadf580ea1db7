"""Append-only trace of an optimization run: hash-chained step log and checkpoints."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from scene_synth.run_protocol import RunPaths

STEP_SCHEMA = "scene_synth.step.v1"
CHECKPOINT_SCHEMA = "scene_synth.checkpoint.v1"
CHAIN_SCHEMA = "scene_synth.hash_chain.v1"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _canonical_json(payload: Dict[str, object]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class CheckpointHandle:
    iteration: int
    path: Path
    payload_sha256: str


class OptimizationTrace:
    """Writes one JSONL line per annealing step, each chained to the previous hash."""

    def __init__(self, paths: RunPaths):
        self.paths = paths
        self.run_id = paths.run_id
        self.step_log_path = paths.trace_path
        self.hash_chain_path = paths.hash_chain_path
        paths.checkpoints_dir.mkdir(parents=True, exist_ok=True)
        self._sequence = 0
        self._prev_hash = "0" * 64
        self._checkpoint_handles: List[CheckpointHandle] = []

    @property
    def last_hash(self) -> str:
        return self._prev_hash

    @property
    def checkpoints(self) -> List[CheckpointHandle]:
        return list(self._checkpoint_handles)

    def append_step(
        self,
        *,
        iteration: int,
        mutation: str,
        outcome: str,
        cost: float,
        proposal_cost: Optional[float],
        temperature: float,
        acceptance_probability: Optional[float],
        detail: str = "",
    ) -> Dict[str, object]:
        """Record one proposal. ``outcome`` is accepted, rejected or hard_rejected."""
        self._sequence += 1
        payload: Dict[str, object] = {
            "schema_version": STEP_SCHEMA,
            "run_id": self.run_id,
            "seq": self._sequence,
            "timestamp_utc": _utc_now_iso(),
            "iteration": int(iteration),
            "mutation": mutation,
            "outcome": outcome,
            "cost": float(cost),
            "proposal_cost": None if proposal_cost is None else float(proposal_cost),
            "temperature": float(temperature),
            "acceptance_probability": (
                None if acceptance_probability is None else float(acceptance_probability)
            ),
            "detail": detail,
            "previous_hash": self._prev_hash,
        }
        digest = sha256_text(_canonical_json(payload))
        payload["hash"] = digest

        with self.step_log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, sort_keys=True) + "\n")

        self._prev_hash = digest
        return payload

    def write_checkpoint(
        self,
        *,
        iteration: int,
        scene: Dict[str, object],
        metrics: Dict[str, object],
    ) -> CheckpointHandle:
        path = self.paths.checkpoint_path(iteration)
        payload: Dict[str, object] = {
            "schema_version": CHECKPOINT_SCHEMA,
            "run_id": self.run_id,
            "iteration": int(iteration),
            "timestamp_utc": _utc_now_iso(),
            "metrics": metrics,
            "scene": scene,
            "trace_hash": self._prev_hash,
        }
        payload_sha = sha256_text(_canonical_json(payload))
        payload["payload_sha256"] = payload_sha
        path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        handle = CheckpointHandle(iteration=iteration, path=path, payload_sha256=payload_sha)
        self._checkpoint_handles.append(handle)
        return handle

    def finalize(self) -> None:
        payload = {
            "schema_version": CHAIN_SCHEMA,
            "run_id": self.run_id,
            "final_hash": self._prev_hash,
            "step_count": self._sequence,
            "checkpoint_hashes": [
                {
                    "iteration": c.iteration,
                    "path": str(c.path),
                    "payload_sha256": c.payload_sha256,
                }
                for c in self._checkpoint_handles
            ],
        }
        self.hash_chain_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8"
        )


def verify_chain(step_log_path: Path) -> bool:
    """Recompute every line's hash and check the previous_hash links."""
    prev = "0" * 64
    with Path(step_log_path).open("r", encoding="utf-8") as handle:
        for line in handle:
            if not line.strip():
                continue
            entry = json.loads(line)
            digest = entry.pop("hash")
            if entry.get("previous_hash") != prev:
                return False
            if sha256_text(_canonical_json(entry)) != digest:
                return False
            prev = digest
    return True

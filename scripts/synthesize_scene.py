#!/usr/bin/env python3
"""Synthesize a room layout matching holes / lighting / occlusion difficulty targets."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scene_synth.contracts import (
    AnnealingSettings,
    ConstraintMode,
    DifficultyTargets,
    ProposalStrategy,
    SamplingSettings,
    SynthConfig,
)
from scene_synth.errors import SceneSynthError
from scene_synth.pipeline import PipelineOptions, SynthesisRun


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Arrange objects and lights in a room to hit difficulty targets"
    )
    parser.add_argument(
        "--catalog-dir",
        default=None,
        help="Directory of mesh files (.stl/.obj/.ply/.glb); defaults to built-in primitives",
    )
    parser.add_argument("--scene", default=None, help="Initial scene JSON (random if omitted)")
    parser.add_argument("--name", default="scene_synth", help="Scene/run name")
    parser.add_argument("--runs-dir", default="runs", help="Runs output root")
    parser.add_argument("--holes", type=int, default=5, help="Holes difficulty (1-10)")
    parser.add_argument("--lighting", type=int, default=5, help="Lighting difficulty (1-10)")
    parser.add_argument("--occlusion", type=int, default=5, help="Occlusion difficulty (1-10)")
    parser.add_argument("--iterations", type=int, default=4000, help="Maximum iterations")
    parser.add_argument("--temperature", type=float, default=1.0, help="Initial temperature")
    parser.add_argument("--cooling-rate", type=float, default=0.99, help="Per-step cooling factor")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--min-objects", type=int, default=4)
    parser.add_argument("--max-objects", type=int, default=25)
    parser.add_argument(
        "--constraint-mode",
        choices=[m.value for m in ConstraintMode],
        default=ConstraintMode.HARD_REJECT.value,
    )
    parser.add_argument(
        "--proposal-strategy",
        choices=[s.value for s in ProposalStrategy],
        default=ProposalStrategy.CLONE.value,
    )
    parser.add_argument(
        "--max-samples", type=int, default=200, help="Surface samples per object"
    )
    parser.add_argument("--ray-count", type=int, default=12, help="Occlusion rays per sample")
    parser.add_argument(
        "--checkpoint-interval",
        type=int,
        default=500,
        help="Write a checkpoint every N iterations (0 disables)",
    )
    parser.add_argument(
        "--mode",
        choices=["auto", "manual"],
        default="auto",
        help="auto runs to completion; manual steps once per Enter, q finishes",
    )
    parser.add_argument(
        "--export-glb", action="store_true", help="Also export the final layout as GLB"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logs"
    )
    return parser


def build_config(args: argparse.Namespace) -> SynthConfig:
    return SynthConfig(
        min_objects=int(args.min_objects),
        max_objects=int(args.max_objects),
        targets=DifficultyTargets(
            holes=int(args.holes),
            lighting=int(args.lighting),
            occlusion=int(args.occlusion),
        ),
        annealing=AnnealingSettings(
            initial_temperature=float(args.temperature),
            cooling_rate=float(args.cooling_rate),
            max_iterations=max(1, int(args.iterations)),
        ),
        sampling=SamplingSettings(
            max_samples=int(args.max_samples),
            ray_count=int(args.ray_count),
        ),
        constraint_mode=ConstraintMode(args.constraint_mode),
        proposal_strategy=ProposalStrategy(args.proposal_strategy),
    )


def _manual_loop(run: SynthesisRun) -> None:
    print("Manual mode: Enter = one step, q = finish")
    while not run.is_finished:
        try:
            command = input("> ").strip().lower()
        except EOFError:
            break
        if command == "q":
            break
        result = run.step()
        verdict = "accepted" if result.accepted else "rejected"
        print(
            f"iter {result.iteration}: {result.mutation} {verdict} "
            f"cost={result.cost:.6f} T={result.temperature:.4g} "
            f"hard_rejects={result.hard_rejects} status={result.status.value}"
        )


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    options = PipelineOptions(
        name=args.name,
        runs_dir=args.runs_dir,
        catalog_dir=args.catalog_dir,
        scene_path=args.scene,
        seed=args.seed,
        checkpoint_interval=max(0, int(args.checkpoint_interval)),
        export_mesh=bool(args.export_glb),
        config=config,
    )
    try:
        run = SynthesisRun(options)
    except SceneSynthError as e:
        print(f"Error: {e}")
        return 1
    if args.mode == "manual":
        _manual_loop(run)
        result = run.finish()
    else:
        result = run.run_to_completion()

    optimization = result.optimization
    print(f"Run ID: {result.run_id}")
    print(f"Run dir: {result.run_paths.run_dir}")
    print(f"Status: {optimization.status.value}")
    print(f"Iterations: {optimization.iterations}")
    print(f"Final cost: {optimization.cost:.6f}")
    print(f"Scene: {result.scene_path}")
    if result.mesh_path is not None:
        print(f"Mesh: {result.mesh_path}")
    if optimization.diagnostic:
        print(f"Diagnostic: {optimization.diagnostic}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

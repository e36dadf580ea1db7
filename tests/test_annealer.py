"""Tests for the annealing optimizer."""

import json
import math

import numpy as np
import pytest

from conftest import default_lights, grid_objects
from scene_synth.annealer import (
    AnnealingOptimizer,
    OptimizerStatus,
    acceptance_probability,
    has_converged,
)
from scene_synth.contracts import (
    AnnealingSettings,
    ConstraintMode,
    PlacedObject,
    ProposalStrategy,
    SamplingSettings,
    SynthConfig,
)
from scene_synth.run_protocol import prepare_run_dir
from scene_synth.scene_state import SceneState
from scene_synth.trace import OptimizationTrace


class TestAcceptance:
    def test_improvements_always_accepted(self):
        assert acceptance_probability(-1.0, 1.0) == 1.0
        assert acceptance_probability(0.0, 0.0) == 1.0
        assert acceptance_probability(-5.0, 0.0) == 1.0

    def test_metropolis_value(self):
        assert acceptance_probability(0.5, 1.0) == pytest.approx(math.exp(-0.5))

    @pytest.mark.parametrize("delta", [1e-9, 0.01, 1.0, 100.0])
    @pytest.mark.parametrize("temperature", [0.0, 1e-8, 0.1, 1.0, 10.0])
    def test_bounded(self, delta, temperature):
        p = acceptance_probability(delta, temperature)
        assert 0.0 <= p <= 1.0


class TestConvergence:
    def test_needs_full_window(self):
        settings = AnnealingSettings()
        assert not has_converged([1.0] * 99, 0.0, settings)
        assert has_converged([1.0] * 100, 0.0, settings)

    def test_mean_step_requires_cold_temperature(self):
        settings = AnnealingSettings()
        assert not has_converged([1.0] * 100, 0.5, settings)

    def test_mean_step_requires_flat_history(self):
        settings = AnnealingSettings()
        history = [1.0, 1.1] * 50
        assert not has_converged(history, 0.0, settings)

    def test_relative_range(self):
        settings = AnnealingSettings.relative_range()
        assert has_converged([2.0, 2.01] * 25, 1.0, settings)
        assert not has_converged([2.0, 3.0] * 25, 0.0, settings)
        assert not has_converged([2.0] * 49, 0.0, settings)


def _optimizer(config, catalog, provider, seed=0, state=None):
    if state is None:
        state = SceneState(config, grid_objects(6), default_lights())
    return AnnealingOptimizer(
        config, catalog, provider, rng=np.random.default_rng(seed), initial_state=state,
    )


class TestStep:
    def test_step_advances_iteration_and_cools(self, fast_config, catalog, fast_provider):
        opt = _optimizer(fast_config, catalog, fast_provider)
        result = opt.step()
        assert result.iteration == 1
        assert opt.temperature == pytest.approx(fast_config.annealing.cooling_rate)
        assert len(opt.cost_history) == 1
        assert opt.accepted + opt.rejected == 1

    def test_current_state_stays_valid(self, fast_config, catalog, fast_provider):
        opt = _optimizer(fast_config, catalog, fast_provider)
        for _ in range(40):
            opt.step()
            assert opt.state.is_valid(fast_provider)
            assert opt.state.is_evaluated

    def test_in_place_strategy(self, catalog, fast_provider):
        config = SynthConfig(
            min_objects=4,
            max_objects=8,
            sampling=SamplingSettings(max_samples=4, ray_count=2),
            annealing=AnnealingSettings(max_iterations=40, progress_interval=0),
            proposal_strategy=ProposalStrategy.IN_PLACE,
        )
        opt = _optimizer(config, catalog, fast_provider)
        result = opt.run()
        assert result.status.is_terminal
        assert result.state.is_valid(fast_provider)
        assert result.state.is_evaluated

    def test_soft_penalty_mode_skips_filter(self, catalog, fast_provider):
        config = SynthConfig(
            min_objects=4,
            max_objects=8,
            sampling=SamplingSettings(max_samples=4, ray_count=2),
            annealing=AnnealingSettings(max_iterations=30, progress_interval=0),
            constraint_mode=ConstraintMode.SOFT_PENALTY,
        )
        opt = _optimizer(config, catalog, fast_provider)
        result = opt.run()
        assert result.hard_rejected == 0
        assert result.iterations == 30

    def test_step_after_finish_is_noop(self, fast_config, catalog, fast_provider):
        opt = _optimizer(fast_config, catalog, fast_provider)
        opt.run()
        iterations = opt.iteration
        result = opt.step()
        assert result.iteration == iterations
        assert result.status.is_terminal

    def test_seeded_runs_are_reproducible(self, fast_config, catalog, fast_provider):
        a = _optimizer(fast_config, catalog, fast_provider, seed=7)
        b = _optimizer(fast_config, catalog, fast_provider, seed=7)
        for _ in range(20):
            a.step()
            b.step()
        assert a.cost_history == b.cost_history


class TestTermination:
    def test_max_iterations(self, fast_config, catalog, fast_provider):
        result = _optimizer(fast_config, catalog, fast_provider).run()
        assert result.status in (OptimizerStatus.MAX_ITERATIONS_REACHED, OptimizerStatus.CONVERGED)
        assert result.iterations <= fast_config.annealing.max_iterations
        assert len(result.cost_history) == result.iterations

    def test_default_scenario_terminates(self, catalog, fast_provider):
        """4000-iteration budget at cooling 0.99 ends converged or at the cap."""
        config = SynthConfig(
            min_objects=4,
            max_objects=10,
            sampling=SamplingSettings(max_samples=4, ray_count=2),
            annealing=AnnealingSettings(progress_interval=1000),
        )
        opt = AnnealingOptimizer(config, catalog, fast_provider, rng=np.random.default_rng(11))
        result = opt.run()
        assert result.status in (OptimizerStatus.CONVERGED, OptimizerStatus.MAX_ITERATIONS_REACHED)
        assert 100 <= result.iterations <= 4000
        assert result.state.is_valid(fast_provider)
        assert result.cost >= 0.0

    def test_retry_limit(self, catalog, fast_provider):
        """Four stacked crates at fixed count can never become valid."""
        config = SynthConfig(
            min_objects=4,
            max_objects=4,
            sampling=SamplingSettings(max_samples=4, ray_count=2),
            annealing=AnnealingSettings(max_proposal_retries=5, progress_interval=0),
        )
        objects = [PlacedObject("crate", (0.0, 0.0, 0.0)) for _ in range(4)]
        state = SceneState(config, objects, default_lights())
        opt = _optimizer(config, catalog, fast_provider, state=state)
        result = opt.step()
        assert result.status is OptimizerStatus.RETRY_LIMIT_REACHED
        assert opt.iteration == 0
        assert opt.hard_rejected == 5
        assert opt.temperature == config.annealing.initial_temperature
        assert "hard constraints" in opt.result().diagnostic


def test_trace_records_every_proposal(tmp_path, fast_config, catalog, fast_provider):
    trace = OptimizationTrace(prepare_run_dir(tmp_path, "annealer trace"))
    state = SceneState(fast_config, grid_objects(6), default_lights())
    opt = AnnealingOptimizer(
        fast_config, catalog, fast_provider,
        rng=np.random.default_rng(2), initial_state=state, trace=trace,
    )
    result = opt.run()

    lines = trace.step_log_path.read_text(encoding="utf-8").splitlines()
    outcomes = [json.loads(line)["outcome"] for line in lines if line.strip()]
    assert set(outcomes) <= {"accepted", "rejected", "hard_rejected"}
    assert outcomes.count("accepted") == result.accepted
    assert outcomes.count("rejected") == result.rejected
    assert outcomes.count("hard_rejected") == result.hard_rejected

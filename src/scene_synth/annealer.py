"""
Simulated-annealing scene optimizer.

The optimizer is a small state machine driven one ``step()`` at a time:

1. Propose: clone the current state (or edit it in place) and apply one
   random mutation.
2. Filter: in HARD_REJECT mode a proposal that breaks a hard constraint is
   discarded without advancing the iteration or the temperature, and a new
   proposal is drawn. Too many consecutive discards end the run with
   RETRY_LIMIT_REACHED.
3. Evaluate and cost the proposal; accept with the Metropolis probability.
4. Cool, record the current cost, test convergence.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from scene_synth.catalog import ObjectCatalog
from scene_synth.contracts import (
    AnnealingSettings,
    ConstraintMode,
    ConvergenceMode,
    ProposalStrategy,
    SynthConfig,
)
from scene_synth.cost import CostBreakdown, CostFunction
from scene_synth.geometry import GeometryProvider
from scene_synth.mutations import Mutation
from scene_synth.scene_state import SceneState
from scene_synth.trace import OptimizationTrace

logger = logging.getLogger(__name__)

ACCEPTANCE_EPS = 1e-6
RELATIVE_RANGE_EPS = 1e-8


class OptimizerStatus(Enum):
    RUNNING = "running"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    RETRY_LIMIT_REACHED = "retry_limit_reached"

    @property
    def is_terminal(self) -> bool:
        return self is not OptimizerStatus.RUNNING


def acceptance_probability(delta: float, temperature: float, eps: float = ACCEPTANCE_EPS) -> float:
    """Metropolis rule: 1 for non-worsening moves, exp(-delta / T) otherwise."""
    if delta <= 0.0:
        return 1.0
    return math.exp(-delta / max(temperature, eps))


def has_converged(
    history: Sequence[float],
    temperature: float,
    settings: AnnealingSettings,
) -> bool:
    """Trailing-window convergence test; never true before the window fills."""
    window = settings.convergence_window
    if len(history) < window:
        return False
    recent = np.asarray(history[-window:], dtype=float)

    if settings.convergence_mode is ConvergenceMode.RELATIVE_RANGE:
        spread = float(recent.max() - recent.min())
        return spread / (abs(float(recent.mean())) + RELATIVE_RANGE_EPS) < settings.convergence_threshold

    mean_step = float(np.mean(np.abs(np.diff(recent))))
    return mean_step < settings.convergence_threshold and temperature < settings.temperature_floor


@dataclass
class StepResult:
    iteration: int
    status: OptimizerStatus
    mutation: Optional[str] = None
    accepted: bool = False
    cost: float = 0.0
    proposal_cost: Optional[float] = None
    temperature: float = 0.0
    probability: Optional[float] = None
    hard_rejects: int = 0


@dataclass
class OptimizationResult:
    state: SceneState
    cost: float
    breakdown: CostBreakdown
    status: OptimizerStatus
    iterations: int
    accepted: int
    rejected: int
    hard_rejected: int
    cost_history: List[float] = field(default_factory=list)
    diagnostic: str = ""

    @property
    def acceptance_rate(self) -> float:
        total = self.accepted + self.rejected
        return self.accepted / total if total else 0.0

    def to_metrics(self) -> Dict[str, object]:
        scores = self.state.scores.to_dict() if self.state.is_evaluated else None
        return {
            "status": self.status.value,
            "iterations": self.iterations,
            "final_cost": float(self.cost),
            "accepted": self.accepted,
            "rejected": self.rejected,
            "hard_rejected": self.hard_rejected,
            "acceptance_rate": self.acceptance_rate,
            "object_count": len(self.state.objects),
            "light_count": len(self.state.lights),
            "scores": scores,
            "cost_breakdown": self.breakdown.to_dict(),
            "diagnostic": self.diagnostic,
            "cost_history": [float(c) for c in self.cost_history],
        }


class AnnealingOptimizer:
    """Cooperative simulated-annealing loop over SceneState proposals."""

    def __init__(
        self,
        config: SynthConfig,
        catalog: ObjectCatalog,
        provider: GeometryProvider,
        rng: Optional[np.random.Generator] = None,
        initial_state: Optional[SceneState] = None,
        trace: Optional[OptimizationTrace] = None,
    ):
        self.config = config
        self.catalog = catalog
        self.provider = provider
        self.rng = rng if rng is not None else np.random.default_rng()
        self.trace = trace
        self.cost_function = CostFunction(config)

        if initial_state is None:
            initial_state = SceneState.create_random(config, catalog, provider, self.rng)
        self.state = initial_state

        violations = self.state.constraint_violations(provider)
        if violations and config.constraint_mode is ConstraintMode.HARD_REJECT:
            logger.warning(
                "Initial scene violates %d hard constraint(s); first: %s",
                len(violations), violations[0],
            )

        self.state.evaluate(provider, self.rng)
        self.current_cost = self.cost_function.compute(self.state)
        self.initial_cost = self.current_cost
        self.temperature = config.annealing.initial_temperature
        self.iteration = 0
        self.status = OptimizerStatus.RUNNING
        self.cost_history: List[float] = []
        self.accepted = 0
        self.rejected = 0
        self.hard_rejected = 0
        self.diagnostic = ""

        logger.info(
            "Annealer start: %d objects, %d lights, cost=%.6f, mode=%s, strategy=%s",
            len(self.state.objects), len(self.state.lights), self.current_cost,
            config.constraint_mode.value, config.proposal_strategy.value,
        )

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    def step(self) -> StepResult:
        """Advance by one accepted-or-rejected proposal."""
        if self.is_finished:
            return StepResult(
                iteration=self.iteration,
                status=self.status,
                cost=self.current_cost,
                temperature=self.temperature,
            )

        settings = self.config.annealing
        proposal, mutation, hard_rejects = self._draw_valid_proposal()
        if proposal is None:
            return StepResult(
                iteration=self.iteration,
                status=self.status,
                cost=self.current_cost,
                temperature=self.temperature,
                hard_rejects=hard_rejects,
            )

        proposal.evaluate(self.provider, self.rng)
        proposal_cost = self.cost_function.compute(proposal)
        delta = proposal_cost - self.current_cost
        probability = acceptance_probability(delta, self.temperature)
        accepted = float(self.rng.random()) < probability

        if accepted:
            self.state = proposal
            self.current_cost = proposal_cost
            self.accepted += 1
        else:
            if self.config.proposal_strategy is ProposalStrategy.IN_PLACE:
                mutation.revert()
            self.rejected += 1

        mutation_name = mutation.kind.value if mutation.kind else "none"
        if self.trace is not None:
            self.trace.append_step(
                iteration=self.iteration,
                mutation=mutation_name,
                outcome="accepted" if accepted else "rejected",
                cost=self.current_cost,
                proposal_cost=proposal_cost,
                temperature=self.temperature,
                acceptance_probability=probability,
                detail=mutation.detail,
            )

        self.temperature *= settings.cooling_rate
        self.cost_history.append(self.current_cost)
        self.iteration += 1

        if has_converged(self.cost_history, self.temperature, settings):
            self.status = OptimizerStatus.CONVERGED
        elif self.iteration >= settings.max_iterations:
            self.status = OptimizerStatus.MAX_ITERATIONS_REACHED

        if settings.progress_interval and self.iteration % settings.progress_interval == 0:
            logger.info(
                "iter %d: cost=%.6f T=%.4g accepted=%d rejected=%d hard_rejected=%d",
                self.iteration, self.current_cost, self.temperature,
                self.accepted, self.rejected, self.hard_rejected,
            )
        if self.is_finished:
            logger.info(
                "Annealer finished: %s after %d iterations, cost=%.6f",
                self.status.value, self.iteration, self.current_cost,
            )

        return StepResult(
            iteration=self.iteration,
            status=self.status,
            mutation=mutation_name,
            accepted=accepted,
            cost=self.current_cost,
            proposal_cost=proposal_cost,
            temperature=self.temperature,
            probability=probability,
            hard_rejects=hard_rejects,
        )

    def run(self) -> OptimizationResult:
        while not self.is_finished:
            self.step()
        return self.result()

    def result(self) -> OptimizationResult:
        return OptimizationResult(
            state=self.state,
            cost=self.current_cost,
            breakdown=self.cost_function.breakdown(self.state, update=False),
            status=self.status,
            iterations=self.iteration,
            accepted=self.accepted,
            rejected=self.rejected,
            hard_rejected=self.hard_rejected,
            cost_history=list(self.cost_history),
            diagnostic=self.diagnostic,
        )

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def _propose(self) -> Tuple[SceneState, Mutation]:
        if self.config.proposal_strategy is ProposalStrategy.IN_PLACE:
            target = self.state
        else:
            target = self.state.clone()
        mutation = Mutation(target, self.catalog, self.config, self.rng)
        mutation.apply_random()
        return target, mutation

    def _draw_valid_proposal(self) -> Tuple[Optional[SceneState], Optional[Mutation], int]:
        """Proposal that passes the hard filter, or (None, None, n) at the retry limit."""
        if self.config.constraint_mode is ConstraintMode.SOFT_PENALTY:
            proposal, mutation = self._propose()
            return proposal, mutation, 0

        limit = self.config.annealing.max_proposal_retries
        last_violations: List[str] = []
        for attempt in range(limit):
            proposal, mutation = self._propose()
            last_violations = proposal.constraint_violations(self.provider)
            if not last_violations:
                return proposal, mutation, attempt

            self.hard_rejected += 1
            if self.config.proposal_strategy is ProposalStrategy.IN_PLACE:
                mutation.revert()
            logger.debug(
                "Hard reject at iter %d (%s): %s",
                self.iteration, mutation.kind.value if mutation.kind else "none",
                last_violations[0],
            )
            if self.trace is not None:
                self.trace.append_step(
                    iteration=self.iteration,
                    mutation=mutation.kind.value if mutation.kind else "none",
                    outcome="hard_rejected",
                    cost=self.current_cost,
                    proposal_cost=None,
                    temperature=self.temperature,
                    acceptance_probability=None,
                    detail=last_violations[0],
                )

        self.status = OptimizerStatus.RETRY_LIMIT_REACHED
        self.diagnostic = (
            f"{limit} consecutive proposals violated hard constraints at iteration "
            f"{self.iteration}; last violation: "
            f"{last_violations[0] if last_violations else 'n/a'}"
        )
        logger.error("Annealer stopped: %s", self.diagnostic)
        return None, None, limit

"""Running min/max normalization of unbounded scalar metrics."""

import math

EPS = 1e-6


class RunningNormalizer:
    """Tracks the observed range of a metric and maps values into [0, 1].

    The range only ever widens. Until a finite sample has been seen,
    ``normalize`` returns the raw value (clamped to [0, 1] when ``clamp`` is
    set).
    """

    def __init__(self, clamp: bool = True):
        self.clamp = clamp
        self.min = math.inf
        self.max = -math.inf

    @property
    def primed(self) -> bool:
        return self.min != math.inf and self.max != -math.inf

    def update(self, value: float) -> None:
        if math.isnan(value) or math.isinf(value):
            return
        if value < self.min:
            self.min = float(value)
        if value > self.max:
            self.max = float(value)

    def normalize(self, value: float) -> float:
        if not self.primed:
            return _clamp01(value) if self.clamp else float(value)
        t = (value - self.min) / max(self.max - self.min, EPS)
        return _clamp01(t) if self.clamp else float(t)

    def __repr__(self) -> str:
        return f"RunningNormalizer(min={self.min:.6g}, max={self.max:.6g})"


def _clamp01(value: float) -> float:
    return float(min(1.0, max(0.0, value)))

"""
Trial Fitness Functions
=======================

Scores one trial window of telemetry (target pitch = 0 deg):

    ITAE      = mean_k( t_k |e_k| )            time-weighted error, per sample
    Overshoot = max_k |e_k|                    worst deviation (deg)
    SSE       = mean |e_k| over the last 30%   steady-state error (deg)

    J = w_itae * ITAE + w_os * 10 * Overshoot + w_sse * 5 * SSE + P_osc

where the weights are fractions of their sum and P_osc penalizes
limit-cycle behaviour: if the sign-change rate of e exceeds 0.3 then
P_osc = 20 * rate.
"""

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .errors import ConfigurationError


MIN_SAMPLES = 5
TARGET_ANGLE = 0.0

OVERSHOOT_SCALE = 10.0
SSE_SCALE = 5.0
STEADY_STATE_FRACTION = 0.3
OSCILLATION_RATE_THRESHOLD = 0.3
OSCILLATION_PENALTY_GAIN = 20.0


@dataclass(frozen=True)
class TelemetrySample:
    """One telemetry point, timestamped relative to the end of settling."""
    timestamp_ms: float
    angle_deg: float
    speed: float = 0.0
    loop_time: float = 0.0


@dataclass(frozen=True)
class FitnessWeights:
    """Operator weights in "points"; only their ratios matter."""
    itae: float = 50.0
    overshoot: float = 30.0
    sse: float = 20.0

    def __post_init__(self):
        values = (self.itae, self.overshoot, self.sse)
        if any(not math.isfinite(v) or v < 0 for v in values):
            raise ConfigurationError(f"Fitness weights must be finite and non-negative: {values}")
        if sum(values) <= 0:
            raise ConfigurationError("Fitness weights must not all be zero")

    def fractions(self):
        total = self.itae + self.overshoot + self.sse
        return self.itae / total, self.overshoot / total, self.sse / total


@dataclass(frozen=True)
class FitnessResult:
    """Fitness of one trial plus the metrics it was built from."""
    fitness: float
    itae: float = math.nan
    overshoot: float = math.nan
    steady_state_error: float = math.nan
    oscillation_penalty: float = 0.0
    samples: int = 0

    @property
    def is_valid(self) -> bool:
        return math.isfinite(self.fitness)

    @classmethod
    def failed(cls, samples: int = 0) -> 'FitnessResult':
        return cls(fitness=math.inf, samples=samples)


def compute_itae(time_s: np.ndarray, error: np.ndarray) -> float:
    """
    Time-weighted absolute error, averaged over samples.

    Dividing by the sample count keeps ITAE comparable between trials of
    different length or telemetry rate.

    Args:
        time_s: Sample times in seconds
        error: Error array (same length as time_s)

    Returns:
        ITAE value (lower is better)
    """
    if len(error) == 0:
        return 0.0
    return float(np.mean(np.abs(error) * time_s))


def compute_overshoot(error: np.ndarray) -> float:
    """Maximum absolute deviation from target over the whole window."""
    if len(error) == 0:
        return 0.0
    return float(np.max(np.abs(error)))


def compute_steady_state_error(error: np.ndarray, fraction: float = STEADY_STATE_FRACTION) -> float:
    """Mean absolute error over the trailing ``fraction`` of samples (by index)."""
    n = len(error)
    if n == 0:
        return 0.0
    start = min(int(n * (1.0 - fraction)), n - 1)
    return float(np.mean(np.abs(error[start:])))


def compute_sign_change_rate(error: np.ndarray) -> float:
    """
    Fraction of consecutive sample pairs where the error changes sign.

    Exact zeros are not counted as a sign change.
    """
    if len(error) < 2:
        return 0.0
    changes = np.count_nonzero(error[1:] * error[:-1] < 0)
    return changes / (len(error) - 1)


def compute_oscillation_penalty(error: np.ndarray) -> float:
    rate = compute_sign_change_rate(error)
    if rate > OSCILLATION_RATE_THRESHOLD:
        return rate * OSCILLATION_PENALTY_GAIN
    return 0.0


def compute_fitness(
    samples: Sequence[TelemetrySample],
    weights: FitnessWeights = FitnessWeights(),
    target: float = TARGET_ANGLE
) -> FitnessResult:
    """
    Score a trial window.

    Never raises on short input: fewer than MIN_SAMPLES samples yields an
    infinite fitness so a degenerate trial cannot crash the optimizer.

    Args:
        samples: Telemetry collected after settling
        weights: Operator weights for ITAE, overshoot and steady-state error
        target: Target angle in degrees

    Returns:
        FitnessResult (fitness is inf on insufficient data)
    """
    n = len(samples)
    if n < MIN_SAMPLES:
        return FitnessResult.failed(samples=n)

    time_s = np.array([s.timestamp_ms for s in samples], dtype=float) / 1000.0
    error = np.array([s.angle_deg for s in samples], dtype=float) - target

    if not (np.all(np.isfinite(error)) and np.all(np.isfinite(time_s))):
        return FitnessResult.failed(samples=n)

    itae = compute_itae(time_s, error)
    overshoot = compute_overshoot(error)
    sse = compute_steady_state_error(error)
    penalty = compute_oscillation_penalty(error)

    w_itae, w_os, w_sse = weights.fractions()
    fitness = (
        w_itae * itae
        + w_os * OVERSHOOT_SCALE * overshoot
        + w_sse * SSE_SCALE * sse
        + penalty
    )

    return FitnessResult(
        fitness=float(fitness),
        itae=itae,
        overshoot=overshoot,
        steady_state_error=sse,
        oscillation_penalty=penalty,
        samples=n,
    )

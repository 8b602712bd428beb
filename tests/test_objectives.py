"""Tests for the trial fitness function."""

import math

import numpy as np
import pytest

from autotune.errors import ConfigurationError
from autotune.objectives import (
    FitnessWeights,
    TelemetrySample,
    compute_fitness,
    compute_itae,
    compute_oscillation_penalty,
    compute_sign_change_rate,
    compute_steady_state_error,
)


def make_samples(angles, step_ms=100.0):
    return [TelemetrySample(timestamp_ms=i * step_ms, angle_deg=a) for i, a in enumerate(angles)]


class TestInsufficientData:

    def test_empty_window_is_infinite(self):
        assert compute_fitness([]).fitness == math.inf

    def test_three_samples_is_infinite(self):
        result = compute_fitness(make_samples([1.0, 2.0, 3.0]))
        assert result.fitness == math.inf
        assert not result.is_valid
        assert result.samples == 3

    def test_five_samples_is_finite(self):
        result = compute_fitness(make_samples([1.0, 2.0, 3.0, 2.0, 1.0]))
        assert math.isfinite(result.fitness)

    def test_non_finite_angle_is_infinite(self):
        result = compute_fitness(make_samples([1.0, 2.0, float('nan'), 2.0, 1.0]))
        assert result.fitness == math.inf


class TestMetrics:

    def test_hand_computed_window(self):
        # |e| t = 0, 0.2, 0.6, 0.6, 0.4 -> ITAE 0.36; SSE over samples 3..4
        result = compute_fitness(make_samples([1.0, 2.0, 3.0, 2.0, 1.0]))
        assert result.itae == pytest.approx(0.36)
        assert result.overshoot == pytest.approx(3.0)
        assert result.steady_state_error == pytest.approx(1.5)
        assert result.oscillation_penalty == 0.0
        assert result.fitness == pytest.approx(0.5 * 0.36 + 0.3 * 10 * 3.0 + 0.2 * 5 * 1.5)

    def test_itae_is_normalized_by_sample_count(self):
        t = np.linspace(0.0, 1.0, 11)
        e = np.ones_like(t)
        assert compute_itae(t, e) == pytest.approx(0.5)

    def test_overshoot_uses_absolute_deviation(self):
        result = compute_fitness(make_samples([0.5, -4.0, 1.0, 0.2, 0.1]))
        assert result.overshoot == pytest.approx(4.0)

    def test_steady_state_uses_last_thirty_percent(self):
        error = np.array([10.0] * 6 + [1.0] * 4)
        assert compute_steady_state_error(error) == pytest.approx(1.0)

    def test_sign_change_rate(self):
        assert compute_sign_change_rate(np.array([1.0, -1.0, 1.0, -1.0, 1.0])) == 1.0
        assert compute_sign_change_rate(np.array([1.0, 0.0, -1.0])) == 0.0

    def test_oscillation_penalty_threshold(self):
        assert compute_oscillation_penalty(np.array([1.0, -1.0] * 3)) == pytest.approx(20.0)
        # One change in ten pairs stays under the threshold
        assert compute_oscillation_penalty(np.array([1.0] * 5 + [-1.0] * 6)) == 0.0

    def test_penalty_is_added_to_fitness(self):
        calm = compute_fitness(make_samples([1.0, 1.0, 1.0, 1.0, 1.0, 1.0]))
        shaky = compute_fitness(make_samples([1.0, -1.0, 1.0, -1.0, 1.0, -1.0]))
        assert shaky.oscillation_penalty == pytest.approx(20.0)
        assert shaky.fitness == pytest.approx(calm.fitness + 20.0)


class TestWeights:

    def test_only_ratios_matter(self):
        samples = make_samples([0.3, 1.2, -0.4, 0.8, 0.1, 0.05])
        a = compute_fitness(samples, FitnessWeights(50, 30, 20))
        b = compute_fitness(samples, FitnessWeights(5, 3, 2))
        assert a.fitness == pytest.approx(b.fitness)

    def test_all_zero_weights_rejected(self):
        with pytest.raises(ConfigurationError):
            FitnessWeights(0, 0, 0)

    def test_negative_weight_rejected(self):
        with pytest.raises(ConfigurationError):
            FitnessWeights(-1, 30, 20)


def test_compute_fitness_is_pure():
    samples = make_samples([0.3, 1.2, -0.4, 0.8, 0.1, 0.05, -0.2])
    weights = FitnessWeights(40, 40, 20)
    results = [compute_fitness(samples, weights) for _ in range(3)]
    assert results[0] == results[1] == results[2]

"""Tests for gains, search space, configuration and plant link dispatch."""

import json

import numpy as np
import pytest

from autotune.config import (
    BayesianConfig, GeneticConfig, RelayConfig, SwarmConfig,
    TrialConfig, TuningConfig, load_config
)
from autotune.errors import ConfigurationError
from autotune.gains import Candidate, GainTriple, LoopSelector, SearchSpace
from autotune.objectives import FitnessWeights


class TestSearchSpace:

    def test_inverted_bounds_rejected(self):
        with pytest.raises(ConfigurationError):
            SearchSpace(kp_min=10.0, kp_max=1.0)

    def test_non_finite_bounds_rejected(self):
        with pytest.raises(ConfigurationError):
            SearchSpace(kd_max=float('inf'))

    def test_clamp_holds_ki_when_not_searched(self, space):
        clamped = space.clamp(GainTriple(kp=500.0, ki=7.0, kd=-3.0), fixed_ki=0.25)
        assert clamped == GainTriple(kp=100.0, ki=0.25, kd=0.0)

    def test_clamp_bounds_ki_when_searched(self, full_space):
        clamped = full_space.clamp(GainTriple(kp=50.0, ki=7.0, kd=5.0))
        assert clamped.ki == 1.0

    def test_samples_stay_in_bounds(self, space):
        rng = np.random.default_rng(0)
        for _ in range(200):
            gains = space.sample(rng, fixed_ki=0.3)
            assert space.contains(gains)
            assert gains.ki == 0.3

    def test_normalize_maps_bounds_to_unit_cube(self, full_space):
        assert np.allclose(full_space.normalize(GainTriple(10.0, 0.0, 0.0)), [0, 0, 0])
        assert np.allclose(full_space.normalize(GainTriple(100.0, 1.0, 10.0)), [1, 1, 1])

    def test_round_trip_dict(self, full_space):
        assert SearchSpace.from_dict(full_space.to_dict()) == full_space


class TestGainsAndCandidates:

    def test_gain_triple_is_immutable(self):
        gains = GainTriple(1.0, 2.0, 3.0)
        with pytest.raises(AttributeError):
            gains.kp = 5.0

    def test_array_round_trip(self):
        gains = GainTriple(1.5, 0.25, 3.0)
        assert GainTriple.from_array(gains.to_array()) == gains

    def test_candidate_starts_unevaluated(self):
        candidate = Candidate(GainTriple(1.0, 0.0, 1.0))
        assert candidate.fitness == float('inf')
        assert not candidate.evaluated
        assert candidate.to_dict()['fitness'] is None

    def test_loop_param_keys(self):
        assert LoopSelector.BALANCE.param_keys == ('kp_b', 'ki_b', 'kd_b')
        assert LoopSelector.SPEED.param_keys == ('kp_s', 'ki_s', 'kd_s')
        assert LoopSelector.parse('Position') is LoopSelector.POSITION

    def test_unknown_loop_rejected(self):
        with pytest.raises(ConfigurationError):
            LoopSelector.parse('yaw')


class TestConfigValidation:

    def test_defaults_are_valid(self):
        for algorithm in ('ga', 'pso', 'zn', 'bayesian'):
            TuningConfig(algorithm=algorithm).validate()

    @pytest.mark.parametrize('section', [
        GeneticConfig(population_size=0),
        GeneticConfig(generations=0),
        GeneticConfig(mutation_rate=1.5),
        GeneticConfig(crossover_rate=-0.1),
        SwarmConfig(num_particles=0),
        SwarmConfig(iterations=-1),
        SwarmConfig(inertia_weight=-0.5),
        RelayConfig(amplitude=0.0),
        RelayConfig(min_cycles=0),
        BayesianConfig(acquisition='thompson'),
        BayesianConfig(initial_samples=0),
        BayesianConfig(grid_size=1),
        TrialConfig(trial_duration=0.0),
        TrialConfig(settling_delay=-0.1),
    ])
    def test_invalid_sections(self, section):
        with pytest.raises(ConfigurationError):
            section.validate()

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigurationError):
            TuningConfig(algorithm='simplex').validate()

    def test_trial_timeout_is_twice_the_window(self):
        trial = TrialConfig(trial_duration=2.0, settling_delay=0.3)
        assert trial.window == pytest.approx(2.3)
        assert trial.timeout == pytest.approx(4.6)


class TestConfigLoading:

    def test_dict_round_trip(self):
        config = TuningConfig(
            algorithm='pso',
            loop=LoopSelector.SPEED,
            search_space=SearchSpace(kp_min=1.0, kp_max=5.0, search_ki=False),
            trial=TrialConfig(trial_duration=1.0, weights=FitnessWeights(60, 20, 20)),
            swarm=SwarmConfig(num_particles=5, iterations=3),
        )
        assert TuningConfig.from_dict(config.to_dict()) == config

    def test_unknown_keys_rejected(self):
        with pytest.raises(ConfigurationError):
            TuningConfig.from_dict({'algorithm': 'ga', 'turbo': True})

    def test_unknown_section_field_rejected(self):
        with pytest.raises(ConfigurationError):
            TuningConfig.from_dict({'genetic': {'population': 10}})

    def test_load_config(self, tmp_path):
        path = tmp_path / 'tuning.json'
        path.write_text(json.dumps({
            'algorithm': 'bayesian',
            'loop': 'balance',
            'search_space': {'kp_min': 10, 'kp_max': 100, 'search_ki': False},
            'bayesian': {'iterations': 4, 'acquisition': 'ucb'},
        }))
        config = load_config(path)
        assert config.algorithm == 'bayesian'
        assert config.bayesian.acquisition == 'ucb'
        assert config.search_space.search_ki is False

    def test_load_invalid_config(self, tmp_path):
        path = tmp_path / 'tuning.json'
        path.write_text(json.dumps({'algorithm': 'ga', 'genetic': {'population_size': 0}}))
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_load_malformed_json(self, tmp_path):
        path = tmp_path / 'tuning.json'
        path.write_text('{"algorithm": ')
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestPlantLink:

    def test_apply_gains_sends_three_set_params(self, link):
        link.apply_gains(GainTriple(1.0, 2.0, 3.0), LoopSelector.SPEED)
        assert link.set_params() == [
            {'key': 'kp_s', 'value': 1.0},
            {'key': 'ki_s', 'value': 2.0},
            {'key': 'kd_s', 'value': 3.0},
        ]

    def test_handler_errors_do_not_stop_dispatch(self, link):
        seen = []

        def broken(data):
            raise RuntimeError("boom")

        link.on('telemetry', broken)
        link.on('telemetry', seen.append)
        link.notify('telemetry', {'pitch': 1.0})
        assert seen == [{'pitch': 1.0}]

    def test_wildcard_and_off(self, link):
        seen = []

        def everything(type, data):
            seen.append(type)

        link.on('*', everything)
        link.notify('telemetry', {})
        link.notify('emergency', {})
        link.off('*', everything)
        link.notify('telemetry', {})
        assert seen == ['telemetry', 'emergency']
        assert link.handler_count('*') == 0

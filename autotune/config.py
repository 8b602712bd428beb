"""
Tuning Configuration
====================

Plain dataclasses supplied at optimizer construction time. Every section
validates itself and raises ConfigurationError before any trial runs.
"""

import json
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, Union

from .errors import ConfigurationError
from .gains import LoopSelector, SearchSpace
from .objectives import MIN_SAMPLES, FitnessWeights


ACQUISITION_FUNCTIONS = ('ei', 'ucb', 'pi')


def _require_positive(name: str, value) -> None:
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")


def _require_positive_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


def _require_probability(name: str, value) -> None:
    if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be in [0, 1], got {value!r}")


@dataclass
class TrialConfig:
    """Timing and scoring of a single trial (seconds)."""
    trial_duration: float = 2.0
    settling_delay: float = 0.3
    weights: FitnessWeights = field(default_factory=FitnessWeights)
    min_samples: int = MIN_SAMPLES

    def validate(self):
        _require_positive('trial_duration', self.trial_duration)
        if not math.isfinite(self.settling_delay) or self.settling_delay < 0:
            raise ConfigurationError(f"settling_delay must be >= 0, got {self.settling_delay!r}")
        _require_positive_int('min_samples', self.min_samples)

    @property
    def window(self) -> float:
        return self.settling_delay + self.trial_duration

    @property
    def timeout(self) -> float:
        return 2.0 * self.window


@dataclass
class GeneticConfig:
    population_size: int = 20
    generations: int = 30
    mutation_rate: float = 0.1
    crossover_rate: float = 0.7
    elitism: bool = True
    tournament_size: int = 3
    seed: Optional[int] = None

    def validate(self):
        _require_positive_int('population_size', self.population_size)
        _require_positive_int('generations', self.generations)
        _require_probability('mutation_rate', self.mutation_rate)
        _require_probability('crossover_rate', self.crossover_rate)
        _require_positive_int('tournament_size', self.tournament_size)


@dataclass
class SwarmConfig:
    num_particles: int = 20
    iterations: int = 30
    inertia_weight: float = 0.7
    cognitive_weight: float = 1.5
    social_weight: float = 1.5
    velocity_limit: float = 0.2  # fraction of each dimension's range
    seed: Optional[int] = None

    def validate(self):
        _require_positive_int('num_particles', self.num_particles)
        _require_positive_int('iterations', self.iterations)
        for name in ('inertia_weight', 'cognitive_weight', 'social_weight'):
            value = getattr(self, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {value!r}")
        _require_positive('velocity_limit', self.velocity_limit)


@dataclass
class RelayConfig:
    amplitude: float = 2.0
    min_cycles: int = 3
    timeout: float = 30.0
    debounce: float = 0.1
    verify: bool = False

    def validate(self):
        _require_positive('amplitude', self.amplitude)
        _require_positive_int('min_cycles', self.min_cycles)
        _require_positive('timeout', self.timeout)
        if self.debounce < 0:
            raise ConfigurationError(f"debounce must be >= 0, got {self.debounce!r}")


@dataclass
class BayesianConfig:
    iterations: int = 25
    initial_samples: int = 5
    acquisition: str = 'ei'
    xi: float = 0.01
    grid_size: int = 8
    seed: Optional[int] = None

    def validate(self):
        _require_positive_int('iterations', self.iterations)
        _require_positive_int('initial_samples', self.initial_samples)
        if self.acquisition not in ACQUISITION_FUNCTIONS:
            raise ConfigurationError(
                f"acquisition must be one of {ACQUISITION_FUNCTIONS}, got {self.acquisition!r}"
            )
        if self.grid_size < 2:
            raise ConfigurationError(f"grid_size must be >= 2, got {self.grid_size!r}")


ALGORITHM_SECTIONS = {
    'ga': 'genetic',
    'pso': 'swarm',
    'zn': 'relay',
    'bayesian': 'bayesian',
}


@dataclass
class TuningConfig:
    """Everything a TuningSession needs to build and run one optimizer."""
    algorithm: str = 'ga'
    loop: LoopSelector = LoopSelector.BALANCE
    search_space: SearchSpace = field(default_factory=SearchSpace)
    trial: TrialConfig = field(default_factory=TrialConfig)
    genetic: GeneticConfig = field(default_factory=GeneticConfig)
    swarm: SwarmConfig = field(default_factory=SwarmConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    bayesian: BayesianConfig = field(default_factory=BayesianConfig)

    @property
    def algorithm_config(self):
        return getattr(self, ALGORITHM_SECTIONS[self.algorithm])

    def validate(self):
        if self.algorithm not in ALGORITHM_SECTIONS:
            raise ConfigurationError(
                f"Unknown algorithm {self.algorithm!r}; expected one of {sorted(ALGORITHM_SECTIONS)}"
            )
        self.loop = LoopSelector.parse(self.loop)
        self.trial.validate()
        self.algorithm_config.validate()

    @classmethod
    def from_dict(cls, data: dict) -> 'TuningConfig':
        data = dict(data)
        try:
            trial = dict(data.pop('trial', {}))
            if 'weights' in trial:
                trial['weights'] = FitnessWeights(**trial['weights'])
            config = cls(
                algorithm=data.pop('algorithm', 'ga'),
                loop=LoopSelector.parse(data.pop('loop', 'balance')),
                search_space=SearchSpace.from_dict(data.pop('search_space', {})),
                trial=TrialConfig(**trial),
                genetic=GeneticConfig(**data.pop('genetic', {})),
                swarm=SwarmConfig(**data.pop('swarm', {})),
                relay=RelayConfig(**data.pop('relay', {})),
                bayesian=BayesianConfig(**data.pop('bayesian', {})),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc
        if data:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(data)}")
        return config

    def to_dict(self) -> dict:
        data = asdict(self)
        data['loop'] = self.loop.value
        return data


def load_config(path: Union[str, Path]) -> TuningConfig:
    """Load and validate a JSON tuning configuration."""
    with open(path) as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc
    config = TuningConfig.from_dict(data)
    config.validate()
    return config

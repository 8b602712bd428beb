"""
Gains and Search Space
======================

Data model shared by every tuning algorithm:
- GainTriple: immutable (kp, ki, kd)
- SearchSpace: per-gain bounds, with an optional fixed ki
- Candidate: a gain triple plus its fitness (inf = unevaluated/failed)
- LoopSelector: which PID loop on the robot the gains apply to
"""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np

from .errors import ConfigurationError


GAIN_NAMES = ('kp', 'ki', 'kd')


@dataclass(frozen=True)
class GainTriple:
    """PID controller gains."""
    kp: float = 0.0
    ki: float = 0.0
    kd: float = 0.0

    def to_array(self) -> np.ndarray:
        return np.array([self.kp, self.ki, self.kd])

    @classmethod
    def from_array(cls, arr) -> 'GainTriple':
        return cls(kp=float(arr[0]), ki=float(arr[1]), kd=float(arr[2]))

    def to_dict(self) -> Dict[str, float]:
        return {'kp': self.kp, 'ki': self.ki, 'kd': self.kd}

    def with_ki(self, ki: float) -> 'GainTriple':
        return replace(self, ki=ki)

    def __repr__(self):
        return f"GainTriple(kp={self.kp:.4f}, ki={self.ki:.4f}, kd={self.kd:.4f})"


@dataclass(frozen=True)
class SearchSpace:
    """Search space bounds for PID gains."""
    kp_min: float = 0.0
    kp_max: float = 100.0
    ki_min: float = 0.0
    ki_max: float = 1.0
    kd_min: float = 0.0
    kd_max: float = 10.0
    search_ki: bool = True

    def __post_init__(self):
        for name in GAIN_NAMES:
            lo, hi = self.bounds(name)
            if not (math.isfinite(lo) and math.isfinite(hi)):
                raise ConfigurationError(f"{name} bounds must be finite, got [{lo}, {hi}]")
            if lo > hi:
                raise ConfigurationError(f"{name}_min ({lo}) is greater than {name}_max ({hi})")

    @property
    def lower(self) -> np.ndarray:
        return np.array([self.kp_min, self.ki_min, self.kd_min])

    @property
    def upper(self) -> np.ndarray:
        return np.array([self.kp_max, self.ki_max, self.kd_max])

    def bounds(self, name: str) -> Tuple[float, float]:
        return getattr(self, f'{name}_min'), getattr(self, f'{name}_max')

    def span(self, name: str) -> float:
        lo, hi = self.bounds(name)
        return hi - lo

    def clip(self, name: str, value: float) -> float:
        lo, hi = self.bounds(name)
        return float(min(hi, max(lo, value)))

    def clamp(self, gains: GainTriple, fixed_ki: Optional[float] = None) -> GainTriple:
        """
        Clamp a triple into the box.

        When ki is not searched it is replaced by ``fixed_ki`` (if given)
        instead of being clamped.
        """
        ki = gains.ki
        if self.search_ki:
            ki = self.clip('ki', ki)
        elif fixed_ki is not None:
            ki = fixed_ki
        return GainTriple(
            kp=self.clip('kp', gains.kp),
            ki=ki,
            kd=self.clip('kd', gains.kd),
        )

    def contains(self, gains: GainTriple) -> bool:
        names = GAIN_NAMES if self.search_ki else ('kp', 'kd')
        for name in names:
            lo, hi = self.bounds(name)
            if not lo <= getattr(gains, name) <= hi:
                return False
        return True

    def sample(self, rng: np.random.Generator, fixed_ki: float) -> GainTriple:
        """Draw a triple uniformly from the box."""
        kp = rng.uniform(self.kp_min, self.kp_max)
        ki = rng.uniform(self.ki_min, self.ki_max) if self.search_ki else fixed_ki
        kd = rng.uniform(self.kd_min, self.kd_max)
        return GainTriple(kp=float(kp), ki=float(ki), kd=float(kd))

    def normalize(self, gains: GainTriple) -> np.ndarray:
        """Map a triple onto the unit cube (zero-width dimensions map to 0)."""
        span = self.upper - self.lower
        span[span == 0] = 1.0
        return (gains.to_array() - self.lower) / span

    @classmethod
    def from_dict(cls, data: dict) -> 'SearchSpace':
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})

    def to_dict(self) -> dict:
        return {k: getattr(self, k) for k in self.__dataclass_fields__}


@dataclass
class Candidate:
    """One proposed gain triple and its fitness (lower is better)."""
    gains: GainTriple
    fitness: float = math.inf
    result: Optional[object] = field(default=None, repr=False)

    @property
    def evaluated(self) -> bool:
        return math.isfinite(self.fitness)

    def copy(self) -> 'Candidate':
        return Candidate(gains=self.gains, fitness=self.fitness, result=self.result)

    def to_dict(self) -> dict:
        data = self.gains.to_dict()
        data['fitness'] = self.fitness if self.evaluated else None
        return data


class LoopSelector(Enum):
    """PID loops on the robot, each with its own parameter keys."""
    BALANCE = 'balance'
    SPEED = 'speed'
    POSITION = 'position'

    @property
    def suffix(self) -> str:
        return {'balance': 'b', 'speed': 's', 'position': 'p'}[self.value]

    @property
    def param_keys(self) -> Tuple[str, str, str]:
        s = self.suffix
        return f'kp_{s}', f'ki_{s}', f'kd_{s}'

    @classmethod
    def parse(cls, value) -> 'LoopSelector':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown loop: {value!r}") from None

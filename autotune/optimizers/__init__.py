"""Tuning algorithms, keyed by the tag used in TuningConfig.algorithm."""

from typing import Optional

from ..config import TuningConfig
from ..errors import ConfigurationError
from ..gains import GainTriple
from ..observer import TuningObserver
from .base import Optimizer, OptimizerStopped
from .bayesian import BayesianOptimization
from .genetic import GeneticAlgorithm
from .pso import Particle, ParticleSwarmOptimization
from .ziegler_nichols import RelayResult, ZieglerNicholsRelay, ziegler_nichols_gains


OPTIMIZERS = {
    'ga': GeneticAlgorithm,
    'pso': ParticleSwarmOptimization,
    'zn': ZieglerNicholsRelay,
    'bayesian': BayesianOptimization,
}


def create_optimizer(
    config: TuningConfig,
    runner,
    baseline: Optional[GainTriple] = None,
    observer: Optional[TuningObserver] = None
) -> Optimizer:
    """Build the optimizer named by ``config.algorithm``."""
    try:
        cls = OPTIMIZERS[config.algorithm]
    except KeyError:
        raise ConfigurationError(f"Unknown algorithm {config.algorithm!r}") from None
    return cls(
        config.algorithm_config,
        config.search_space,
        runner,
        baseline=baseline,
        loop=config.loop,
        observer=observer,
    )


__all__ = [
    'OPTIMIZERS',
    'BayesianOptimization',
    'GeneticAlgorithm',
    'Optimizer',
    'OptimizerStopped',
    'Particle',
    'ParticleSwarmOptimization',
    'RelayResult',
    'ZieglerNicholsRelay',
    'create_optimizer',
    'ziegler_nichols_gains',
]

# Closed-Loop PID Auto-Tuning for a Self-Balancing Robot
# ======================================================
#
# Black-box optimizers that search a bounded (kp, ki, kd) space and score
# each candidate from live telemetry captured during a short trial run on
# the robot (or the simulated plant).
#
# Algorithms:
#   ga:       Genetic Algorithm
#   pso:      Particle Swarm Optimization
#   zn:       Ziegler-Nichols relay method
#   bayesian: Bayesian Optimization (Gaussian process surrogate)

from .config import (
    BayesianConfig, GeneticConfig, RelayConfig, SwarmConfig,
    TrialConfig, TuningConfig, load_config
)
from .errors import (
    ConfigurationError, EmergencyInterrupt, InsufficientData, RelayTestFailure,
    SurrogateTrainingFailure, TrialFailure, TrialTimeout, TuningError
)
from .gains import Candidate, GainTriple, LoopSelector, SearchSpace
from .link import PlantLink
from .objectives import FitnessResult, FitnessWeights, TelemetrySample, compute_fitness
from .observer import CallbackObserver, TuningObserver
from .optimizers import (
    BayesianOptimization, GeneticAlgorithm, Optimizer,
    ParticleSwarmOptimization, ZieglerNicholsRelay, create_optimizer
)
from .plant import SimulatedPlant
from .session import SessionState, TuningSession
from .trial import TrialRunner

__all__ = [
    'BayesianConfig',
    'BayesianOptimization',
    'CallbackObserver',
    'Candidate',
    'ConfigurationError',
    'EmergencyInterrupt',
    'FitnessResult',
    'FitnessWeights',
    'GainTriple',
    'GeneticAlgorithm',
    'GeneticConfig',
    'InsufficientData',
    'LoopSelector',
    'Optimizer',
    'ParticleSwarmOptimization',
    'PlantLink',
    'RelayConfig',
    'RelayTestFailure',
    'SearchSpace',
    'SessionState',
    'SimulatedPlant',
    'SurrogateTrainingFailure',
    'SwarmConfig',
    'TelemetrySample',
    'TrialConfig',
    'TrialFailure',
    'TrialRunner',
    'TrialTimeout',
    'TuningConfig',
    'TuningError',
    'TuningObserver',
    'TuningSession',
    'ZieglerNicholsRelay',
    'compute_fitness',
    'create_optimizer',
    'load_config',
]

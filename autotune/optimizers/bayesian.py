"""
Bayesian Optimization
=====================

Surrogate-driven search:
1. evaluate the baseline plus ``initial_samples`` random candidates
2. fit a Gaussian process (Matern 5/2) to every finite-fitness sample,
   with gains scaled to the unit cube
3. score an N x N x N lattice with the acquisition function and evaluate
   the maximizer; repeat

Acquisition functions (mu, sigma = surrogate mean/std, f* = best so far):
    ei:  max(0, f* - mu + xi)
    ucb: -mu + 2 sigma
    pi:  1 if f* - mu > 0 else 0
Ties are broken towards the lowest predicted fitness.
"""

import logging
import warnings
from typing import List, Optional

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.gaussian_process import GaussianProcessRegressor
from sklearn.gaussian_process.kernels import ConstantKernel, Matern

from ..config import BayesianConfig
from ..errors import SurrogateTrainingFailure
from ..gains import Candidate, GainTriple
from .base import Optimizer


logger = logging.getLogger(__name__)

UCB_KAPPA = 2.0


class BayesianOptimization(Optimizer):
    """Bayesian optimization tuner; one step is one acquired sample."""

    name = 'bayesian'
    step_label = 'iteration'

    def __init__(self, config: BayesianConfig, *args, **kwargs):
        super().__init__(config, *args, **kwargs)
        self.samples: List[Candidate] = []
        self.surrogate: Optional[GaussianProcessRegressor] = None

    @property
    def iteration(self) -> int:
        return self.step

    @property
    def total_steps(self) -> int:
        return self.config.iterations

    @property
    def valid_samples(self) -> List[Candidate]:
        return [s for s in self.samples if s.evaluated]

    @property
    def best(self) -> Optional[Candidate]:
        valid = self.valid_samples
        if not valid:
            return None
        return min(valid, key=lambda s: s.fitness)

    async def initialize(self):
        self.step = 0
        self.samples = []
        self.surrogate = None

        seeds = []
        baseline = self.seed_gains()
        if baseline is not None:
            seeds.append(baseline)
        seeds.extend(self.random_gains() for _ in range(self.config.initial_samples))

        for gains in seeds:
            await self.sample(gains)
        self.retrain()

    async def run_one_step(self):
        gains = self.acquire_next()
        await self.sample(gains)
        self.retrain()
        self.step += 1

        best = self.best
        if best is not None:
            logger.info("Iteration %d: best %s fitness=%.4f", self.step, best.gains, best.fitness)

    async def sample(self, gains: GainTriple) -> Candidate:
        result = await self.evaluate(gains)
        candidate = Candidate(gains, result.fitness, result)
        self.samples.append(candidate)
        return candidate

    # --- surrogate ----------------------------------------------------------------

    def train_surrogate(self) -> GaussianProcessRegressor:
        """
        Fit a fresh GP to the finite-fitness samples.

        Raises:
            SurrogateTrainingFailure: fewer than 2 valid samples, or the fit failed
        """
        valid = self.valid_samples
        if len(valid) < 2:
            raise SurrogateTrainingFailure(f"{len(valid)} valid samples, at least 2 required")

        X = np.array([self.search_space.normalize(s.gains) for s in valid])
        y = np.array([s.fitness for s in valid])

        kernel = ConstantKernel(1.0, (1e-3, 1e3)) * Matern(
            length_scale=np.full(3, 0.5), length_scale_bounds=(1e-2, 1e2), nu=2.5
        )
        model = GaussianProcessRegressor(
            kernel=kernel,
            alpha=1e-4,  # trials on a real plant are noisy
            normalize_y=True,
            n_restarts_optimizer=2,
            random_state=self.config.seed,
        )
        try:
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', ConvergenceWarning)
                model.fit(X, y)
        except (ValueError, np.linalg.LinAlgError) as exc:
            raise SurrogateTrainingFailure(str(exc)) from exc
        return model

    def retrain(self) -> bool:
        """Retrain the surrogate, keeping the previous one on failure."""
        try:
            self.surrogate = self.train_surrogate()
        except SurrogateTrainingFailure as exc:
            logger.warning("Iteration %d: surrogate training skipped: %s", self.step, exc)
            return False
        return True

    # --- acquisition ----------------------------------------------------------------

    def lattice(self) -> np.ndarray:
        """grid_size^3 lattice over the search space (ki collapsed when held)."""
        n = self.config.grid_size
        space = self.search_space
        kp = np.linspace(space.kp_min, space.kp_max, n)
        ki = np.linspace(space.ki_min, space.ki_max, n) if space.search_ki else np.array([self.fixed_ki])
        kd = np.linspace(space.kd_min, space.kd_max, n)
        grid = np.meshgrid(kp, ki, kd, indexing='ij')
        return np.stack([g.ravel() for g in grid], axis=1)

    def acquisition(self, mu: np.ndarray, sigma: np.ndarray, current_best: float) -> np.ndarray:
        kind = self.config.acquisition
        if kind == 'ei':
            return np.maximum(0.0, current_best - mu + self.config.xi)
        if kind == 'ucb':
            return -mu + UCB_KAPPA * sigma
        if kind == 'pi':
            return (current_best - mu > 0).astype(float)
        return -mu

    def acquire_next(self) -> GainTriple:
        """Lattice point maximizing the acquisition; random while untrained."""
        best = self.best
        if self.surrogate is None or best is None:
            return self.random_gains()

        points = self.lattice()
        X = np.array([self.search_space.normalize(GainTriple.from_array(p)) for p in points])
        mu, sigma = self.surrogate.predict(X, return_std=True)

        scores = self.acquisition(mu, sigma, best.fitness)
        top = np.flatnonzero(scores == scores.max())
        idx = top[np.argmin(mu[top])]
        return GainTriple.from_array(points[idx])

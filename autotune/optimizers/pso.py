"""
Particle Swarm Optimization
===========================

Global-best PSO over (kp, ki, kd). Velocity update per dimension:

    v <- w v + c1 r1 (p_best - x) + c2 r2 (g_best - x)

with r1, r2 drawn fresh per particle per iteration, v clamped to
+/- velocity_limit x (dimension range) and x clamped to the search space.
Every particle is re-evaluated every iteration, particle 0 included.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ..config import SwarmConfig
from ..gains import Candidate, GainTriple
from .base import Optimizer


logger = logging.getLogger(__name__)


@dataclass
class Particle:
    """A particle in the swarm."""
    position: GainTriple
    velocity: GainTriple = field(default_factory=GainTriple)
    best_position: Optional[GainTriple] = None
    best_fitness: float = math.inf
    fitness: float = math.inf

    def __post_init__(self):
        if self.best_position is None:
            self.best_position = self.position


class ParticleSwarmOptimization(Optimizer):
    """PSO tuner; one step is one iteration over the whole swarm."""

    name = 'pso'
    step_label = 'iteration'

    def __init__(self, config: SwarmConfig, *args, **kwargs):
        super().__init__(config, *args, **kwargs)
        self.particles: List[Particle] = []
        self.global_best: Optional[Candidate] = None

    @property
    def iteration(self) -> int:
        return self.step

    @property
    def total_steps(self) -> int:
        return self.config.iterations

    @property
    def best(self) -> Optional[Candidate]:
        return self.global_best

    async def initialize(self):
        self.step = 0
        self.global_best = None
        self.particles = [Particle(position=self.random_gains())
                          for _ in range(self.config.num_particles)]
        seed = self.seed_gains()
        if seed is not None and self.particles:
            self.particles[0] = Particle(position=seed)

    async def run_one_step(self):
        for particle in self.particles:
            result = await self.evaluate(particle.position)
            particle.fitness = result.fitness

            if particle.fitness < particle.best_fitness:
                particle.best_fitness = particle.fitness
                particle.best_position = particle.position

            if result.is_valid and (self.global_best is None
                                    or particle.fitness < self.global_best.fitness):
                self.global_best = Candidate(particle.position, particle.fitness, result)
                logger.info("Iteration %d: new global best %s fitness=%.4f",
                            self.step, particle.position, particle.fitness)

        for particle in self.particles:
            self.update_velocity(particle)
            self.update_position(particle)

        self.step += 1

    def _dimension_mask(self) -> np.ndarray:
        return np.array([True, self.search_space.search_ki, True])

    def update_velocity(self, particle: Particle) -> None:
        if self.global_best is None:
            return
        cfg = self.config
        r1 = self.rng.random()
        r2 = self.rng.random()

        x = particle.position.to_array()
        v = particle.velocity.to_array()
        cognitive = cfg.cognitive_weight * r1 * (particle.best_position.to_array() - x)
        social = cfg.social_weight * r2 * (self.global_best.gains.to_array() - x)
        v = cfg.inertia_weight * v + cognitive + social

        max_vel = (self.search_space.upper - self.search_space.lower) * cfg.velocity_limit
        v = np.clip(v, -max_vel, max_vel)
        v[~self._dimension_mask()] = 0.0
        particle.velocity = GainTriple.from_array(v)

    def update_position(self, particle: Particle) -> None:
        moved = particle.position.to_array() + particle.velocity.to_array()
        particle.position = self.search_space.clamp(GainTriple.from_array(moved), self.fixed_ki)

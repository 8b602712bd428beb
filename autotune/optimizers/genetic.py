"""
Genetic Algorithm
=================

Single-objective GA over (kp, ki, kd):
- Uniform random initialization (individual 0 seeded with the baseline)
- Elitism (best individual carried over, not re-evaluated)
- Tournament selection (size 3)
- Arithmetic blend crossover
- Per-gene uniform mutation of +/-5% of the dimension range
"""

import logging
from typing import List, Optional

from ..config import GeneticConfig
from ..gains import Candidate, GainTriple
from .base import Optimizer


logger = logging.getLogger(__name__)

MUTATION_SCALE = 0.1


class GeneticAlgorithm(Optimizer):
    """Genetic algorithm tuner; one step is one generation."""

    name = 'ga'
    step_label = 'generation'

    def __init__(self, config: GeneticConfig, *args, **kwargs):
        super().__init__(config, *args, **kwargs)
        self.population: List[Candidate] = []
        self.best_individual: Optional[Candidate] = None

    @property
    def generation(self) -> int:
        return self.step

    @property
    def total_steps(self) -> int:
        return self.config.generations

    @property
    def best(self) -> Optional[Candidate]:
        return self.best_individual

    async def initialize(self):
        self.step = 0
        self.best_individual = None
        self.population = self.initial_population()

    def initial_population(self) -> List[Candidate]:
        population = [Candidate(self.random_gains()) for _ in range(self.config.population_size)]
        seed = self.seed_gains()
        if seed is not None and population:
            population[0] = Candidate(seed)
        return population

    async def run_one_step(self):
        if not self.population:
            logger.warning("Empty population at generation %d, reinitializing", self.step)
            self.population = self.initial_population()

        # Elites keep their fitness from the previous generation
        for candidate in self.population:
            if candidate.evaluated:
                continue
            result = await self.evaluate(candidate.gains)
            candidate.fitness = result.fitness
            candidate.result = result

        self.population.sort(key=lambda c: c.fitness)
        leader = self.population[0]
        if leader.evaluated and (self.best_individual is None
                                 or leader.fitness < self.best_individual.fitness):
            self.best_individual = leader.copy()
            logger.info("Generation %d: new best %s fitness=%.4f",
                        self.step, leader.gains, leader.fitness)

        self.population = self.next_population()
        self.step += 1

    def next_population(self) -> List[Candidate]:
        """Create the next generation through elitism, selection, crossover and mutation."""
        size = self.config.population_size
        offspring: List[Candidate] = []

        if self.config.elitism and self.population and self.population[0].evaluated:
            offspring.append(self.population[0].copy())

        parents = [c for c in self.population if c.evaluated]
        while len(offspring) < size:
            parent1 = self.tournament_selection(parents)
            parent2 = self.tournament_selection(parents)

            if parent1 is None:
                child = self.random_gains()
            elif parent2 is not None and self.rng.random() < self.config.crossover_rate:
                child = self.crossover(parent1.gains, parent2.gains)
            else:
                child = parent1.gains

            offspring.append(Candidate(self.mutate(child)))

        return offspring

    def tournament_selection(self, pool: List[Candidate]) -> Optional[Candidate]:
        """Best of ``tournament_size`` random draws among evaluated candidates."""
        if not pool:
            return None
        best = None
        for _ in range(self.config.tournament_size):
            contender = pool[int(self.rng.integers(len(pool)))]
            if best is None or contender.fitness < best.fitness:
                best = contender
        return best

    def crossover(self, parent1: GainTriple, parent2: GainTriple) -> GainTriple:
        """Arithmetic blend with a random mixing coefficient."""
        alpha = self.rng.random()
        child = alpha * parent1.to_array() + (1 - alpha) * parent2.to_array()
        return self.search_space.clamp(GainTriple.from_array(child), self.fixed_ki)

    def mutate(self, gains: GainTriple) -> GainTriple:
        """Perturb each searched gene with probability mutation_rate."""
        values = gains.to_dict()
        names = ('kp', 'ki', 'kd') if self.search_space.search_ki else ('kp', 'kd')
        for name in names:
            if self.rng.random() < self.config.mutation_rate:
                delta = (self.rng.random() - 0.5) * self.search_space.span(name) * MUTATION_SCALE
                values[name] = self.search_space.clip(name, values[name] + delta)
        return self.search_space.clamp(GainTriple(**values), self.fixed_ki)

"""
Optimizer Base
==============

Common capability set of every tuning algorithm:

    initialize() -> run_one_step() ... -> run()
    pause() / resume() / stop()

and the interruption protocol shared by all of them: when the plant
aborts a trial (EmergencyInterrupt) the optimizer pauses itself, puts
the baseline gains back on the plant, waits for resume() and then
retries the *same* candidate. Ordinary trial failures (TrialTimeout,
InsufficientData) only score the candidate as infinite.
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..errors import EmergencyInterrupt, TrialFailure, TuningError
from ..gains import Candidate, GainTriple, LoopSelector, SearchSpace
from ..objectives import FitnessResult
from ..observer import TuningObserver


logger = logging.getLogger(__name__)


class OptimizerStopped(TuningError):
    """Raised inside an optimizer loop once stop() has been requested."""


class Optimizer(ABC):
    """Base class for GA, PSO, Ziegler-Nichols relay and Bayesian tuners."""

    name = 'optimizer'
    step_label = 'step'

    def __init__(
        self,
        config,
        search_space: SearchSpace,
        runner,
        baseline: Optional[GainTriple] = None,
        loop: LoopSelector = LoopSelector.BALANCE,
        observer: Optional[TuningObserver] = None
    ):
        self.config = config
        self.search_space = search_space
        self.runner = runner
        self.baseline = baseline
        self.loop = loop
        self.observer = observer or TuningObserver()

        self.rng = np.random.default_rng(getattr(config, 'seed', None))
        # ki held here whenever it is not part of the search
        self.fixed_ki = baseline.ki if baseline is not None else search_space.ki_min

        self.step = 0
        self.trial_count = 0
        self.is_running = False
        self.is_paused = False
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._pause_count = 0

        self.history = {
            'steps': [],
            'best_fitness': [],
            'trials': [],
        }

    # --- capability set -----------------------------------------------------

    @property
    @abstractmethod
    def total_steps(self) -> int:
        """Generation/iteration budget."""

    @property
    @abstractmethod
    def best(self) -> Optional[Candidate]:
        """Best candidate found so far (None until one has a finite fitness)."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create fresh optimizer state."""

    @abstractmethod
    async def run_one_step(self) -> None:
        """Run one generation/iteration and advance ``self.step``."""

    async def run(self) -> Optional[Candidate]:
        """
        Run until the step budget is exhausted or stop() is called.

        Trial failures never escape; configuration errors are raised
        before the first trial.

        Returns:
            Best candidate found (None if every trial failed)
        """
        self.config.validate()
        self.step = 0
        self.trial_count = 0
        self.history = {'steps': [], 'best_fitness': [], 'trials': []}
        self.is_running = True
        logger.info("%s started: %d %ss", self.name.upper(), self.total_steps, self.step_label)
        try:
            await self.initialize()
            while self.is_running and self.step < self.total_steps:
                await self.checkpoint()
                await self.run_one_step()
                self._record_step()
                self._emit('on_progress', self.step, self.total_steps, self.best)
        except OptimizerStopped:
            logger.info("%s stopped at %s %d", self.name.upper(), self.step_label, self.step)
        finally:
            self.is_running = False

        best = self.best
        if best is not None:
            logger.info("%s finished, best %s fitness=%.4f", self.name.upper(), best.gains, best.fitness)
        else:
            logger.warning("%s finished without a successful trial", self.name.upper())
        return best

    def pause(self) -> None:
        if not self.is_paused:
            self.is_paused = True
            self._pause_count += 1
            self._resume_event.clear()

    def resume(self) -> None:
        self.is_paused = False
        self._resume_event.set()

    def stop(self, restore: bool = True) -> None:
        self.is_running = False
        self.is_paused = False
        self._resume_event.set()
        if restore:
            self.restore_baseline()

    # --- helpers for subclasses -----------------------------------------------

    async def checkpoint(self) -> None:
        """Block while paused; raise OptimizerStopped once stopped."""
        if not self.is_running:
            raise OptimizerStopped()
        await self._resume_event.wait()
        if not self.is_running:
            raise OptimizerStopped()

    def restore_baseline(self) -> None:
        if self.baseline is not None:
            self.runner.apply_gains(self.baseline, self.loop)
            logger.info("Restored baseline gains %s", self.baseline)

    def random_gains(self) -> GainTriple:
        return self.search_space.sample(self.rng, self.fixed_ki)

    def seed_gains(self) -> Optional[GainTriple]:
        """Baseline gains clamped into the search space, if a baseline exists."""
        if self.baseline is None:
            return None
        return self.search_space.clamp(self.baseline, self.fixed_ki)

    async def handle_interrupt(self, exc: EmergencyInterrupt) -> None:
        logger.warning("%s %d: %s; pausing and restoring baseline",
                       self.step_label.capitalize(), self.step, exc)
        self.pause()
        self.restore_baseline()
        self._emit('on_paused', exc.reason)

    async def evaluate(self, gains: GainTriple) -> FitnessResult:
        """
        Score one candidate, retrying it after interrupts and pauses.

        A result produced while the optimizer was paused is discarded and
        the candidate retried after resume, since the plant was switched
        back to baseline gains during the trial.
        """
        while True:
            await self.checkpoint()
            pause_count = self._pause_count
            try:
                result = await self.runner.run_trial(gains, self.loop)
            except EmergencyInterrupt as exc:
                if not self.is_running:
                    raise OptimizerStopped()
                await self.handle_interrupt(exc)
                logger.info("Retrying %s after resume", gains)
                continue
            except TrialFailure as exc:
                logger.warning("%s %d: trial failed for %s: %s",
                               self.step_label.capitalize(), self.step, gains, exc)
                result = FitnessResult.failed(samples=getattr(exc, 'samples', 0))

            if not self.is_running:
                raise OptimizerStopped()
            if self._pause_count != pause_count:
                logger.info("Discarding trial of %s run across a pause", gains)
                continue

            self.trial_count += 1
            self._record_trial(gains, result)
            return result

    # --- bookkeeping ------------------------------------------------------------

    def _record_trial(self, gains: GainTriple, result: FitnessResult) -> None:
        self.history['trials'].append({
            'index': self.trial_count,
            'step': self.step,
            'gains': gains.to_dict(),
            'fitness': result.fitness if result.is_valid else None,
            'itae': None if math.isnan(result.itae) else result.itae,
            'overshoot': None if math.isnan(result.overshoot) else result.overshoot,
        })
        self._emit('on_trial_result', self.trial_count, gains, result.fitness,
                   result.itae, result.overshoot)

    def _record_step(self) -> None:
        best = self.best
        self.history['steps'].append(self.step)
        self.history['best_fitness'].append(best.fitness if best is not None else math.inf)

    def _emit(self, callback: str, *args) -> None:
        try:
            getattr(self.observer, callback)(*args)
        except Exception:
            logger.exception("Observer %s failed", callback)

"""
Trial Runner
============

Runs one bounded experiment on the plant:

1. apply the candidate gains (three set_param commands)
2. ignore telemetry for the settling delay
3. collect samples until settling_delay + trial_duration has elapsed
4. score the window with compute_fitness

A trial that never completes its window fails with TrialTimeout after
2 x (settling_delay + trial_duration). An emergency/interrupt message
from the plant fails it with EmergencyInterrupt.
"""

import asyncio
import logging
from typing import List, Optional

from .config import TrialConfig
from .errors import EmergencyInterrupt, InsufficientData, TrialTimeout
from .gains import GainTriple, LoopSelector
from .link import PlantLink
from .objectives import FitnessResult, TelemetrySample, compute_fitness


logger = logging.getLogger(__name__)

INTERRUPT_MESSAGES = ('emergency', 'test_interrupted')


class TrialRunner:
    """Evaluates gain triples on a live plant, one trial at a time."""

    def __init__(self, link: PlantLink, config: Optional[TrialConfig] = None):
        self.link = link
        self.config = config or TrialConfig()
        self._lock = asyncio.Lock()
        self.trials_started = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def apply_gains(self, gains: GainTriple, loop: LoopSelector = LoopSelector.BALANCE) -> None:
        self.link.apply_gains(gains, loop)

    async def run_trial(
        self,
        gains: GainTriple,
        loop: LoopSelector = LoopSelector.BALANCE
    ) -> FitnessResult:
        """
        Apply ``gains`` and score the resulting telemetry window.

        Raises:
            RuntimeError: another trial is still in flight
            TrialTimeout: the window did not complete in time
            InsufficientData: fewer than ``min_samples`` samples collected
            EmergencyInterrupt: the plant aborted the trial
        """
        if self._lock.locked():
            raise RuntimeError("A trial is already running on this plant")
        async with self._lock:
            self.trials_started += 1
            samples = await self._collect(gains, loop)

        if len(samples) < self.config.min_samples:
            raise InsufficientData(len(samples), self.config.min_samples)

        result = compute_fitness(samples, self.config.weights)
        logger.debug("Trial %s on %s loop: fitness=%.4f itae=%.4f overshoot=%.3f (%d samples)",
                     gains, loop.value, result.fitness, result.itae, result.overshoot, len(samples))
        return result

    async def _collect(self, gains: GainTriple, loop: LoopSelector) -> List[TelemetrySample]:
        cfg = self.config
        event_loop = asyncio.get_running_loop()
        done = event_loop.create_future()
        samples: List[TelemetrySample] = []

        def on_telemetry(data):
            if done.done():
                return
            elapsed = event_loop.time() - start
            if elapsed < cfg.settling_delay:
                return
            pitch = data.get('pitch')
            if pitch is None:
                return
            samples.append(TelemetrySample(
                timestamp_ms=(elapsed - cfg.settling_delay) * 1000.0,
                angle_deg=float(pitch),
                speed=float(data.get('speed') or 0.0),
                loop_time=float(data.get('loop_time') or 0.0),
            ))
            if elapsed >= cfg.window:
                done.set_result(None)

        def on_window_elapsed():
            # Score whatever arrived; with no samples keep waiting for the timeout
            if not done.done() and samples:
                done.set_result(None)

        def interrupt(reason):
            if not done.done():
                done.set_exception(EmergencyInterrupt(reason))

        def on_interrupt(data):
            interrupt(str(data.get('reason', 'emergency')))

        def on_test_complete(data):
            if data.get('success') is False:
                interrupt(str(data.get('reason', 'interrupted_by_emergency')))

        start = event_loop.time()
        window_timer = None
        self.link.on('telemetry', on_telemetry)
        self.link.on('test_complete', on_test_complete)
        for message in INTERRUPT_MESSAGES:
            self.link.on(message, on_interrupt)

        try:
            self.link.apply_gains(gains, loop)
            window_timer = event_loop.call_later(cfg.window, on_window_elapsed)
            try:
                await asyncio.wait_for(done, timeout=cfg.timeout)
            except asyncio.TimeoutError:
                raise TrialTimeout(cfg.timeout, len(samples)) from None
        finally:
            if window_timer is not None:
                window_timer.cancel()
            self.link.off('telemetry', on_telemetry)
            self.link.off('test_complete', on_test_complete)
            for message in INTERRUPT_MESSAGES:
                self.link.off(message, on_interrupt)

        return samples

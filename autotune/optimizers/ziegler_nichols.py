"""
Ziegler-Nichols Relay Method
============================

Drives the plant in relay (bang-bang) mode and reads the ultimate gain
and period off the resulting limit cycle:

    a  = (mean(last N peaks) - mean(last N valleys)) / 2
    Ku = 4 d / (pi a)             d = relay amplitude
    Tu = mean peak-to-peak interval

then applies the classic Ziegler-Nichols table (PID: 0.6 Ku, 1.2 Ku/Tu,
0.075 Ku Tu).
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from ..config import RelayConfig
from ..errors import EmergencyInterrupt, RelayTestFailure
from ..gains import Candidate, GainTriple
from .base import Optimizer


logger = logging.getLogger(__name__)


def ziegler_nichols_gains(ku: float, tu: float, controller_type: str = 'PID') -> GainTriple:
    """
    Ziegler-Nichols tuning rules.

    Args:
        ku: Ultimate gain (where the loop oscillates)
        tu: Ultimate period of oscillation (s)
        controller_type: 'P', 'PI', or 'PID'
    """
    if controller_type == 'P':
        return GainTriple(kp=0.5 * ku, ki=0.0, kd=0.0)
    elif controller_type == 'PI':
        return GainTriple(kp=0.45 * ku, ki=0.54 * ku / tu, kd=0.0)
    elif controller_type == 'PID':
        return GainTriple(kp=0.6 * ku, ki=1.2 * ku / tu, kd=0.075 * ku * tu)
    else:
        raise ValueError(f"Unknown controller type: {controller_type}")


@dataclass(frozen=True)
class RelayResult:
    ku: float
    tu: float
    gains: GainTriple


class ZieglerNicholsRelay(Optimizer):
    """Relay auto-tuner; a single step runs one relay experiment."""

    name = 'zn'
    step_label = 'relay test'

    def __init__(self, config: RelayConfig, *args, **kwargs):
        super().__init__(config, *args, **kwargs)
        self.oscillation_data: List[Tuple[float, float]] = []
        self.peaks: List[Tuple[float, float]] = []
        self.valleys: List[Tuple[float, float]] = []
        self.result: Optional[RelayResult] = None
        self.best_candidate: Optional[Candidate] = None

    @property
    def total_steps(self) -> int:
        return 1

    @property
    def best(self) -> Optional[Candidate]:
        return self.best_candidate

    @property
    def cycles(self) -> int:
        return min(len(self.peaks), len(self.valleys))

    @property
    def has_enough_cycles(self) -> bool:
        return self.cycles >= self.config.min_cycles

    async def initialize(self):
        self.step = 0
        self.reset_oscillation()
        self.result = None
        self.best_candidate = None

    def reset_oscillation(self):
        self.oscillation_data = []
        self.peaks = []
        self.valleys = []

    # --- peak/valley detection -------------------------------------------------------

    def add_point(self, time: float, angle: float) -> None:
        self.oscillation_data.append((time, angle))
        self.detect_extrema()

    def detect_extrema(self) -> None:
        """Classify the middle of the last three points as peak, valley or neither."""
        if len(self.oscillation_data) < 3:
            return
        (_, before), (t, value), (_, after) = self.oscillation_data[-3:]
        debounce = self.config.debounce

        if value > before and value > after:
            if not self.peaks or t - self.peaks[-1][0] > debounce:
                self.peaks.append((t, value))
        elif value < before and value < after:
            if not self.valleys or t - self.valleys[-1][0] > debounce:
                self.valleys.append((t, value))

    def compute_parameters(self) -> RelayResult:
        """
        Ultimate gain/period from the detected extrema.

        Raises:
            RelayTestFailure: no measurable oscillation
        """
        n = self.config.min_cycles
        if not self.peaks or not self.valleys:
            raise RelayTestFailure("No oscillation detected")

        peak_values = [v for _, v in self.peaks[-n:]]
        valley_values = [v for _, v in self.valleys[-n:]]
        amplitude = (np.mean(peak_values) - np.mean(valley_values)) / 2
        if amplitude <= 0:
            raise RelayTestFailure(f"Non-positive oscillation amplitude {amplitude:.4f}")
        ku = 4 * self.config.amplitude / (math.pi * amplitude)

        extrema = self.peaks if len(self.peaks) >= 2 else self.valleys
        if len(extrema) < 2:
            raise RelayTestFailure("Need at least two peaks or valleys to measure the period")
        tu = float(np.mean(np.diff([t for t, _ in extrema])))
        if tu <= 0:
            raise RelayTestFailure(f"Non-positive oscillation period {tu:.4f}")

        return RelayResult(ku=float(ku), tu=tu, gains=ziegler_nichols_gains(ku, tu))

    # --- relay experiment -----------------------------------------------------------

    async def run_one_step(self):
        while True:
            await self.checkpoint()
            try:
                outcome = await self._relay_experiment()
                break
            except EmergencyInterrupt as exc:
                await self.handle_interrupt(exc)
                logger.info("Repeating relay test after resume")

        if not self.has_enough_cycles:
            raise RelayTestFailure(
                f"Relay test ended ({outcome}) after {self.cycles} of "
                f"{self.config.min_cycles} cycles"
            )

        self.result = self.compute_parameters()
        logger.info("Relay test: Ku=%.4f Tu=%.4fs -> %s", self.result.ku, self.result.tu, self.result.gains)

        candidate = Candidate(self.result.gains)
        if self.config.verify:
            verification = await self.evaluate(candidate.gains)
            candidate.fitness = verification.fitness
            candidate.result = verification
        self.best_candidate = candidate
        self.step += 1

    async def _relay_experiment(self) -> str:
        link = self.runner.link
        event_loop = asyncio.get_running_loop()
        done = event_loop.create_future()
        self.reset_oscillation()

        def on_relay_state(data):
            if done.done():
                return
            self.add_point(float(data['time']), float(data['angle']))
            if self.has_enough_cycles:
                done.set_result('cycles')

        def on_test_complete(data):
            if done.done():
                return
            if data.get('success') is False:
                done.set_exception(EmergencyInterrupt(str(data.get('reason', 'relay test aborted'))))
            else:
                done.set_result('complete')

        def on_emergency(data):
            if not done.done():
                done.set_exception(EmergencyInterrupt(str(data.get('reason', 'emergency'))))

        handlers = (
            ('relay_state', on_relay_state),
            ('test_complete', on_test_complete),
            ('emergency', on_emergency),
            ('test_interrupted', on_emergency),
        )
        for type, handler in handlers:
            link.on(type, handler)

        outcome = 'timeout'
        try:
            link.send_command('run_relay_test', {'amplitude': self.config.amplitude})
            outcome = await asyncio.wait_for(done, timeout=self.config.timeout)
        except asyncio.TimeoutError:
            logger.warning("Relay test timed out after %.1fs", self.config.timeout)
        finally:
            for type, handler in handlers:
                link.off(type, handler)
            if outcome != 'complete':
                link.send_command('cancel_test', {})
        return outcome

    def stop(self, restore: bool = True) -> None:
        if self.is_running:
            self.runner.link.send_command('cancel_test', {})
        super().stop(restore)

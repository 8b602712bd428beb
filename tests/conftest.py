"""Shared fixtures: a recording plant link and deterministic trial runners."""

import asyncio

import matplotlib
matplotlib.use('Agg')

import pytest

from autotune.config import TrialConfig
from autotune.gains import GainTriple, LoopSelector, SearchSpace
from autotune.link import PlantLink
from autotune.objectives import FitnessResult


class FakeLink(PlantLink):
    """PlantLink that records every command instead of sending it."""

    def __init__(self):
        super().__init__()
        self.commands = []

    def send_command(self, type, payload):
        self.commands.append((type, dict(payload)))

    def set_params(self):
        return [payload for type, payload in self.commands if type == 'set_param']


class StubRunner:
    """
    Stands in for TrialRunner.

    ``fitness_fn(gains)`` gives the fitness (it may raise a TrialFailure);
    ``script`` maps a call index to an exception raised on that call.
    """

    def __init__(self, fitness_fn, link=None, delay=0.0):
        self.fitness_fn = fitness_fn
        self.link = link or FakeLink()
        self.delay = delay
        self.config = TrialConfig()
        self.script = {}
        self.calls = []
        self.applied = []

    def apply_gains(self, gains, loop=LoopSelector.BALANCE):
        self.applied.append(gains)

    async def run_trial(self, gains, loop=LoopSelector.BALANCE):
        index = len(self.calls)
        self.calls.append(gains)
        await asyncio.sleep(self.delay)
        exc = self.script.get(index)
        if exc is not None:
            raise exc
        value = float(self.fitness_fn(gains))
        return FitnessResult(fitness=value, itae=value, overshoot=0.0,
                             steady_state_error=0.0, samples=10)


async def pump_telemetry(link, interval, pitch=lambda i: 0.5 * (-1) ** (i // 10)):
    """Publish telemetry on ``link`` every ``interval`` seconds until cancelled."""
    i = 0
    while True:
        link.notify('telemetry', {'pitch': pitch(i), 'speed': 0.0, 'loop_time': interval * 1000})
        i += 1
        await asyncio.sleep(interval)


def quadratic(gains):
    return (gains.kp - 50.0) ** 2


@pytest.fixture
def link():
    return FakeLink()


@pytest.fixture
def space():
    return SearchSpace(kp_min=10.0, kp_max=100.0, ki_min=0.0, ki_max=1.0,
                       kd_min=0.0, kd_max=10.0, search_ki=False)


@pytest.fixture
def full_space():
    return SearchSpace(kp_min=10.0, kp_max=100.0, ki_min=0.0, ki_max=1.0,
                       kd_min=0.0, kd_max=10.0, search_ki=True)


@pytest.fixture
def baseline():
    return GainTriple(kp=40.0, ki=0.5, kd=2.0)


@pytest.fixture
def runner():
    return StubRunner(quadratic)

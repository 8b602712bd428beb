"""Tests for TrialRunner timing, timeout and interrupt handling."""

import asyncio
import math

import pytest

from autotune.config import TrialConfig
from autotune.errors import EmergencyInterrupt, InsufficientData, TrialTimeout
from autotune.gains import GainTriple, LoopSelector
from autotune.plant import SimulatedPlant
from autotune.trial import TrialRunner

from conftest import pump_telemetry


GAINS = GainTriple(kp=42.0, ki=0.1, kd=1.5)


def run_with_pump(link, runner, interval, gains=GAINS, pitch=None, loop=LoopSelector.BALANCE):
    async def scenario():
        kwargs = {'pitch': pitch} if pitch is not None else {}
        pump = asyncio.get_running_loop().create_task(pump_telemetry(link, interval, **kwargs))
        try:
            return await runner.run_trial(gains, loop)
        finally:
            pump.cancel()
    return asyncio.run(scenario())


class TestTrialRunner:

    def test_applies_gains_and_scores_window(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=0.1, settling_delay=0.05))
        result = run_with_pump(link, runner, interval=0.005, loop=LoopSelector.SPEED)

        assert link.set_params() == [
            {'key': 'kp_s', 'value': 42.0},
            {'key': 'ki_s', 'value': 0.1},
            {'key': 'kd_s', 'value': 1.5},
        ]
        assert math.isfinite(result.fitness)
        assert result.samples >= 5
        assert result.overshoot == pytest.approx(0.5)
        assert link.handler_count('telemetry') == 0

    def test_settling_samples_are_discarded(self, link):
        # Anything before the settling delay reads as a huge error
        runner = TrialRunner(link, TrialConfig(trial_duration=0.1, settling_delay=0.05))

        async def scenario():
            start = asyncio.get_running_loop().time()

            async def pump():
                while True:
                    elapsed = asyncio.get_running_loop().time() - start
                    link.notify('telemetry', {'pitch': 90.0 if elapsed < 0.03 else 1.0})
                    await asyncio.sleep(0.005)

            task = asyncio.get_running_loop().create_task(pump())
            try:
                return await runner.run_trial(GAINS)
            finally:
                task.cancel()

        result = asyncio.run(scenario())
        assert result.overshoot == pytest.approx(1.0)

    def test_timeout_without_telemetry(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=0.05, settling_delay=0.0))
        with pytest.raises(TrialTimeout) as excinfo:
            asyncio.run(runner.run_trial(GAINS))
        assert excinfo.value.timeout == pytest.approx(0.1)
        assert link.handler_count('telemetry') == 0

    def test_sparse_telemetry_is_insufficient(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=0.1, settling_delay=0.0))
        with pytest.raises(InsufficientData):
            run_with_pump(link, runner, interval=0.04)

    def test_window_closes_when_telemetry_stops_early(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=0.2, settling_delay=0.05))

        async def scenario():
            event_loop = asyncio.get_running_loop()
            pump = event_loop.create_task(pump_telemetry(link, 0.01))
            event_loop.call_later(0.15, pump.cancel)
            start = event_loop.time()
            result = await runner.run_trial(GAINS)
            return result, event_loop.time() - start

        result, elapsed = asyncio.run(scenario())
        assert math.isfinite(result.fitness)
        assert result.samples >= 5
        assert elapsed < 0.4
        assert link.handler_count('telemetry') == 0

    def test_emergency_interrupts_trial(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=1.0, settling_delay=0.0))

        async def scenario():
            event_loop = asyncio.get_running_loop()
            event_loop.call_later(0.02, link.notify, 'emergency', {'reason': 'tilt_limit'})
            await runner.run_trial(GAINS)

        with pytest.raises(EmergencyInterrupt) as excinfo:
            asyncio.run(scenario())
        assert excinfo.value.reason == 'tilt_limit'

    def test_failed_test_complete_interrupts_trial(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=1.0, settling_delay=0.0))

        async def scenario():
            event_loop = asyncio.get_running_loop()
            event_loop.call_later(0.02, link.notify, 'test_complete', {'success': False})
            await runner.run_trial(GAINS)

        with pytest.raises(EmergencyInterrupt):
            asyncio.run(scenario())

    def test_one_trial_at_a_time(self, link):
        runner = TrialRunner(link, TrialConfig(trial_duration=0.05, settling_delay=0.0))

        async def scenario():
            first = asyncio.get_running_loop().create_task(runner.run_trial(GAINS))
            await asyncio.sleep(0)
            assert runner.busy
            with pytest.raises(RuntimeError):
                await runner.run_trial(GAINS)
            with pytest.raises(TrialTimeout):
                await first
            assert not runner.busy

        asyncio.run(scenario())


def test_trial_on_simulated_plant():
    async def scenario():
        plant = SimulatedPlant(enable_noise=False, seed=1)
        plant.start()
        try:
            runner = TrialRunner(plant, TrialConfig(trial_duration=0.2, settling_delay=0.05))
            result = await runner.run_trial(GainTriple(kp=40.0, ki=0.0, kd=2.0))
        finally:
            await plant.close()
        return plant, result

    plant, result = asyncio.run(scenario())
    assert result.samples >= 5
    assert math.isfinite(result.fitness)
    assert plant.get_gains() == GainTriple(kp=40.0, ki=0.0, kd=2.0)

"""
Tuning Session
==============

Lifecycle wrapper around one optimizer:

    IDLE --start()--> RUNNING <--pause()/resume()--> PAUSED
      any state --stop()--> STOPPED

The session captures the baseline gains at start and puts them back on
the plant whenever it pauses, stops, finishes or fails.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from .config import TuningConfig
from .errors import TuningError
from .gains import Candidate, GainTriple
from .link import PlantLink
from .observer import TuningObserver
from .optimizers import Optimizer, create_optimizer
from .trial import TrialRunner


logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    PAUSED = 'paused'
    STOPPED = 'stopped'


class TuningSession(TuningObserver):
    """
    Owns one optimizer and the baseline gains for a tuning run.

    The session observes its optimizer and forwards every callback to
    the host ``observer``.
    """

    def __init__(
        self,
        link: PlantLink,
        config: Optional[TuningConfig] = None,
        observer: Optional[TuningObserver] = None,
        runner: Optional[TrialRunner] = None
    ):
        self.link = link
        self.config = config or TuningConfig()
        self.observer = observer or TuningObserver()
        self.runner = runner or TrialRunner(link, self.config.trial)

        self.optimizer: Optional[Optimizer] = None
        self.baseline: Optional[GainTriple] = None
        self.best: Optional[Candidate] = None
        self.history: Optional[dict] = None
        self.progress = (0, 0)
        self.end_reason: Optional[str] = None
        self.error: Optional[BaseException] = None

        self._state = SessionState.IDLE
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        if (self._state is SessionState.RUNNING and self.optimizer is not None
                and self.optimizer.is_paused):
            return SessionState.PAUSED
        return self._state

    # --- lifecycle ------------------------------------------------------------------

    def start(self, baseline: GainTriple) -> asyncio.Task:
        """
        Validate the configuration, capture ``baseline`` and run the
        optimizer in a background task. Must be called from a running
        event loop.

        Raises:
            ConfigurationError: invalid configuration (session stays IDLE)
            RuntimeError: the session was already started
        """
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Session already {self._state.value}")

        self.config.validate()
        self.runner.config = self.config.trial
        self.baseline = baseline
        self.optimizer = create_optimizer(self.config, self.runner, baseline, observer=self)

        self._state = SessionState.RUNNING
        logger.info("Tuning session started: algorithm=%s loop=%s baseline=%s",
                    self.config.algorithm, self.config.loop.value, baseline)
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self._task

    def pause(self) -> None:
        if self.state is not SessionState.RUNNING:
            return
        self.optimizer.pause()
        self.restore_baseline()
        logger.info("Tuning session paused")

    def resume(self) -> None:
        if self.state is not SessionState.PAUSED:
            return
        self.optimizer.resume()
        logger.info("Tuning session resumed")

    async def stop(self) -> None:
        """Stop from any state; always attempts to restore the baseline."""
        if self._state is SessionState.STOPPED:
            return
        if self.optimizer is not None:
            self.optimizer.stop(restore=False)

        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._finish('stopped')

    async def wait(self) -> Optional[Candidate]:
        """Wait for the session to end and return the best candidate."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.best

    def restore_baseline(self) -> None:
        if self.baseline is None:
            return
        try:
            self.runner.apply_gains(self.baseline, self.config.loop)
        except Exception:
            logger.exception("Failed to restore baseline gains %s", self.baseline)
        else:
            logger.info("Restored baseline gains %s", self.baseline)

    def apply_best(self) -> GainTriple:
        """Send the best gains of a finished session to the plant."""
        if self._state is not SessionState.STOPPED:
            raise RuntimeError("Best gains can only be applied once the session has ended")
        if self.best is None:
            raise RuntimeError("Tuning session produced no best candidate")
        gains = self.best.gains
        self.runner.apply_gains(gains, self.config.loop)
        logger.info("Applied best gains %s (fitness %.4f)", gains, self.best.fitness)
        return gains

    async def _run(self) -> None:
        try:
            await self.optimizer.run()
        except TuningError as exc:
            logger.error("Tuning session failed: %s", exc)
            self.error = exc
            self._finish('failed')
        except Exception as exc:
            logger.exception("Tuning session aborted by an unexpected error")
            self.error = exc
            self._finish('error')
        else:
            self._finish('completed')

    def _finish(self, reason: str) -> None:
        if self._state is SessionState.STOPPED:
            return
        if self.optimizer is not None:
            self.best = self.optimizer.best
            self.history = self.optimizer.history
            self.optimizer = None
        self.restore_baseline()
        self._state = SessionState.STOPPED
        self.end_reason = reason
        logger.info("Tuning session ended: %s", reason)
        try:
            self.observer.on_session_end(reason)
        except Exception:
            logger.exception("Observer on_session_end failed")

    # --- optimizer callbacks ---------------------------------------------------------

    def on_progress(self, step, total, best):
        self.progress = (step, total)
        self.best = best
        self.observer.on_progress(step, total, best)

    def on_trial_result(self, index, gains, fitness, itae, overshoot):
        self.observer.on_trial_result(index, gains, fitness, itae, overshoot)

    def on_paused(self, reason):
        logger.warning("Tuning paused by plant: %s", reason)
        self.observer.on_paused(reason)

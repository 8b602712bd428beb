"""Callbacks the tuner makes into its host application."""

from typing import Callable, Optional

from .gains import Candidate, GainTriple


class TuningObserver:
    """
    No-op observer. Hosts subclass it, or use CallbackObserver, to render
    progress, trial history and session end.
    """

    def on_progress(self, step: int, total: int, best: Optional[Candidate]) -> None:
        pass

    def on_trial_result(self, index: int, gains: GainTriple, fitness: float,
                        itae: float, overshoot: float) -> None:
        pass

    def on_paused(self, reason: str) -> None:
        pass

    def on_session_end(self, reason: str) -> None:
        pass


class CallbackObserver(TuningObserver):
    """Observer built from plain functions; missing callbacks are ignored."""

    def __init__(
        self,
        on_progress: Optional[Callable] = None,
        on_trial_result: Optional[Callable] = None,
        on_paused: Optional[Callable] = None,
        on_session_end: Optional[Callable] = None
    ):
        self._on_progress = on_progress
        self._on_trial_result = on_trial_result
        self._on_paused = on_paused
        self._on_session_end = on_session_end

    def on_progress(self, step, total, best):
        if self._on_progress:
            self._on_progress(step, total, best)

    def on_trial_result(self, index, gains, fitness, itae, overshoot):
        if self._on_trial_result:
            self._on_trial_result(index, gains, fitness, itae, overshoot)

    def on_paused(self, reason):
        if self._on_paused:
            self._on_paused(reason)

    def on_session_end(self, reason):
        if self._on_session_end:
            self._on_session_end(reason)

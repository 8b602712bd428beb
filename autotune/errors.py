"""Error taxonomy for tuning sessions."""


class TuningError(Exception):
    """Base class for all tuning errors."""


class TrialFailure(TuningError):
    """A single trial failed; the candidate is scored as infinite."""


class TrialTimeout(TrialFailure):
    """No complete telemetry window arrived before the trial deadline."""

    def __init__(self, timeout: float, samples: int = 0):
        super().__init__(f"Trial timed out after {timeout:.2f}s ({samples} samples collected)")
        self.timeout = timeout
        self.samples = samples


class InsufficientData(TrialFailure):
    """Too few telemetry samples to score the trial."""

    def __init__(self, samples: int, required: int):
        super().__init__(f"Only {samples} samples collected, {required} required")
        self.samples = samples
        self.required = required


class EmergencyInterrupt(TuningError):
    """The plant aborted the trial; the candidate must be retried."""

    def __init__(self, reason: str = 'emergency'):
        super().__init__(f"Trial interrupted by plant: {reason}")
        self.reason = reason


class ConfigurationError(TuningError, ValueError):
    """Invalid session or algorithm configuration."""


class SurrogateTrainingFailure(TuningError):
    """The Bayesian surrogate could not be trained this round."""


class RelayTestFailure(TuningError):
    """The relay experiment ended without enough oscillation cycles."""

"""Exception taxonomy for the skill-runner job engine."""


class JobEngineError(Exception):
    """Base class for engine errors."""


class RunnerError(JobEngineError):
    """The external runner could not be spawned, waited on, or drained."""


class RunnerTimeoutError(RunnerError):
    """The external runner exceeded its wall-clock budget and was killed."""

    def __init__(self, kind: str, timeout_seconds: float):
        super().__init__(f"{kind} runner timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class ResultFileError(JobEngineError):
    """The result file is missing, empty, or not valid JSON."""


class JobStoreError(JobEngineError):
    """The job store rejected or failed a request."""


class InvalidTransitionError(JobStoreError):
    """A status transition is not permitted from the job's current status."""

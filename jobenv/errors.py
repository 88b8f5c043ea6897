"""
Error taxonomy for jobenv.

- JobEnvError: Base class for all jobenv errors
- InvalidInvocationError: The caller used an environment in a way it forbids
- SubmissionError: The submission client could not accept a workload
- RemoteExecutionError: An accepted job failed while executing
- JobCancelledError: An accepted job was cancelled before it finished
- CancellationTimeoutError: A cancellation acknowledgment did not arrive in time
"""

from __future__ import annotations

DETACHED_MESSAGE = (
    "Job was submitted in detached mode. Results of job execution, such as "
    "metrics and runtime, are not available. "
)
EXECUTE_TWICE_MESSAGE = (
    "execute() may only be called once per environment in detached mode. "
    "Make sure the program does not trigger more than one execution."
)


class JobEnvError(Exception):
    """Base class for jobenv errors."""

    pass


class InvalidInvocationError(JobEnvError):
    """Raised when an operation is not allowed in the environment's current state."""

    pass


class SubmissionError(JobEnvError):
    """
    Raised when a workload could not be handed to the cluster.

    Attributes:
        target: The submission target that rejected the workload.
    """

    def __init__(self, message: str, target: str | None = None) -> None:
        super().__init__(message)
        self.target = target


class RemoteExecutionError(JobEnvError):
    """
    Raised when a submitted job fails on the cluster.

    Attributes:
        job_id: Identifier of the failed job.
    """

    def __init__(self, message: str, job_id: str | None = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class JobCancelledError(RemoteExecutionError):
    """Raised when awaiting a job that was cancelled."""

    pass


class CancellationTimeoutError(JobEnvError):
    """Raised when a cancellation request is not acknowledged in time."""

    pass

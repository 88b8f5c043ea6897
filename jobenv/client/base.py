"""
Submission protocols: Platform-agnostic interface to a cluster.

The SubmissionClient abstraction supports:
- Local thread pools (same process)
- SLURM/HPC batch systems via sbatch
"""

from __future__ import annotations

from concurrent.futures import Future
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from jobenv.config import Configuration
    from jobenv.types import ExecutionResult, Status
    from jobenv.workload import Workload


@runtime_checkable
class SubmissionHandle(Protocol):
    """
    Live reference to a job accepted by a submission client.

    The handle is owned by whoever submitted the job. Users can:
    - Read the job identifier (.job_id)
    - Check the terminal status without blocking (.status)
    - Wait for the final result (.get_execution_result())
    - Request cancellation (.cancel())
    """

    @property
    def job_id(self) -> str:
        """Identifier assigned to the job by the client."""
        ...

    @property
    def status(self) -> Status | None:
        """Terminal status of the job, or None while it is still running."""
        ...

    def get_execution_result(self) -> Future[ExecutionResult]:
        """
        Return a future resolving to the job's final result.

        The future fails with RemoteExecutionError if the job failed, and
        with JobCancelledError if it was cancelled.
        """
        ...

    def cancel(self) -> Future[None]:
        """
        Request cancellation of the job.

        Cancellation is advisory. The returned future resolves once the
        request was acknowledged, not once the job stopped.
        """
        ...


@runtime_checkable
class SubmissionClient(Protocol):
    """
    Protocol for submission backends.

    Key design decisions:
    - submit_async() returns as soon as the job is accepted
    - Waiting and cancellation go through the returned handle
    - Clients raise SubmissionError when a workload cannot be accepted
    """

    def submit_async(
        self,
        workload: Workload,
        configuration: Configuration,
    ) -> SubmissionHandle:
        """
        Submit a workload and return a handle to the running job.

        Args:
            workload: The tasks to run.
            configuration: Settings of the submitting environment.

        Returns:
            A SubmissionHandle for awaiting or cancelling the job.

        Raises:
            SubmissionError: If the workload was rejected or the cluster
                could not be reached.
        """
        ...

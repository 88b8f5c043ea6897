"""
Runtime: Plumbing passed to tasks while a job executes.

The Runtime provides:
- Logger for task output
- Job identifier and task position
- Cancellation token for cooperative shutdown
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field


class CancellationToken:
    """
    Simple cancellation token using threading.Event.

    Tasks should periodically check is_cancelled() and exit gracefully
    if True.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Signal cancellation."""
        self._event.set()

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """
        Wait for cancellation.

        Args:
            timeout: Maximum time to wait in seconds.

        Returns:
            True if cancelled, False if timeout elapsed.
        """
        return self._event.wait(timeout)


@dataclass
class Runtime:
    """
    Runtime context for a single task of a job.

    Attributes:
        job_id: Identifier of the job the task belongs to.
        task_index: Position of the task in the workload.
        logger: A logger for task output.
        cancel_token: For cooperative cancellation.
    """

    job_id: str
    task_index: int = 0
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("jobenv.task"))
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    def check_cancelled(self) -> None:
        """
        Check if cancellation was requested and raise if so.

        Raises:
            CancelledError: If cancellation was requested.
        """
        if self.cancel_token.is_cancelled():
            raise CancelledError(f"Job {self.job_id} was cancelled")


class CancelledError(Exception):
    """Raised inside a task when its job is cancelled."""

    pass


def create_runtime(
    job_id: str,
    task_index: int = 0,
    cancel_token: CancellationToken | None = None,
    logger: logging.Logger | None = None,
) -> Runtime:
    """
    Create a Runtime for one task.

    Args:
        job_id: The job ID (used for the logger name).
        task_index: Position of the task in the workload.
        cancel_token: Token shared by all tasks of the job.
        logger: Custom logger (default: one named after the job).

    Returns:
        A configured Runtime instance.
    """
    if logger is None:
        logger = logging.getLogger(f"jobenv.job.{job_id}")

    return Runtime(
        job_id=job_id,
        task_index=task_index,
        logger=logger,
        cancel_token=cancel_token or CancellationToken(),
    )

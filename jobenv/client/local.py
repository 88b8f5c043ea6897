"""
LocalSubmissionClient: Thread-based execution inside the client process.

Provides:
- LocalClientConfig: Config for the "local" target
- LocalSubmissionClient: Runs each workload on its own thread pool
- LocalSubmissionHandle: Handle for awaiting or cancelling a local job

Useful for development and tests: the same program runs unchanged on a
cluster by switching the configured target.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from jobenv._futures import completed
from jobenv.client.config import ClientConfig, ClientConfigRegistry
from jobenv.errors import JobCancelledError, RemoteExecutionError, SubmissionError
from jobenv.runtime import CancellationToken, CancelledError, create_runtime
from jobenv.types import ExecutionResult, Metrics, Status

if TYPE_CHECKING:
    from jobenv.config import Configuration
    from jobenv.workload import TaskInvocation, Workload

logger = logging.getLogger(__name__)


class LocalSubmissionHandle:
    """
    Handle for a job running on a local thread pool.

    The job finishes when every task finished, when one task failed, or
    when cancel() was called; whichever comes first decides the outcome.
    """

    def __init__(self, job_id: str, job_name: str, total_tasks: int) -> None:
        self._job_id = job_id
        self._job_name = job_name
        self._remaining = total_tasks
        self._result_future: Future[ExecutionResult] = Future()
        self._cancel_token = CancellationToken()
        self._pool: ThreadPoolExecutor | None = None
        self._metrics: Metrics = {}
        self._status: Status | None = None
        self._started = time.monotonic()
        self._lock = threading.RLock()

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def status(self) -> Status | None:
        with self._lock:
            return self._status

    @property
    def cancel_token(self) -> CancellationToken:
        return self._cancel_token

    def get_execution_result(self) -> Future[ExecutionResult]:
        return self._result_future

    def cancel(self) -> Future[None]:
        """Cancel pending tasks and signal running ones; acknowledges immediately."""
        with self._lock:
            if self._status is not None:
                return completed(None)
        logger.info("Cancelling local job %s", self._job_id)
        self._cancel_token.cancel()
        self._shutdown_pool()
        return completed(None)

    def _start(self, pool: ThreadPoolExecutor, futures: list[Future[Metrics]]) -> None:
        self._pool = pool
        for future in futures:
            future.add_done_callback(self._on_task_done)

    def _on_task_done(self, future: Future[Metrics]) -> None:
        outcome: ExecutionResult | BaseException | None = None
        with self._lock:
            if self._status is not None:
                return
            exc = None if future.cancelled() else future.exception()
            if future.cancelled() or isinstance(exc, CancelledError) or (
                exc is None and self._cancel_token.is_cancelled()
            ):
                self._status = Status.CANCELLED
                outcome = JobCancelledError(
                    f"Job {self._job_name!r} ({self._job_id}) was cancelled",
                    job_id=self._job_id,
                )
            elif exc is not None:
                self._status = Status.FAILED
                error = RemoteExecutionError(
                    f"Job {self._job_name!r} ({self._job_id}) failed: "
                    f"{type(exc).__name__}: {exc}",
                    job_id=self._job_id,
                )
                error.__cause__ = exc
                outcome = error
            else:
                self._metrics.update(future.result())
                self._remaining -= 1
                if self._remaining == 0:
                    self._status = Status.SUCCESS
                    outcome = ExecutionResult(
                        job_id=self._job_id,
                        status=Status.SUCCESS,
                        net_runtime_ms=int((time.monotonic() - self._started) * 1000),
                        metrics=dict(self._metrics),
                    )

        if outcome is None:
            return
        self._finish(outcome)

    def _shutdown_pool(self) -> None:
        # shutdown() runs callbacks of cancelled futures under its own lock,
        # so the pool must only be shut down once
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)

    def _finish(self, outcome: ExecutionResult | BaseException) -> None:
        if isinstance(outcome, BaseException):
            # Stop the remaining tasks of a failed job
            self._cancel_token.cancel()
        self._shutdown_pool()

        if isinstance(outcome, ExecutionResult):
            logger.info(
                "Local job %s finished in %d ms", self._job_id, outcome.net_runtime_ms
            )
            self._result_future.set_result(outcome)
        else:
            logger.info("Local job %s ended: %s", self._job_id, outcome)
            self._result_future.set_exception(outcome)


class LocalSubmissionClient:
    """
    Submission client running workloads in the current process.

    Each job gets its own ThreadPoolExecutor sized by the workload's
    parallelism, capped at ``max_workers``.
    """

    def __init__(self, max_workers: int = 4) -> None:
        """
        Initialize the local client.

        Args:
            max_workers: Upper bound on concurrent tasks per job.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._max_workers = max_workers
        self._closed = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def submit_async(
        self,
        workload: Workload,
        configuration: Configuration,
    ) -> LocalSubmissionHandle:
        """
        Start the workload's tasks and return a handle.

        Raises:
            SubmissionError: If the client was closed or the workload is empty.
        """
        if self._closed:
            raise SubmissionError("Local client has been closed", target="local")
        if not workload.tasks:
            raise SubmissionError(
                f"Workload {workload.name!r} has no tasks", target="local"
            )

        job_id = f"local-{uuid.uuid4().hex[:8]}"
        workers = min(workload.effective_parallelism(self._max_workers), self._max_workers)
        handle = LocalSubmissionHandle(job_id, workload.name, len(workload.tasks))

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=job_id)
        futures = [
            pool.submit(self._run_task, invocation, index, handle)
            for index, invocation in enumerate(workload.tasks)
        ]
        logger.info(
            f"Submitted local job {job_id} ({workload.name!r}, "
            f"{len(futures)} tasks, parallelism {workers})"
        )
        handle._start(pool, futures)
        return handle

    def _run_task(
        self,
        invocation: TaskInvocation,
        index: int,
        handle: LocalSubmissionHandle,
    ) -> Metrics:
        """Execute a single task of a job."""
        runtime = create_runtime(
            job_id=handle.job_id,
            task_index=index,
            cancel_token=handle.cancel_token,
        )
        runtime.check_cancelled()
        logger.debug("Job %s: running task %d (%s)", handle.job_id, index, invocation.display_name)
        return invocation.task.run(invocation.params, runtime)

    def close(self) -> None:
        """Refuse further submissions. Running jobs are not affected."""
        self._closed = True


@dataclass
class LocalClientConfig(ClientConfig):
    """
    Configuration for local (thread pool) execution.

    Attributes:
        max_workers: Upper bound on concurrent tasks per job.
    """

    client_type: ClassVar[str] = "local"
    max_workers: int = 4

    def create(self) -> LocalSubmissionClient:
        """Create a LocalSubmissionClient from this config."""
        return LocalSubmissionClient(max_workers=self.max_workers)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LocalClientConfig:
        """Parse from a config dict with an optional 'max_workers' key."""
        return cls(max_workers=int(d.get("max_workers", 4)))


ClientConfigRegistry.register(LocalClientConfig.client_type, LocalClientConfig)

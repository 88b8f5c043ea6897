"""
ExecutionEnvironment: Collects tasks and submits them as jobs.

This module provides:

- ExecutionEnvironment: Builds a workload from added tasks and runs it attached
- EnvironmentFactory: Protocol for objects that create environments
- ContextRegistry: Process-scoped slot making one factory discoverable
- context_registry: The registry used when none is passed explicitly
- get_execution_environment: The environment a program should use

Programs call get_execution_environment() instead of constructing an
environment themselves. When a launcher (see jobenv.program) installed a
factory, the program transparently receives a ContextEnvironment bound to
the launcher's target and result slot.

Example:
    env = get_execution_environment()
    env.add_task(count_words, {"path": "input.txt"})
    result = env.execute("wordcount")
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Protocol

from jobenv.client.config import ClientLoader
from jobenv.config import TARGET, Configuration
from jobenv.errors import InvalidInvocationError, SubmissionError
from jobenv.events import Event, EventCallback, emit_all
from jobenv.task import TaskWrapper, as_task
from jobenv.workload import PARALLELISM_DEFAULT, TaskInvocation, Workload

if TYPE_CHECKING:
    from concurrent.futures import Future

    from jobenv.client.base import SubmissionHandle
    from jobenv.types import ExecutionResult

logger = logging.getLogger(__name__)


class ExecutionEnvironment:
    """
    Entry point for submitting work.

    Tasks added with add_task() accumulate until the next execute() or
    execute_async(), which turns them into one Workload and hands it to
    the submission client named by the configuration's ``target``.
    """

    def __init__(
        self,
        configuration: Configuration | None = None,
        client_loader: ClientLoader | None = None,
    ) -> None:
        """
        Initialize the environment.

        Args:
            configuration: Settings (target, attached, ...). Defaults apply
                when omitted.
            client_loader: Resolves the submission client; one is created
                when omitted.
        """
        self._configuration = configuration if configuration is not None else Configuration()
        self._client_loader = client_loader or ClientLoader()
        self._parallelism = PARALLELISM_DEFAULT
        self._tasks: list[TaskInvocation] = []
        self._listeners: list[EventCallback] = []
        self.last_result: ExecutionResult | None = None

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    @property
    def parallelism(self) -> int:
        """Parallelism for submitted workloads (-1 means the client's default)."""
        return self._parallelism

    @parallelism.setter
    def parallelism(self, value: int) -> None:
        if value < 1 and value != PARALLELISM_DEFAULT:
            raise ValueError(
                f"Parallelism must be at least 1 (or {PARALLELISM_DEFAULT} for default), "
                f"got {value}"
            )
        self._parallelism = value

    # ------------------------------------------------------------------
    # Workload construction
    # ------------------------------------------------------------------

    def add_task(
        self,
        task: TaskWrapper | Callable[..., Any] | str,
        params: dict[str, Any] | None = None,
        *,
        name: str | None = None,
    ) -> TaskInvocation:
        """
        Add a task to the next job.

        Args:
            task: A @task function, a plain function, or a "module:name" reference.
            params: Parameters passed to the task.
            name: Display name (defaults to the task name).

        Returns:
            The recorded invocation.
        """
        invocation = TaskInvocation(task=as_task(task), params=dict(params or {}), name=name or "")
        self._tasks.append(invocation)
        return invocation

    @property
    def pending_tasks(self) -> list[TaskInvocation]:
        """Tasks added since the last execution."""
        return list(self._tasks)

    def create_workload(self, job_name: str) -> Workload:
        """
        Turn the pending tasks into a Workload and clear them.

        Raises:
            InvalidInvocationError: If no tasks were added since the last execution.
        """
        if not self._tasks:
            raise InvalidInvocationError(
                "No tasks were added since the last execution. "
                "Add tasks with add_task() before calling execute()."
            )
        workload = Workload(name=job_name, tasks=tuple(self._tasks), parallelism=self._parallelism)
        self._tasks.clear()
        return workload

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def register_listener(self, callback: EventCallback) -> None:
        """Register a callback for job events."""
        self._listeners.append(callback)

    def clear_listeners(self) -> None:
        """Remove all registered callbacks."""
        self._listeners.clear()

    def _emit(self, event: Event) -> None:
        emit_all(self._listeners, event)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, job_name: str | None = None) -> ExecutionResult:
        """
        Submit the pending tasks and wait for the job to finish.

        Raises:
            InvalidInvocationError: If there are no pending tasks.
            SubmissionError: If the job could not be submitted.
            RemoteExecutionError: If the job failed.
        """
        job_name = job_name or self._default_job_name()
        handle = self.execute_async(job_name)
        result = self._await_result(handle.get_execution_result(), job_name, handle.job_id)
        self.last_result = result
        return result

    def execute_async(self, job_name: str | None = None) -> SubmissionHandle:
        """
        Submit the pending tasks and return without waiting.

        Raises:
            InvalidInvocationError: If there are no pending tasks.
            SubmissionError: If the job could not be submitted.
        """
        job_name = job_name or self._default_job_name()
        workload = self.create_workload(job_name)

        try:
            client = self._client_loader.load(self._configuration)
        except ValueError as e:
            error = SubmissionError(str(e), target=self._configuration.get(TARGET))
            self._emit(Event.job_failed(job_name, None, error))
            raise error from e

        try:
            handle = client.submit_async(workload, self._configuration)
        except Exception as e:
            self._emit(Event.job_failed(job_name, None, e))
            raise

        logger.info("Job %r submitted with id %s", job_name, handle.job_id)
        self._emit(Event.job_submitted(job_name, handle.job_id, tasks=len(workload)))
        return handle

    def _await_result(
        self,
        future: Future[ExecutionResult],
        job_name: str,
        job_id: str,
    ) -> ExecutionResult:
        """Block on *future*, emitting job_executed or job_failed."""
        try:
            result = future.result()
        except Exception as e:
            logger.info("Job %r (%s) failed: %s", job_name, job_id, e)
            self._emit(Event.job_failed(job_name, job_id, e))
            raise
        logger.info("Job %r (%s) finished: %s", job_name, job_id, result.status.value)
        self._emit(
            Event.job_executed(
                job_name,
                job_id,
                status=result.status.value,
                net_runtime_ms=result.net_runtime_ms,
            )
        )
        return result

    @staticmethod
    def _default_job_name() -> str:
        return f"jobenv job at {datetime.now().isoformat(timespec='seconds')}"

    def _parallelism_label(self) -> str:
        if self._parallelism == PARALLELISM_DEFAULT:
            return "default"
        return str(self._parallelism)

    def __str__(self) -> str:
        return f"Execution Environment (parallelism = {self._parallelism_label()})"


# ---------------------------------------------------------------------------
# Context registration
# ---------------------------------------------------------------------------


class EnvironmentFactory(Protocol):
    """Creates the environment a program receives from get_execution_environment()."""

    def create_environment(self) -> ExecutionEnvironment:
        ...


class ContextRegistry:
    """
    Process-scoped slot holding at most one EnvironmentFactory.

    A launcher installs a factory before running a user program and
    uninstalls it afterwards; the program looks the factory up through
    get_execution_environment().
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._factory: EnvironmentFactory | None = None

    def install(self, factory: EnvironmentFactory) -> None:
        """
        Make *factory* the active factory.

        Raises:
            InvalidInvocationError: If a different factory is already active.
        """
        with self._lock:
            if self._factory is not None and self._factory is not factory:
                raise InvalidInvocationError(
                    "Another context environment is already installed. "
                    "Uninstall it before installing a new one."
                )
            self._factory = factory
        logger.debug("Installed context environment factory %r", factory)

    def uninstall(self) -> EnvironmentFactory | None:
        """
        Remove the active factory. Safe to call when none is installed.

        Returns:
            The factory that was active, if any.
        """
        with self._lock:
            factory, self._factory = self._factory, None
        if factory is not None:
            logger.debug("Uninstalled context environment factory %r", factory)
        return factory

    @property
    def active(self) -> EnvironmentFactory | None:
        with self._lock:
            return self._factory

    def create_environment(self) -> ExecutionEnvironment | None:
        """Create an environment from the active factory, or None if none is installed."""
        factory = self.active
        if factory is None:
            return None
        return factory.create_environment()


context_registry = ContextRegistry()


def get_execution_environment(registry: ContextRegistry | None = None) -> ExecutionEnvironment:
    """
    Return the environment the current program should submit through.

    Args:
        registry: Registry to consult (defaults to the process registry).

    Returns:
        The installed factory's environment, or a plain ExecutionEnvironment.
    """
    registry = registry if registry is not None else context_registry
    env = registry.create_environment()
    if env is None:
        return ExecutionEnvironment()
    return env

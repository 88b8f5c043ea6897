"""
ContextEnvironment: Execution environment provided to a launched program.

Provides:
- ContextEnvironment: Executes jobs against a fixed target, attached or detached
- ContextEnvironmentFactory: Creates ContextEnvironments sharing one ResultSlot

Attached vs. detached:
- Attached: execute() blocks until the job's final result is known. With
  ``shutdown-on-attached-exit`` set, a shutdown hook cancels the job if the
  client process exits while waiting.
- Detached: execute() returns a DetachedExecutionResult right after
  submission and may only be called once per environment.
"""

from __future__ import annotations

import functools
import logging
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TYPE_CHECKING

from jobenv._futures import when_complete
from jobenv.config import (
    ATTACHED,
    DEFAULT_PARALLELISM,
    SHUTDOWN_CANCEL_TIMEOUT,
    SHUTDOWN_IF_ATTACHED,
    Configuration,
)
from jobenv.environment import ContextRegistry, ExecutionEnvironment, context_registry
from jobenv.errors import (
    DETACHED_MESSAGE,
    EXECUTE_TWICE_MESSAGE,
    CancellationTimeoutError,
    InvalidInvocationError,
)
from jobenv.events import Event
from jobenv.shutdown import ShutdownHookRegistry, default_hook_registry
from jobenv.types import DetachedExecutionResult, ExecutionResult

if TYPE_CHECKING:
    from jobenv.client.base import SubmissionHandle
    from jobenv.client.config import ClientLoader
    from jobenv.slot import ResultSlot
    from jobenv.types import AnyExecutionResult

logger = logging.getLogger(__name__)


class ContextEnvironment(ExecutionEnvironment):
    """
    Execution environment for programs run by a launcher.

    Every result is written to the ResultSlot passed at construction, which
    the launcher reads after the program returned.
    """

    def __init__(
        self,
        configuration: Configuration,
        result_slot: ResultSlot,
        client_loader: ClientLoader | None = None,
        shutdown_hooks: ShutdownHookRegistry | None = None,
    ) -> None:
        """
        Initialize the context environment.

        Args:
            configuration: Settings; ``attached``, ``shutdown-on-attached-exit``
                and ``default-parallelism`` are read here.
            result_slot: Shared slot receiving every execution result.
            client_loader: Resolves the submission client.
            shutdown_hooks: Registry for the exit hook (defaults to the
                process registry).
        """
        super().__init__(configuration, client_loader)
        self._result_slot = result_slot
        self._shutdown_hooks = shutdown_hooks
        self.already_called = False

        parallelism = configuration.get(DEFAULT_PARALLELISM)
        if parallelism > 0:
            self.parallelism = parallelism

    @property
    def result_slot(self) -> ResultSlot:
        return self._result_slot

    def execute(self, job_name: str | None = None) -> AnyExecutionResult:
        """
        Submit the pending tasks as one job.

        Attached mode waits for the final result; detached mode returns a
        DetachedExecutionResult immediately. Either way the result is also
        stored in the result slot.

        Raises:
            InvalidInvocationError: If called twice in detached mode, or if
                there are no pending tasks.
            SubmissionError: If the job could not be submitted.
            RemoteExecutionError: If an attached job failed.
        """
        self._verify_execute_is_called_once_when_in_detached_mode()

        job_name = job_name or self._default_job_name()
        handle = self.execute_async(job_name)

        result: AnyExecutionResult
        if self._configuration.get(ATTACHED):
            future = handle.get_execution_result()

            if self._configuration.get(SHUTDOWN_IF_ATTACHED):
                hooks = self._hook_registry()
                hook = hooks.add(
                    functools.partial(self._cancel_on_exit, handle, job_name),
                    name=f"{type(self).__name__}[{handle.job_id}]",
                )
                future = when_complete(future, lambda _: hooks.remove(hook))

            result = self._await_result(future, job_name, handle.job_id)
        else:
            result = DetachedExecutionResult(handle.job_id)
            self._emit(Event.job_executed(job_name, handle.job_id, detached=True))

        self.set_execution_result(result)
        return result

    def _verify_execute_is_called_once_when_in_detached_mode(self) -> None:
        if self.already_called and not self._configuration.get(ATTACHED):
            raise InvalidInvocationError(DETACHED_MESSAGE + EXECUTE_TWICE_MESSAGE)
        self.already_called = True

    def _hook_registry(self) -> ShutdownHookRegistry:
        if self._shutdown_hooks is None:
            self._shutdown_hooks = default_hook_registry()
        return self._shutdown_hooks

    def _cancel_on_exit(self, handle: SubmissionHandle, job_name: str) -> None:
        """Cancel an attached job from the exit hook, waiting a bounded time."""
        timeout = self._configuration.get(SHUTDOWN_CANCEL_TIMEOUT)
        logger.info("Client is exiting; cancelling job %r (%s)", job_name, handle.job_id)
        self._emit(Event.job_cancel_requested(job_name, handle.job_id, reason="client exit"))
        try:
            handle.cancel().result(timeout=timeout)
        except FuturesTimeoutError as e:
            raise CancellationTimeoutError(
                f"Job {handle.job_id} did not acknowledge cancellation within {timeout}s"
            ) from e

    def set_execution_result(self, result: AnyExecutionResult) -> None:
        """
        Store *result* in the shared result slot.

        Raises:
            TypeError: If *result* is not an execution result.
        """
        if not isinstance(result, (ExecutionResult, DetachedExecutionResult)):
            raise TypeError(
                f"Expected ExecutionResult or DetachedExecutionResult, "
                f"got {type(result).__name__}"
            )
        self._result_slot.set(result)

    def __str__(self) -> str:
        return f"Context Environment (parallelism = {self._parallelism_label()})"

    # ------------------------------------------------------------------
    # Context registration
    # ------------------------------------------------------------------

    @staticmethod
    def set_as_context(
        factory: ContextEnvironmentFactory,
        registry: ContextRegistry | None = None,
    ) -> None:
        """Install *factory* so get_execution_environment() uses it."""
        (registry if registry is not None else context_registry).install(factory)

    @staticmethod
    def unset_context(registry: ContextRegistry | None = None) -> None:
        """Uninstall the active factory, if any."""
        (registry if registry is not None else context_registry).uninstall()


class ContextEnvironmentFactory:
    """
    Creates ContextEnvironments that share a configuration and result slot.

    In detached mode only one environment may be created, since each one
    can only execute a single job.
    """

    def __init__(
        self,
        configuration: Configuration,
        result_slot: ResultSlot,
        client_loader: ClientLoader | None = None,
        shutdown_hooks: ShutdownHookRegistry | None = None,
    ) -> None:
        self._configuration = configuration
        self._result_slot = result_slot
        self._client_loader = client_loader
        self._shutdown_hooks = shutdown_hooks
        self._last_env_created: ContextEnvironment | None = None

    @property
    def last_env_created(self) -> ContextEnvironment | None:
        return self._last_env_created

    def create_environment(self) -> ContextEnvironment:
        """
        Create a ContextEnvironment.

        Raises:
            InvalidInvocationError: If an environment was already created in
                detached mode.
        """
        if self._last_env_created is not None and not self._configuration.get(ATTACHED):
            raise InvalidInvocationError(
                "Multiple environments cannot be created in detached mode."
            )
        env = ContextEnvironment(
            self._configuration,
            self._result_slot,
            client_loader=self._client_loader,
            shutdown_hooks=self._shutdown_hooks,
        )
        self._last_env_created = env
        return env

    def __repr__(self) -> str:
        return f"ContextEnvironmentFactory({self._configuration!r})"

"""
jobenv: Submit jobs from a client program, attached or detached.

A program builds a workload of tasks on an execution environment and calls
execute(). When run through a launcher (``jobenv run`` or run_program()),
the program receives a ContextEnvironment that submits to the configured
target, either waiting for the result (attached) or returning right after
submission (detached).

Example:
    import jobenv

    @jobenv.task
    def count_words(params, runtime):
        with open(params["path"]) as f:
            words = len(f.read().split())
        runtime.logger.info("Counted %d words", words)
        return {"words": words}

    def main():
        env = jobenv.get_execution_environment()
        env.add_task(count_words, {"path": "input.txt"})
        result = env.execute("wordcount")
        print(result.get_metric("words"))

    # Run under a context environment:
    result = jobenv.run_program(main, jobenv.Configuration({"target": "local"}))
"""

__version__ = "0.1.0"

# Client layer
from jobenv.client import (
    ClientConfig,
    ClientConfigRegistry,
    ClientLoader,
    LocalClientConfig,
    LocalSubmissionClient,
    SubmissionClient,
    SubmissionHandle,
    client_from_config,
)

# Configuration
from jobenv.config import (
    ATTACHED,
    DEFAULT_PARALLELISM,
    SHUTDOWN_CANCEL_TIMEOUT,
    SHUTDOWN_IF_ATTACHED,
    TARGET,
    ConfigOption,
    Configuration,
    ProjectConfig,
)

# Environments
from jobenv.context import ContextEnvironment, ContextEnvironmentFactory
from jobenv.environment import (
    ContextRegistry,
    ExecutionEnvironment,
    context_registry,
    get_execution_environment,
)

# Errors
from jobenv.errors import (
    CancellationTimeoutError,
    InvalidInvocationError,
    JobCancelledError,
    JobEnvError,
    RemoteExecutionError,
    SubmissionError,
)

# Events
from jobenv.events import Event, EventCallback, EventKind

# Program runner
from jobenv.program import run_program

# Runtime
from jobenv.runtime import CancellationToken, CancelledError, Runtime

# Shutdown hooks
from jobenv.shutdown import ShutdownHook, ShutdownHookRegistry, default_hook_registry

# Result slot
from jobenv.slot import ResultSlot

# Tasks
from jobenv.task import TaskWrapper, task

# Types (public)
from jobenv.types import DetachedExecutionResult, ExecutionResult, Status
from jobenv.workload import TaskInvocation, Workload


# Lazy import for SLURM
def __getattr__(name: str):
    if name in ("SlurmClientConfig", "SlurmSubmissionClient", "SlurmSubmissionHandle"):
        from jobenv.client import slurm

        return getattr(slurm, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

"""
Program runner: Executes a user program inside a context environment.

A user program is any callable (or "module:function" reference) that
obtains its environment through get_execution_environment() and calls
execute(). run_program() installs a ContextEnvironmentFactory around the
call, so the program submits to the configured target, and returns the
last result the program produced.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, Callable, Sequence

from jobenv.context import ContextEnvironment, ContextEnvironmentFactory
from jobenv.slot import ResultSlot

if TYPE_CHECKING:
    from jobenv.client.config import ClientLoader
    from jobenv.config import Configuration
    from jobenv.environment import ContextRegistry
    from jobenv.shutdown import ShutdownHookRegistry
    from jobenv.types import AnyExecutionResult

logger = logging.getLogger(__name__)


def load_entrypoint(ref: str) -> Callable[..., Any]:
    """
    Resolve a "module:function" reference.

    Raises:
        ValueError: If *ref* is malformed or does not name a callable.
    """
    if ":" not in ref:
        raise ValueError(f"Invalid entry point {ref!r}: expected 'module:function'")
    module_name, attr_path = ref.split(":", 1)
    obj: Any = importlib.import_module(module_name)
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise ValueError(f"Entry point {ref!r} is not callable")
    return obj


def run_program(
    entrypoint: Callable[..., Any] | str,
    configuration: Configuration,
    args: Sequence[Any] = (),
    client_loader: ClientLoader | None = None,
    registry: ContextRegistry | None = None,
    shutdown_hooks: ShutdownHookRegistry | None = None,
) -> AnyExecutionResult | None:
    """
    Run a user program with a context environment installed.

    Args:
        entrypoint: The program, as a callable or "module:function".
        configuration: Configuration for every environment the program creates.
        args: Positional arguments passed to the program.
        client_loader: Resolves the submission client.
        registry: Context registry to install into (defaults to the process one).
        shutdown_hooks: Registry for exit hooks of attached jobs.

    Returns:
        The last result the program produced, or None if it never executed.
    """
    program = load_entrypoint(entrypoint) if isinstance(entrypoint, str) else entrypoint
    result_slot = ResultSlot()
    factory = ContextEnvironmentFactory(
        configuration,
        result_slot,
        client_loader=client_loader,
        shutdown_hooks=shutdown_hooks,
    )

    ContextEnvironment.set_as_context(factory, registry)
    try:
        logger.debug("Running program %r", getattr(program, "__name__", program))
        program(*args)
    finally:
        ContextEnvironment.unset_context(registry)

    result = result_slot.get()
    if result is None:
        logger.warning("Program finished without executing a job")
    return result

"""
Task decorator and wrapper.

The @task decorator marks a function as a unit of work in a workload,
adding a name and an importable reference so that remote workers can
resolve it.
"""

from __future__ import annotations

import functools
import importlib
import inspect
from typing import TYPE_CHECKING, Any, Callable, TypeVar

if TYPE_CHECKING:
    from jobenv.runtime import Runtime
    from jobenv.types import Metrics

F = TypeVar("F", bound=Callable[..., Any])


class TaskWrapper:
    """
    Wrapper around a task function.

    Provides:

    - Metadata (name)
    - An importable "module:qualname" reference
    - Automatic signature inspection (only inject requested parameters)
    """

    # Valid parameter names that can be injected
    INJECTABLE_PARAMS = {"params", "runtime"}

    def __init__(
        self,
        func: Callable[..., Metrics | None],
        name: str | None = None,
    ) -> None:
        """
        Initialize the wrapper.

        Args:
            func: The task function.
            name: The task name (defaults to function name).
        """
        self._func = func
        self._name = name or func.__name__

        sig = inspect.signature(func)
        self._param_names = set(sig.parameters.keys())

        invalid = self._param_names - self.INJECTABLE_PARAMS
        if invalid:
            raise ValueError(
                f"Task '{self._name}' has invalid parameter(s): {invalid}. "
                f"Valid parameters are: {self.INJECTABLE_PARAMS}"
            )

        functools.update_wrapper(self, func)

    @property
    def name(self) -> str:
        """The task name."""
        return self._name

    @property
    def ref(self) -> str | None:
        """
        Reference string for this task ("module:qualname").

        None when the function cannot be imported by name (lambdas and
        functions defined inside other functions).
        """
        module = self._func.__module__
        qualname = self._func.__qualname__
        if "<" in qualname or module == "__main__":
            return None
        return f"{module}:{qualname}"

    def run(self, params: dict[str, Any], runtime: Runtime) -> Metrics:
        """
        Execute the task, injecting only what its signature requests.

        Returns:
            The metrics reported by the task (empty if it returned None).

        Raises:
            TypeError: If the task returns something other than a dict or None.
        """
        available = {"params": params, "runtime": runtime}
        kwargs = {k: v for k, v in available.items() if k in self._param_names}

        metrics = self._func(**kwargs)
        if metrics is None:
            return {}
        if not isinstance(metrics, dict):
            raise TypeError(
                f"Task '{self._name}' must return a dict of metrics or None, "
                f"got {type(metrics).__name__}"
            )
        return metrics

    def __call__(self, params: dict[str, Any], runtime: Runtime) -> Metrics:
        """Allow calling the wrapper directly."""
        return self.run(params, runtime)

    def __repr__(self) -> str:
        return f"Task({self._name})"


def task(
    func: F | None = None,
    *,
    name: str | None = None,
) -> TaskWrapper | Callable[[F], TaskWrapper]:
    """
    Decorator to mark a function as a jobenv task.

    Can be used with or without arguments:

    ```python
    @jobenv.task
    def count_words(params): ...

    @jobenv.task(name="wordcount")
    def count_words(params, runtime): ...
    ```

    The decorated function can request any subset of:

    - `params`: The parameters given when the task was added
    - `runtime`: Runtime context (logger, job id, cancellation token)

    It returns a flat dict of metrics, or None.
    """

    def decorator(fn: F) -> TaskWrapper:
        return TaskWrapper(fn, name=name)

    if func is not None:
        return decorator(func)

    return decorator


def as_task(obj: TaskWrapper | Callable[..., Any] | str) -> TaskWrapper:
    """
    Coerce a task, plain function or reference string into a TaskWrapper.

    Raises:
        TypeError: If *obj* is none of those.
    """
    if isinstance(obj, TaskWrapper):
        return obj
    if isinstance(obj, str):
        return import_task(obj)
    if callable(obj):
        return TaskWrapper(obj)
    raise TypeError(f"Expected a task, function or 'module:name' reference, got {obj!r}")


def import_task(ref: str) -> TaskWrapper:
    """
    Import a task from a reference string.

    Plain functions are wrapped on the fly.

    Args:
        ref: Reference in format "module:name".

    Raises:
        ImportError: If the module cannot be imported.
        AttributeError: If the task cannot be found.
        ValueError: If the reference is malformed.
    """
    if ":" not in ref:
        raise ValueError(f"Task reference must look like 'module:name', got {ref!r}")
    module_name, attr_name = ref.rsplit(":", 1)

    module = importlib.import_module(module_name)

    # Handle nested attributes (e.g., "module:Class.method")
    obj: Any = module
    for part in attr_name.split("."):
        obj = getattr(obj, part)

    if isinstance(obj, TaskWrapper):
        return obj
    if callable(obj):
        return TaskWrapper(obj)
    raise TypeError(f"Expected a task or function at {ref!r}, got {type(obj).__name__}")

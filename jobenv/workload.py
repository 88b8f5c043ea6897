"""
Workload: The unit of work handed to a submission client.

A Workload is an ordered list of task invocations plus the parallelism
requested for the job. Clients decide how to run it; the SLURM client
needs every task to be importable by reference so the workload can be
written to a JSON spec and executed by a worker process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jobenv.task import TaskWrapper, import_task

PARALLELISM_DEFAULT = -1


@dataclass(frozen=True)
class TaskInvocation:
    """
    One task of a workload together with its parameters.

    Attributes:
        task: The wrapped task function.
        params: Parameters passed to the task.
        name: Display name (defaults to the task name).
    """

    task: TaskWrapper
    params: dict[str, Any] = field(default_factory=dict)
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.task.name

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize to a JSON-compatible dict.

        Raises:
            ValueError: If the task cannot be referenced by import path.
        """
        ref = self.task.ref
        if ref is None:
            raise ValueError(
                f"Task {self.display_name!r} is not importable by reference. "
                "Define it at module level (outside __main__) to run it remotely."
            )
        return {"name": self.display_name, "ref": ref, "params": dict(self.params)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskInvocation:
        """Create from dictionary, importing the task reference."""
        return cls(
            task=import_task(data["ref"]),
            params=dict(data.get("params", {})),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class Workload:
    """
    A named job ready for submission.

    Attributes:
        name: The job name.
        tasks: Task invocations in submission order.
        parallelism: Requested parallelism, or PARALLELISM_DEFAULT.
    """

    name: str
    tasks: tuple[TaskInvocation, ...] = ()
    parallelism: int = PARALLELISM_DEFAULT

    def __len__(self) -> int:
        return len(self.tasks)

    def effective_parallelism(self, default: int) -> int:
        """Return the requested parallelism, or *default* when unset."""
        if self.parallelism > 0:
            return self.parallelism
        return default

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "name": self.name,
            "parallelism": self.parallelism,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Workload:
        """Create from dictionary."""
        return cls(
            name=data["name"],
            tasks=tuple(TaskInvocation.from_dict(t) for t in data.get("tasks", [])),
            parallelism=int(data.get("parallelism", PARALLELISM_DEFAULT)),
        )

"""
Core types for jobenv (PUBLIC).

This module defines the results handed back to callers:
- Status: Job completion status
- ExecutionResult: Outcome of a job the caller waited for
- DetachedExecutionResult: Placeholder for a job submitted without waiting
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from jobenv.errors import DETACHED_MESSAGE, InvalidInvocationError

Metrics = dict[str, float | int | str | bool]


class Status(str, Enum):
    """Job completion status."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExecutionResult:
    """
    Result of a job that ran to completion.

    Attributes:
        job_id: Identifier assigned by the submission client.
        status: Completion status.
        net_runtime_ms: Wall-clock runtime of the job in milliseconds.
        metrics: Flat dict of scalar values reported by the job's tasks.
    """

    job_id: str
    status: Status = Status.SUCCESS
    net_runtime_ms: int = 0
    metrics: Metrics = field(default_factory=dict)

    @property
    def is_detached(self) -> bool:
        """True if this result is a placeholder for a detached submission."""
        return False

    def get_metric(self, name: str) -> Any:
        """
        Return a single metric value.

        Raises:
            KeyError: If the job did not report the metric.
        """
        try:
            return self.metrics[name]
        except KeyError:
            available = ", ".join(sorted(self.metrics)) or "(none)"
            raise KeyError(
                f"No metric {name!r} in result of job {self.job_id}. "
                f"Available metrics: {available}"
            ) from None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "net_runtime_ms": self.net_runtime_ms,
            "metrics": dict(self.metrics),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionResult:
        """Create from dictionary."""
        return cls(
            job_id=data["job_id"],
            status=Status(data.get("status", Status.SUCCESS.value)),
            net_runtime_ms=int(data.get("net_runtime_ms", 0)),
            metrics=dict(data.get("metrics", {})),
        )


class DetachedExecutionResult:
    """
    Placeholder result for a job submitted in detached mode.

    Only the job identifier is known. Reading anything else raises
    InvalidInvocationError, since the caller never waited for the job.
    """

    __slots__ = ("_job_id",)

    def __init__(self, job_id: str) -> None:
        self._job_id = job_id

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def is_detached(self) -> bool:
        return True

    @property
    def status(self) -> Status:
        raise InvalidInvocationError(DETACHED_MESSAGE)

    @property
    def net_runtime_ms(self) -> int:
        raise InvalidInvocationError(DETACHED_MESSAGE)

    @property
    def metrics(self) -> Metrics:
        raise InvalidInvocationError(DETACHED_MESSAGE)

    def get_metric(self, name: str) -> Any:
        raise InvalidInvocationError(DETACHED_MESSAGE)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"job_id": self._job_id, "detached": True}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DetachedExecutionResult):
            return NotImplemented
        return self._job_id == other._job_id

    def __hash__(self) -> int:
        return hash(("detached", self._job_id))

    def __repr__(self) -> str:
        return f"DetachedExecutionResult(job_id={self._job_id!r})"


# Either kind of result can be stored in a ResultSlot
AnyExecutionResult = ExecutionResult | DetachedExecutionResult

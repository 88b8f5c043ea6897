"""
Events system: Job listener notifications.

Ordering guarantees:
- Synchronous emission: Events are emitted inline on the submitting thread
  (the shutdown hook emits from whichever thread runs the hooks)
- Best-effort delivery: If a listener raises, the exception is logged and
  execution continues
- Per-job ordering: job_submitted precedes job_executed / job_failed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Types of events emitted by environments."""

    JOB_SUBMITTED = "job_submitted"
    JOB_EXECUTED = "job_executed"
    JOB_FAILED = "job_failed"
    JOB_CANCEL_REQUESTED = "job_cancel_requested"


@dataclass(frozen=True)
class Event:
    """
    An event emitted while a job is submitted or awaited.

    Attributes:
        kind: The type of event.
        job_name: Name of the workload.
        job_id: Identifier assigned by the client (None if submission failed).
        timestamp: When the event occurred.
        payload: Event-specific data.
    """

    kind: EventKind
    job_name: str
    job_id: str | None
    timestamp: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def job_submitted(cls, job_name: str, job_id: str, **extra: Any) -> Event:
        """Create a job_submitted event."""
        return cls(
            kind=EventKind.JOB_SUBMITTED,
            job_name=job_name,
            job_id=job_id,
            timestamp=datetime.now(),
            payload=extra,
        )

    @classmethod
    def job_executed(cls, job_name: str, job_id: str, **extra: Any) -> Event:
        """Create a job_executed event."""
        return cls(
            kind=EventKind.JOB_EXECUTED,
            job_name=job_name,
            job_id=job_id,
            timestamp=datetime.now(),
            payload=extra,
        )

    @classmethod
    def job_failed(
        cls, job_name: str, job_id: str | None, error: BaseException, **extra: Any
    ) -> Event:
        """Create a job_failed event."""
        return cls(
            kind=EventKind.JOB_FAILED,
            job_name=job_name,
            job_id=job_id,
            timestamp=datetime.now(),
            payload={
                "error": str(error),
                "error_type": type(error).__name__,
                **extra,
            },
        )

    @classmethod
    def job_cancel_requested(cls, job_name: str, job_id: str, reason: str) -> Event:
        """Create a job_cancel_requested event."""
        return cls(
            kind=EventKind.JOB_CANCEL_REQUESTED,
            job_name=job_name,
            job_id=job_id,
            timestamp=datetime.now(),
            payload={"reason": reason},
        )


# Type alias for event callbacks
EventCallback = Callable[[Event], None]


def emit_event(callback: EventCallback | None, event: Event) -> None:
    """
    Emit an event to a callback, with best-effort delivery.

    If the callback raises an exception, it is logged but the job continues.

    Args:
        callback: The event callback (may be None).
        event: The event to emit.
    """
    if callback is None:
        return

    try:
        callback(event)
    except Exception as e:
        logger.warning(f"Event callback failed for {event.kind}: {e}")


def emit_all(callbacks: Iterable[EventCallback], event: Event) -> None:
    """Emit *event* to every callback in order."""
    for callback in callbacks:
        emit_event(callback, event)

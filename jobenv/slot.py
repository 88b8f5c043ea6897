"""
ResultSlot: Shared cell holding the most recent execution result.

A ResultSlot is created by whoever wants to observe results (typically the
program runner) and handed to environments at construction time. The
environment writes; any other holder of the same slot reads.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jobenv.types import AnyExecutionResult


class ResultSlot:
    """
    Single-writer, multi-reader cell for an execution result.

    Writes are last-writer-wins. Readers see None until the first write.
    """

    def __init__(self, initial: AnyExecutionResult | None = None) -> None:
        self._lock = threading.Lock()
        self._value = initial

    def get(self) -> AnyExecutionResult | None:
        """Return the stored result, or None if nothing was written yet."""
        with self._lock:
            return self._value

    def set(self, value: AnyExecutionResult | None) -> None:
        """Replace the stored result."""
        with self._lock:
            self._value = value

    def clear(self) -> AnyExecutionResult | None:
        """Empty the slot and return what it held."""
        with self._lock:
            value, self._value = self._value, None
            return value

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._value is not None

    def __repr__(self) -> str:
        return f"ResultSlot({self.get()!r})"

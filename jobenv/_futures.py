"""
Small helpers around concurrent.futures.Future.

INTERNAL: not part of the public API.
"""

from __future__ import annotations

import logging
from concurrent.futures import CancelledError, Future
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def when_complete(future: Future[T], action: Callable[[Future[T]], None]) -> Future[T]:
    """
    Run *action* once *future* resolves and return a future chained after it.

    The returned future resolves with the same outcome as *future*, but only
    after *action* returned, so a waiter on it observes the action's effects.
    Errors raised by *action* are logged and do not change the outcome.
    """
    chained: Future[T] = Future()

    def _done(f: Future[T]) -> None:
        try:
            action(f)
        except Exception:
            logger.warning("Completion callback failed", exc_info=True)

        if f.cancelled():
            chained.set_exception(CancelledError())
            return
        exc = f.exception()
        if exc is not None:
            chained.set_exception(exc)
        else:
            chained.set_result(f.result())

    future.add_done_callback(_done)
    return chained


def completed(value: T | None = None) -> Future[T]:
    """Return a future that is already resolved with *value*."""
    f: Future[T] = Future()
    f.set_result(value)  # type: ignore[arg-type]
    return f


def failed(exc: BaseException) -> Future[T]:
    """Return a future that is already resolved with *exc*."""
    f: Future[T] = Future()
    f.set_exception(exc)
    return f

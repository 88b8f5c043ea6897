"""
Shutdown hooks: Callbacks that run when the client process exits.

Provides:
- ShutdownHook: A one-shot callback that can either fire or be discarded
- ShutdownHookRegistry: Holds hooks and runs them on interpreter exit or SIGTERM
- default_hook_registry: The registry shared by the whole process

Ordering guarantees:
- A hook runs at most once, and never after it was discarded
- Discarding a hook that already fired is a no-op and never raises
- Exceptions raised by a hook are logged; they never stop process exit
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class ShutdownHook:
    """
    A callback registered to run when the process exits.

    ``fire()`` and ``discard()`` race on a single lock-guarded flag:
    whichever runs first wins and the other becomes a no-op.
    """

    def __init__(self, action: Callable[[], None], name: str = "shutdown-hook") -> None:
        self._action = action
        self.name = name
        self._lock = threading.Lock()
        self._handled = False
        self._fired = False

    def _claim(self) -> bool:
        with self._lock:
            if self._handled:
                return False
            self._handled = True
            return True

    def fire(self) -> bool:
        """
        Run the hook's action unless it already fired or was discarded.

        Returns:
            True if the action ran.
        """
        if not self._claim():
            logger.debug("Shutdown hook %s already handled; not firing", self.name)
            return False
        self._fired = True
        try:
            self._action()
        except Exception:
            logger.warning("Shutdown hook %s failed", self.name, exc_info=True)
        return True

    def discard(self) -> bool:
        """
        Prevent the hook from ever firing.

        Returns:
            True if this call discarded the hook, False if it had already
            fired or been discarded.
        """
        return self._claim()

    @property
    def fired(self) -> bool:
        """True if the action was started."""
        return self._fired

    @property
    def handled(self) -> bool:
        """True once the hook fired or was discarded."""
        with self._lock:
            return self._handled

    def __repr__(self) -> str:
        return f"ShutdownHook({self.name!r}, handled={self.handled})"


class ShutdownHookRegistry:
    """
    Registry of hooks run when the process exits.

    The registry attaches itself to the interpreter lazily, on the first
    ``add()``: an ``atexit`` callback always, and a SIGTERM handler when
    ``handle_signals`` is True and the registry is first used from the
    main thread. After the hooks ran on SIGTERM, the previously installed
    handler is called if it was a Python callable, otherwise the process
    exits with status ``128 + signum``.
    """

    def __init__(self, handle_signals: bool = False) -> None:
        self._lock = threading.Lock()
        self._hooks: dict[int, ShutdownHook] = {}
        self._handle_signals = handle_signals
        self._installed = False
        self._shutting_down = False
        self._previous_handler: Callable | int | None = None

    @property
    def is_shutting_down(self) -> bool:
        with self._lock:
            return self._shutting_down

    def __len__(self) -> int:
        with self._lock:
            return len(self._hooks)

    def add(self, action: Callable[[], None], name: str = "shutdown-hook") -> ShutdownHook:
        """
        Register *action* to run on process exit.

        If the registry is already running its hooks, the returned hook is
        not registered and will never fire.
        """
        hook = ShutdownHook(action, name)
        with self._lock:
            if self._shutting_down:
                logger.debug("Process is shutting down; not registering hook %s", name)
                return hook
            self._hooks[id(hook)] = hook
        self._install()
        logger.debug("Registered shutdown hook %s", name)
        return hook

    def remove(self, hook: ShutdownHook) -> bool:
        """
        Deregister *hook*. Safe to call at any time, including during exit.

        Returns:
            True if the hook was discarded before it could fire.
        """
        with self._lock:
            self._hooks.pop(id(hook), None)
            shutting_down = self._shutting_down
        discarded = hook.discard()
        if shutting_down:
            logger.debug(
                "Removed shutdown hook %s while the process is shutting down", hook.name
            )
        elif discarded:
            logger.debug("Removed shutdown hook %s", hook.name)
        return discarded

    def run_hooks(self) -> None:
        """Fire every registered hook. Later registrations are refused."""
        with self._lock:
            self._shutting_down = True
            hooks = list(self._hooks.values())
            self._hooks.clear()
        for hook in hooks:
            hook.fire()

    def _install(self) -> None:
        with self._lock:
            if self._installed:
                return
            self._installed = True
        atexit.register(self.run_hooks)
        if self._handle_signals and threading.current_thread() is threading.main_thread():
            self._previous_handler = signal.signal(signal.SIGTERM, self._on_signal)

    def _on_signal(self, signum: int, frame: object) -> None:
        logger.info("Received signal %s, running shutdown hooks...", signum)
        self.run_hooks()
        previous = self._previous_handler
        if callable(previous):
            previous(signum, frame)
            return
        if previous == signal.SIG_IGN:
            return
        raise SystemExit(128 + signum)


_default_registry: ShutdownHookRegistry | None = None
_default_registry_lock = threading.Lock()


def default_hook_registry() -> ShutdownHookRegistry:
    """Return the process-wide registry, creating it on first use."""
    global _default_registry
    with _default_registry_lock:
        if _default_registry is None:
            _default_registry = ShutdownHookRegistry(handle_signals=True)
        return _default_registry

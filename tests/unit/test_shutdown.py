"""Tests for shutdown hooks and the hook registry."""

from __future__ import annotations

import signal
import threading
from unittest.mock import MagicMock, patch

import pytest

from jobenv import shutdown
from jobenv.shutdown import ShutdownHook, ShutdownHookRegistry, default_hook_registry


class TestShutdownHook:
    """Tests for the fire/discard race on a single hook."""

    def test_fire_runs_action_once(self):
        action = MagicMock()
        hook = ShutdownHook(action, "test")

        assert hook.fire() is True
        assert hook.fire() is False
        action.assert_called_once_with()
        assert hook.fired

    def test_discard_prevents_fire(self):
        action = MagicMock()
        hook = ShutdownHook(action, "test")

        assert hook.discard() is True
        assert hook.fire() is False
        action.assert_not_called()
        assert hook.handled
        assert not hook.fired

    def test_discard_after_fire_is_noop(self):
        hook = ShutdownHook(MagicMock(), "test")
        hook.fire()
        assert hook.discard() is False

    def test_fire_logs_action_errors(self, caplog):
        """A failing action is logged, never raised."""
        hook = ShutdownHook(MagicMock(side_effect=RuntimeError("kaput")), "failing")

        assert hook.fire() is True
        assert "Shutdown hook failing failed" in caplog.text

    def test_concurrent_fire_and_discard(self):
        """Exactly one of fire/discard wins when they race."""
        for _ in range(50):
            action = MagicMock()
            hook = ShutdownHook(action, "race")
            results = {}
            barrier = threading.Barrier(2)

            def do_fire():
                barrier.wait()
                results["fire"] = hook.fire()

            def do_discard():
                barrier.wait()
                results["discard"] = hook.discard()

            threads = [threading.Thread(target=do_fire), threading.Thread(target=do_discard)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

            assert results["fire"] != results["discard"]
            assert action.call_count == (1 if results["fire"] else 0)


class TestShutdownHookRegistry:
    """Tests for ShutdownHookRegistry."""

    @pytest.fixture
    def registry(self):
        registry = ShutdownHookRegistry()
        with patch.object(shutdown.atexit, "register"):
            yield registry

    def test_add_and_remove(self, registry):
        hook = registry.add(MagicMock(), "job-1")
        assert len(registry) == 1

        assert registry.remove(hook) is True
        assert len(registry) == 0

    def test_remove_twice_returns_false(self, registry):
        hook = registry.add(MagicMock(), "job-1")
        registry.remove(hook)
        assert registry.remove(hook) is False

    def test_run_hooks_fires_all(self, registry):
        actions = [MagicMock(), MagicMock()]
        for action in actions:
            registry.add(action)

        registry.run_hooks()

        for action in actions:
            action.assert_called_once_with()
        assert registry.is_shutting_down
        assert len(registry) == 0

    def test_removed_hook_not_fired(self, registry):
        action = MagicMock()
        registry.remove(registry.add(action))
        registry.run_hooks()
        action.assert_not_called()

    def test_remove_during_shutdown_never_raises(self, registry):
        hook = registry.add(MagicMock())
        registry.run_hooks()
        assert registry.remove(hook) is False

    def test_add_during_shutdown_is_not_registered(self, registry):
        registry.run_hooks()
        action = MagicMock()

        hook = registry.add(action)

        assert len(registry) == 0
        registry.run_hooks()
        action.assert_not_called()
        assert not hook.fired

    def test_failing_hook_does_not_stop_others(self, registry):
        second = MagicMock()
        registry.add(MagicMock(side_effect=RuntimeError("first fails")))
        registry.add(second)

        registry.run_hooks()

        second.assert_called_once_with()


class TestInterpreterIntegration:
    """Tests for atexit and SIGTERM wiring."""

    def test_atexit_registered_once(self):
        registry = ShutdownHookRegistry()
        with patch.object(shutdown.atexit, "register") as register:
            registry.add(MagicMock())
            registry.add(MagicMock())
        register.assert_called_once_with(registry.run_hooks)

    def test_no_atexit_before_first_add(self):
        with patch.object(shutdown.atexit, "register") as register:
            ShutdownHookRegistry()
        register.assert_not_called()

    def test_signal_handler_installed_on_main_thread(self):
        registry = ShutdownHookRegistry(handle_signals=True)
        with patch.object(shutdown.atexit, "register"), patch.object(
            shutdown.signal, "signal", return_value=signal.SIG_DFL
        ) as install:
            registry.add(MagicMock())
        install.assert_called_once_with(signal.SIGTERM, registry._on_signal)

    def test_signal_handler_not_installed_by_default(self):
        registry = ShutdownHookRegistry()
        with patch.object(shutdown.atexit, "register"), patch.object(
            shutdown.signal, "signal"
        ) as install:
            registry.add(MagicMock())
        install.assert_not_called()

    def test_signal_runs_hooks_then_exits(self):
        registry = ShutdownHookRegistry()
        registry._previous_handler = signal.SIG_DFL
        action = MagicMock()
        with patch.object(shutdown.atexit, "register"):
            registry.add(action)

        with pytest.raises(SystemExit) as exc_info:
            registry._on_signal(signal.SIGTERM, None)

        action.assert_called_once_with()
        assert exc_info.value.code == 128 + signal.SIGTERM

    def test_signal_chains_previous_handler(self):
        registry = ShutdownHookRegistry()
        previous = MagicMock()
        registry._previous_handler = previous

        registry._on_signal(signal.SIGTERM, None)

        previous.assert_called_once_with(signal.SIGTERM, None)

    def test_signal_respects_ignored_previous_handler(self):
        registry = ShutdownHookRegistry()
        registry._previous_handler = signal.SIG_IGN
        registry._on_signal(signal.SIGTERM, None)
        assert registry.is_shutting_down


class TestDefaultRegistry:
    def test_same_instance(self):
        assert default_hook_registry() is default_hook_registry()

    def test_handles_signals(self):
        assert default_hook_registry()._handle_signals is True

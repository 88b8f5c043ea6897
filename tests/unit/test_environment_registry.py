"""Tests for ExecutionEnvironment, the context registry and the environment factory."""

from __future__ import annotations

import pytest
from conftest import FakeClient, FakeLoader, noop_task

from jobenv.config import Configuration
from jobenv.context import ContextEnvironment, ContextEnvironmentFactory
from jobenv.environment import (
    ContextRegistry,
    ExecutionEnvironment,
    get_execution_environment,
)
from jobenv.errors import InvalidInvocationError, SubmissionError
from jobenv.events import EventKind
from jobenv.task import task


@task(name="double")
def double(params):
    return {"value": params["x"] * 2}


class TestExecutionEnvironment:
    """Tests for the plain ExecutionEnvironment."""

    def test_add_task_records_invocation(self):
        env = ExecutionEnvironment()
        invocation = env.add_task(double, {"x": 2}, name="first")

        assert invocation.task is double
        assert invocation.params == {"x": 2}
        assert invocation.display_name == "first"
        assert env.pending_tasks == [invocation]

    def test_add_task_wraps_plain_function(self):
        env = ExecutionEnvironment()
        invocation = env.add_task(noop_task)
        assert invocation.display_name == "noop_task"

    def test_execute_without_tasks_raises(self):
        env = ExecutionEnvironment(client_loader=FakeLoader(FakeClient()))
        with pytest.raises(InvalidInvocationError, match="No tasks"):
            env.execute("empty")

    def test_execute_clears_pending_tasks(self):
        client = FakeClient()
        env = ExecutionEnvironment(client_loader=FakeLoader(client))
        env.add_task(double, {"x": 1})
        env.add_task(double, {"x": 2})

        result = env.execute("doubling")

        assert result.job_id == "job-1"
        assert env.last_result is result
        assert env.pending_tasks == []
        workload = client.submissions[0]
        assert workload.name == "doubling"
        assert [t.params["x"] for t in workload.tasks] == [1, 2]

    def test_default_job_name(self):
        client = FakeClient()
        env = ExecutionEnvironment(client_loader=FakeLoader(client))
        env.add_task(noop_task)

        env.execute()

        assert client.submissions[0].name.startswith("jobenv job at ")

    def test_execute_async_does_not_wait(self):
        client = FakeClient(auto_complete=False)
        env = ExecutionEnvironment(client_loader=FakeLoader(client))
        env.add_task(noop_task)

        handle = env.execute_async("job")

        assert handle.job_id == "job-1"
        assert handle.result_requests == 0

    def test_unknown_target_raises_submission_error(self):
        env = ExecutionEnvironment(Configuration({"target": "nowhere"}))
        env.add_task(noop_task)

        with pytest.raises(SubmissionError, match="nowhere") as exc_info:
            env.execute("job")
        assert exc_info.value.target == "nowhere"

    def test_submission_failure_emits_job_failed(self):
        client = FakeClient()
        client.error = SubmissionError("rejected")
        env = ExecutionEnvironment(client_loader=FakeLoader(client))
        env.add_task(noop_task)
        events = []
        env.register_listener(events.append)

        with pytest.raises(SubmissionError):
            env.execute("job")

        assert len(events) == 1
        assert events[0].kind == EventKind.JOB_FAILED
        assert events[0].job_id is None
        assert events[0].payload["error_type"] == "SubmissionError"

    def test_failing_listener_does_not_break_execution(self):
        env = ExecutionEnvironment(client_loader=FakeLoader(FakeClient()))
        env.add_task(noop_task)

        def bad_listener(event):
            raise RuntimeError("listener bug")

        env.register_listener(bad_listener)
        assert env.execute("job").job_id == "job-1"

    def test_clear_listeners(self):
        env = ExecutionEnvironment(client_loader=FakeLoader(FakeClient()))
        env.add_task(noop_task)
        events = []
        env.register_listener(events.append)
        env.clear_listeners()

        env.execute("job")

        assert events == []

    @pytest.mark.parametrize("value", [0, -2])
    def test_invalid_parallelism(self, value):
        env = ExecutionEnvironment()
        with pytest.raises(ValueError, match="Parallelism"):
            env.parallelism = value

    def test_str(self):
        env = ExecutionEnvironment()
        assert str(env) == "Execution Environment (parallelism = default)"
        env.parallelism = 8
        assert str(env) == "Execution Environment (parallelism = 8)"


class TestContextRegistry:
    """Tests for ContextRegistry install/uninstall."""

    def _factory(self, **settings):
        return ContextEnvironmentFactory(
            Configuration(settings),
            result_slot=None,
            client_loader=FakeLoader(FakeClient()),
        )

    def test_install_and_uninstall(self):
        registry = ContextRegistry()
        factory = self._factory()

        registry.install(factory)
        assert registry.active is factory

        assert registry.uninstall() is factory
        assert registry.active is None

    def test_uninstall_is_idempotent(self):
        registry = ContextRegistry()
        assert registry.uninstall() is None
        assert registry.uninstall() is None

    def test_install_while_active_raises(self):
        registry = ContextRegistry()
        registry.install(self._factory())

        with pytest.raises(InvalidInvocationError, match="already installed"):
            registry.install(self._factory())

    def test_reinstalling_same_factory_is_allowed(self):
        registry = ContextRegistry()
        factory = self._factory()
        registry.install(factory)
        registry.install(factory)
        assert registry.active is factory

    def test_set_as_context_delegates(self):
        registry = ContextRegistry()
        factory = self._factory()

        ContextEnvironment.set_as_context(factory, registry)
        assert registry.active is factory

        ContextEnvironment.unset_context(registry)
        assert registry.active is None


class TestGetExecutionEnvironment:
    """Tests for get_execution_environment()."""

    def test_plain_environment_without_context(self):
        env = get_execution_environment(ContextRegistry())
        assert type(env) is ExecutionEnvironment

    def test_context_environment_when_installed(self, slot):
        registry = ContextRegistry()
        factory = ContextEnvironmentFactory(Configuration(), slot)
        registry.install(factory)

        env = get_execution_environment(registry)

        assert isinstance(env, ContextEnvironment)
        assert env.result_slot is slot
        assert factory.last_env_created is env


class TestContextEnvironmentFactory:
    """Tests for ContextEnvironmentFactory."""

    def test_attached_allows_many_environments(self, slot):
        factory = ContextEnvironmentFactory(Configuration(), slot)
        first = factory.create_environment()
        second = factory.create_environment()

        assert first is not second
        assert first.result_slot is second.result_slot is slot

    def test_detached_allows_one_environment(self, slot):
        factory = ContextEnvironmentFactory(Configuration({"attached": False}), slot)
        factory.create_environment()

        with pytest.raises(InvalidInvocationError, match="detached"):
            factory.create_environment()

    def test_environments_share_collaborators(self, slot, loader, hooks):
        factory = ContextEnvironmentFactory(
            Configuration({"shutdown-on-attached-exit": True}),
            slot,
            client_loader=loader,
            shutdown_hooks=hooks,
        )
        env = factory.create_environment()
        env.add_task(noop_task)

        env.execute("job")

        assert loader.loads == 1
        assert len(hooks.added) == 1
        assert slot.get().job_id == "job-1"

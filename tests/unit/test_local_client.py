"""Tests for the local (thread pool) submission client and client registry."""

from __future__ import annotations

import threading

import pytest

from jobenv.client.config import ClientConfigRegistry, ClientLoader, client_from_config
from jobenv.client.local import LocalClientConfig, LocalSubmissionClient
from jobenv.config import Configuration
from jobenv.errors import JobCancelledError, RemoteExecutionError, SubmissionError
from jobenv.task import task
from jobenv.types import ExecutionResult, Status
from jobenv.workload import TaskInvocation, Workload


@task
def emit_metric(params):
    return {params["key"]: params["value"]}


@task
def explode(params):
    raise ValueError(f"bad value {params['value']}")


@task
def wait_for_cancel(params, runtime):
    params["started"].set()
    runtime.cancel_token.wait(timeout=5)
    runtime.check_cancelled()
    return {"finished": True}


@task
def record_thread(params):
    params["threads"].add(threading.current_thread().name)
    params["barrier"].wait(timeout=5)


def _workload(*invocations, name="job", parallelism=-1):
    return Workload(name=name, tasks=tuple(invocations), parallelism=parallelism)


class TestLocalSubmissionClient:
    """Tests for LocalSubmissionClient."""

    def test_success_merges_metrics(self):
        client = LocalSubmissionClient(max_workers=2)
        handle = client.submit_async(
            _workload(
                TaskInvocation(emit_metric, {"key": "a", "value": 1}),
                TaskInvocation(emit_metric, {"key": "b", "value": 2}),
            ),
            Configuration(),
        )

        result = handle.get_execution_result().result(timeout=5)

        assert isinstance(result, ExecutionResult)
        assert result.job_id == handle.job_id
        assert result.status == Status.SUCCESS
        assert result.metrics == {"a": 1, "b": 2}
        assert result.net_runtime_ms >= 0
        assert handle.status == Status.SUCCESS

    def test_job_id_format(self):
        handle = LocalSubmissionClient().submit_async(
            _workload(TaskInvocation(emit_metric, {"key": "a", "value": 1})),
            Configuration(),
        )
        handle.get_execution_result().result(timeout=5)

        assert handle.job_id.startswith("local-")
        assert len(handle.job_id) == len("local-") + 8

    def test_task_failure_fails_job(self):
        handle = LocalSubmissionClient().submit_async(
            _workload(TaskInvocation(explode, {"value": 3}), name="doomed"),
            Configuration(),
        )

        with pytest.raises(RemoteExecutionError, match="bad value 3") as exc_info:
            handle.get_execution_result().result(timeout=5)

        assert exc_info.value.job_id == handle.job_id
        assert isinstance(exc_info.value.__cause__, ValueError)
        assert handle.status == Status.FAILED

    def test_cancel_running_job(self):
        started = threading.Event()
        handle = LocalSubmissionClient().submit_async(
            _workload(TaskInvocation(wait_for_cancel, {"started": started})),
            Configuration(),
        )
        assert started.wait(timeout=5)

        ack = handle.cancel()

        assert ack.result(timeout=1) is None
        with pytest.raises(JobCancelledError):
            handle.get_execution_result().result(timeout=5)
        assert handle.status == Status.CANCELLED

    def test_cancel_drops_pending_tasks(self):
        """With one worker, tasks queued behind a running one never start."""
        started = threading.Event()
        recorded = []

        @task
        def never_runs():
            recorded.append(True)

        handle = LocalSubmissionClient(max_workers=1).submit_async(
            _workload(
                TaskInvocation(wait_for_cancel, {"started": started}),
                TaskInvocation(never_runs),
            ),
            Configuration(),
        )
        assert started.wait(timeout=5)

        handle.cancel()

        with pytest.raises(JobCancelledError):
            handle.get_execution_result().result(timeout=5)
        assert recorded == []

    def test_cancel_after_completion_is_noop(self):
        handle = LocalSubmissionClient().submit_async(
            _workload(TaskInvocation(emit_metric, {"key": "a", "value": 1})),
            Configuration(),
        )
        result = handle.get_execution_result().result(timeout=5)

        assert handle.cancel().result(timeout=1) is None
        assert handle.get_execution_result().result() is result

    def test_parallelism_capped_by_max_workers(self):
        threads: set[str] = set()
        barrier = threading.Barrier(2)
        invocations = [
            TaskInvocation(record_thread, {"threads": threads, "barrier": barrier})
            for _ in range(2)
        ]
        handle = LocalSubmissionClient(max_workers=2).submit_async(
            _workload(*invocations, parallelism=8), Configuration()
        )

        handle.get_execution_result().result(timeout=5)

        assert len(threads) == 2

    def test_empty_workload_rejected(self):
        with pytest.raises(SubmissionError, match="no tasks"):
            LocalSubmissionClient().submit_async(_workload(), Configuration())

    def test_closed_client_rejects(self):
        client = LocalSubmissionClient()
        client.close()
        with pytest.raises(SubmissionError, match="closed") as exc_info:
            client.submit_async(
                _workload(TaskInvocation(emit_metric, {"key": "a", "value": 1})),
                Configuration(),
            )
        assert exc_info.value.target == "local"

    def test_invalid_max_workers(self):
        with pytest.raises(ValueError, match="max_workers"):
            LocalSubmissionClient(max_workers=0)


class TestClientRegistry:
    """Tests for target resolution."""

    def test_local_registered(self):
        assert ClientConfigRegistry.get("local") is LocalClientConfig
        assert "local" in ClientConfigRegistry.types()

    def test_local_config_from_dict(self):
        config = LocalClientConfig.from_dict({"max_workers": "3"})
        assert config.max_workers == 3
        assert config.create().max_workers == 3

    def test_client_from_config(self):
        client = client_from_config("local", {"max_workers": 2})
        assert isinstance(client, LocalSubmissionClient)
        assert client.max_workers == 2

    def test_unknown_target_lists_available(self):
        with pytest.raises(ValueError, match="Available") as exc_info:
            client_from_config("quantum")
        assert "local" in str(exc_info.value)

    def test_loader_reuses_clients(self):
        loader = ClientLoader()
        configuration = Configuration({"client": {"max_workers": 2}})

        first = loader.load(configuration)
        second = loader.load(Configuration({"client": {"max_workers": 2}}))
        other = loader.load(Configuration({"client": {"max_workers": 3}}))

        assert first is second
        assert other is not first

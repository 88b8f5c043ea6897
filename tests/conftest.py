"""Shared test doubles for jobenv tests."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future

import pytest

from jobenv.config import Configuration
from jobenv.shutdown import ShutdownHook, ShutdownHookRegistry
from jobenv.slot import ResultSlot
from jobenv.types import ExecutionResult


class FakeHandle:
    """Submission handle whose futures are controlled by the test."""

    def __init__(self, job_id: str) -> None:
        self._job_id = job_id
        self.result_future: Future[ExecutionResult] = Future()
        self.cancel_ack: Future[None] = Future()
        self.result_requests = 0
        self.cancel_calls = 0
        self.status = None

    @property
    def job_id(self) -> str:
        return self._job_id

    def get_execution_result(self) -> Future[ExecutionResult]:
        self.result_requests += 1
        return self.result_future

    def cancel(self) -> Future[None]:
        self.cancel_calls += 1
        return self.cancel_ack

    def complete(self, **kwargs) -> ExecutionResult:
        result = ExecutionResult(job_id=self._job_id, **kwargs)
        self.result_future.set_result(result)
        return result


class FakeClient:
    """
    Submission client recording every workload.

    Job ids are "job-1", "job-2", ... With auto_complete, each handle's
    result resolves immediately with a SUCCESS result.
    """

    def __init__(self, auto_complete: bool = True) -> None:
        self.auto_complete = auto_complete
        self.error: Exception | None = None
        self.submissions = []
        self.handles: list[FakeHandle] = []

    def submit_async(self, workload, configuration):
        if self.error is not None:
            raise self.error
        self.submissions.append(workload)
        handle = FakeHandle(f"job-{len(self.submissions)}")
        self.handles.append(handle)
        if self.auto_complete:
            handle.complete()
        return handle


class FakeLoader:
    """Client loader that always returns the same client."""

    def __init__(self, client) -> None:
        self.client = client
        self.loads = 0

    def load(self, configuration):
        self.loads += 1
        return self.client


class CountingHookRegistry(ShutdownHookRegistry):
    """Hook registry recording add/remove calls, never attached to the interpreter."""

    def __init__(self) -> None:
        super().__init__(handle_signals=False)
        self.added: list[ShutdownHook] = []
        self.removed: list[ShutdownHook] = []

    def add(self, action, name="shutdown-hook"):
        hook = super().add(action, name)
        self.added.append(hook)
        return hook

    def remove(self, hook):
        self.removed.append(hook)
        return super().remove(hook)

    def _install(self) -> None:
        pass


def wait_until(predicate, timeout: float = 5.0) -> bool:
    """Poll *predicate* until it holds or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def noop_task():
    return None


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def loader(fake_client):
    return FakeLoader(fake_client)


@pytest.fixture
def hooks():
    return CountingHookRegistry()


@pytest.fixture
def slot():
    return ResultSlot()


@pytest.fixture
def make_env(loader, hooks, slot):
    """Build a ContextEnvironment with one pending task over the fake client."""
    from jobenv.context import ContextEnvironment

    def _make(**settings) -> ContextEnvironment:
        env = ContextEnvironment(
            Configuration(settings),
            slot,
            client_loader=loader,
            shutdown_hooks=hooks,
        )
        env.add_task(noop_task)
        return env

    return _make


@pytest.fixture
def run_in_thread():
    """Run a callable on a thread, capturing its result or exception."""
    threads: list[threading.Thread] = []

    def _run(fn):
        outcome: dict = {}

        def target():
            try:
                outcome["result"] = fn()
            except BaseException as e:  # noqa: BLE001
                outcome["error"] = e

        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        threads.append(thread)
        return thread, outcome

    yield _run
    for thread in threads:
        thread.join(timeout=5)

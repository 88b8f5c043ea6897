"""Tests for event system."""

from __future__ import annotations

from datetime import datetime

import pytest

from jobenv.events import Event, EventKind, emit_all, emit_event


class TestEvent:
    """Tests for Event dataclass."""

    def test_job_submitted_factory(self):
        """job_submitted() factory should create correct event."""
        event = Event.job_submitted("wordcount", "job-1", tasks=3)
        assert event.kind == EventKind.JOB_SUBMITTED
        assert event.job_name == "wordcount"
        assert event.job_id == "job-1"
        assert event.payload["tasks"] == 3
        assert isinstance(event.timestamp, datetime)

    def test_job_executed_factory(self):
        event = Event.job_executed("wordcount", "job-1", status="success")
        assert event.kind == EventKind.JOB_EXECUTED
        assert event.payload["status"] == "success"

    def test_job_failed_factory(self):
        """job_failed() records the error message and type."""
        event = Event.job_failed("wordcount", None, ValueError("bad input"))
        assert event.kind == EventKind.JOB_FAILED
        assert event.job_id is None
        assert event.payload["error"] == "bad input"
        assert event.payload["error_type"] == "ValueError"

    def test_job_cancel_requested_factory(self):
        event = Event.job_cancel_requested("wordcount", "job-1", reason="client exit")
        assert event.kind == EventKind.JOB_CANCEL_REQUESTED
        assert event.payload["reason"] == "client exit"

    def test_event_is_frozen(self):
        """Events should be immutable."""
        event = Event.job_submitted("wordcount", "job-1")
        with pytest.raises(AttributeError):
            event.job_id = "other"  # type: ignore[misc]


class TestEmitEvent:
    """Tests for emit_event() and emit_all()."""

    def test_emit_to_callback(self):
        """Events should be passed to callback."""
        received = []
        event = Event.job_submitted("wordcount", "job-1")

        emit_event(received.append, event)

        assert received == [event]

    def test_emit_none_callback(self):
        """A None callback is ignored."""
        emit_event(None, Event.job_submitted("wordcount", "job-1"))

    def test_callback_exception_logged(self, caplog):
        """Callback errors are logged, not raised."""

        def bad_callback(event):
            raise RuntimeError("Callback error")

        emit_event(bad_callback, Event.job_submitted("wordcount", "job-1"))

        assert "Event callback failed" in caplog.text

    def test_emit_all_continues_after_failure(self):
        received = []

        def bad_callback(event):
            raise RuntimeError("Callback error")

        emit_all([bad_callback, received.append], Event.job_submitted("wordcount", "job-1"))

        assert len(received) == 1

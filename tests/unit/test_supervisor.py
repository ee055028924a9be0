"""Tests for ProcessSupervisor against a real (fake) worker process."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from transrun.config import TransRunConfig
from transrun.output.aggregator import LogAggregator
from transrun.output.pump import LogPump
from transrun.session.errors import (
    AlreadyRunningError,
    MissingExecutableError,
    SpawnFailedError,
)
from transrun.session.models import (
    EXIT_CODE_UNKNOWN,
    SessionEnded,
    SessionState,
    WorkerSession,
)
from transrun.session.supervisor import ProcessSupervisor, _exit_code
from transrun.session.termination import TerminationState

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="fake worker launcher is a shell script"
)


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class Harness:
    """Supervisor wired to an in-memory sink, the way the controller wires it."""

    def __init__(self, config: TransRunConfig) -> None:
        self.aggregator = LogAggregator()
        self.batches: list[str] = []
        self.ended: list[SessionEnded] = []
        self.done = threading.Event()
        self.pump = LogPump(self.aggregator, sink=self.batches.append, interval=0.05)
        self.supervisor = ProcessSupervisor(
            self.aggregator, self.pump, on_session_ended=self._ended, config=config
        )
        self.pump.start()

    def _ended(self, event: SessionEnded) -> None:
        self.ended.append(event)
        self.done.set()

    @property
    def output(self) -> str:
        return "".join(self.batches)

    def close(self) -> None:
        self.supervisor.shutdown()
        self.pump.stop()


@pytest.fixture
def harness(test_config):
    h = Harness(test_config)
    yield h
    h.close()


@posix_only
def test_output_arrives_in_order_before_end(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "echo")
    harness.supervisor.start(configuration)

    assert harness.done.wait(5.0)
    out = harness.output
    assert out.index("\nA\n") < out.index("\nB\n") < out.index("\nC\n")
    assert out.index("\nC\n") < out.index("Worker exited (exit code 0)")
    assert harness.ended[0].state == SessionState.EXITED
    assert harness.ended[0].exit_code == 0
    assert not harness.supervisor.is_active


@posix_only
def test_stderr_lines_are_prefixed(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "echo")
    monkeypatch.setenv("FAKE_WORKER_STDERR", "disk full")
    monkeypatch.setenv("FAKE_WORKER_EXIT", "3")
    harness.supervisor.start(configuration)

    assert harness.done.wait(5.0)
    assert "[stderr] disk full\n" in harness.output
    assert harness.ended[0].exit_code == 3
    assert not harness.ended[0].succeeded


@posix_only
def test_control_bytes_stripped_from_worker_output(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "control")
    harness.supervisor.start(configuration)

    assert harness.done.wait(5.0)
    assert "\nabcd\n" in harness.output


@posix_only
def test_worker_receives_built_arguments(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "args")
    handle = harness.supervisor.start(configuration)

    assert harness.done.wait(5.0)
    assert handle.command[1:3] == ("-s", "/videos/in")
    assert "\n-cq 25 -preset p5\n" in harness.output


@posix_only
def test_second_start_rejected_while_running(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "sleep")
    first = harness.supervisor.start(configuration)

    with pytest.raises(AlreadyRunningError):
        harness.supervisor.start(configuration)

    assert harness.supervisor.status().id == first.id
    harness.supervisor.request_stop()
    assert harness.done.wait(5.0)
    assert len(harness.ended) == 1


def test_missing_executable(tmp_path, configuration):
    config = TransRunConfig(
        config_dir=tmp_path, install_dir=tmp_path, worker_path=tmp_path / "nope"
    )
    h = Harness(config)
    try:
        with pytest.raises(MissingExecutableError):
            h.supervisor.start(configuration)
        h.pump.pump()
        assert "Worker executable not found" in h.output
        assert not h.supervisor.is_active
        assert h.ended == []
    finally:
        h.close()


@posix_only
def test_spawn_failure_records_failed_session(harness, configuration):
    with patch(
        "transrun.session.supervisor.subprocess.Popen",
        side_effect=PermissionError("not executable"),
    ):
        with pytest.raises(SpawnFailedError):
            harness.supervisor.start(configuration)

    assert not harness.supervisor.is_active
    status = harness.supervisor.status()
    assert status.state == SessionState.FAILED
    assert "not executable" in status.error


def test_stop_when_idle_is_a_no_op(harness):
    harness.supervisor.request_stop()
    harness.pump.pump()
    assert "Worker is not running" in harness.output
    assert harness.ended == []


@posix_only
def test_graceful_stop(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "sleep")
    harness.supervisor.start(configuration)
    assert wait_until(lambda: "\nready\n" in harness.output)

    harness.supervisor.request_stop()
    assert harness.done.wait(5.0)

    assert "Stop requested" in harness.output
    assert "interrupted" in harness.output
    assert harness.ended[0].state == SessionState.EXITED
    assert harness.ended[0].exit_code == 130


@posix_only
def test_repeated_stop_requests_are_ignored(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "stubborn")
    harness.supervisor.start(configuration)
    assert wait_until(lambda: "\nready\n" in harness.output)

    harness.supervisor.request_stop()
    harness.supervisor.request_stop()
    assert harness.done.wait(10.0)
    assert "Stop already in progress" in harness.output
    assert len(harness.ended) == 1


@posix_only
def test_stubborn_worker_is_killed(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "stubborn")
    harness.supervisor.start(configuration)
    assert wait_until(lambda: "\nready\n" in harness.output)

    harness.supervisor.request_stop()
    assert wait_until(
        lambda: harness.supervisor.status().state == SessionState.STOPPING_FORCED
        or bool(harness.ended),
        timeout=5.0,
    )
    assert harness.done.wait(10.0)

    assert "killing process tree" in harness.output
    assert len(harness.ended) == 1
    assert harness.ended[0].state == SessionState.EXITED
    assert harness.ended[0].exit_code < 0


@posix_only
def test_shutdown_waits_for_session_end(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "sleep")
    harness.supervisor.start(configuration)
    assert wait_until(lambda: "\nready\n" in harness.output)

    harness.supervisor.shutdown()

    assert not harness.supervisor.is_active
    assert len(harness.ended) == 1
    assert harness.supervisor.status().state.is_terminal


@posix_only
def test_new_session_after_previous_ended(harness, configuration, monkeypatch):
    monkeypatch.setenv("FAKE_WORKER_MODE", "echo")
    first = harness.supervisor.start(configuration)
    assert harness.done.wait(5.0)
    harness.done.clear()

    second = harness.supervisor.start(configuration)
    assert harness.done.wait(5.0)
    assert first.id != second.id
    assert [e.session_id for e in harness.ended] == [first.id, second.id]


def test_exit_code_unavailable_reports_sentinel():
    process = MagicMock()
    process.pid = 1
    process.poll.return_value = None
    messages: list[str] = []

    assert _exit_code(process, messages.append) == EXIT_CODE_UNKNOWN
    assert messages == ["Warning: exit code unavailable"]


@posix_only
def test_failing_sink_at_milestones_does_not_wedge_session(
    test_config, configuration, monkeypatch
):
    monkeypatch.setenv("FAKE_WORKER_MODE", "echo")
    aggregator = LogAggregator()
    ended: list[SessionEnded] = []
    done = threading.Event()

    def sink(text: str) -> None:
        if "Worker started" in text or "Worker exited" in text:
            raise RuntimeError("consumer went away")

    def on_ended(event: SessionEnded) -> None:
        ended.append(event)
        done.set()

    pump = LogPump(aggregator, sink=sink, interval=0.05)
    supervisor = ProcessSupervisor(
        aggregator, pump, on_session_ended=on_ended, config=test_config
    )
    pump.start()
    try:
        supervisor.start(configuration)
        assert done.wait(5.0)
        assert ended[0].state == SessionState.EXITED
        assert wait_until(lambda: not supervisor.is_active)

        done.clear()
        supervisor.start(configuration)
        assert done.wait(5.0)
        assert len(ended) == 2
    finally:
        supervisor.shutdown()
        pump.stop()


@posix_only
def test_unkillable_worker_reported_failed_with_pid(
    harness, configuration, monkeypatch
):
    monkeypatch.setenv("FAKE_WORKER_MODE", "sleep")
    handle = harness.supervisor.start(configuration)
    assert wait_until(lambda: "\nready\n" in harness.output)

    try:
        with patch(
            "transrun.session.supervisor.TerminationProtocol.run",
            return_value=TerminationState.FAILED,
        ):
            harness.supervisor.request_stop()
            assert harness.done.wait(5.0)

        harness.pump.pump()
        assert f"Worker PID {handle.pid} may still be running" in harness.output
        assert harness.ended[0].state == SessionState.FAILED
        assert harness.ended[0].exit_code == EXIT_CODE_UNKNOWN
    finally:
        os.kill(handle.pid, signal.SIGKILL)


def test_stop_without_process_is_logged_not_raised(harness, caplog):
    session = WorkerSession(command=["worker"], state=SessionState.RUNNING)
    harness.supervisor._session = session

    with caplog.at_level(logging.WARNING, logger="transrun.session.supervisor"):
        harness.supervisor.request_stop()

    assert "has no process to stop" in caplog.text
    assert session.state == SessionState.RUNNING
    harness.supervisor._session = None

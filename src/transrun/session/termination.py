"""Termination protocol — interrupt, bounded wait, then kill the process tree.

Termination strategy for one running worker:
1. Interrupt the worker's process group (SIGINT on POSIX, CTRL_BREAK_EVENT on
   Windows).  A worker without a console cannot receive it; that is not an
   error, the protocol just goes on to the wait.
2. Wait up to ``grace_period`` seconds for a clean exit.
3. Kill the worker and every descendant (the encoder's ffmpeg children).
4. Wait up to ``kill_timeout`` seconds for the kill to take effect.
"""

from __future__ import annotations

import enum
import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Callable
from typing import Protocol

import psutil

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_GRACE_PERIOD = 5.0
DEFAULT_KILL_TIMEOUT = 2.0


class TerminationState(enum.Enum):
    """Progress of one termination attempt."""

    RUNNING = "running"
    GRACEFUL_WAIT = "graceful_wait"
    FORCED = "forced"
    EXITED = "exited"
    FAILED = "failed"


class WorkerProcess(Protocol):
    """The subset of ``subprocess.Popen`` the protocol drives."""

    @property
    def pid(self) -> int: ...

    def poll(self) -> int | None: ...

    def wait(self, timeout: float | None = None) -> int: ...

    def send_signal(self, sig: int) -> None: ...

    def kill(self) -> None: ...


class TerminationProtocol:
    """Graceful-then-forceful shutdown of a single worker process.

    ``run()`` blocks for at most ``grace_period + kill_timeout`` seconds and
    must be called off the controller thread, except during application
    shutdown.  It is single-use: later calls return the recorded outcome.
    """

    def __init__(
        self,
        process: WorkerProcess,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        on_transition: Callable[[TerminationState], None] | None = None,
        emit: Callable[[str], None] | None = None,
    ) -> None:
        self._process = process
        self._grace_period = grace_period
        self._kill_timeout = kill_timeout
        self._on_transition = on_transition
        self._emit = emit or (lambda message: None)
        self._state = TerminationState.RUNNING
        self._lock = threading.Lock()
        self._started = False

    @property
    def state(self) -> TerminationState:
        return self._state

    def run(self) -> TerminationState:
        with self._lock:
            if self._started:
                return self._state
            self._started = True

        pid = self._process.pid
        if self._process.poll() is not None:
            logger.debug("Worker pid=%d already exited before stop", pid)
            return self._transition(TerminationState.EXITED)

        self._transition(TerminationState.GRACEFUL_WAIT)
        if self._interrupt():
            self._emit(f"Sent interrupt to worker (PID {pid})")
        else:
            self._emit("Interrupt not delivered; waiting for the worker to exit")

        if self._wait(self._grace_period):
            logger.debug("Worker pid=%d exited gracefully", pid)
            return self._transition(TerminationState.EXITED)

        self._transition(TerminationState.FORCED)
        self._emit(
            f"Worker did not exit within {self._grace_period:g}s; killing process tree"
        )
        self._kill_tree()

        if self._wait(self._kill_timeout):
            logger.debug("Worker pid=%d killed", pid)
            return self._transition(TerminationState.EXITED)

        logger.warning("Worker pid=%d did not exit after kill", pid)
        return self._transition(TerminationState.FAILED)

    def _transition(self, state: TerminationState) -> TerminationState:
        self._state = state
        if self._on_transition is not None:
            self._on_transition(state)
        return state

    def _wait(self, timeout: float) -> bool:
        try:
            self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return False
        return True

    def _interrupt(self) -> bool:
        """Deliver the graceful signal; False when it could not be sent."""
        pid = self._process.pid
        try:
            if IS_WINDOWS:
                # Fails when the worker was started without a console
                os.kill(pid, signal.CTRL_BREAK_EVENT)
                return True
            pgid = os.getpgid(pid)
            if pgid == os.getpgrp():
                # Worker shares our group; signal it alone
                self._process.send_signal(signal.SIGINT)
            else:
                os.killpg(pgid, signal.SIGINT)
            logger.debug("Sent interrupt to pid=%d pgid=%d", pid, pgid)
            return True
        except ProcessLookupError:
            return False
        except OSError as e:
            logger.debug("Interrupt to pid=%d not delivered: %s", pid, e)
            return False

    def _kill_tree(self) -> None:
        pid = self._process.pid
        try:
            children = psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        except psutil.AccessDenied as e:
            logger.warning("Cannot list children of pid=%d: %s", pid, e)
            children = []

        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                logger.warning("Permission denied killing child pid=%d: %s", child.pid, e)

        try:
            if IS_WINDOWS:
                self._process.kill()
            else:
                pgid = os.getpgid(pid)
                if pgid == os.getpgrp():
                    self._process.kill()
                else:
                    os.killpg(pgid, signal.SIGKILL)
        except ProcessLookupError:
            logger.info("Worker pid=%d already exited before kill", pid)
        except OSError as e:
            # Exit/kill race; the wait that follows decides the outcome
            logger.info("Kill of pid=%d failed: %s", pid, e)

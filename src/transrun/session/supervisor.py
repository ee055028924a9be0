"""Process supervisor — owns the single worker session and its lifecycle."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections.abc import Callable
from typing import IO, Any

from transrun.config import TransRunConfig
from transrun.options.arguments import ArgumentPair, build_arguments, to_argv
from transrun.options.models import Configuration
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
    SessionHandle,
    SessionState,
    WorkerSession,
)
from transrun.session.termination import (
    IS_WINDOWS,
    TerminationProtocol,
    TerminationState,
)

logger = logging.getLogger(__name__)

STDERR_PREFIX = "[stderr] "
EVENT_PREFIX = "[transrun] "

# How long the exit watcher waits for the readers to hit EOF
READER_DRAIN_TIMEOUT = 2.0

_STOP_STATES = {
    TerminationState.GRACEFUL_WAIT: SessionState.STOPPING_GRACEFUL,
    TerminationState.FORCED: SessionState.STOPPING_FORCED,
}


class ProcessSupervisor:
    """Starts, watches and stops at most one worker process.

    Every read or write of ``_session`` goes through ``_lock``; the lock is
    never held while waiting on the process.  Worker output and lifecycle
    messages go to the aggregator, and ``on_session_ended`` fires exactly
    once per session, after the session's output has been pumped.
    """

    def __init__(
        self,
        aggregator: LogAggregator,
        pump: LogPump,
        on_session_ended: Callable[[SessionEnded], None],
        config: TransRunConfig | None = None,
        argument_provider: Callable[
            [Configuration], list[ArgumentPair]
        ] = build_arguments,
    ) -> None:
        self._config = config or TransRunConfig.load()
        self._aggregator = aggregator
        self._pump = pump
        self._on_session_ended = on_session_ended
        self._argument_provider = argument_provider
        self._lock = threading.Lock()
        self._session: WorkerSession | None = None
        self._last: WorkerSession | None = None

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._session is not None

    def status(self) -> SessionHandle | None:
        """Handle of the active session, or of the last one that ended."""
        with self._lock:
            session = self._session or self._last
        return SessionHandle(session) if session is not None else None

    def start(self, configuration: Configuration) -> SessionHandle:
        """Launch the worker.

        Raises:
            AlreadyRunningError: a session is still running or stopping.
            MissingExecutableError: the worker binary does not exist.
            SpawnFailedError: the OS could not start it.
        """
        self._pump_milestone()

        with self._lock:
            if self._session is not None:
                raise AlreadyRunningError(self._session.id)

            executable = self._config.resolve_worker()
            pairs = self._argument_provider(configuration)
            command = [str(executable), *to_argv(pairs)]

            if not executable.is_file():
                self._emit(f"Worker executable not found: {executable}")
                raise MissingExecutableError(executable)

            session = WorkerSession(command=command)
            self._emit(f"Starting worker: {' '.join(command)}")
            try:
                process = subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    **_spawn_kwargs(),
                )
            except OSError as exc:
                session.state = SessionState.FAILED
                session.error = str(exc)
                session.end_time = time.time()
                self._last = session
                self._emit(f"Failed to start worker: {exc}")
                logger.error("Spawn of %s failed: %s", executable, exc)
                raise SpawnFailedError(executable, exc) from exc

            session.process = process
            session.readers = [
                threading.Thread(
                    target=self._read_stream,
                    args=(process.stdout, "", "stdout"),
                    name=f"transrun-stdout-{process.pid}",
                    daemon=True,
                ),
                threading.Thread(
                    target=self._read_stream,
                    args=(process.stderr, STDERR_PREFIX, "stderr"),
                    name=f"transrun-stderr-{process.pid}",
                    daemon=True,
                ),
            ]
            for reader in session.readers:
                reader.start()

            session.state = SessionState.RUNNING
            self._session = session
            threading.Thread(
                target=self._watch,
                args=(session,),
                name=f"transrun-watch-{process.pid}",
                daemon=True,
            ).start()

        logger.info("Started worker PID %d (session %s)", process.pid, session.id)
        self._emit(f"Worker started (PID {process.pid})")
        self._pump_milestone()
        return SessionHandle(session)

    def request_stop(self) -> None:
        """Begin terminating the worker in the background; never blocks."""
        pending = self._begin_stop()
        if pending is None:
            return
        threading.Thread(
            target=self._terminate,
            args=pending,
            name="transrun-terminate",
            daemon=True,
        ).start()

    def shutdown(self) -> None:
        """Terminate any active session and wait for it, with a bounded wait."""
        with self._lock:
            session = self._session
        if session is None:
            logger.debug("Shutdown with no active session")
            return

        self._emit("Shutting down: stopping worker")
        pending = self._begin_stop(quiet=True)
        if pending is not None:
            self._terminate(*pending)

        bound = (
            self._config.grace_period
            + self._config.kill_timeout
            + READER_DRAIN_TIMEOUT
            + 1.0
        )
        if not session.finished.wait(timeout=bound):
            logger.warning("Session %s did not finish within %.1fs", session.id, bound)

    def _begin_stop(
        self, quiet: bool = False
    ) -> tuple[WorkerSession, TerminationProtocol] | None:
        with self._lock:
            session = self._session
            if (
                session is None
                or session.terminal_claimed
                or session.state != SessionState.RUNNING
            ):
                state = session.state if session is not None else SessionState.IDLE
                if not quiet:
                    self._note_stop_ignored(state)
                return None
            if session.process is None:
                logger.warning("Session %s has no process to stop", session.id)
                return None
            session.state = SessionState.STOPPING_GRACEFUL
            protocol = TerminationProtocol(
                session.process,
                grace_period=self._config.grace_period,
                kill_timeout=self._config.kill_timeout,
                on_transition=lambda state: self._on_termination_step(session, state),
                emit=self._emit,
            )
        self._emit("Stop requested")
        return session, protocol

    def _note_stop_ignored(self, state: SessionState) -> None:
        if state.is_stopping:
            message = "Stop already in progress"
        else:
            message = "Worker is not running"
        logger.info("Stop ignored: %s", message)
        self._emit(message)

    def _on_termination_step(
        self, session: WorkerSession, state: TerminationState
    ) -> None:
        mapped = _STOP_STATES.get(state)
        if mapped is None:
            return
        with self._lock:
            if not session.terminal_claimed:
                session.state = mapped

    def _terminate(self, session: WorkerSession, protocol: TerminationProtocol) -> None:
        outcome = protocol.run()
        if outcome == TerminationState.FAILED:
            pid = session.pid
            self._emit(f"Worker PID {pid} may still be running; stop it manually")
            logger.warning("Giving up on worker PID %s after kill", pid)
            self._finish(
                session,
                SessionState.FAILED,
                EXIT_CODE_UNKNOWN,
                reason="Worker did not exit after kill",
            )

    def _read_stream(self, stream: IO[str] | None, prefix: str, name: str) -> None:
        if stream is None:
            return
        try:
            for line in stream:
                line = line.rstrip("\r\n")
                if line:
                    self._aggregator.write(prefix + line)
        except (OSError, ValueError) as exc:
            logger.warning("Reading worker %s failed: %s", name, exc)
            self._emit(f"Warning: reading worker {name} failed: {exc}")
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _watch(self, session: WorkerSession) -> None:
        process = session.process
        if process is None:
            logger.warning("Session %s has no process to watch", session.id)
            return
        try:
            process.wait()
        except OSError as exc:
            logger.warning("Waiting for worker PID %d failed: %s", process.pid, exc)
            self._emit(f"Warning: waiting for worker failed: {exc}")

        for reader in session.readers:
            reader.join(timeout=READER_DRAIN_TIMEOUT)
            if reader.is_alive():
                logger.warning("%s still open after worker exit", reader.name)
                self._emit("Warning: worker output still open after exit")

        self._finish(session, SessionState.EXITED, _exit_code(process, self._emit))

    def _finish(
        self,
        session: WorkerSession,
        state: SessionState,
        exit_code: int,
        reason: str = "",
    ) -> bool:
        with self._lock:
            if session.terminal_claimed:
                return False
            session.terminal_claimed = True

        if state == SessionState.EXITED:
            self._emit(f"Worker exited (exit code {_format_code(exit_code)})")
        else:
            self._emit(f"Worker failed: {reason}")
        self._pump_milestone()

        with self._lock:
            session.state = state
            session.exit_code = exit_code
            session.error = reason
            session.end_time = time.time()

        logger.info(
            "Session %s ended: %s (exit code %s)",
            session.id,
            state.value,
            _format_code(exit_code),
        )
        try:
            self._on_session_ended(
                SessionEnded(
                    session_id=session.id,
                    state=state,
                    exit_code=exit_code,
                    reason=reason,
                )
            )
        finally:
            with self._lock:
                session.process = None
                session.readers = []
                if self._session is session:
                    self._session = None
                self._last = session
            session.finished.set()
        return True

    def _pump_milestone(self) -> None:
        # A failing sink must not leave the session half-registered
        try:
            self._pump.pump()
        except Exception:
            logger.exception("Log sink raised at milestone flush; batch dropped")

    def _emit(self, message: str) -> None:
        self._aggregator.write(EVENT_PREFIX + message)


def _spawn_kwargs() -> dict[str, Any]:
    if IS_WINDOWS:
        return {
            "creationflags": subprocess.CREATE_NEW_PROCESS_GROUP
            | subprocess.CREATE_NO_WINDOW
        }
    return {"start_new_session": True}


def _exit_code(
    process: subprocess.Popen[str], emit: Callable[[str], None]
) -> int:
    try:
        code = process.poll()
    except OSError as exc:
        logger.warning("Exit code of PID %d unavailable: %s", process.pid, exc)
        emit(f"Warning: exit code unavailable: {exc}")
        return EXIT_CODE_UNKNOWN
    if code is None:
        logger.warning("Exit code of PID %d unavailable", process.pid)
        emit("Warning: exit code unavailable")
        return EXIT_CODE_UNKNOWN
    return code


def _format_code(code: int) -> str:
    return "unknown" if code == EXIT_CODE_UNKNOWN else str(code)

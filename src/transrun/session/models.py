"""Session data models — worker session state, read-only handles, end events."""

from __future__ import annotations

import enum
import subprocess
import threading
import time
import uuid
from dataclasses import dataclass, field

# Reported when the worker's exit code cannot be retrieved.  Outside both the
# POSIX range (0..255, negative signal numbers) and Windows' unsigned codes.
EXIT_CODE_UNKNOWN = -(2**31)


class SessionState(enum.Enum):
    """Lifecycle state of a worker session."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING_GRACEFUL = "stopping_graceful"
    STOPPING_FORCED = "stopping_forced"
    EXITED = "exited"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE

    @property
    def is_stopping(self) -> bool:
        return self in (SessionState.STOPPING_GRACEFUL, SessionState.STOPPING_FORCED)

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.EXITED, SessionState.FAILED)


_ACTIVE = frozenset(
    {
        SessionState.STARTING,
        SessionState.RUNNING,
        SessionState.STOPPING_GRACEFUL,
        SessionState.STOPPING_FORCED,
    }
)


@dataclass
class WorkerSession:
    """One run of the worker process.  Owned by the supervisor only."""

    command: list[str]
    process: subprocess.Popen[str] | None = None
    state: SessionState = SessionState.STARTING
    exit_code: int | None = None
    error: str = ""
    readers: list[threading.Thread] = field(default_factory=list)
    terminal_claimed: bool = False
    finished: threading.Event = field(default_factory=threading.Event)
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process is not None else None


class SessionHandle:
    """Read-only view of a session, safe to hand to the controller."""

    def __init__(self, session: WorkerSession) -> None:
        self._session = session
        self._pid = session.pid

    @property
    def id(self) -> str:
        return self._session.id

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def command(self) -> tuple[str, ...]:
        return tuple(self._session.command)

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def started_at(self) -> float:
        return self._session.start_time

    @property
    def ended_at(self) -> float | None:
        return self._session.end_time

    @property
    def exit_code(self) -> int | None:
        return self._session.exit_code

    @property
    def error(self) -> str:
        return self._session.error

    @property
    def is_active(self) -> bool:
        return self._session.state.is_active

    def __repr__(self) -> str:
        return (
            f"SessionHandle(id={self.id!r}, pid={self.pid}, "
            f"state={self.state.value})"
        )


@dataclass(frozen=True)
class SessionEnded:
    """Terminal notification, reported exactly once per session."""

    session_id: str
    state: SessionState
    exit_code: int = EXIT_CODE_UNKNOWN
    reason: str = ""
    timestamp: float = field(default_factory=time.time)

    @property
    def succeeded(self) -> bool:
        return self.state == SessionState.EXITED and self.exit_code == 0


@dataclass(frozen=True)
class LogBatch:
    """A flushed block of log text on its way to the controller."""

    text: str

"""Errors raised synchronously when a worker session cannot be started."""

from __future__ import annotations

from pathlib import Path


class StartError(Exception):
    """Base class — the session was not started."""


class AlreadyRunningError(StartError):
    """Another session is still running or stopping."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"A worker session is already active ({session_id})")
        self.session_id = session_id


class MissingExecutableError(StartError):
    """The worker binary is not where it is expected."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Worker executable not found: {path}")
        self.path = path


class SpawnFailedError(StartError):
    """The OS refused to start the worker."""

    def __init__(self, path: Path, cause: OSError) -> None:
        super().__init__(f"Failed to start {path}: {cause}")
        self.path = path
        self.cause = cause

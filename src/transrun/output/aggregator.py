"""Thread-safe staging area for worker output awaiting delivery."""

from __future__ import annotations

import re
import threading

# C0 controls except \n and \r, DEL, and the C1 range
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def sanitize(chunk: str | bytes) -> str:
    """Strip non-printable control characters, keeping line separators."""
    if isinstance(chunk, bytes):
        chunk = chunk.decode("utf-8", errors="replace")
    return _CONTROL_CHARS.sub("", chunk)


class LogAggregator:
    """Accumulates output fragments from any number of producer threads.

    Producers call :meth:`write`; a single consumer drains with :meth:`flush`.
    Both take the same lock, so a chunk lands entirely before or entirely
    after any given drain.  When pending text grows past ``threshold``
    characters, :attr:`threshold_event` is set so a waiting pump can flush
    ahead of its next tick.
    """

    def __init__(self, threshold: int = 64 * 1024) -> None:
        self._threshold = threshold
        self._pending: list[str] = []
        self._size = 0
        self._lock = threading.Lock()
        self._over_threshold = threading.Event()

    @property
    def threshold_event(self) -> threading.Event:
        return self._over_threshold

    @property
    def pending_size(self) -> int:
        with self._lock:
            return self._size

    def write(self, chunk: str | bytes) -> None:
        """Sanitize ``chunk`` and append it as one line (called from any thread)."""
        text = sanitize(chunk).rstrip("\r\n")
        if not text.strip():
            return
        line = text + "\n"
        with self._lock:
            self._pending.append(line)
            self._size += len(line)
            if self._size >= self._threshold:
                self._over_threshold.set()

    def flush(self) -> str:
        """Atomically drain and return everything pending ("" if nothing is)."""
        with self._lock:
            self._over_threshold.clear()
            if not self._pending:
                return ""
            text = "".join(self._pending)
            self._pending.clear()
            self._size = 0
        return text

    def reset(self) -> None:
        """Discard pending text (used when a new session starts)."""
        with self._lock:
            self._pending.clear()
            self._size = 0
            self._over_threshold.clear()

"""Bounded consumer-side log text with oldest-first truncation."""

from __future__ import annotations


class LogView:
    """Delivered log text, capped at ``hard_cap`` characters.

    Once the text grows past ``hard_cap`` the oldest part is dropped so that
    at most ``keep`` characters remain, starting at a line boundary when one
    is available.  Only delivered text lives here; pending output stays in
    the aggregator until it is flushed.
    """

    def __init__(self, hard_cap: int = 1_000_000, keep: int = 750_000) -> None:
        if not 0 < keep <= hard_cap:
            raise ValueError("keep must be positive and no larger than hard_cap")
        self._hard_cap = hard_cap
        self._keep = keep
        self._text = ""
        self._truncated = 0

    @property
    def text(self) -> str:
        return self._text

    @property
    def truncated_chars(self) -> int:
        """Total characters discarded since the last clear()."""
        return self._truncated

    def __len__(self) -> int:
        return len(self._text)

    def append(self, text: str) -> None:
        if not text:
            return
        self._text += text
        if len(self._text) > self._hard_cap:
            self._truncate()

    def clear(self) -> None:
        self._text = ""
        self._truncated = 0

    def _truncate(self) -> None:
        cut = len(self._text) - self._keep
        if self._text[cut - 1] != "\n":
            newline = self._text.find("\n", cut)
            # never advance past the start of the final line
            if newline != -1 and newline + 1 < len(self._text):
                cut = newline + 1
        self._truncated += cut
        self._text = self._text[cut:]

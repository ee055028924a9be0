"""Tests for the bounded log view."""

from __future__ import annotations

import pytest

from transrun.output.view import LogView


def test_append_below_cap_keeps_everything():
    view = LogView(hard_cap=100, keep=50)
    view.append("line 1\n")
    view.append("line 2\n")
    assert view.text == "line 1\nline 2\n"
    assert view.truncated_chars == 0


def test_overflow_drops_oldest_down_to_keep():
    view = LogView(hard_cap=100, keep=60)
    for i in range(20):
        view.append(f"line {i:02d}\n")  # 8 chars each

    assert len(view) <= 100
    assert view.text.endswith("line 19\n")
    # truncation lands on a line boundary
    assert view.text.startswith("line ")
    assert view.truncated_chars + len(view) == 160


def test_most_recent_write_survives_verbatim():
    view = LogView(hard_cap=50, keep=30)
    view.append("x" * 45 + "\n")
    recent = "the most recent progress line\n"
    view.append(recent)
    assert view.text.endswith(recent)
    assert len(view) <= 50


def test_long_final_line_is_not_dropped():
    view = LogView(hard_cap=20, keep=10)
    view.append("a" * 15 + "\n")
    view.append("b" * 15 + "\n")
    # keep is shorter than the last line; its tail is kept rather than nothing
    assert view.text == "bbbbbbbbb\n"


def test_clear_resets_counters():
    view = LogView(hard_cap=10, keep=5)
    view.append("0123456789abc\n")
    view.clear()
    assert view.text == ""
    assert view.truncated_chars == 0


def test_invalid_watermarks_rejected():
    with pytest.raises(ValueError):
        LogView(hard_cap=10, keep=20)

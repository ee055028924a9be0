"""Shared test fixtures."""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest

from transrun.config import TransRunConfig
from transrun.options.models import Configuration


@pytest.fixture
def fixtures_dir() -> Path:
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def fake_worker(tmp_path: Path, fixtures_dir: Path) -> Path:
    """Executable wrapper that runs tests/fixtures/fake_worker.py."""
    script = fixtures_dir / "fake_worker.py"
    launcher = tmp_path / "TransAV1_CUI"
    launcher.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n', encoding="utf-8"
    )
    launcher.chmod(launcher.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP)
    return launcher


@pytest.fixture
def test_config(tmp_path: Path, fake_worker: Path) -> TransRunConfig:
    return TransRunConfig(
        config_dir=tmp_path / "config",
        install_dir=tmp_path,
        worker_path=fake_worker,
        flush_interval=0.05,
        grace_period=0.5,
        kill_timeout=2.0,
    )


@pytest.fixture
def configuration() -> Configuration:
    return Configuration(input_dir="/videos/in", output_dir="/videos/out")


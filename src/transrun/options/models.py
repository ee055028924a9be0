"""Configuration snapshot — the user-chosen options for one encoding run."""

from __future__ import annotations

import enum
from dataclasses import dataclass

DEFAULT_TIMEOUT = 7200


class CompressionTier(enum.Enum):
    """Encoder quality/size trade-off."""

    SIZE = "size"
    STANDARD = "standard"
    QUALITY = "quality"


class EncoderChoice(enum.Enum):
    """Which encoder the worker should prefer."""

    NVENC = "nvenc"
    CPU = "cpu"
    CUSTOM = "custom"


class RunMode(enum.Enum):
    """How the worker treats a previously used output directory."""

    NORMAL = "normal"
    RESTART = "restart"
    FORCE = "force"


class Priority(enum.Enum):
    """Scheduling priority the worker applies to its ffmpeg children."""

    IDLE = "Idle"
    BELOW_NORMAL = "BelowNormal"
    NORMAL = "Normal"
    ABOVE_NORMAL = "AboveNormal"


@dataclass(frozen=True)
class Configuration:
    """Immutable record of the options passed to the worker at start time."""

    input_dir: str = ""
    output_dir: str = ""
    ffmpeg_dir: str = ""
    compression: CompressionTier = CompressionTier.STANDARD
    encoder: EncoderChoice = EncoderChoice.NVENC
    custom_encoder: str = ""
    mode: RunMode = RunMode.NORMAL
    quick: bool = False
    timeout: int = DEFAULT_TIMEOUT
    debug: bool = False
    log_to_file: bool = False
    priority: Priority = Priority.IDLE

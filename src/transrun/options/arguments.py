"""Build the worker command line from a configuration snapshot."""

from __future__ import annotations

from transrun.options.models import (
    CompressionTier,
    Configuration,
    EncoderChoice,
    Priority,
    RunMode,
)

# (hardware encoder options, CPU encoder options) per tier
_TIER_OPTIONS: dict[CompressionTier, tuple[str, str]] = {
    CompressionTier.SIZE: ("-cq 30 -preset p6", "-crf 30 -preset 8"),
    CompressionTier.STANDARD: ("-cq 25 -preset p5", "-crf 28 -preset 7"),
    CompressionTier.QUALITY: ("-cq 20 -preset p4", "-crf 25 -preset 6"),
}

NVENC_ENCODER = "av1_nvenc"
CPU_ENCODER = "libsvtav1"

ArgumentPair = tuple[str, str | None]


def build_arguments(config: Configuration) -> list[ArgumentPair]:
    """Return the ordered (flag, value) pairs for the worker.

    Flags without a value (switches) carry ``None``.
    """
    args: list[ArgumentPair] = [
        ("-s", config.input_dir),
        ("-o", config.output_dir),
    ]

    if config.ffmpeg_dir.strip():
        args.append(("-ffmpegdir", config.ffmpeg_dir))

    hw_opt, cpu_opt = _TIER_OPTIONS[config.compression]
    args.append(("-hwopt", hw_opt))
    args.append(("-cpuopt", cpu_opt))

    if config.encoder == EncoderChoice.NVENC:
        args.append(("-hwenc", NVENC_ENCODER))
    elif config.encoder == EncoderChoice.CPU:
        args.append(("-cpuenc", CPU_ENCODER))
    elif config.custom_encoder.strip():
        # Custom names go to the hardware slot; the worker keeps its CPU fallback
        args.append(("-hwenc", config.custom_encoder.strip()))

    if config.mode == RunMode.RESTART:
        args.append(("-restart", None))
    elif config.mode == RunMode.FORCE:
        args.append(("-force", None))
    if config.quick:
        args.append(("-quick", None))

    args.append(("-timeout", str(config.timeout)))

    if config.debug:
        args.append(("-debug", None))
    if config.log_to_file:
        args.append(("-log", None))
    if config.priority != Priority.IDLE:
        args.append(("-priority", config.priority.value))

    return args


def to_argv(pairs: list[ArgumentPair]) -> list[str]:
    """Flatten (flag, value) pairs into an argv tail."""
    argv: list[str] = []
    for flag, value in pairs:
        argv.append(flag)
        if value is not None:
            argv.append(value)
    return argv


def validate_configuration(config: Configuration) -> list[str]:
    """Return human-readable problems that should stop a run."""
    problems: list[str] = []
    if not config.input_dir.strip():
        problems.append("Input directory is required")
    if not config.output_dir.strip():
        problems.append("Output directory is required")
    if config.encoder == EncoderChoice.CUSTOM and not config.custom_encoder.strip():
        problems.append("Custom encoder name is required")
    if config.timeout < 0:
        problems.append("Timeout must be zero (disabled) or a positive number")
    return problems

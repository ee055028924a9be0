"""TransRun — supervise TransAV1 encoding runs from a terminal."""

__version__ = "0.1.0"

"""Persist and restore the configuration snapshot as sectioned YAML."""

from __future__ import annotations

import enum
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any, TypeVar

import yaml

from transrun.options.models import Configuration, EncoderChoice

logger = logging.getLogger(__name__)

_E = TypeVar("_E", bound=enum.Enum)

# field name -> section it is stored under
_SECTIONS: dict[str, str] = {
    "input_dir": "paths",
    "output_dir": "paths",
    "ffmpeg_dir": "paths",
    "compression": "encoding",
    "encoder": "encoding",
    "custom_encoder": "encoding",
    "mode": "mode",
    "quick": "mode",
    "timeout": "run",
    "debug": "run",
    "log_to_file": "run",
    "priority": "run",
}

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


class SettingsError(Exception):
    """Raised when the settings file cannot be written."""


class SettingsStore:
    """Flat section/key/value store for :class:`Configuration`.

    ``load`` never raises: a missing file, a corrupt file, or a single bad
    value all fall back to the documented defaults.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Configuration:
        if not self._path.is_file():
            logger.debug("No settings at %s, using defaults", self._path)
            return Configuration()

        try:
            data = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to load settings from %s: %s", self._path, exc)
            return Configuration()

        if not isinstance(data, dict):
            logger.warning("Settings file %s is not a mapping, ignoring", self._path)
            return Configuration()

        defaults = Configuration()
        values: dict[str, Any] = {}
        for name, section in _SECTIONS.items():
            block = data.get(section)
            if not isinstance(block, dict) or name not in block:
                continue
            parsed = _parse_value(block[name], getattr(defaults, name))
            if parsed is None:
                logger.warning(
                    "Ignoring unparseable setting %s.%s=%r", section, name, block[name]
                )
                continue
            values[name] = parsed

        config = Configuration(**values)
        if config.encoder != EncoderChoice.CUSTOM and config.custom_encoder:
            config = Configuration(**{**values, "custom_encoder": ""})
        return config

    def save(self, config: Configuration) -> None:
        data: dict[str, dict[str, Any]] = {}
        for f in fields(config):
            if f.name == "custom_encoder" and config.encoder != EncoderChoice.CUSTOM:
                continue
            value = getattr(config, f.name)
            if isinstance(value, enum.Enum):
                value = value.value
            data.setdefault(_SECTIONS[f.name], {})[f.name] = value

        text = yaml.dump(data, default_flow_style=False, sort_keys=False)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(text, encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to save settings to %s: %s", self._path, exc)
            raise SettingsError(f"Cannot write {self._path}: {exc}") from exc
        logger.debug("Saved settings to %s", self._path)


def _parse_value(raw: Any, default: Any) -> Any:
    """Coerce ``raw`` to the type of ``default``; None when it does not fit."""
    if isinstance(default, bool):
        return _parse_bool(raw)
    if isinstance(default, enum.Enum):
        return _parse_enum(type(default), raw)
    if isinstance(default, int):
        if isinstance(raw, bool):
            return None
        try:
            return int(str(raw).strip())
        except ValueError:
            return None
    if raw is None:
        return ""
    if isinstance(raw, (dict, list)):
        return None
    return str(raw)


def _parse_bool(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    return None


def _parse_enum(enum_cls: type[_E], raw: Any) -> _E | None:
    text = str(raw).strip()
    for member in enum_cls:
        if text.lower() in (member.value.lower(), member.name.lower()):
            return member
    return None

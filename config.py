"""Runtime settings: defaults, then an optional JSON file, then VFS_* environment variables."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import attr

from allocator import BLOCK_SIZE, TOTAL_BLOCKS

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

ENV_PREFIX = "VFS_"
_ENV_FIELDS = {
    "TOTAL_BLOCKS": ("total_blocks", int),
    "BLOCK_SIZE": ("block_size", int),
    "IMAGE": ("image_path", str),
    "LOG_LEVEL": ("log_level", str),
}


class ConfigError(Exception):
    """Invalid or unreadable configuration"""


def _positive(instance, attribute, value):
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigError(f"{attribute.name} must be a positive integer, got {value!r}")


def _log_level(instance, attribute, value):
    if str(value).upper() not in LOG_LEVELS:
        raise ConfigError(f"{attribute.name} must be one of {', '.join(LOG_LEVELS)}, got {value!r}")


@attr.s(auto_attribs=True, frozen=True)
class FSConfig:
    total_blocks: int = attr.ib(default=TOTAL_BLOCKS, validator=_positive)
    block_size: int = attr.ib(default=BLOCK_SIZE, validator=_positive)
    image_path: str = "fs.img"
    log_level: str = attr.ib(default="WARNING", validator=_log_level, converter=str.upper)

    @property
    def level(self) -> int:
        return getattr(logging, self.log_level)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None, environ: Optional[Dict[str, str]] = None) -> "FSConfig":
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        config_path = path or environ.get(ENV_PREFIX + "CONFIG")
        if config_path:
            values.update(_read_json(Path(config_path)))

        for suffix, (field, cast) in _ENV_FIELDS.items():
            raw = environ.get(ENV_PREFIX + suffix)
            if raw is None:
                continue
            try:
                values[field] = cast(raw)
            except ValueError as e:
                raise ConfigError(f"{ENV_PREFIX}{suffix}={raw!r}: {e}") from e

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return attr.asdict(self)


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot load config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must hold a JSON object")

    known = {a.name for a in attr.fields(FSConfig)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown config keys in {path}: {', '.join(sorted(unknown))}")
    return data

from __future__ import annotations

import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from ingen_synth.python_libs.common.errors import ConfigurationError

CONFIG_FILE_NAME = "ingen_synth.yml"
CONFIG_ENV_VAR = "INGEN_SYNTH_CONFIG"

_MEMORY_LIMIT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([KMG]?)B?\s*$", re.IGNORECASE)
_MEMORY_UNITS = {"": 1, "K": 1024, "M": 1024 ** 2, "G": 1024 ** 3}


def parse_memory_limit(limit: Union[str, int, float, None]) -> int:
    """Convert a memory limit such as ``"512M"`` into bytes.

    ``-1`` (or ``None``) means unlimited and is returned as ``-1``.
    """
    if limit is None:
        return -1
    if isinstance(limit, (int, float)):
        if limit == -1:
            return -1
        if limit <= 0:
            raise ConfigurationError(f"Memory limit must be positive, got {limit}")
        return int(limit)
    text = str(limit).strip()
    if text == "-1":
        return -1
    match = _MEMORY_LIMIT_RE.match(text)
    if not match:
        raise ConfigurationError(f"Unparsable memory limit: {limit!r}")
    value = float(match.group(1)) * _MEMORY_UNITS[match.group(2).upper()]
    if value <= 0:
        raise ConfigurationError(f"Memory limit must be positive, got {limit!r}")
    return int(value)


def _as_range(value: Any, name: str) -> Tuple[int, int]:
    try:
        low, high = (int(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a pair of integers, got {value!r}") from exc
    if low < 0 or high < low:
        raise ConfigurationError(f"{name} must satisfy 0 <= min <= max, got {value!r}")
    return low, high


@dataclass
class EngineSettings:
    chunk_size: int = 1000
    memory_limit: Union[str, int] = "512M"
    memory_threshold: float = 0.8
    null_probability: float = 0.1
    transactional: bool = True
    seed: Optional[int] = None
    locale: str = "en_US"
    workers: int = 1
    fk_fallback_value: Any = 1
    one_to_one_probability: float = 0.7
    one_to_many_range: Tuple[int, int] = (0, 5)
    many_to_many_range: Tuple[int, int] = (0, 3)
    dry_run_sample: int = 50
    strict_cycles: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if int(self.chunk_size) < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if not 0 < float(self.memory_threshold) <= 1:
            raise ConfigurationError(f"memory_threshold must be in (0, 1], got {self.memory_threshold}")
        for name in ("null_probability", "one_to_one_probability"):
            if not 0 <= float(getattr(self, name)) <= 1:
                raise ConfigurationError(f"{name} must be in [0, 1], got {getattr(self, name)}")
        if int(self.workers) < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")
        if int(self.dry_run_sample) < 1:
            raise ConfigurationError(f"dry_run_sample must be >= 1, got {self.dry_run_sample}")
        parse_memory_limit(self.memory_limit)
        self.one_to_many_range = _as_range(self.one_to_many_range, "one_to_many_range")
        self.many_to_many_range = _as_range(self.many_to_many_range, "many_to_many_range")

    @property
    def memory_limit_bytes(self) -> int:
        return parse_memory_limit(self.memory_limit)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineSettings":
        """Create EngineSettings from a dictionary loaded from YAML."""
        data = data or {}
        section = data.get("engine", data)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise ConfigurationError(f"Unknown engine settings: {', '.join(unknown)}")
        return cls(**section)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def merged(self, **overrides: Any) -> "EngineSettings":
        """Return a copy with the non-None overrides applied."""
        values = self.to_dict()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return EngineSettings(**values)


def load_engine_config(config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """Load engine configuration from YAML.

    The search order is:
    1. The ``config_dir`` parameter if provided.
    2. The path specified in the ``INGEN_SYNTH_CONFIG`` environment variable.
    3. ``ingen_synth.yml`` in the current working directory.
    Returns an empty dictionary if no configuration file is found.
    """
    search_paths = []
    if config_dir:
        search_paths.append(Path(config_dir))
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        search_paths.append(Path(env_path))
    search_paths.append(Path.cwd())

    for path in search_paths:
        config_file = path
        if config_file.is_dir():
            config_file = config_file / CONFIG_FILE_NAME
        if config_file.is_file():
            with config_file.open("r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
    return {}


def load_engine_settings(config_dir: Optional[Path] = None) -> EngineSettings:
    """Load engine configuration as a typed Python object."""
    return EngineSettings.from_dict(load_engine_config(config_dir))

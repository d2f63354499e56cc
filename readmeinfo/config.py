"""Configuration loading for readmeinfo (.readmeinfo.yml)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

CONFIG_FILENAME = ".readmeinfo.yml"

_COMBINATIONS = ("product", "min")


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be parsed or is invalid."""


@dataclass
class AnalyzerSettings:
    """Analyzer selection and scheduling."""

    enabled: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    timeout: float = 5.0
    parallel: bool = True
    max_workers: int = 4


@dataclass
class AggregationSettings:
    """Conflict resolution and suggestion thresholds."""

    conflict_margin: float = 0.15
    suggestion_threshold: float = 0.5


@dataclass
class CommandSettings:
    """Command extraction tuning."""

    inline_code: bool = True
    fallback_penalty: float = 0.7
    combination: str = "product"


@dataclass
class ReadmeInfoConfig:
    """Represents the settings defined in .readmeinfo.yml."""

    root: Optional[Path] = None
    analyzers: AnalyzerSettings = field(default_factory=AnalyzerSettings)
    aggregation: AggregationSettings = field(default_factory=AggregationSettings)
    commands: CommandSettings = field(default_factory=CommandSettings)


def load_config(
    config_path: Path | None = None, *, environ: Mapping[str, str] | None = None
) -> ReadmeInfoConfig:
    """Load configuration from disk and apply environment overrides."""
    config = ReadmeInfoConfig()
    if config_path is not None:
        config_file = _resolve_config_path(Path(config_path))
        config.root = config_file.parent
        if config_file.exists():
            data = _read_config(config_file)
            if not isinstance(data, dict):
                raise ConfigError(f"{config_file.name} must contain a mapping at the root")
            _apply_mapping(config, data)

    apply_env_overrides(config, os.environ if environ is None else environ)
    validate_config(config)
    return config


def config_from_mapping(data: Mapping[str, Any]) -> ReadmeInfoConfig:
    """Build a validated configuration from an in-memory mapping."""
    config = ReadmeInfoConfig()
    _apply_mapping(config, dict(data))
    validate_config(config)
    return config


def apply_env_overrides(config: ReadmeInfoConfig, environ: Mapping[str, str]) -> None:
    """Apply READMEINFO_* environment variables on top of file settings."""
    margin = environ.get("READMEINFO_CONFLICT_MARGIN")
    if margin is not None:
        config.aggregation.conflict_margin = _require_float(
            margin, "READMEINFO_CONFLICT_MARGIN"
        )
    threshold = environ.get("READMEINFO_SUGGESTION_THRESHOLD")
    if threshold is not None:
        config.aggregation.suggestion_threshold = _require_float(
            threshold, "READMEINFO_SUGGESTION_THRESHOLD"
        )
    timeout = environ.get("READMEINFO_ANALYZER_TIMEOUT")
    if timeout is not None:
        config.analyzers.timeout = _require_float(timeout, "READMEINFO_ANALYZER_TIMEOUT")
    parallel = environ.get("READMEINFO_PARALLEL")
    if parallel is not None:
        parsed = _as_bool(parallel)
        if parsed is None:
            raise ConfigError(f"READMEINFO_PARALLEL must be a boolean, got {parallel!r}")
        config.analyzers.parallel = parsed


def validate_config(config: ReadmeInfoConfig) -> None:
    aggregation = config.aggregation
    if not 0.0 <= aggregation.conflict_margin <= 1.0:
        raise ConfigError("aggregation.conflict_margin must be between 0 and 1")
    if not 0.0 <= aggregation.suggestion_threshold <= 1.0:
        raise ConfigError("aggregation.suggestion_threshold must be between 0 and 1")
    if config.analyzers.timeout <= 0:
        raise ConfigError("analyzers.timeout must be positive")
    if config.analyzers.max_workers < 1:
        raise ConfigError("analyzers.max_workers must be at least 1")
    if not 0.0 <= config.commands.fallback_penalty <= 1.0:
        raise ConfigError("commands.fallback_penalty must be between 0 and 1")
    if config.commands.combination not in _COMBINATIONS:
        choices = ", ".join(_COMBINATIONS)
        raise ConfigError(f"commands.combination must be one of: {choices}")


def _apply_mapping(config: ReadmeInfoConfig, data: Dict[str, Any]) -> None:
    analyzer_data = _as_dict(data.get("analyzers"))
    if analyzer_data:
        settings = config.analyzers
        settings.enabled = _as_str_list(analyzer_data.get("enabled"))
        settings.disabled = _as_str_list(analyzer_data.get("disabled"))
        timeout = _as_float(analyzer_data.get("timeout"))
        if timeout is not None:
            settings.timeout = timeout
        parallel = _as_bool(analyzer_data.get("parallel"))
        if parallel is not None:
            settings.parallel = parallel
        workers = _as_int(analyzer_data.get("max_workers"))
        if workers is not None:
            settings.max_workers = workers

    aggregation_data = _as_dict(data.get("aggregation"))
    if aggregation_data:
        margin = _as_float(aggregation_data.get("conflict_margin"))
        if margin is not None:
            config.aggregation.conflict_margin = margin
        threshold = _as_float(aggregation_data.get("suggestion_threshold"))
        if threshold is not None:
            config.aggregation.suggestion_threshold = threshold

    command_data = _as_dict(data.get("commands"))
    if command_data:
        inline = _as_bool(command_data.get("inline_code"))
        if inline is not None:
            config.commands.inline_code = inline
        penalty = _as_float(command_data.get("fallback_penalty"))
        if penalty is not None:
            config.commands.fallback_penalty = penalty
        combination = _as_str(command_data.get("combination"))
        if combination:
            config.commands.combination = combination.strip().lower()


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded if loaded is not None else {}


def _require_float(value: str, name: str) -> float:
    parsed = _as_float(value)
    if parsed is None:
        raise ConfigError(f"{name} must be a number, got {value!r}")
    return parsed


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float, bool)) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1", "on"}:
            return True
        if lowered in {"false", "no", "0", "off"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float, bool))]
    return []


__all__ = [
    "AggregationSettings",
    "AnalyzerSettings",
    "CONFIG_FILENAME",
    "CommandSettings",
    "ConfigError",
    "ReadmeInfoConfig",
    "apply_env_overrides",
    "config_from_mapping",
    "load_config",
    "validate_config",
]

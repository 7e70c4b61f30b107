"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import os
import re
import types
import typing
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

# Prometheus duration syntax, e.g. "1h30m", "60s", "500ms"
_DURATION_PATTERN = re.compile(
    r"^(?:(\d+)y)?(?:(\d+)w)?(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?(?:(\d+)ms)?$"
)
_DURATION_UNITS = (365 * 86400, 7 * 86400, 86400, 3600, 60, 1, 0.001)

ACCESS_KEY_ENV = "ALIYUN_ACCESS_KEY_ID"
SECRET_KEY_ENV = "ALIYUN_SECRET_ACCESS_KEY"


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


def parse_duration(value: Any) -> float:
    """Convert a Prometheus duration string ("60s", "1m30s") or a number into seconds."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    match = _DURATION_PATTERN.match(text)
    if not text or match is None:
        raise ConfigError(f"Invalid duration: {value!r}")
    return float(sum(int(g) * unit for g, unit in zip(match.groups(), _DURATION_UNITS) if g))


@dataclass(frozen=True)
class Filter:
    name: str = ""
    value: str = ""


@dataclass(frozen=True)
class ECSSDConfig:
    region: str = "cn-beijing"
    access_key: str = ""  # empty = read ALIYUN_ACCESS_KEY_ID
    secret_key: str = ""  # empty = read ALIYUN_SECRET_ACCESS_KEY
    refresh_interval: float | str = 60.0
    port: int = 80
    filters: list[Filter] = field(default_factory=list)


@dataclass(frozen=True)
class OutputConfig:
    file: str = "ecs.json"
    queue_size: int = 1


@dataclass(frozen=True)
class WebConfig:
    listen_address: str = ":9465"


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    ecs_sd_config: ECSSDConfig = field(default_factory=ECSSDConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_dataclass_type(ft: Any) -> type | None:
    """Return the underlying dataclass type from a type annotation (handles Optional/X|None)."""
    if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__"):
        return ft
    if isinstance(ft, types.UnionType) or getattr(ft, "__origin__", None) is typing.Union:
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    return None


def _get_list_item_type(ft: Any) -> type | None:
    """Return X for a list[X] annotation where X is a dataclass."""
    if getattr(ft, "__origin__", None) is list and len(ft.__args__) == 1:
        return _get_dataclass_type(ft.__args__[0])
    return None


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        ft = field_types[key]
        # Resolve string annotations to actual types in the module scope
        if isinstance(ft, str):
            ft = eval(ft, globals(), {cls.__name__: cls})  # noqa: S307
        dc_type = _get_dataclass_type(ft)
        item_type = _get_list_item_type(ft)
        if value is None:
            continue
        if dc_type is not None:
            if not isinstance(value, dict):
                raise ConfigError(f"'{key}' must be a mapping")
            kwargs[key] = _build_nested(dc_type, value)
        elif item_type is not None:
            if not isinstance(value, list):
                raise ConfigError(f"'{key}' must be a list")
            kwargs[key] = [_build_nested(item_type, v) for v in value]
        else:
            kwargs[key] = value
    return cls(**kwargs)


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    config = _build_nested(AppConfig, raw)
    config = _apply_defaults(config)
    _validate(config)
    return config


def _apply_defaults(config: AppConfig) -> AppConfig:
    """Fill credentials from the environment and normalize the refresh interval."""
    sd = config.ecs_sd_config
    sd = replace(
        sd,
        region=sd.region or "cn-beijing",
        access_key=sd.access_key or os.environ.get(ACCESS_KEY_ENV, ""),
        secret_key=sd.secret_key or os.environ.get(SECRET_KEY_ENV, ""),
        refresh_interval=parse_duration(sd.refresh_interval),
    )
    return replace(config, ecs_sd_config=sd)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    sd = config.ecs_sd_config

    if not sd.access_key or not sd.secret_key:
        raise ConfigError(
            "ecs_sd_config.access_key/secret_key are not configured "
            f"(set them in the config file or via {ACCESS_KEY_ENV}/{SECRET_KEY_ENV})"
        )

    for name, value in (
        ("ecs_sd_config.region", sd.region),
        ("ecs_sd_config.access_key", sd.access_key),
        ("ecs_sd_config.secret_key", sd.secret_key),
        ("output.file", config.output.file),
        ("web.listen_address", config.web.listen_address),
        ("logging.level", config.logging.level),
    ):
        if not isinstance(value, str):
            raise ConfigError(f"{name} must be a string")

    for f in sd.filters:
        if not isinstance(f, Filter):
            raise ConfigError("ecs_sd_config.filters entries must be mappings with name and value")
        if not f.value:
            raise ConfigError(f"ecs_sd_config filter '{f.name}' has an empty value")
        if not isinstance(f.name, str) or not isinstance(f.value, str):
            raise ConfigError(f"ecs_sd_config filter '{f.name}' name and value must be strings")

    if sd.refresh_interval <= 0:
        raise ConfigError("ecs_sd_config.refresh_interval must be > 0")

    if not _is_int(sd.port) or not 1 <= sd.port <= 65535:
        raise ConfigError("ecs_sd_config.port must be between 1 and 65535")

    if not _is_int(config.output.queue_size) or config.output.queue_size < 1:
        raise ConfigError("output.queue_size must be >= 1")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")

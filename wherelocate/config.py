"""Configuration loading from defaults, a YAML file, the environment and flags."""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any, Iterator, Mapping

import yaml

from .types import Config, RequestConfig, ServerConfig, ThrottleConfig

ENV_PREFIX = "WHERE_AM_I"
APP_DIR = "where-am-i"
_CONFIG_NAMES = ("config.yaml", "config.yml")
_SECTIONS = {
    "server": ServerConfig,
    "throttle": ThrottleConfig,
    "request": RequestConfig,
}


def _known_keys() -> Iterator[tuple[str, str]]:
    for section, cls in _SECTIONS.items():
        for f in fields(cls):
            yield section, f.name


def _env_name(section: str, name: str) -> str:
    return f"{ENV_PREFIX}_{section}_{name}".upper()


def _config_home(environ: Mapping[str, str]) -> Path:
    xdg = environ.get("XDG_CONFIG_HOME", "")
    if xdg and os.path.isabs(xdg):
        return Path(xdg)
    return Path.home() / ".config"


def _find_config_file(environ: Mapping[str, str]) -> Path | None:
    for directory in (_config_home(environ) / APP_DIR, Path(".")):
        for name in _CONFIG_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def _lower_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k).lower(): _lower_keys(v) for k, v in value.items()}
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML file; an unreadable or malformed file counts as empty."""
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, Mapping):
        return {}
    return _lower_keys(data)


def load_config(
    path: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Config:
    """Build the configuration.

    Later sources win: built-in defaults, then the config file, then
    ``WHERE_AM_I_*`` environment variables, then explicit overrides given
    as dotted keys such as ``"server.url"``.
    """
    if environ is None:
        environ = os.environ

    config_path = Path(path) if path else _find_config_file(environ)
    data = _read_config_file(config_path) if config_path is not None else {}

    merged: dict[str, dict[str, Any]] = {}
    for section in _SECTIONS:
        raw = data.get(section)
        if raw is None:
            merged[section] = {}
        elif isinstance(raw, Mapping):
            merged[section] = dict(raw)
        else:
            raise ValueError(f"section {section!r} must be a mapping")

    for section, name in _known_keys():
        value = environ.get(_env_name(section, name))
        if value:
            merged[section][name] = value

    known = {f"{section}.{name}" for section, name in _known_keys()}
    for key, value in (overrides or {}).items():
        dotted = key.lower()
        if dotted not in known:
            raise ValueError(f"unknown configuration key: {key}")
        section, name = dotted.split(".", 1)
        merged[section][name] = value

    return Config.from_mapping(merged)
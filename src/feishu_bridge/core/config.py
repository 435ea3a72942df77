from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigError

DEFAULT_CONFIG_FILENAME = "feishu-bridge.yml"
DOTENV_FILENAME = ".env"


def resolve_config_path(path: Optional[Path]) -> Path:
    if path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILENAME).resolve()
    if path.is_dir():
        return (path / DEFAULT_CONFIG_FILENAME).resolve()
    return path.resolve()


def _load_yaml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def load_dotenv_for_path(config_path: Path) -> bool:
    """Load a ``.env`` next to the config file without overriding the environment."""
    dotenv_path = config_path.parent / DOTENV_FILENAME
    if not dotenv_path.exists():
        return False
    return bool(load_dotenv(dotenv_path, override=False))


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    config_path = resolve_config_path(path)
    data = _load_yaml_dict(config_path)
    load_dotenv_for_path(config_path)
    return data


def section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value

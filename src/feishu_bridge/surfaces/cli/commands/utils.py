from __future__ import annotations

from pathlib import Path
from typing import Any, NoReturn, Optional

import typer

from ....core.config import load_config, section
from ....core.exceptions import ConfigError
from ....integrations.feishu.config import FeishuBotConfig
from ....integrations.feishu.errors import FeishuBotConfigError


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def require_feishu_config(path: Optional[Path]) -> tuple[dict[str, Any], FeishuBotConfig]:
    try:
        raw = load_config(path)
        feishu_cfg = FeishuBotConfig.from_raw(section(raw, "feishu"))
    except (ConfigError, FeishuBotConfigError) as exc:
        raise_exit(str(exc), cause=exc)
    return raw, feishu_cfg


def require_credentials(config: FeishuBotConfig) -> tuple[str, str]:
    if not config.app_id:
        raise_exit(f"missing Feishu app id env '{config.app_id_env}'")
    if not config.app_secret:
        raise_exit(f"missing Feishu app secret env '{config.app_secret_env}'")
    return config.app_id, config.app_secret


def resolve_log_path(raw: dict[str, Any]) -> Optional[Path]:
    try:
        log_cfg = section(raw, "log")
    except ConfigError as exc:
        raise_exit(str(exc), cause=exc)
    value = log_cfg.get("path")
    if not isinstance(value, str) or not value.strip():
        return None
    return Path(value).expanduser()

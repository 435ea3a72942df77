from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Optional

import typer

from ....core.logging_utils import setup_rotating_logger
from ....integrations.feishu.config import FeishuBotConfig
from ....integrations.feishu.dispatcher import ReplyDispatchCoordinator
from ....integrations.feishu.errors import FeishuError
from ....integrations.feishu.rest import FeishuRestClient
from ....integrations.feishu.transport import FeishuMessageApi, FeishuSendResult
from ....integrations.feishu.typing_indicator import TypingIndicator
from .utils import require_credentials, require_feishu_config, resolve_log_path

LOGGER_NAME = "feishu-bridge"


def _build_logger(raw: dict[str, Any]) -> logging.Logger:
    return setup_rotating_logger(LOGGER_NAME, resolve_log_path(raw))


def _partials(text: str, step: int) -> list[str]:
    return [text[:end] for end in range(step, len(text), step)]


async def _run_send(
    config: FeishuBotConfig,
    *,
    target: str,
    text: str,
    reply_to: Optional[str],
    logger: logging.Logger,
    rest_client_factory: Callable[..., Any],
) -> list[FeishuSendResult]:
    async with rest_client_factory(
        app_id=config.app_id,
        app_secret=config.app_secret,
        base_url=config.api_base_url,
    ) as rest:
        coordinator = ReplyDispatchCoordinator(
            FeishuMessageApi(rest), config, target, reply_to=reply_to, logger=logger
        )
        return await coordinator.send_fallback(text)


async def _run_stream(
    config: FeishuBotConfig,
    *,
    target: str,
    text: str,
    reply_to: Optional[str],
    step: int,
    interval: float,
    logger: logging.Logger,
    rest_client_factory: Callable[..., Any],
) -> list[FeishuSendResult]:
    async with rest_client_factory(
        app_id=config.app_id,
        app_secret=config.app_secret,
        base_url=config.api_base_url,
    ) as rest:
        api = FeishuMessageApi(rest)
        coordinator = ReplyDispatchCoordinator(
            api,
            config,
            target,
            reply_to=reply_to,
            typing=TypingIndicator(api, reply_to, logger=logger),
            logger=logger,
        )
        await coordinator.on_reply_start()
        try:
            for partial in _partials(text, step):
                await coordinator.on_partial_reply(partial)
                if interval > 0:
                    await asyncio.sleep(interval)
            return await coordinator.deliver(text)
        except FeishuError as exc:
            await coordinator.on_error(exc)
            raise
        finally:
            await coordinator.on_reply_idle()


def register_feishu_commands(
    app: typer.Typer,
    *,
    raise_exit: Callable,
    rest_client_factory: Callable[..., Any] = FeishuRestClient,
) -> None:
    @app.command("config-check")
    def feishu_config_check(
        config_path: Optional[Path] = typer.Option(
            None, "--config", help="Path to feishu-bridge.yml or its directory"
        ),
    ) -> None:
        """Validate the config file and print the resolved settings."""
        _raw, config = require_feishu_config(config_path)
        stream = config.stream
        typer.echo(f"enabled: {config.enabled}")
        typer.echo(f"domain: {config.domain} ({config.api_base_url})")
        typer.echo(f"render_mode: {config.render_mode}")
        typer.echo(f"streaming: {config.streaming}")
        typer.echo(f"text_chunk_limit: {config.text_chunk_limit}")
        typer.echo(f"chunk_mode: {config.chunk_mode}")
        typer.echo(
            "streaming_updates: "
            f"min={stream.min_update_interval_ms}ms "
            f"max={stream.max_update_interval_ms}ms "
            f"backoff={stream.backoff_multiplier} "
            f"retries={stream.max_retries}"
        )
        typer.echo(
            f"credentials: {config.app_id_env}={'set' if config.app_id else 'unset'} "
            f"{config.app_secret_env}={'set' if config.app_secret else 'unset'}"
        )

    @app.command("send")
    def feishu_send(
        target: str = typer.Argument(..., help="Chat id, open id or user id"),
        text: str = typer.Argument(..., help="Message text (markdown allowed)"),
        config_path: Optional[Path] = typer.Option(None, "--config"),
        reply_to: Optional[str] = typer.Option(
            None, "--reply-to", help="Message id to reply to"
        ),
    ) -> None:
        """Send text through the non-streaming path."""
        raw, config = require_feishu_config(config_path)
        require_credentials(config)
        logger = _build_logger(raw)
        try:
            results = asyncio.run(
                _run_send(
                    config,
                    target=target,
                    text=text,
                    reply_to=reply_to,
                    logger=logger,
                    rest_client_factory=rest_client_factory,
                )
            )
        except FeishuError as exc:
            raise_exit(f"Feishu send failed: {exc}", cause=exc)
        for result in results:
            typer.echo(result.message_id)

    @app.command("stream")
    def feishu_stream(
        target: str = typer.Argument(..., help="Chat id, open id or user id"),
        text: str = typer.Argument(..., help="Full reply text to replay"),
        config_path: Optional[Path] = typer.Option(None, "--config"),
        reply_to: Optional[str] = typer.Option(None, "--reply-to"),
        step: int = typer.Option(
            20, "--step", min=1, help="Characters added per partial reply"
        ),
        interval: float = typer.Option(
            0.35, "--interval", min=0.0, help="Seconds between partial replies"
        ),
    ) -> None:
        """Replay TEXT as cumulative partial replies through a streaming card."""
        raw, config = require_feishu_config(config_path)
        require_credentials(config)
        logger = _build_logger(raw)
        try:
            results = asyncio.run(
                _run_stream(
                    config,
                    target=target,
                    text=text,
                    reply_to=reply_to,
                    step=step,
                    interval=interval,
                    logger=logger,
                    rest_client_factory=rest_client_factory,
                )
            )
        except FeishuError as exc:
            raise_exit(f"Feishu stream failed: {exc}", cause=exc)
        if results:
            typer.echo(f"fallback: sent {len(results)} message(s)")
        else:
            typer.echo("streamed")

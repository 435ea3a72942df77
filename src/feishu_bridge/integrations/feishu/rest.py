from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional

import httpx

from ...core.retry import retry_transient
from .constants import FEISHU_API_BASE_URL, STREAMING_RATE_LIMIT_ERROR_CODE
from .errors import FeishuAPIError, FeishuNetworkError, FeishuPermanentError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/v3/tenant_access_token/internal"
TOKEN_REFRESH_MARGIN_SECONDS = 60.0
# Tenant token rejected as invalid or expired.
TOKEN_INVALID_CODES = frozenset({99991661, 99991663, 99991668})

_TARGET_PREFIXES = ("feishu:", "lark:", "chat:", "user:", "group:")


def normalize_target(raw: str) -> str:
    target = (raw or "").strip()
    lowered = target.lower()
    for prefix in _TARGET_PREFIXES:
        if lowered.startswith(prefix):
            target = target[len(prefix) :].strip()
            lowered = target.lower()
    if not target:
        raise FeishuPermanentError(f"Invalid Feishu target: {raw!r}")
    return target


def resolve_receive_id_type(receive_id: str) -> str:
    if receive_id.startswith("oc_"):
        return "chat_id"
    if receive_id.startswith("ou_"):
        return "open_id"
    if receive_id.startswith("on_"):
        return "union_id"
    if "@" in receive_id:
        return "email"
    return "user_id"


class FeishuRestClient:
    def __init__(
        self,
        *,
        app_id: str,
        app_secret: str,
        base_url: str = FEISHU_API_BASE_URL,
        timeout_seconds: float = 15.0,
        now_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)
        self._app_id = app_id
        self._app_secret = app_secret
        self._now = now_fn
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock: Optional[asyncio.Lock] = None

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "FeishuRestClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    async def _tenant_token(self) -> str:
        if self._token and self._now() < self._token_expires_at:
            return self._token
        if self._token_lock is None:
            self._token_lock = asyncio.Lock()
        async with self._token_lock:
            if self._token and self._now() < self._token_expires_at:
                return self._token
            payload = await self._request(
                "POST",
                TOKEN_PATH,
                json_body={"app_id": self._app_id, "app_secret": self._app_secret},
                authenticated=False,
            )
            token = payload.get("tenant_access_token")
            if not isinstance(token, str) or not token:
                raise FeishuPermanentError(
                    "Feishu tenant token response missing tenant_access_token"
                )
            expire = payload.get("expire")
            lifetime = float(expire) if isinstance(expire, (int, float)) else 7200.0
            self._token = token
            self._token_expires_at = (
                self._now() + max(lifetime - TOKEN_REFRESH_MARGIN_SECONDS, 0.0)
            )
            logger.debug("Feishu tenant token refreshed, lifetime=%.0fs", lifetime)
            return token

    def _invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    @retry_transient()
    async def _send(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str],
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
        files: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json_body,
                data=data,
                files=files,
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise FeishuNetworkError(
                f"Feishu API network error for {method} {path}: {type(exc).__name__}"
            ) from exc
        if 500 <= response.status_code < 600:
            raise FeishuNetworkError(
                f"Feishu API server error for {method} {path}",
                status_code=response.status_code,
            )
        return response

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Optional[dict[str, Any]] = None,
        data: Optional[dict[str, Any]] = None,
        files: Optional[dict[str, Any]] = None,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        headers: dict[str, str] = {}
        if authenticated:
            headers["Authorization"] = f"Bearer {await self._tenant_token()}"
        response = await self._send(
            method,
            path,
            headers=headers,
            params=params,
            json_body=json_body,
            data=data,
            files=files,
        )
        return self._parse_response(method, path, response)

    def _parse_response(
        self, method: str, path: str, response: httpx.Response
    ) -> dict[str, Any]:
        status_code = response.status_code
        if status_code == 429:
            raise FeishuAPIError(
                f"Feishu API rate limited on {method} {path}",
                code=int(STREAMING_RATE_LIMIT_ERROR_CODE),
                status_code=status_code,
            )
        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None
        if not isinstance(body, dict):
            preview = (response.text or "").strip().replace("\n", " ")[:200]
            raise FeishuAPIError(
                f"Feishu API returned non-JSON response for {method} {path}: "
                f"status={status_code} body={preview!r}",
                status_code=status_code,
            )
        code = body.get("code", 0)
        message = str(body.get("msg") or "")
        if code in TOKEN_INVALID_CODES:
            self._invalidate_token()
        if status_code in {401, 403}:
            raise FeishuPermanentError(
                f"Feishu API authentication failure for {method} {path}: {message}",
                code=code if isinstance(code, int) else None,
                status_code=status_code,
            )
        if code != 0:
            raise FeishuAPIError(
                f"Feishu API request failed for {method} {path}: {message}",
                code=code if isinstance(code, int) else None,
                status_code=status_code,
            )
        if status_code >= 400:
            raise FeishuAPIError(
                f"Feishu API request failed for {method} {path}: status={status_code}",
                status_code=status_code,
            )
        return body

    @staticmethod
    def _data(payload: dict[str, Any]) -> dict[str, Any]:
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def create_message(
        self, *, receive_id: str, msg_type: str, content: dict[str, Any]
    ) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            "/im/v1/messages",
            params={"receive_id_type": resolve_receive_id_type(receive_id)},
            json_body={
                "receive_id": receive_id,
                "msg_type": msg_type,
                "content": json.dumps(content, ensure_ascii=False),
            },
        )
        return self._data(payload)

    async def reply_message(
        self, *, message_id: str, msg_type: str, content: dict[str, Any]
    ) -> dict[str, Any]:
        payload = await self._request(
            "POST",
            f"/im/v1/messages/{message_id}/reply",
            json_body={
                "msg_type": msg_type,
                "content": json.dumps(content, ensure_ascii=False),
            },
        )
        return self._data(payload)

    async def patch_message(self, *, message_id: str, content: dict[str, Any]) -> None:
        await self._request(
            "PATCH",
            f"/im/v1/messages/{message_id}",
            json_body={"content": json.dumps(content, ensure_ascii=False)},
        )

    async def get_message(self, *, message_id: str) -> Optional[dict[str, Any]]:
        payload = await self._request("GET", f"/im/v1/messages/{message_id}")
        items = self._data(payload).get("items")
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return items[0]
        return None

    async def create_card(self, *, card: dict[str, Any]) -> str:
        payload = await self._request(
            "POST",
            "/cardkit/v1/cards",
            json_body={
                "type": "card_json",
                "data": json.dumps(card, ensure_ascii=False),
            },
        )
        card_id = self._data(payload).get("card_id")
        if not isinstance(card_id, str) or not card_id:
            raise FeishuAPIError("Feishu card entity creation returned no card_id")
        return card_id

    async def update_card(
        self, *, card_id: str, card: dict[str, Any], sequence: int
    ) -> None:
        await self._request(
            "PUT",
            f"/cardkit/v1/cards/{card_id}",
            json_body={
                "card": {
                    "type": "card_json",
                    "data": json.dumps(card, ensure_ascii=False),
                },
                "sequence": sequence,
            },
        )

    async def update_card_settings(
        self, *, card_id: str, settings: dict[str, Any], sequence: int
    ) -> None:
        await self._request(
            "PATCH",
            f"/cardkit/v1/cards/{card_id}/settings",
            json_body={
                "settings": json.dumps(settings, ensure_ascii=False),
                "sequence": sequence,
            },
        )

    async def upload_image(
        self, *, data: bytes, file_name: str, image_type: str = "message"
    ) -> str:
        payload = await self._request(
            "POST",
            "/im/v1/images",
            data={"image_type": image_type},
            files={"image": (file_name, data)},
        )
        image_key = self._data(payload).get("image_key")
        if not isinstance(image_key, str) or not image_key:
            raise FeishuAPIError("Feishu image upload returned no image_key")
        return image_key

    async def upload_file(
        self,
        *,
        data: bytes,
        file_name: str,
        file_type: str,
        duration_ms: Optional[int] = None,
    ) -> str:
        form: dict[str, Any] = {"file_type": file_type, "file_name": file_name}
        if duration_ms is not None:
            form["duration"] = str(duration_ms)
        payload = await self._request(
            "POST",
            "/im/v1/files",
            data=form,
            files={"file": (file_name, data)},
        )
        file_key = self._data(payload).get("file_key")
        if not isinstance(file_key, str) or not file_key:
            raise FeishuAPIError("Feishu file upload returned no file_key")
        return file_key

    async def add_reaction(self, *, message_id: str, emoji_type: str) -> str:
        payload = await self._request(
            "POST",
            f"/im/v1/messages/{message_id}/reactions",
            json_body={"reaction_type": {"emoji_type": emoji_type}},
        )
        reaction_id = self._data(payload).get("reaction_id")
        if not isinstance(reaction_id, str) or not reaction_id:
            raise FeishuAPIError("Feishu reaction create returned no reaction_id")
        return reaction_id

    async def delete_reaction(self, *, message_id: str, reaction_id: str) -> None:
        await self._request(
            "DELETE", f"/im/v1/messages/{message_id}/reactions/{reaction_id}"
        )

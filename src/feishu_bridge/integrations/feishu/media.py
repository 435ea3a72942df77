from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from .constants import FEISHU_MAX_MEDIA_MB
from .errors import FeishuAPIError, FeishuNetworkError, FeishuPermanentError
from .transport import FeishuMessageApi, FeishuSendResult

logger = logging.getLogger(__name__)

IMAGE_EXTS = frozenset(
    {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp", ".ico", ".tiff"}
)
VIDEO_EXTS = frozenset({".mp4", ".mov", ".avi", ".mkv", ".webm"})

_FILE_TYPES_BY_EXT = {
    ".opus": "opus",
    ".ogg": "opus",
    ".mp4": "mp4",
    ".mov": "mp4",
    ".avi": "mp4",
    ".pdf": "pdf",
    ".doc": "doc",
    ".docx": "doc",
    ".xls": "xls",
    ".xlsx": "xls",
    ".ppt": "ppt",
    ".pptx": "ppt",
}
_WINDOWS_DRIVE_RE = re.compile(r"^[a-zA-Z]:")
FETCH_TIMEOUT_SECONDS = 30.0


def detect_file_type(file_name: str) -> str:
    """Map a file name to Feishu's upload ``file_type``; ``stream`` otherwise."""
    return _FILE_TYPES_BY_EXT.get(Path(file_name).suffix.lower(), "stream")


def is_local_path(value: str) -> bool:
    if value.startswith(("/", "~")) or _WINDOWS_DRIVE_RE.match(value):
        return True
    parsed = urlparse(value)
    if not parsed.scheme:
        return True
    return parsed.scheme == "file"


def _resolve_local_path(value: str) -> Path:
    if value.startswith("file://"):
        value = value[len("file://") :]
    return Path(os.path.expanduser(value))


async def _fetch_remote(
    url: str, http_client: Optional[httpx.AsyncClient]
) -> bytes:
    client = http_client or httpx.AsyncClient(
        timeout=FETCH_TIMEOUT_SECONDS, follow_redirects=True
    )
    try:
        response = await client.get(url)
    except httpx.TransportError as exc:
        raise FeishuNetworkError(
            f"Failed to fetch media from URL: {type(exc).__name__}"
        ) from exc
    finally:
        if http_client is None:
            await client.aclose()
    if response.status_code >= 400:
        raise FeishuAPIError(
            f"Failed to fetch media from URL: status={response.status_code}",
            status_code=response.status_code,
        )
    return response.content


async def load_media(
    *,
    media_url: Optional[str] = None,
    media_bytes: Optional[bytes] = None,
    file_name: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> tuple[bytes, str]:
    """Return ``(data, file_name)`` from raw bytes, a local path or a URL."""
    if media_bytes is not None:
        return media_bytes, file_name or "file"
    if not media_url:
        raise FeishuPermanentError("Either media_url or media_bytes must be provided")
    if is_local_path(media_url):
        path = _resolve_local_path(media_url)
        if not path.is_file():
            raise FeishuPermanentError(f"Local file not found: {path}")
        return path.read_bytes(), file_name or path.name
    data = await _fetch_remote(media_url, http_client)
    return data, file_name or Path(urlparse(media_url).path).name or "file"


async def send_media(
    api: FeishuMessageApi,
    target: str,
    *,
    media_url: Optional[str] = None,
    media_bytes: Optional[bytes] = None,
    file_name: Optional[str] = None,
    reply_to: Optional[str] = None,
    max_mb: int = FEISHU_MAX_MEDIA_MB,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FeishuSendResult:
    data, name = await load_media(
        media_url=media_url,
        media_bytes=media_bytes,
        file_name=file_name,
        http_client=http_client,
    )
    if len(data) > max_mb * 1024 * 1024:
        raise FeishuPermanentError(
            f"Media {name!r} is {len(data)} bytes, over the {max_mb} MB limit"
        )
    ext = Path(name).suffix.lower()
    if ext in IMAGE_EXTS:
        image_key = await api.rest.upload_image(data=data, file_name=name)
        return await api.send_image(target, image_key, reply_to=reply_to)
    if ext in VIDEO_EXTS:
        file_key = await api.rest.upload_file(data=data, file_name=name, file_type="mp4")
        return await api.send_file(target, file_key, msg_type="media", reply_to=reply_to)
    file_type = detect_file_type(name)
    logger.debug("Uploading %s as Feishu file_type=%s", name, file_type)
    file_key = await api.rest.upload_file(data=data, file_name=name, file_type=file_type)
    return await api.send_file(target, file_key, reply_to=reply_to)

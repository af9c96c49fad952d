"""
Helpers shared by adapters that send media to providers or read it back.
"""
from __future__ import annotations

import base64
from typing import Any
from urllib.parse import urlparse

import httpx

from app.runners.errors import ProviderError

DOWNLOAD_TIMEOUT = httpx.Timeout(60.0, connect=20.0)

REDACTED = "[REDACTED]"

_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "m4a": "audio/mp4",
}

# Keys under which providers return inline base64 payloads.
_BINARY_KEYS = {"b64_json", "bytesBase64Encoded", "bytes_base64_encoded"}
_INLINE_PARENTS = {"inline_data", "inlineData"}


def content_type_from_url(url: str) -> str:
    path = urlparse(url).path or url
    extension = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return _MIME_TYPES.get(extension, "application/octet-stream")


async def download_bytes(url: str, headers: dict[str, str] | None = None) -> tuple[bytes, str]:
    """Fetch a URL and return (body, content type)."""
    async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
        response = await client.get(url, headers=headers)
    if response.status_code >= 400:
        raise ProviderError(f"Failed to download {url}: {response.status_code}")
    content_type = response.headers.get("content-type") or content_type_from_url(url)
    return response.content, content_type.split(";")[0].strip()


async def url_to_base64(url: str) -> str:
    data, _ = await download_bytes(url)
    return base64.b64encode(data).decode("utf-8")


def redact_base64(value: Any, _parent: str | None = None) -> Any:
    """
    Return a copy of a provider response with inline media payloads replaced
    by ``[REDACTED]`` so the stored response stays small.
    """
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            inline = _parent in _INLINE_PARENTS and key == "data"
            if item and isinstance(item, (str, bytes)) and (inline or key in _BINARY_KEYS):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_base64(item, key)
        return redacted
    if isinstance(value, list):
        return [redact_base64(item, _parent) for item in value]
    return value

"""
Media uploader: persists generated bytes to object storage and registers a
``media`` row so the output can be referenced by a stable id.
"""
from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from app.db.store import RunStore
from app.storage.base import ObjectStorage

logger = logging.getLogger(__name__)

MEDIA_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
MEDIA_ID_LENGTH = 8
MEDIA_ID_PATTERN = re.compile(r"^(img|vdo)_[a-z0-9]{8}$")

_MEDIA_ID_IN_URL = re.compile(r"/((?:img|vdo)_[a-z0-9]{8})\.[A-Za-z0-9]+(?:\?|$)")
_LIBRARY_NAME_IN_URL = re.compile(r"library/([^./]+)\.")

MediaType = Literal["image", "video"]


@dataclass
class UploadResult:
    url: str
    media_id: str


def media_type_for(mime_type: str) -> MediaType:
    return "video" if mime_type.startswith("video/") else "image"


def generate_media_id(media_type: MediaType) -> str:
    """Generate ``img_xxxxxxxx`` / ``vdo_xxxxxxxx``."""
    prefix = "vdo" if media_type == "video" else "img"
    suffix = "".join(secrets.choice(MEDIA_ID_ALPHABET) for _ in range(MEDIA_ID_LENGTH))
    return f"{prefix}_{suffix}"


def extract_media_id_from_url(url: str) -> str | None:
    """Recover the media id from a library URL, e.g. ``.../library/<ts>/img_ab12cd34.png``."""
    match = _MEDIA_ID_IN_URL.search(url)
    if match:
        return match.group(1)
    match = _LIBRARY_NAME_IN_URL.search(url)
    return match.group(1) if match else None


class MediaUploader:
    """Uploads provider output and records it in the media library."""

    def __init__(self, store: RunStore, storage: ObjectStorage):
        self.store = store
        self.storage = storage

    async def upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        *,
        source_image_id: str | None = None,
        width: int | None = None,
        height: int | None = None,
        duration: float | None = None,
    ) -> UploadResult:
        media_type = media_type_for(mime_type)
        media_id = generate_media_id(media_type)

        ext = filename.rsplit(".", 1)[-1] if "." in filename else ("mp4" if media_type == "video" else "png")
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = f"library/{timestamp}/{media_id}.{ext}"

        self.storage.put_object(path, data, mime_type)
        url = self.storage.get_public_url(path)

        record = {
            "id": media_id,
            "type": media_type,
            "filename": filename,
            "url": url,
            "mime_type": mime_type,
            "size": len(data),
        }
        if source_image_id:
            record["source_image_id"] = source_image_id
        if width is not None:
            record["width"] = width
        if height is not None:
            record["height"] = height
        if duration is not None:
            record["duration"] = duration

        self.store.insert_media(record)
        logger.info("Uploaded %s %s (%d bytes) to %s", media_type, media_id, len(data), path)

        return UploadResult(url=url, media_id=media_id)

"""
Supabase Storage backend. Objects go to a public bucket (``attachments`` by default).
"""
import os
from typing import Optional

from supabase import Client

from app.db.store import get_supabase_client
from app.storage.base import ObjectStorage, StorageError


class SupabaseObjectStorage(ObjectStorage):

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self.bucket = bucket or os.getenv("STORAGE_BUCKET", "attachments")
        self._client = client or get_supabase_client()

    def put_object(self, path: str, data: bytes, content_type: str) -> None:
        try:
            self._client.storage.from_(self.bucket).upload(
                path,
                data,
                {"content-type": content_type, "upsert": "true"},
            )
        except Exception as e:
            raise StorageError(f"Failed to upload file: {e}") from e

    def get_public_url(self, path: str) -> str:
        return self._client.storage.from_(self.bucket).get_public_url(path)

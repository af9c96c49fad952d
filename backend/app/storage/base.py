"""
Object storage contract for generated media: put bytes, get a public URL.
"""
import os


class StorageError(RuntimeError):
    """Object storage rejected a write."""


class ObjectStorage:
    def put_object(self, path: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    def get_public_url(self, path: str) -> str:
        raise NotImplementedError


def get_object_storage() -> ObjectStorage:
    """Build the storage backend selected by STORAGE_BACKEND (supabase or r2)."""
    backend = os.getenv("STORAGE_BACKEND", "supabase").strip().lower()
    if backend == "r2":
        from app.storage.r2 import R2ObjectStorage
        return R2ObjectStorage()
    if backend == "supabase":
        from app.storage.supabase_storage import SupabaseObjectStorage
        return SupabaseObjectStorage()
    raise ValueError(f"Unsupported STORAGE_BACKEND: {backend}")

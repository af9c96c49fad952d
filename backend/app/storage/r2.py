"""
Cloudflare R2 (S3-compatible) object storage.
Uses boto3 for S3-compatible operations; objects are served from R2_PUBLIC_URL.
"""
import os
import boto3
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError
from typing import Optional

from app.storage.base import ObjectStorage, StorageError


class R2ObjectStorage(ObjectStorage):
    """Stores generated media in an R2 bucket."""

    def __init__(self, client: Optional[BaseClient] = None, bucket: Optional[str] = None,
                 public_url: Optional[str] = None):
        self.bucket = bucket or os.getenv("R2_BUCKET", "conductor")
        self.public_url = (public_url or os.getenv("R2_PUBLIC_URL", "")).rstrip("/")
        if not self.public_url:
            raise ValueError("R2_PUBLIC_URL environment variable is required")
        self._client = client or _create_client()

    def put_object(self, path: str, data: bytes, content_type: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload file: {e}") from e

    def get_public_url(self, path: str) -> str:
        return f"{self.public_url}/{path}"


def _create_client() -> BaseClient:
    endpoint_url = os.getenv("R2_ENDPOINT")
    access_key_id = os.getenv("R2_ACCESS_KEY_ID")
    secret_access_key = os.getenv("R2_SECRET_ACCESS_KEY")

    if not endpoint_url:
        raise ValueError("R2_ENDPOINT environment variable is required")
    if not access_key_id:
        raise ValueError("R2_ACCESS_KEY_ID environment variable is required")
    if not secret_access_key:
        raise ValueError("R2_SECRET_ACCESS_KEY environment variable is required")

    try:
        return boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            region_name="auto"
        )
    except Exception as e:
        raise ValueError(f"Failed to create R2 client: {str(e)}")

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import ClientError

from .config import Settings
from .logging import get_logger


class BlobStore(ABC):
    """Key addressed binary storage; uploads under the same key overwrite."""

    @abstractmethod
    async def upload(self, key: str, payload: bytes, content_type: str) -> str:
        """Store ``payload`` under ``key`` and return its public URL."""

    @abstractmethod
    async def get(self, key: str) -> bytes: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store suitable for development."""

    def __init__(self, base_path: Path, *, public_base_url: Optional[str] = None):
        self.base_path = base_path.resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _resolve(self, key: str) -> Path:
        target = (self.base_path / key).resolve()
        if not target.is_relative_to(self.base_path):
            raise ValueError(f"Blob key escapes storage root: {key}")
        return target

    def public_url(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return self._resolve(key).as_uri()

    async def upload(self, key: str, payload: bytes, content_type: str) -> str:
        path = self._resolve(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)

        await asyncio.to_thread(_write)
        return self.public_url(key)

    async def get(self, key: str) -> bytes:
        path = self._resolve(key)
        if not path.exists():
            raise FileNotFoundError(key)
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, key: str) -> None:
        path = self._resolve(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)


class S3BlobStore(BlobStore):
    """S3 or MinIO bucket, path-style addressing; boto3 calls run in worker threads."""

    def __init__(self, client: Any, bucket: str, *, public_base_url: str):
        self.client = client
        self.bucket = bucket
        self.public_base_url = public_base_url.rstrip("/")
        self.logger = get_logger(component="s3_blob_store", bucket=bucket)

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            aws_access_key_id=settings.secrets.s3_access_key_id,
            aws_secret_access_key=settings.secrets.s3_secret_access_key,
            config=BotoConfig(s3={"addressing_style": "path"}),
        )
        public_base = settings.blob_public_base_url or settings.s3_endpoint_url
        if not public_base:
            public_base = f"https://s3.{settings.s3_region}.amazonaws.com"
        return cls(client, settings.s3_bucket, public_base_url=public_base)

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{key}"

    def ensure_bucket(self, region: str) -> None:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            self.logger.info("bucket_exists")
            return
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise
        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
        self.client.create_bucket(**kwargs)
        self.client.get_waiter("bucket_exists").wait(Bucket=self.bucket)
        self.logger.info("bucket_created")

    async def upload(self, key: str, payload: bytes, content_type: str) -> str:
        await asyncio.to_thread(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=payload,
            ContentType=content_type,
        )
        self.logger.debug("blob_uploaded", key=key, size_bytes=len(payload))
        return self.public_url(key)

    async def get(self, key: str) -> bytes:
        def _read() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        return await asyncio.to_thread(_read)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)


def blob_key_for(prefix: str, external_id: str) -> str:
    """Deterministic key for an external id, so re-uploads overwrite the same object."""
    return f"{prefix.strip('/')}/{external_id}"


def get_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "local":
        return LocalBlobStore(Path(settings.local_blob_root), public_base_url=settings.blob_public_base_url)
    if settings.blob_backend == "s3":  # pragma: no cover - requires a bucket
        store = S3BlobStore.from_settings(settings)
        store.ensure_bucket(settings.s3_region)
        return store
    raise ValueError(f"Unsupported blob backend: {settings.blob_backend}")


__all__ = [
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "blob_key_for",
    "get_blob_store",
]

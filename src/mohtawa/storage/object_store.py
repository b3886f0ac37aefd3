"""Blob storage for EDLs, rendered videos, previews and synthesized audio.

Two backends share the ``BlobStore`` protocol:
- ``LocalBlobStore`` keeps objects under a directory (development and tests).
- ``S3BlobStore`` uses boto3; calls run in a worker thread.

Keys are namespaced by purpose prefix (``video-assets``, ``renders``,
``voice-output``) followed by the owning user id.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlparse

from mohtawa.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "VIDEO_PREFIX",
    "RENDERS_PREFIX",
    "VOICE_OUTPUT_PREFIX",
    "StoredObject",
    "S3ObjectRef",
    "BlobStore",
    "LocalBlobStore",
    "S3BlobStore",
    "build_s3_uri",
    "parse_s3_uri",
    "generate_storage_key",
    "build_blob_store",
]

VIDEO_PREFIX = "video-assets"
RENDERS_PREFIX = "renders"
VOICE_OUTPUT_PREFIX = "voice-output"

LOCAL_SCHEME = "local"


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    bucket: str


@dataclass(frozen=True)
class S3ObjectRef:
    bucket: str
    key: str


def build_s3_uri(*, bucket: str, key: str) -> str:
    key_norm = key.lstrip("/")
    return f"s3://{bucket}/{key_norm}"


def parse_s3_uri(uri: str) -> S3ObjectRef:
    parsed = urlparse(uri)
    if parsed.scheme != "s3":
        raise ValueError("Not an s3:// URI")
    bucket = parsed.netloc
    key = (parsed.path or "").lstrip("/")
    if not bucket or not key:
        raise ValueError("Invalid s3:// URI (missing bucket or key)")
    return S3ObjectRef(bucket=bucket, key=key)


def generate_storage_key(user_id: str, suffix: str, ext: str, prefix: str | None = None) -> str:
    """Return ``[{prefix}/]{user_id}/{random}_{suffix}.{ext}``."""
    name = f"{user_id}/{secrets.token_hex(8)}_{suffix}.{ext.lstrip('.')}"
    return f"{prefix.strip('/')}/{name}" if prefix else name


@runtime_checkable
class BlobStore(Protocol):
    """Key to bytes store with presigned retrieval."""

    bucket: str

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject: ...

    async def get(self, key: str) -> bytes: ...

    async def presign(self, key: str, ttl_seconds: int) -> str: ...

    def key_from_url(self, url: str) -> str | None:
        """Return the key when ``url`` points into this store, else None."""
        ...


class LocalBlobStore:
    """Filesystem-backed store; URLs use the ``local://`` scheme."""

    bucket = "local"

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if path != self.root and self.root not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.debug("blob_put", key=key, size=len(data), content_type=content_type)
        return StoredObject(key=key, url=f"{LOCAL_SCHEME}://{key}", bucket=self.bucket)

    async def get(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise FileNotFoundError(f"Blob not found: {key}")
        return await asyncio.to_thread(path.read_bytes)

    async def presign(self, key: str, ttl_seconds: int) -> str:
        return self._path_for(key).as_uri()

    def key_from_url(self, url: str) -> str | None:
        parsed = urlparse(url)
        if parsed.scheme != LOCAL_SCHEME:
            return None
        return f"{parsed.netloc}{parsed.path}".lstrip("/") or None


def _require_boto3() -> Any:
    try:
        import boto3  # type: ignore
    except Exception as exc:  # pragma: no cover - depends on optional extra
        raise RuntimeError(
            "S3 backend requires boto3. Install with `pip install 'mohtawa[s3]'` "
            "or add boto3 to your environment."
        ) from exc
    return boto3


class S3BlobStore:
    """S3 store for uploads, reads and presigned GET URLs."""

    def __init__(
        self,
        *,
        bucket: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        public_base_url: str | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            boto3 = _require_boto3()
            client = boto3.client(
                "s3", endpoint_url=endpoint_url or None, region_name=region or None
            )
        self._client = client
        self.bucket = bucket
        self.public_base_url = (public_base_url or "").rstrip("/")

    def _url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return build_s3_uri(bucket=self.bucket, key=key)

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        def _upload() -> None:
            self._client.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )

        await asyncio.to_thread(_upload)
        return StoredObject(key=key, url=self._url_for(key), bucket=self.bucket)

    async def get(self, key: str) -> bytes:
        def _download() -> bytes:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            return bytes(response["Body"].read())

        return await asyncio.to_thread(_download)

    async def presign(self, key: str, ttl_seconds: int) -> str:
        def _presign() -> str:
            return str(
                self._client.generate_presigned_url(
                    "get_object",
                    Params={"Bucket": self.bucket, "Key": key},
                    ExpiresIn=int(ttl_seconds),
                )
            )

        return await asyncio.to_thread(_presign)

    def key_from_url(self, url: str) -> str | None:
        if url.startswith("s3://"):
            ref = parse_s3_uri(url)
            return ref.key if ref.bucket == self.bucket else None
        if self.public_base_url and url.startswith(f"{self.public_base_url}/"):
            return url[len(self.public_base_url) + 1 :]
        return None


def build_blob_store(settings: Any) -> BlobStore:
    """Build the configured blob store backend."""
    if settings.storage_backend == "s3":
        return S3BlobStore(
            bucket=settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            public_base_url=settings.s3_public_base_url,
        )
    return LocalBlobStore(settings.local_storage_dir)

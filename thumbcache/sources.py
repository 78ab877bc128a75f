"""
Source image access.

Sources resolve a source identifier to raw bytes. A missing source raises
SourceNotFoundError; any other failure propagates unchanged.

No path validation is done here: identifiers are read exactly as given.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from minio import Minio
from minio.error import S3Error

from thumbcache.errors import SourceNotFoundError

logger = logging.getLogger(__name__)


class ImageSource:
    """Read-only access to source images."""

    name = "base"

    def init(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def read(self, source_id: str) -> bytes:
        raise NotImplementedError

    async def read_async(self, source_id: str) -> bytes:
        """Read in the default executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self.read, source_id)


class LocalFileSource(ImageSource):
    """Reads source images from the local filesystem."""

    name = "local"

    def __init__(self, root: str | os.PathLike | None = None):
        self.root = Path(root) if root else None

    def resolve(self, source_id: str) -> Path:
        path = Path(source_id)
        if self.root is not None and not path.is_absolute():
            path = self.root / path
        return path

    def read(self, source_id: str) -> bytes:
        path = self.resolve(source_id)
        logger.warning(f"[API/IMAGE] Security Warning: Accessing file path without validation: {path}")
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
            raise SourceNotFoundError(f"File not found: {source_id}") from e


class MinIOSource(ImageSource):
    """
    Reads source images from a MinIO/S3-compatible bucket.
    The source identifier is the object key.
    """

    name = "minio"

    def __init__(self, client: Minio | None = None, bucket_name: str | None = None):
        self.endpoint = os.environ.get("MINIO_ENDPOINT", "localhost:9000")
        self.access_key = os.environ.get("MINIO_ACCESS_KEY", "minioadmin")
        self.secret_key = os.environ.get("MINIO_SECRET_KEY", "minioadmin")
        self.secure = os.environ.get("MINIO_SECURE", "false").lower() in ("true", "1", "yes")
        self.bucket_name = bucket_name or os.environ.get("MINIO_BUCKET", "photos")
        self.client = client

    def init(self) -> None:
        if self.client is None:
            self.client = Minio(
                self.endpoint,
                access_key=self.access_key,
                secret_key=self.secret_key,
                secure=self.secure,
            )
        logger.info(f"MinIO source initialized: endpoint={self.endpoint}, bucket={self.bucket_name}")

    def shutdown(self) -> None:
        self.client = None

    def read(self, source_id: str) -> bytes:
        if self.client is None:
            raise RuntimeError("MinIO source is not initialized")
        key = source_id.lstrip("/")
        try:
            response = self.client.get_object(self.bucket_name, key)
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket"):
                raise SourceNotFoundError(f"File not found in MinIO: {key}") from e
            raise
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()


def create_source(backend: str, root: str = "") -> ImageSource:
    """Build the source named by configuration."""
    if backend == "local":
        return LocalFileSource(root or None)
    if backend == "minio":
        return MinIOSource()
    raise ValueError(f"Unknown source backend: {backend}")

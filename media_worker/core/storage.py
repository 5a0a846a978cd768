"""Object storage for source videos and produced artifacts.

Backends: local filesystem (development, tests) and S3-compatible stores
(AWS S3, MinIO). Backends never raise on upload, download or delete; the
outcome comes back in a ``StorageResult`` so a pipeline can decide whether
one artifact or the whole job is affected.
"""

import asyncio
import logging
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from media_worker.core.config import settings
from media_worker.core.logging import log_warning

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass
class StorageResult:
    """Outcome of a single object transfer."""
    success: bool
    key: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage connection settings."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
        )


class StorageBackend(ABC):
    """Blocking object store operations."""

    @abstractmethod
    def upload(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        """Store a local file under ``key``."""

    @abstractmethod
    def download(self, key: str, destination: str) -> StorageResult:
        """Copy ``key`` to a local path."""

    @abstractmethod
    def delete_many(self, keys: list[str]) -> int:
        """Delete keys, returning how many existed and were removed."""

    @abstractmethod
    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Temporary read URL for ``key``."""


class LocalStorage(StorageBackend):
    """Objects as files below a base directory."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _object_path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path not in path.parents:
            raise ValueError(f"Key escapes storage root: {key}")
        return path

    def upload(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        try:
            target = self._object_path(key)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(file_path, target)
            return StorageResult(success=True, key=key, file_size=target.stat().st_size)
        except (OSError, ValueError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def download(self, key: str, destination: str) -> StorageResult:
        try:
            source = self._object_path(key)
            if not source.is_file():
                return StorageResult(success=False, key=key, error_message="Object not found")
            shutil.copyfile(source, destination)
            return StorageResult(success=True, key=key, file_size=source.stat().st_size)
        except (OSError, ValueError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def delete_many(self, keys: list[str]) -> int:
        deleted = 0
        for key in keys:
            try:
                self._object_path(key).unlink()
                deleted += 1
            except FileNotFoundError:
                continue
            except (OSError, ValueError) as e:
                log_warning(logger, "Failed to delete object", key=key, error=str(e))
        return deleted

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        return self._object_path(key).as_uri()


class S3Storage(StorageBackend):
    """S3 and MinIO backend on boto3."""

    # delete_objects accepts at most this many keys per call
    DELETE_BATCH_SIZE = 1000

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    @property
    def client(self):
        if self._client is None:
            import boto3
            from botocore.config import Config as BotoConfig

            kwargs = {
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
            }
            if self.config.endpoint_url:
                # MinIO needs path-style addressing
                kwargs["endpoint_url"] = self.config.endpoint_url
                kwargs["use_ssl"] = self.config.use_ssl
                kwargs["config"] = BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"})
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def upload(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            size = os.path.getsize(file_path)
            with open(file_path, "rb") as body:
                response = self.client.put_object(
                    Bucket=self.config.bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type,
                )
            return StorageResult(
                success=True,
                key=key,
                file_size=size,
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def download(self, key: str, destination: str) -> StorageResult:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self.client.download_file(self.config.bucket, key, destination)
            return StorageResult(success=True, key=key, file_size=os.path.getsize(destination))
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, error_message=str(e))

    def delete_many(self, keys: list[str]) -> int:
        from botocore.exceptions import BotoCoreError, ClientError

        deleted = 0
        for start in range(0, len(keys), self.DELETE_BATCH_SIZE):
            batch = keys[start:start + self.DELETE_BATCH_SIZE]
            try:
                response = self.client.delete_objects(
                    Bucket=self.config.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": False},
                )
            except (BotoCoreError, ClientError) as e:
                log_warning(logger, "Batch delete failed", keys=len(batch), error=str(e))
                continue
            deleted += len(response.get("Deleted", []))
            for error in response.get("Errors", []):
                log_warning(logger, "Object not deleted", key=error.get("Key"), error=error.get("Message"))
        return deleted

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=expires_in,
        )


def create_backend(config: StorageConfig) -> StorageBackend:
    """Backend for ``config.backend``.

    Raises:
        ValueError: Unknown backend name
    """
    name = config.backend.lower()
    if name == "local":
        return LocalStorage(config)
    if name in ("s3", "minio", "aws"):
        return S3Storage(config)
    raise ValueError(f"Unsupported storage backend: {config.backend}")


class StorageService:
    """Async facade over a storage backend.

    Blocking SDK calls run in a worker thread so a long upload never stalls
    the dispatcher's event loop. The backend is built from settings on
    first use unless one is supplied.
    """

    def __init__(self, backend: Optional[StorageBackend] = None):
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        if self._backend is None:
            self._backend = create_backend(StorageConfig.from_settings())
        return self._backend

    async def upload_file(self, file_path: str, key: str, content_type: str = DEFAULT_CONTENT_TYPE) -> StorageResult:
        """Upload a local file.

        Args:
            file_path: Local source path
            key: Storage key
            content_type: MIME type

        Returns:
            StorageResult: Upload result
        """
        result = await asyncio.to_thread(self.backend.upload, file_path, key, content_type)
        if not result.success:
            log_warning(logger, "Upload failed", key=key, error=result.error_message)
        return result

    async def download_file(self, key: str, destination: str) -> StorageResult:
        return await asyncio.to_thread(self.backend.download, key, destination)

    async def delete_files(self, keys: Iterable[str]) -> int:
        """Delete every key in one pass, returning the removed count."""
        return await asyncio.to_thread(self.backend.delete_many, list(keys))

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        return await asyncio.to_thread(self.backend.get_url, key, expires_in)


storage_service = StorageService()

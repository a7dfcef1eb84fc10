"""Object storage for published transcoding outputs.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
"""

import asyncio
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig

from vidpress.core.config import settings


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
        expires_in: int = 3600,
    ) -> StorageResult:
        """Upload a file and return a URL valid for ``expires_in`` seconds."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a file from storage."""

    @abstractmethod
    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Get URL for a file (presigned for private storage)."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
        expires_in: int = 3600,
    ) -> StorageResult:
        """Copy a file into the storage directory."""
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            shutil.copy2(file_path, dest_path)
            file_size = dest_path.stat().st_size

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key, expires_in),
                file_size=file_size,
            )
        except OSError as e:
            return StorageResult(
                success=False,
                key=key,
                url="",
                error_message=str(e),
            )

    def delete(self, key: str) -> bool:
        try:
            file_path = self._get_full_path(key)
            if file_path.exists():
                file_path.unlink()
                return True
            return False
        except OSError:
            return False

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        return f"file://{self._get_full_path(key).absolute()}"


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key or None,
                "aws_secret_access_key": self.config.secret_key or None,
                "config": BotoConfig(signature_version="s3v4"),
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                # Allow non-SSL for local MinIO
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
        expires_in: int = 3600,
    ) -> StorageResult:
        """Upload a file to S3/MinIO and presign a GET URL for it."""
        try:
            client = self._get_client()
            file_size = Path(file_path).stat().st_size

            with open(file_path, "rb") as f:
                response = client.put_object(
                    Bucket=self.config.bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type,
                )

            etag = response.get("ETag", "").strip('"')

            return StorageResult(
                success=True,
                key=key,
                url=self.get_url(key, expires_in),
                file_size=file_size,
                etag=etag,
            )
        except Exception as e:
            return StorageResult(
                success=False,
                key=key,
                url="",
                error_message=str(e),
            )

    def delete(self, key: str) -> bool:
        try:
            client = self._get_client()
            client.delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except Exception:
            return False

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Get a presigned GET URL for a file."""
        client = self._get_client()
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=expires_in,
        )


class Storage:
    """Universal storage interface.

    Automatically selects the appropriate backend based on configuration.
    """

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        """Initialize storage with configuration.

        Args:
            config: Storage configuration (uses settings if not provided)
        """
        if config is None:
            config = StorageConfig(
                backend=settings.STORAGE_BACKEND,
                bucket=settings.STORAGE_BUCKET,
                region=settings.STORAGE_REGION,
                access_key=settings.STORAGE_ACCESS_KEY,
                secret_key=settings.STORAGE_SECRET_KEY,
                endpoint_url=settings.STORAGE_ENDPOINT_URL,
                use_ssl=settings.STORAGE_USE_SSL,
                local_path=settings.LOCAL_STORAGE_PATH,
            )

        self.config = config
        self._backend = self._create_backend(config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
        expires_in: int = 3600,
    ) -> StorageResult:
        return self._backend.upload(file_path, key, content_type, expires_in)

    def delete(self, key: str) -> bool:
        return self._backend.delete(key)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()


class StorageService:
    """Async wrapper that runs blocking storage calls in a worker thread."""

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage or get_storage()

    async def upload_file(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
        expires_in: int = 3600,
    ) -> StorageResult:
        """Upload a local file.

        Args:
            file_path: Local path of the file to upload
            key: Storage key/path
            content_type: MIME type
            expires_in: Lifetime of the returned URL in seconds

        Returns:
            StorageResult: Upload result
        """
        return await asyncio.to_thread(
            self._storage.upload, file_path, key, content_type, expires_in
        )

    async def delete_file(self, key: str) -> bool:
        return await asyncio.to_thread(self._storage.delete, key)

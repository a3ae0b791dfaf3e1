from __future__ import annotations

import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

if TYPE_CHECKING:
    from cms_core.config import CMSSettings

UPLOAD_PREFIX = "uploads"


class StorageError(RuntimeError):
    pass


def sanitize_filename(name: str) -> str:
    """
    Reduce a client-supplied filename to a safe object-key segment.

    >>> sanitize_filename("../My Photo.JPG")
    'My-Photo.JPG'
    """
    name = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode()
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    name = re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-.")
    return name or "file"


def build_object_key(filename: str, *, now: datetime | None = None) -> str:
    """
    Build ``uploads/<yyyy>/<mm>/<epoch-ms>-<sanitized filename>``.
    """
    now = now or datetime.now(timezone.utc)
    epoch_ms = int(now.timestamp() * 1000)
    return (
        f"{UPLOAD_PREFIX}/{now:%Y}/{now:%m}/{epoch_ms}-{sanitize_filename(filename)}"
    )


class Storage(ABC):
    """
    Object store interface. Implementations are synchronous; async callers
    run them in the threadpool.
    """

    bucket: str
    public_base_url: str

    @abstractmethod
    def put_bytes(
        self, key: str, data: bytes, *, content_type: str | None = None
    ) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    def presign_put(self, key: str, *, content_type: str) -> str | None:
        """Return a direct-upload URL, or None if the backend has none."""
        return None

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{key}"


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    public_base_url: str = "/media-files"
    bucket: str = "local"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        path = (self.root / safe_key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            msg = f"Key escapes storage root: {key}"
            raise StorageError(msg)
        return path

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def exists(self, key: str) -> bool:
        return self._path(key).exists()


@dataclass(frozen=True)
class S3Storage(Storage):
    """S3-compatible object store (AWS S3, Cloudflare R2, MinIO)."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str
    presign_expires: int = 3600

    @cached_property
    def client(self) -> Any:
        endpoint = self.endpoint
        if endpoint and "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        return boto3.client(
            "s3",
            endpoint_url=endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to store {key}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to delete {key}") from e

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey"):
                return False
            raise StorageError(f"Failed to check {key}") from e
        return True

    def presign_put(self, key: str, *, content_type: str) -> str | None:
        try:
            return self.client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.presign_expires,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to presign {key}") from e


def storage_from_settings(settings: CMSSettings) -> Storage:
    if settings.STORAGE_BACKEND == "s3":
        return S3Storage(
            endpoint=settings.S3_ENDPOINT.strip(),
            region=settings.S3_REGION.strip(),
            bucket=settings.S3_BUCKET.strip(),
            access_key_id=settings.S3_ACCESS_KEY_ID.strip(),
            secret_access_key=settings.S3_SECRET_ACCESS_KEY.strip(),
            public_base_url=settings.MEDIA_PUBLIC_BASE_URL,
            presign_expires=settings.PRESIGNED_URL_EXPIRES,
        )
    root = Path(settings.STORAGE_ROOT).absolute()
    return LocalStorage(root=root, public_base_url=settings.MEDIA_PUBLIC_BASE_URL)

from __future__ import annotations

import abc
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import settings
from ..errors import StorageFailure

logger = logging.getLogger(__name__)


def s3_client() -> Any:
    """Build the S3 client from the nested AWS settings."""
    aws = settings.aws
    kwargs: dict[str, Any] = {"region_name": aws.region, "config": Config(retries={"max_attempts": 3})}
    if aws.access_key_id and aws.secret_access_key:
        kwargs["aws_access_key_id"] = aws.access_key_id
        kwargs["aws_secret_access_key"] = aws.secret_access_key
    if aws.s3_endpoint_url:
        kwargs["endpoint_url"] = aws.s3_endpoint_url
    return boto3.client("s3", **kwargs)


class BlobStore(abc.ABC):
    """Key -> bytes storage backing the local document store."""

    @abc.abstractmethod
    def read(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or ``None`` if nothing was written yet."""

    @abc.abstractmethod
    def write(self, key: str, payload: bytes) -> None:
        ...


class FileBlobStore(BlobStore):
    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe_key = key.replace("/", "_")
        return self.directory / f"{safe_key}.json"

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageFailure(f"Failed to read {path}: {exc}") from exc

    def write(self, key: str, payload: bytes) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "wb") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise StorageFailure(f"Failed to write {path}: {exc}") from exc
        logger.debug("blob_written backend=file key=%s bytes=%s", key, len(payload))


class S3BlobStore(BlobStore):
    def __init__(self, bucket: Optional[str] = None, prefix: str = "") -> None:
        self.bucket = bucket or settings.aws.s3_bucket
        self.prefix = prefix
        self._client = s3_client()

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{key}.json"

    def read(self, key: str) -> Optional[bytes]:
        try:
            obj = self._client.get_object(Bucket=self.bucket, Key=self._object_key(key))
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in {"NoSuchKey", "404"}:
                return None
            raise StorageFailure(f"Failed to download S3 object: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageFailure(f"Failed to download S3 object: {exc}") from exc

        body = obj["Body"]
        try:
            return body.read()
        finally:
            body.close()

    def write(self, key: str, payload: bytes) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._object_key(key),
                Body=payload,
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageFailure(f"Failed to upload to S3: {exc}") from exc
        logger.debug("blob_written backend=s3 bucket=%s key=%s bytes=%s", self.bucket, key, len(payload))


def get_blob_store() -> BlobStore:
    if settings.blob_backend == "s3":
        return S3BlobStore()
    return FileBlobStore(settings.local_store_dir)

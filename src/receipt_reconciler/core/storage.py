from __future__ import annotations

import mimetypes
import re
import time
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int
    content_type: str


def guess_content_type(key: str) -> str:
    return mimetypes.guess_type(key)[0] or DEFAULT_CONTENT_TYPE


class ObjectStorage:
    """Blob store for receipt attachments, addressed by receipt-scoped keys."""

    backend = "abstract"

    def put(
        self, *, key: str, body: bytes, content_type: str | None = None
    ) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def _stored(
        self, key: str, body: bytes, content_type: str | None, start: float
    ) -> StoredObject:
        stored = StoredObject(
            key=key, byte_size=len(body), content_type=content_type or guess_content_type(key)
        )
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=stored.byte_size,
            content_type=stored.content_type,
            duration_ms=monotonic_ms(start),
        )
        return stored


class LocalObjectStorage(ObjectStorage):
    backend = "local"

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root.resolve()):
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError as e:
            log_exception(logger, "storage.put.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Could not write {key}: {e}") from e
        return self._stored(key, body, content_type, start)

    def get(self, *, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            log_event(logger, "storage.get.missing", backend=self.backend, storage_key=key)
            raise StorageError(f"Attachment not found: {key}")
        return path.read_bytes()


class S3ObjectStorage(ObjectStorage):
    """S3-compatible bucket; botocore's adaptive retry mode handles throttling."""

    backend = "s3"

    def __init__(self, client=None, *, bucket: str | None = None) -> None:
        self._bucket = bucket or settings.s3_bucket
        if client is not None:
            self._client = client
            return
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"
        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        self._client = session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
            config=Config(
                retries={"max_attempts": 4, "mode": "adaptive"},
                connect_timeout=settings.http_timeout_seconds,
                read_timeout=settings.http_timeout_seconds,
            ),
        )

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        content_type = content_type or guess_content_type(key)
        try:
            self._client.put_object(
                Bucket=self._bucket, Key=key, Body=body, ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            log_exception(logger, "storage.put.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Could not upload {key}: {e}") from e
        return self._stored(key, body, content_type, start)

    def get(self, *, key: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            log_exception(logger, "storage.get.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Attachment not found: {key}") from e
        return resp["Body"].read()


def attachment_key(*, receipt_id: str, filename: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", filename).strip("._") or "attachment"
    return f"receipts/{receipt_id}/{safe}"


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is None:
        if settings.storage_backend == "s3":
            _storage = S3ObjectStorage()
        else:
            _storage = LocalObjectStorage(settings.local_storage_path.absolute())
    return _storage

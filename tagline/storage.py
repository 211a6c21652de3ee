"""
Blob storage providers: null, in-memory, local filesystem and S3-compatible.

Exactly one provider is active per deployment. Providers only know about
object keys and bytes; photo identity and metadata live in ``tagline.db``.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterator, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from tagline.errors import (
    BackendUnavailableError,
    InvalidObjectKeyError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024
BLOB_NOT_FOUND = "Image not found"


class BlobStore(Protocol):
    """Defines the operations the service needs from blob storage."""

    name: str

    def initialize(self) -> None:
        ...

    def put_bytes(self, key: str, data: bytes) -> None:
        ...

    def get_bytes(self, key: str) -> bytes:
        ...

    def open_stream(
        self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        ...

    def exists(self, key: str) -> bool:
        ...

    def list_keys(self) -> list[str]:
        ...


def _check_key(key: str) -> str:
    if not isinstance(key, str) or not key.strip():
        raise InvalidObjectKeyError()
    return key


def _iter_chunks(data: bytes, chunk_size: int) -> Iterator[bytes]:
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]


def _iter_file(handle: BinaryIO, chunk_size: int) -> Iterator[bytes]:
    with handle:
        while True:
            try:
                chunk = handle.read(chunk_size)
            except OSError as exc:
                raise BackendUnavailableError() from exc
            if not chunk:
                break
            yield chunk


class NullBlobStore:
    """Accepts every write and discards it; every read reports the key absent."""

    name = "null"

    def initialize(self) -> None:
        return None

    def put_bytes(self, key: str, data: bytes) -> None:
        _check_key(key)

    def get_bytes(self, key: str) -> bytes:
        _check_key(key)
        raise NotFoundError(BLOB_NOT_FOUND)

    def open_stream(
        self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        _check_key(key)
        raise NotFoundError(BLOB_NOT_FOUND)

    def exists(self, key: str) -> bool:
        _check_key(key)
        return False

    def list_keys(self) -> list[str]:
        return []


@dataclass
class InMemoryBlobStore:
    """Process-local blob store; contents are lost on restart."""

    objects: dict[str, bytes] = field(default_factory=dict)
    name: str = "memory"

    def __post_init__(self):
        self._lock = threading.Lock()

    def initialize(self) -> None:
        return None

    def put_bytes(self, key: str, data: bytes) -> None:
        _check_key(key)
        with self._lock:
            self.objects[key] = bytes(data)

    def get_bytes(self, key: str) -> bytes:
        _check_key(key)
        with self._lock:
            stored = self.objects.get(key)
        if stored is None:
            raise NotFoundError(BLOB_NOT_FOUND)
        return stored

    def open_stream(
        self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        return _iter_chunks(self.get_bytes(key), chunk_size)

    def exists(self, key: str) -> bool:
        _check_key(key)
        with self._lock:
            return key in self.objects

    def list_keys(self) -> list[str]:
        with self._lock:
            return sorted(self.objects)


class FilesystemBlobStore:
    """
    Maps object keys to files under ``root``.

    Keys are POSIX-style relative paths. Absolute keys, ``..`` segments and
    symlinks that resolve outside the root are rejected.
    """

    name = "filesystem"

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    def initialize(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackendUnavailableError() from exc

    def _resolve(self, key: str) -> Path:
        _check_key(key)
        relative = PurePosixPath(key.replace("\\", "/"))
        if relative.is_absolute() or ".." in relative.parts:
            raise InvalidObjectKeyError()
        root = self.root.resolve()
        candidate = (root / relative).resolve()
        if candidate == root or not candidate.is_relative_to(root):
            raise InvalidObjectKeyError()
        return candidate

    def put_bytes(self, key: str, data: bytes) -> None:
        path = self._resolve(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write then rename so a concurrent scan never sees a partial file.
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise BackendUnavailableError() from exc

    def _open(self, key: str) -> BinaryIO:
        path = self._resolve(key)
        try:
            return path.open("rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise NotFoundError(BLOB_NOT_FOUND) from exc
        except OSError as exc:
            logger.warning("Filesystem read failed for %s: %s", key, exc)
            raise BackendUnavailableError() from exc

    def get_bytes(self, key: str) -> bytes:
        with self._open(key) as handle:
            try:
                return handle.read()
            except OSError as exc:
                raise BackendUnavailableError() from exc

    def open_stream(
        self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        # Open eagerly so a missing key fails before streaming starts.
        return _iter_file(self._open(key), chunk_size)

    def exists(self, key: str) -> bool:
        return self._resolve(key).is_file()

    def list_keys(self) -> list[str]:
        if not self.root.exists():
            return []
        root = self.root.resolve()
        keys: list[str] = []
        try:
            for path in root.rglob("*"):
                relative = path.relative_to(root)
                if any(part.startswith(".") for part in relative.parts):
                    continue
                if path.is_file() and path.resolve().is_relative_to(root):
                    keys.append(relative.as_posix())
        except OSError as exc:
            raise BackendUnavailableError() from exc
        return sorted(keys)


_MISSING_CODES = {"NoSuchKey", "NotFound", "404"}


def _is_missing(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _MISSING_CODES


@dataclass
class S3BlobStore:
    """
    S3-compatible object store provider.

    Calls time out after ``timeout_seconds`` and are never retried. A missing
    object surfaces as NotFound; anything else (network, credentials,
    throttling) surfaces as BackendUnavailable.
    """

    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    prefix: str = ""
    timeout_seconds: float = 5.0
    name: str = "s3"

    def __post_init__(self):
        config = Config(
            signature_version="s3v4",
            connect_timeout=self.timeout_seconds,
            read_timeout=self.timeout_seconds,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{_check_key(key)}"

    def _unavailable(self, operation: str, exc: Exception) -> BackendUnavailableError:
        logger.warning("S3 %s failed on bucket %s: %s", operation, self.bucket, exc)
        return BackendUnavailableError()

    def initialize(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as exc:
            if not _is_missing(exc):
                raise self._unavailable("head_bucket", exc) from exc
        except BotoCoreError as exc:
            raise self._unavailable("head_bucket", exc) from exc

        params: dict = {"Bucket": self.bucket}
        if self.region and self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self._client.create_bucket(**params)
            logger.info("Created bucket %s", self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable("create_bucket", exc) from exc

    def put_bytes(self, key: str, data: bytes) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket, Key=self._object_key(key), Body=data
            )
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable("put_object", exc) from exc

    def _get_body(self, key: str):
        try:
            response = self._client.get_object(
                Bucket=self.bucket, Key=self._object_key(key)
            )
        except ClientError as exc:
            if _is_missing(exc):
                raise NotFoundError(BLOB_NOT_FOUND) from exc
            raise self._unavailable("get_object", exc) from exc
        except BotoCoreError as exc:
            raise self._unavailable("get_object", exc) from exc
        return response["Body"]

    def get_bytes(self, key: str) -> bytes:
        body = self._get_body(key)
        try:
            return body.read()
        except BotoCoreError as exc:
            raise self._unavailable("read", exc) from exc
        finally:
            body.close()

    def open_stream(
        self, key: str, chunk_size: int = DEFAULT_CHUNK_SIZE
    ) -> Iterator[bytes]:
        return self._iter_body(self._get_body(key), chunk_size)

    def _iter_body(self, body, chunk_size: int) -> Iterator[bytes]:
        try:
            yield from body.iter_chunks(chunk_size)
        except BotoCoreError as exc:
            raise self._unavailable("read", exc) from exc
        finally:
            body.close()

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self.bucket, Key=self._object_key(key))
            return True
        except ClientError as exc:
            if _is_missing(exc):
                return False
            raise self._unavailable("head_object", exc) from exc
        except BotoCoreError as exc:
            raise self._unavailable("head_object", exc) from exc

    def list_keys(self) -> list[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for item in page.get("Contents", []):
                    key = item["Key"][len(self.prefix) :]
                    if key and not key.endswith("/"):
                        keys.append(key)
        except (BotoCoreError, ClientError) as exc:
            raise self._unavailable("list_objects_v2", exc) from exc
        return sorted(keys)

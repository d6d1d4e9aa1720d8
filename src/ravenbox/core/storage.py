"""
Object storage backends for RavenBox

A backend is anything exposing three operations:

    put(key, stream)            -> stores everything read from ``stream`` under ``key``
    get(key)                    -> readable byte stream
    list(prefix, max_keys)      -> [ObjectMeta]

Two implementations are provided:

> S3StorageBackend: any S3-compatible service (AWS, Aliyun OSS, MinIO, ...) through boto3.
> LocalStorageBackend: a directory on disk where keys map to relative paths.
  Useful offline and in tests.

Backends only move bytes. Encryption happens before ``put`` and after ``get``
(see ravenbox.core.transfer) so a backend never sees plaintext of an encrypted upload.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, List, Optional

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import InvalidKeyError, ObjectNotFoundError, StorageError

logger = logging.getLogger(__name__)

COPY_BUFFER = 1024 * 1024
S3_LIST_PAGE_LIMIT = 1000
_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}


@dataclass(frozen=True)
class ObjectMeta:
    key: str
    size: int
    modified: Optional[datetime] = None


class StorageBackend(ABC):
    """Capability object used by the transfer layer."""

    @abstractmethod
    def put(self, key: str, stream: BinaryIO, expires: Optional[datetime] = None) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> BinaryIO:
        ...

    @abstractmethod
    def list(self, prefix: str = "", max_keys: Optional[int] = None) -> List[ObjectMeta]:
        ...


class LocalStorageBackend(StorageBackend):
    """Stores objects as plain files under ``root``"""

    def __init__(self, root_path: Optional[str] = None):
        self.root = (
            Path(root_path).expanduser() if root_path else Path.home() / ".ravenbox" / "objects"
        )
        self.root.mkdir(parents=True, exist_ok=True)

    def object_path(self, key: str) -> Path:
        if not key or key.endswith("/"):
            raise InvalidKeyError(f"invalid object key: {key!r}")
        root = self.root.resolve()
        path = (root / key.lstrip("/")).resolve()
        if root not in path.parents:
            raise InvalidKeyError(f"object key escapes storage root: {key!r}")
        return path

    def put(self, key: str, stream: BinaryIO, expires: Optional[datetime] = None) -> None:
        destination = self.object_path(key)
        destination.parent.mkdir(parents=True, exist_ok=True)
        if expires is not None:
            logger.debug("local backend ignores expiry for %s", key)

        # write next to the destination, then rename, so readers never see half an object
        with tempfile.NamedTemporaryFile(dir=destination.parent, prefix=".", suffix=".part", delete=False) as tmpf:
            tmp_path = Path(tmpf.name)
            try:
                shutil.copyfileobj(stream, tmpf, COPY_BUFFER)
            except BaseException:
                tmpf.close()
                tmp_path.unlink()
                raise
        tmp_path.replace(destination)

    def get(self, key: str) -> BinaryIO:
        path = self.object_path(key)
        if not path.is_file():
            raise ObjectNotFoundError(f"object {key} not found")
        return open(path, "rb")

    def list(self, prefix: str = "", max_keys: Optional[int] = None) -> List[ObjectMeta]:
        prefix = prefix.lstrip("/")
        results: List[ObjectMeta] = []
        for path in sorted(p for p in self.root.rglob("*") if p.is_file()):
            if path.name.startswith(".") and path.name.endswith(".part"):
                continue
            key = path.relative_to(self.root).as_posix()
            if not key.startswith(prefix):
                continue
            stat = path.stat()
            results.append(
                ObjectMeta(
                    key=key,
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
            if max_keys is not None and len(results) >= max_keys:
                break
        return results


def _storage_error(e: Exception, action: str, key: str) -> StorageError:
    if isinstance(e, ClientError):
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in _NOT_FOUND_CODES:
            return ObjectNotFoundError(f"object {key} not found")
        return StorageError(f"{action} {key} failed: {code or e}")
    return StorageError(f"{action} {key} failed: {e}")


class _S3Body:
    """Read-only view of a ``get_object`` body that reports read failures as StorageError."""

    def __init__(self, body, key: str):
        self._body = body
        self._key = key

    def read(self, n: int = -1) -> bytes:
        try:
            return self._body.read() if n is None or n < 0 else self._body.read(n)
        except (ClientError, BotoCoreError) as e:
            raise _storage_error(e, "download", self._key) from e

    def close(self) -> None:
        self._body.close()

    @property
    def closed(self) -> bool:
        return bool(getattr(self._body, "closed", False))


class S3StorageBackend(StorageBackend):
    """
    S3-compatible backend on top of a boto3 client.

    Uploads go through ``upload_fileobj`` which reads the stream part by
    part (multipart above ``multipart_threshold``), so an encrypting
    generator wrapped in an ``IterStream`` is never fully buffered.
    """

    def __init__(
        self,
        bucket: str,
        client=None,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        transfer_config: Optional[TransferConfig] = None,
    ):
        self.bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url or None,
                region_name=region or None,
                aws_access_key_id=access_key_id or None,
                aws_secret_access_key=secret_access_key or None,
                # OSS and most S3 clones only accept virtual-hosted addressing
                config=BotoConfig(s3={"addressing_style": "virtual"}),
            )
        self.client = client
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=8 * 1024 * 1024,
            multipart_chunksize=8 * 1024 * 1024,
            max_concurrency=4,
        )

    def put(self, key: str, stream: BinaryIO, expires: Optional[datetime] = None) -> None:
        extra_args = {"Expires": expires} if expires is not None else None
        try:
            self.client.upload_fileobj(
                stream,
                self.bucket,
                key,
                ExtraArgs=extra_args,
                Config=self.transfer_config,
            )
        except (ClientError, BotoCoreError, Boto3Error) as e:
            raise _storage_error(e, "upload", key) from e

    def get(self, key: str) -> BinaryIO:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise _storage_error(e, "download", key) from e
        return _S3Body(response["Body"], key)

    def list(self, prefix: str = "", max_keys: Optional[int] = None) -> List[ObjectMeta]:
        pagination = {"PageSize": min(max_keys or S3_LIST_PAGE_LIMIT, S3_LIST_PAGE_LIMIT)}
        if max_keys is not None:
            pagination["MaxItems"] = max_keys

        results: List[ObjectMeta] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, PaginationConfig=pagination):
                for obj in page.get("Contents", []):
                    results.append(
                        ObjectMeta(
                            key=obj["Key"],
                            size=obj.get("Size", 0),
                            modified=obj.get("LastModified"),
                        )
                    )
                    if max_keys is not None and len(results) >= max_keys:
                        return results
        except (ClientError, BotoCoreError) as e:
            raise _storage_error(e, "list", prefix or "/") from e
        return results

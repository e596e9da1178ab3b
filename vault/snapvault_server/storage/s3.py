"""
S3 object storage backend for SnapVault.

Uploads backup files to any S3-compatible service (AWS S3, MinIO) with
aiobotocore. The client is opened once per connect() and reused by every
upload/download of a backup run.

Invariants:
    - Objects are written with a single PutObject (files are small JSON)
    - Downloads are written to a temporary sibling and renamed into place
    - NoSuchKey/404 responses surface as ObjectNotFoundError

How to change safely:
    - Switch to multipart uploads before backing up very large collections
    - Keep the key layout compatible with existing buckets
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from ..config import S3Config
from ..errors import StorageError
from .base import ObjectNotFoundError, PathLike

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_DELETE_BATCH = 1000


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def _write_file(path: str, content: bytes) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target.with_name(target.name + ".part")
    with open(tmp_path, "wb") as f:
        f.write(content)
    os.replace(tmp_path, target)


class S3ObjectStorage:
    """Object storage backed by S3 through aiobotocore.

    Attributes:
        s3_config: S3 configuration

    Example:
        >>> storage = S3ObjectStorage(S3Config.from_env())
        >>> await storage.connect()
        >>> keys = await storage.list_keys("backups/")
        >>> await storage.close()
    """

    def __init__(self, s3_config: S3Config) -> None:
        self.s3_config = s3_config
        self._session = None
        self._s3_ctx: Any = None
        self._s3_client: Any = None
        self._connect_lock = asyncio.Lock()

    @property
    def prefix(self) -> str:
        return self.s3_config.backup_prefix

    @property
    def bucket(self) -> str:
        return self.s3_config.bucket

    async def connect(self) -> None:
        """Initialize S3 client."""
        async with self._connect_lock:
            if self._s3_client is not None:
                return

            self._session = get_session()

            client_kwargs = {
                "region_name": self.s3_config.region,
            }

            if self.s3_config.endpoint_url:
                client_kwargs["endpoint_url"] = self.s3_config.endpoint_url

            if self.s3_config.access_key_id:
                client_kwargs["aws_access_key_id"] = self.s3_config.access_key_id
                client_kwargs["aws_secret_access_key"] = self.s3_config.secret_access_key

            self._s3_ctx = self._session.create_client("s3", **client_kwargs)
            self._s3_client = await self._s3_ctx.__aenter__()
            logger.info(
                "S3 client initialized",
                extra={"bucket": self.bucket, "endpoint": self.s3_config.endpoint_url},
            )

    async def close(self) -> None:
        """Close S3 client."""
        if self._s3_client:
            await self._s3_ctx.__aexit__(None, None, None)
            self._s3_client = None

    async def _client(self) -> Any:
        if self._s3_client is None:
            await self.connect()
        return self._s3_client

    async def upload(self, local_path: PathLike, key: str) -> None:
        try:
            body = await asyncio.get_event_loop().run_in_executor(
                None, _read_file, str(local_path)
            )
        except OSError as e:
            raise StorageError(f"Cannot read {local_path}: {e}", location=str(local_path)) from e

        client = await self._client()
        try:
            await client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload of {key} failed: {e}", location=key) from e

        logger.debug("Uploaded object", extra={"key": key, "size_bytes": len(body)})

    async def read_bytes(self, key: str) -> bytes:
        client = await self._client()
        try:
            response = await client.get_object(Bucket=self.bucket, Key=key)
            return await response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(key) from e
            raise StorageError(f"Download of {key} failed: {e}", location=key) from e
        except BotoCoreError as e:
            raise StorageError(f"Download of {key} failed: {e}", location=key) from e

    async def download(self, key: str, local_path: PathLike) -> None:
        content = await self.read_bytes(key)
        try:
            await asyncio.get_event_loop().run_in_executor(
                None, _write_file, str(local_path), content
            )
        except OSError as e:
            raise StorageError(f"Cannot write {local_path}: {e}", location=str(local_path)) from e

        logger.debug("Downloaded object", extra={"key": key, "path": str(local_path)})

    async def list_keys(self, prefix: str) -> list[str]:
        client = await self._client()
        keys: list[str] = []
        try:
            paginator = client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    keys.append(obj["Key"])
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Listing {prefix} failed: {e}", location=prefix) from e
        return sorted(keys)

    async def delete_prefix(self, prefix: str) -> int:
        keys = await self.list_keys(prefix)
        if not keys:
            return 0

        client = await self._client()
        deleted = 0
        try:
            for start in range(0, len(keys), _DELETE_BATCH):
                batch = keys[start : start + _DELETE_BATCH]
                response = await client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
                errors = response.get("Errors", [])
                if errors:
                    raise StorageError(
                        f"Failed to delete {len(errors)} object(s) under {prefix}",
                        location=prefix,
                    )
                deleted += len(batch)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Deleting {prefix} failed: {e}", location=prefix) from e

        logger.info("Deleted remote objects", extra={"prefix": prefix, "count": deleted})
        return deleted

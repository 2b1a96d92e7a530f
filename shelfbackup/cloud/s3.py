# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 synced root - an S3 bucket prefix mirrored into a local cache directory.

Objects under the prefix map onto files under the cache directory with the
same relative path. A file is CURRENT when its cached copy has the remote
object's size, DOWNLOADED when a cached copy of a different size exists,
and NOT_DOWNLOADED otherwise. Files written locally but not yet published
are reported with is_uploaded=False.
"""

import asyncio
import os
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import structlog
from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from shelfbackup.cloud.base import ChangeCallback, DownloadStatus, RemoteItem, Unsubscribe
from shelfbackup.cloud.local import is_temporary_file
from shelfbackup.exceptions import CloudStorageError

logger = structlog.get_logger()

# Download chunk size
DOWNLOAD_CHUNK_BYTES = 1024 * 1024


def _is_not_found(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code", "")
    return code in ("404", "NoSuchKey", "NotFound")


class S3SyncedRoot:
    """A synced root backed by S3 objects and a local cache."""

    def __init__(
        self,
        bucket: str,
        cache_dir: Path,
        *,
        prefix: str = "",
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        session: Any = None,
    ):
        self.bucket = bucket
        self.cache_dir = Path(cache_dir)
        self.prefix = prefix.strip("/")
        self.region = region
        self.endpoint_url = endpoint_url
        self._session = session if session is not None else get_session()
        self._listeners: List[ChangeCallback] = []

    def container_path(self) -> Path | None:
        return self.cache_dir

    def _client(self):
        return self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    def key_for(self, path: Path) -> str:
        """S3 key of a cached file path."""
        try:
            relative = Path(path).relative_to(self.cache_dir).as_posix()
        except ValueError:
            raise CloudStorageError(
                f"Path is outside the synced root: {path}",
                details={"path": str(path), "cache_dir": str(self.cache_dir)},
            )
        return f"{self.prefix}/{relative}" if self.prefix else relative

    def path_for(self, key: str) -> Path:
        """Cached file path of an S3 key."""
        relative = key[len(self.prefix) + 1:] if self.prefix else key
        return self.cache_dir / relative

    @staticmethod
    def _status_of(path: Path, remote_size: int) -> DownloadStatus:
        if not path.is_file():
            return DownloadStatus.NOT_DOWNLOADED
        if path.stat().st_size == remote_size:
            return DownloadStatus.CURRENT
        return DownloadStatus.DOWNLOADED

    async def _list_remote(self) -> Dict[str, int]:
        list_prefix = f"{self.prefix}/" if self.prefix else ""
        sizes: Dict[str, int] = {}

        try:
            async with self._client() as client:
                paginator = client.get_paginator("list_objects_v2")
                async for page in paginator.paginate(Bucket=self.bucket, Prefix=list_prefix):
                    for obj in page.get("Contents", []):
                        if obj["Key"].endswith("/"):
                            continue
                        sizes[obj["Key"]] = obj["Size"]
        except Exception as e:
            raise CloudStorageError(
                f"Failed to list synced objects: {e}",
                details={"bucket": self.bucket, "prefix": self.prefix},
            )

        return sizes

    async def list_items(self) -> List[RemoteItem]:
        items: Dict[Path, RemoteItem] = {}

        for key, size in (await self._list_remote()).items():
            path = self.path_for(key)
            items[path] = RemoteItem(
                path=path,
                status=self._status_of(path, size),
                is_uploaded=True,
                size=size,
            )

        if self.cache_dir.exists():
            for path in self.cache_dir.rglob("*"):
                if path in items or not path.is_file() or is_temporary_file(path):
                    continue
                items[path] = RemoteItem(
                    path=path,
                    status=DownloadStatus.CURRENT,
                    is_uploaded=False,
                    size=path.stat().st_size,
                )

        return [items[path] for path in sorted(items)]

    async def download_status(self, path: Path) -> DownloadStatus:
        path = Path(path)
        key = self.key_for(path)

        try:
            async with self._client() as client:
                response = await client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_not_found(e) and path.is_file():
                return DownloadStatus.CURRENT
            raise CloudStorageError(
                f"Could not determine download status: {e}",
                details={"key": key},
            )
        except Exception as e:
            raise CloudStorageError(
                f"Could not determine download status: {e}",
                details={"key": key},
            )

        return self._status_of(path, response["ContentLength"])

    async def request_download(self, path: Path) -> None:
        path = Path(path)
        key = self.key_for(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.tmp")

        try:
            async with self._client() as client:
                response = await client.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream, aiofiles.open(temp_path, "wb") as f:
                    while True:
                        chunk = await stream.read(DOWNLOAD_CHUNK_BYTES)
                        if not chunk:
                            break
                        await f.write(chunk)

            # Rename to final path (atomic on most filesystems)
            os.replace(temp_path, path)

        except asyncio.CancelledError:
            temp_path.unlink(missing_ok=True)
            logger.info("synced_object_download_cancelled", key=key)
            raise
        except Exception as e:
            temp_path.unlink(missing_ok=True)
            raise CloudStorageError(
                f"Failed to download synced object: {e}",
                details={"key": key, "path": str(path)},
            )

        logger.info("synced_object_downloaded", key=key, size=path.stat().st_size)
        self.notify_changed()

    async def publish(self, path: Path) -> None:
        path = Path(path)
        key = self.key_for(path)

        try:
            async with aiofiles.open(path, "rb") as f:
                body = await f.read()

            async with self._client() as client:
                await client.put_object(Bucket=self.bucket, Key=key, Body=body)

        except Exception as e:
            raise CloudStorageError(
                f"Failed to upload synced object: {e}",
                details={"key": key, "path": str(path)},
            )

        logger.info("synced_object_uploaded", key=key, size=len(body))
        self.notify_changed()

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def notify_changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("change_listener_failed", error=str(e))

"""
storage.py — Blob storage for imported files.

upload_file() never raises. When the backing store is unreachable the
object is not written and a stub URL under the public prefix is returned,
so ingestion continues without blobs.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from archive_taxonomy.config import Settings
from archive_taxonomy.models import StoredObject

logger = logging.getLogger(__name__)


class BlobStorage:
    """Storage interface used by the import pipeline."""

    bucket: str = ""

    async def ensure_available(self) -> bool:
        raise NotImplementedError

    async def upload_file(self, key: str, data: bytes, mime: str) -> StoredObject:
        raise NotImplementedError


class LocalBlobStorage(BlobStorage):
    """
    Writes objects to <root>/<bucket>/<key> on the local filesystem.

    Falls into stub mode when the directory cannot be created or written.
    """

    def __init__(self, root: str, bucket: str, public_prefix: str = "/local-assets"):
        self.root = Path(root)
        self.bucket = bucket
        self.public_prefix = public_prefix.rstrip("/")
        self.available = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalBlobStorage":
        return cls(settings.storage_dir, settings.storage_bucket,
                   settings.storage_public_prefix)

    @property
    def bucket_dir(self) -> Path:
        return self.root / self.bucket

    def stub_url(self, key: str) -> str:
        return f"{self.public_prefix}/{key}"

    async def ensure_available(self) -> bool:
        """Create the bucket directory; switch to stub mode on failure."""
        try:
            await asyncio.to_thread(self.bucket_dir.mkdir, parents=True, exist_ok=True)
            self.available = True
        except OSError as e:
            logger.warning("Storage unreachable (%s). Switching to stub mode.", e)
            self.available = False
        return self.available

    async def upload_file(self, key: str, data: bytes, mime: str) -> StoredObject:
        if not self.available:
            return StoredObject(key=key, bucket=self.bucket, url=self.stub_url(key))

        target = self.bucket_dir / key
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            logger.warning("Upload of %s failed, using stub URL: %s", key, e)
            return StoredObject(key=key, bucket=self.bucket, url=self.stub_url(key))

        logger.debug("Stored %s (%d bytes, %s)", key, len(data), mime)
        return StoredObject(key=key, bucket=self.bucket, url=target.resolve().as_uri())

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

"""Blob storage for uploaded receipt artifacts."""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from supabase import Client, create_client

from expense_intake.errors import StorageError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "receipts"


@dataclass(frozen=True)
class StoredReceipt:
    key: str
    url: str


def _file_extension(filename: str | None) -> str:
    if not filename:
        return ""
    return Path(filename).suffix.lower()


def build_object_path(
    user_id: str, filename: str | None, now_ms: int | None = None
) -> str:
    """Return ``receipts/{user_id}/{ms}-{token}{ext}``; unique per call."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"receipts/{user_id}/{now_ms}-{uuid.uuid4().hex}{_file_extension(filename)}"


class ReceiptStorage(ABC):
    @abstractmethod
    async def store(
        self, *, user_id: str, filename: str, content: bytes, content_type: str | None
    ) -> StoredReceipt:
        """Persist an artifact and return its key and URL.

        Raises:
            StorageError: If the artifact could not be stored
        """


class LocalReceiptStorage(ReceiptStorage):
    """Stores artifacts under a local directory; URLs are ``file://`` URIs."""

    def __init__(self, root: Path) -> None:
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _write(self, path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    async def store(
        self, *, user_id: str, filename: str, content: bytes, content_type: str | None
    ) -> StoredReceipt:
        key = build_object_path(user_id, filename)
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise StorageError(f"Refusing to write outside {self._root}: {key}")
        try:
            await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        logger.info("Stored receipt %s (%d bytes)", key, len(content))
        return StoredReceipt(key=key, url=path.as_uri())


class SupabaseReceiptStorage(ReceiptStorage):
    """Uploads artifacts to a Supabase storage bucket and returns their public URL."""

    def __init__(
        self,
        url: str,
        key: str,
        bucket: str = DEFAULT_BUCKET,
        client: Client | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._bucket = bucket
        self._client = client or create_client(url, key)

    def public_url(self, path: str) -> str:
        return f"{self._url}/storage/v1/object/public/{self._bucket}/{path}"

    def _upload(self, path: str, content: bytes, content_type: str | None) -> None:
        options = {"content-type": content_type} if content_type else None
        result = self._client.storage.from_(self._bucket).upload(path, content, options)

        if isinstance(result, dict):
            error = result.get("error")
        else:
            error = getattr(result, "error", None)
        if error:
            raise StorageError(f"Upload of {path} rejected: {error}")

    async def store(
        self, *, user_id: str, filename: str, content: bytes, content_type: str | None
    ) -> StoredReceipt:
        path = build_object_path(user_id, filename)
        try:
            await asyncio.to_thread(self._upload, path, content, content_type)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to upload {path}: {e}") from e
        logger.info("Uploaded receipt %s to bucket %s", path, self._bucket)
        return StoredReceipt(key=path, url=self.public_url(path))

"""
Object storage for uploaded documents.

Backends share one async interface. Every call is bounded by a timeout and
any backend failure surfaces as StorageError.
"""
import asyncio
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path

from supabase import Client, create_client

from docai.errors import StorageError


def build_blob_location(owner_id: str, file_name: str) -> str:
    """Storage key for a new upload: <owner>/<epoch ms>_<sanitized name>."""
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", file_name) or "upload"
    return f"{owner_id}/{int(time.time() * 1000)}_{sanitized}"


class ObjectStorage(ABC):
    """Abstract interface for document blob storage."""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    @abstractmethod
    async def upload(self, location: str, data: bytes, media_type: str) -> None:
        """Store `data` at `location`. Never overwrites an existing blob."""
        ...

    @abstractmethod
    async def download(self, location: str) -> bytes:
        """Return the blob stored at `location`."""
        ...

    @abstractmethod
    async def delete(self, location: str) -> None:
        """Remove the blob stored at `location`."""
        ...

    async def signed_url(self, location: str, expires_in: int) -> str | None:
        """
        Time-limited URL for downloading the blob directly from the backend.

        Returns None when the backend cannot issue one; callers then serve
        the bytes from `download` instead.
        """
        return None

    async def _bounded(self, operation: str, location: str, func, *args):
        """Run a blocking backend call in a thread, bounded by the timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise StorageError(f"Storage {operation} timed out for {location}") from exc
        except StorageError:
            raise
        except Exception as exc:
            raise StorageError(f"Storage {operation} failed for {location}: {exc}") from exc


class LocalObjectStorage(ObjectStorage):
    """Stores blobs as files under a local directory (development and tests)."""

    def __init__(self, base_dir: str, bucket: str = "documents", timeout: float = 30.0):
        super().__init__(timeout)
        self._root = (Path(base_dir) / bucket).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, location: str) -> Path:
        path = (self._root / location).resolve()
        if self._root not in path.parents:
            raise StorageError(f"Invalid storage location: {location}")
        return path

    def _write(self, location: str, data: bytes) -> None:
        path = self._path(location)
        if path.exists():
            raise StorageError(f"Blob already exists: {location}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    def _read(self, location: str) -> bytes:
        path = self._path(location)
        if not path.is_file():
            raise StorageError(f"Blob not found: {location}")
        return path.read_bytes()

    def _remove(self, location: str) -> None:
        self._path(location).unlink(missing_ok=True)

    async def upload(self, location: str, data: bytes, media_type: str) -> None:
        await self._bounded("upload", location, self._write, location, data)

    async def download(self, location: str) -> bytes:
        return await self._bounded("download", location, self._read, location)

    async def delete(self, location: str) -> None:
        await self._bounded("delete", location, self._remove, location)


class SupabaseObjectStorage(ObjectStorage):
    """Stores blobs in a Supabase Storage bucket using the service-role client."""

    def __init__(self, url: str, service_role_key: str, bucket: str = "documents", timeout: float = 30.0):
        super().__init__(timeout)
        if not url or not service_role_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        self._client: Client = create_client(url, service_role_key)
        self._bucket = bucket

    def _bucket_api(self):
        return self._client.storage.from_(self._bucket)

    async def upload(self, location: str, data: bytes, media_type: str) -> None:
        await self._bounded(
            "upload",
            location,
            lambda: self._bucket_api().upload(
                location, data, {"content-type": media_type, "upsert": "false"}
            ),
        )

    async def download(self, location: str) -> bytes:
        return await self._bounded("download", location, lambda: self._bucket_api().download(location))

    async def delete(self, location: str) -> None:
        await self._bounded("delete", location, lambda: self._bucket_api().remove([location]))

    async def signed_url(self, location: str, expires_in: int) -> str | None:
        signed = await self._bounded(
            "sign",
            location,
            lambda: self._bucket_api().create_signed_url(location, expires_in),
        )
        url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            raise StorageError(f"Storage sign returned no URL for {location}")
        return url


def build_storage(settings) -> ObjectStorage:
    """Create the storage backend selected by STORAGE_BACKEND."""
    if settings.STORAGE_BACKEND == "supabase":
        return SupabaseObjectStorage(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY,
            bucket=settings.STORAGE_BUCKET,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
        )
    return LocalObjectStorage(
        settings.LOCAL_STORAGE_DIR,
        bucket=settings.STORAGE_BUCKET,
        timeout=settings.STORAGE_TIMEOUT_SECONDS,
    )

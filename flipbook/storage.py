"""
Blob Storage
============
Stores source PDFs and rendered page images as named byte blobs and hands
out durable retrieval URLs for them.

Blob Layout (keys are bit-exact; delete and replace rely on them):
    source-pdfs/
    └── {bookId}/{originalFileName}     # Original uploaded PDF
    processed-images/
    └── {bookId}/
        ├── page-1.jpg                  # Rendered pages, 1-indexed
        └── page-N.jpg
"""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import quote

from .errors import BlobNotFoundError, IgnoredError, StorageError

logger = logging.getLogger(__name__)

SOURCE_PDFS_ROOT = "source-pdfs"
PROCESSED_IMAGES_ROOT = "processed-images"


# ─── Naming Convention ────────────────────────────────────────────────────────


def source_pdf_path(book_id: str, file_name: str) -> str:
    return f"{SOURCE_PDFS_ROOT}/{book_id}/{file_name}"


def page_images_prefix(book_id: str) -> str:
    return f"{PROCESSED_IMAGES_ROOT}/{book_id}/"


def page_image_path(book_id: str, page_number: int) -> str:
    return f"{page_images_prefix(book_id)}page-{page_number}.jpg"


# ─── Interface ────────────────────────────────────────────────────────────────


class BlobStore(ABC):
    """
    Abstract blob store.
    Implementations can provide local or cloud storage (filesystem, buckets).
    """

    @abstractmethod
    def save(self, path: str, data: bytes, content_type: str) -> None:
        """Write ``data`` under ``path``, replacing any existing blob."""

    @abstractmethod
    def url_for(self, path: str) -> str:
        """Long-lived retrieval URL for a stored blob."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """
        Delete a single blob.

        Raises:
            BlobNotFoundError: Nothing is stored under ``path``.
            StorageError: Any other failure.
        """

    @abstractmethod
    def delete_prefix(self, prefix: str) -> int:
        """Delete every blob whose key starts with ``prefix``. Returns the count."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    def try_delete(self, path: str) -> Optional[IgnoredError]:
        """
        Best-effort single delete.
        Returns the tolerated failure instead of raising it, or None on success.
        """
        try:
            self.delete(path)
        except StorageError as e:
            return IgnoredError(operation="delete", target=path, error=e)
        return None


# ─── Local Filesystem Implementation ──────────────────────────────────────────


class LocalBlobStore(BlobStore):
    """
    Filesystem implementation of BlobStore.
    Blobs are files under ``root_dir``; URLs point at the service's
    ``/blobs/<key>`` route.
    """

    def __init__(self, root_dir: str, public_url: str = "http://localhost:5000"):
        self.root_dir = Path(root_dir).absolute()
        self.public_url = public_url.rstrip("/")
        self._lock = threading.Lock()
        self.root_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Blob storage initialized: {self.root_dir}")

    def resolve(self, path: str) -> Path:
        """Map a blob key to its absolute file path."""
        key = PurePosixPath(path)
        if not path or key.is_absolute() or ".." in key.parts:
            raise StorageError(f"Invalid blob key: {path!r}")
        return self.root_dir.joinpath(*key.parts)

    def save(self, path: str, data: bytes, content_type: str) -> None:
        dest = self.resolve(path)
        tmp = dest.with_name(f".{dest.name}.part")
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "wb") as f:
                f.write(data)
            os.replace(tmp, dest)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to save blob {path}: {e}") from e
        logger.debug(f"Blob saved: {path} ({content_type}, {len(data)} bytes)")

    def url_for(self, path: str) -> str:
        return f"{self.public_url}/blobs/{quote(path)}"

    def read(self, path: str) -> bytes:
        target = self.resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(f"Blob not found: {path}")
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read blob {path}: {e}") from e

    def exists(self, path: str) -> bool:
        try:
            return self.resolve(path).is_file()
        except StorageError:
            return False

    def delete(self, path: str) -> None:
        target = self.resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(f"Blob not found: {path}")
        try:
            target.unlink()
        except FileNotFoundError as e:
            raise BlobNotFoundError(f"Blob not found: {path}") from e
        except OSError as e:
            raise StorageError(f"Failed to delete blob {path}: {e}") from e
        self._prune_empty_dirs(target.parent)
        logger.info(f"Deleted blob: {path}")

    def delete_prefix(self, prefix: str) -> int:
        if not prefix:
            raise StorageError("Refusing to delete with an empty prefix")

        # Walk only the deepest directory the prefix fully names
        base_key = prefix if prefix.endswith("/") else prefix.rsplit("/", 1)[0]
        base_dir = self.resolve(base_key.rstrip("/")) if base_key.strip("/") else self.root_dir
        if not base_dir.is_dir():
            return 0

        count = 0
        with self._lock:
            for file_path in sorted(base_dir.rglob("*")):
                if not file_path.is_file():
                    continue
                key = file_path.relative_to(self.root_dir).as_posix()
                if not key.startswith(prefix):
                    continue
                try:
                    file_path.unlink()
                except OSError as e:
                    raise StorageError(
                        f"Failed to delete blob {key}: {e}") from e
                count += 1
            self._prune_empty_dirs(base_dir)

        logger.info(f"Deleted {count} blob(s) under prefix: {prefix}")
        return count

    def _prune_empty_dirs(self, directory: Path):
        """Remove empty directories up to (not including) the store root."""
        current = directory
        while current != self.root_dir and self.root_dir in current.parents:
            try:
                if any(current.iterdir()):
                    break
                current.rmdir()
            except OSError:
                break
            current = current.parent

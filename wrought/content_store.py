"""
Content-addressed storage (CAS) for file contents.

Blobs are stored by their ContentHash, so identical bytes are stored once
no matter how many writes produced them. The store is separate from the
action log - the log references content by hash.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from .errors import NotFoundError, StorageError
from .hashing import ContentHash

logger = logging.getLogger(__name__)


class ContentStore:
    """
    Content-addressed, write-once blob storage.

    Blobs are stored in a two-level directory structure using the first
    2 characters of the hash as the prefix:

        .wrought/content/c7/c7be1ed902fb8dd4d48997c6452f5d7e

    This prevents directory bloat while maintaining fast lookups.
    """

    def __init__(self, internal_dir: Path):
        """
        Initialize content store.

        Args:
            internal_dir: Path to the .wrought directory
        """
        self.internal_dir = internal_dir
        self.content_dir = internal_dir / "content"

    def _blob_path(self, content_hash: ContentHash) -> Path:
        # Hex rather than base64 so names are safe on case-insensitive filesystems
        key = content_hash.hex
        return self.content_dir / key[:2] / key

    @staticmethod
    def compute_hash(content: bytes) -> ContentHash:
        """Fingerprint content without storing it."""
        return ContentHash.from_content(content)

    def put(self, content: bytes) -> ContentHash:
        """
        Store content and return its hash.

        If the content already exists this is a no-op (idempotent).

        Raises:
            StorageError: if the blob could not be written
        """
        content_hash = self.compute_hash(content)
        blob_path = self._blob_path(content_hash)
        if blob_path.exists():
            return content_hash

        try:
            self._write_blob(blob_path, content)
        except OSError as e:
            raise StorageError(f"Unable to store content {content_hash}: {e}") from e
        logger.debug("Stored blob %s (%d bytes)", content_hash, len(content))
        return content_hash

    def _write_blob(self, blob_path: Path, content: bytes) -> None:
        # Write to a temp file in the same directory, then rename into place
        blob_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=blob_path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, blob_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, content_hash: ContentHash) -> bytes:
        """
        Retrieve content by hash.

        Raises:
            NotFoundError: if no blob is stored under this hash
            StorageError: if the blob exists but cannot be read
        """
        blob_path = self._blob_path(content_hash)
        try:
            return blob_path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"No content stored for hash {content_hash}") from None
        except OSError as e:
            raise StorageError(f"Unable to read content {content_hash}: {e}") from e

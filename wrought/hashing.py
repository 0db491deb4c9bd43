"""
Content fingerprints.

A ContentHash is the first 16 bytes of the sha256 digest of some content,
written as unpadded URL-safe base64 (22 characters). The text form is what
the action log and the content store use as keys.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass

DIGEST_SIZE = 16


@dataclass(frozen=True, order=True)
class ContentHash:
    """Fixed-size fingerprint of byte content."""

    value: bytes

    def __post_init__(self) -> None:
        if len(self.value) != DIGEST_SIZE:
            raise ValueError(f"ContentHash must be {DIGEST_SIZE} bytes, got {len(self.value)}")

    @classmethod
    def from_content(cls, content: bytes) -> ContentHash:
        """Fingerprint raw bytes."""
        return cls(hashlib.sha256(content).digest()[:DIGEST_SIZE])

    @classmethod
    def from_text(cls, text: str) -> ContentHash:
        """Fingerprint text encoded as UTF-8."""
        return cls.from_content(text.encode("utf-8"))

    @classmethod
    def from_string(cls, s: str) -> ContentHash:
        """
        Parse the text form produced by str().

        Raises:
            ValueError: if s is not a valid encoded hash
        """
        try:
            raw = base64.urlsafe_b64decode(s + "=" * (-len(s) % 4))
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid content hash {s!r}") from e
        if len(raw) != DIGEST_SIZE:
            raise ValueError(f"Invalid content hash {s!r}: wrong length")
        return cls(raw)

    @classmethod
    def from_hex(cls, s: str) -> ContentHash:
        """Parse the hex form used for on-disk names."""
        return cls(bytes.fromhex(s))

    @property
    def hex(self) -> str:
        return self.value.hex()

    def __str__(self) -> str:
        return base64.urlsafe_b64encode(self.value).rstrip(b"=").decode("ascii")

    def __repr__(self) -> str:
        return f"ContentHash({str(self)!r})"


def hash_or_none(s: str | None) -> ContentHash | None:
    """Parse an optional text hash (as stored in nullable columns)."""
    if s is None:
        return None
    return ContentHash.from_string(s)


def text_or_none(h: ContentHash | None) -> str | None:
    """Render an optional hash for a nullable column."""
    if h is None:
        return None
    return str(h)

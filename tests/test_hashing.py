"""Tests for content fingerprints."""

from __future__ import annotations

import pytest

from wrought.hashing import ContentHash, hash_or_none, text_or_none


def test_equal_content_gives_equal_hash() -> None:
    assert ContentHash.from_content(b"hello") == ContentHash.from_content(b"hello")


def test_distinct_content_gives_distinct_hash() -> None:
    assert ContentHash.from_content(b"hello") != ContentHash.from_content(b"hello!")
    assert ContentHash.from_content(b"") != ContentHash.from_content(b"\x00")


def test_digest_is_16_bytes() -> None:
    assert len(ContentHash.from_content(b"abc").value) == 16
    with pytest.raises(ValueError):
        ContentHash(b"short")


def test_text_form_parses_back() -> None:
    h = ContentHash.from_content(b"some text\n")
    text = str(h)
    assert "=" not in text
    assert len(text) == 22
    assert ContentHash.from_string(text) == h
    assert ContentHash.from_hex(h.hex) == h


def test_from_string_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="Invalid content hash"):
        ContentHash.from_string("not-a-hash")


def test_from_text_matches_utf8_bytes() -> None:
    assert ContentHash.from_text("héllo") == ContentHash.from_content("héllo".encode("utf-8"))


def test_optional_helpers() -> None:
    h = ContentHash.from_content(b"x")
    assert hash_or_none(None) is None
    assert text_or_none(None) is None
    assert hash_or_none(text_or_none(h)) == h

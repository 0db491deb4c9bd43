"""Tests for project path handling."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from wrought.errors import ValidationError
from wrought.paths import (
    find_project_root,
    is_internal,
    is_reserved,
    normalize_path,
    project_relative,
    resolve_in_root,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("a.txt", "a.txt"),
        ("./notes/a.md", "notes/a.md"),
        ("notes//a.md", "notes/a.md"),
        ("notes/../a.md", "a.md"),
        ("notes\\a.md", "notes/a.md"),
    ],
)
def test_normalize_path(raw: str, expected: str) -> None:
    assert normalize_path(raw) == expected


@pytest.mark.parametrize("raw", ["", ".", "..", "../x", "a/../../x", "/etc/passwd", "C:/x", "a\x00b"])
def test_normalize_rejects_escapes_and_absolutes(raw: str) -> None:
    with pytest.raises(ValidationError):
        normalize_path(raw)


def test_internal_and_reserved_namespaces() -> None:
    assert is_internal(".wrought/packages/p/init.lua")
    assert not is_internal("wrought/x")
    assert not is_internal(".wroughtx")

    assert is_reserved(".wrought")
    assert is_reserved(".wrought/wrought.db")
    assert is_reserved(".wrought/content/ab/abcd")
    assert is_reserved(".wrought/metadata")
    assert is_reserved(".wrought/config.toml")
    assert not is_reserved(".wrought/packages/p/init.lua")
    assert not is_reserved("content/a.txt")


def test_resolve_rejects_symlink_escape(tmp_path: Path) -> None:
    root = tmp_path / "proj"
    root.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    os.symlink(outside, root / "link")

    with pytest.raises(ValidationError, match="outside the project root"):
        resolve_in_root(root, "link/secret.txt")
    assert resolve_in_root(root, "ok/file.txt") == root / "ok" / "file.txt"


def test_find_project_root_walks_up(project_root: Path) -> None:
    nested = project_root / "a" / "b"
    nested.mkdir(parents=True)
    assert find_project_root(nested) == project_root.resolve()


def test_find_project_root_none(tmp_path: Path) -> None:
    assert find_project_root(tmp_path) is None


def test_project_relative(project_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (project_root / "sub").mkdir()
    assert project_relative(project_root, project_root / "sub" / "a.txt") == "sub/a.txt"

    monkeypatch.chdir(project_root / "sub")
    assert project_relative(project_root, "a.txt") == "sub/a.txt"

    monkeypatch.chdir(project_root.parent)
    assert project_relative(project_root, "a.txt") == "a.txt"
    with pytest.raises(ValidationError):
        project_relative(project_root, project_root.parent / "elsewhere.txt")


def test_project_relative_root(project_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(project_root)
    assert project_relative(project_root, ".", allow_root=True) == "."
    with pytest.raises(ValidationError, match="refers to the project root"):
        project_relative(project_root, ".")

    (project_root / "chapters").mkdir()
    monkeypatch.chdir(project_root / "chapters")
    assert project_relative(project_root, ".", allow_root=True) == "chapters"

"""
Project path handling.

Paths inside wrought are project-relative POSIX strings ("notes/outline.md").
Anything under `.wrought/` is the internal namespace: state managed by
scripts and by wrought itself rather than by the user. A few locations in
there belong to the stores and are never reachable from scripts.
"""

from __future__ import annotations

import posixpath
from pathlib import Path, PurePath, PureWindowsPath

from .errors import ValidationError

INTERNAL_DIR = ".wrought"
PACKAGES_DIR = f"{INTERNAL_DIR}/packages"

# Store-owned entries directly below .wrought/
RESERVED_NAMES = frozenset({
    "wrought.db",
    "wrought.db-wal",
    "wrought.db-shm",
    "wrought.db-journal",
    "content",
    "metadata",
    "llm_cache",
    "config.toml",
})


def normalize_path(path: str | PurePath) -> str:
    """
    Normalize a project-relative path.

    Args:
        path: Path as given by a script or a caller

    Returns:
        Normalized POSIX path with no leading "./"

    Raises:
        ValidationError: if the path is empty, absolute, or escapes the root
    """
    raw = path.as_posix() if isinstance(path, PurePath) else str(path)
    if not raw or "\x00" in raw:
        raise ValidationError(f"Invalid path {raw!r}")
    raw = raw.replace("\\", "/")
    if raw.startswith("/") or PureWindowsPath(raw).drive:
        raise ValidationError(f"Absolute paths are not allowed: {raw!r}")

    norm = posixpath.normpath(raw)
    if norm == ".":
        raise ValidationError(f"Path {raw!r} refers to the project root")
    if norm == ".." or norm.startswith("../"):
        raise ValidationError(f"Path {raw!r} escapes the project root")
    return norm


def is_internal(path: str) -> bool:
    """True for paths in the internal namespace."""
    return path == INTERNAL_DIR or path.startswith(INTERNAL_DIR + "/")


def is_reserved(path: str) -> bool:
    """True for store-owned locations that scripts may never touch."""
    if path == INTERNAL_DIR:
        return True
    if not is_internal(path):
        return False
    first = path[len(INTERNAL_DIR) + 1 :].split("/", 1)[0]
    return first in RESERVED_NAMES


def resolve_in_root(root: Path, path: str) -> Path:
    """
    Map a normalized project path to a filesystem path.

    Symlinks are followed; a path whose real location is outside the
    project root is rejected.
    """
    root_real = root.resolve()
    candidate = root / path
    real = candidate.resolve()
    if real != root_real and not real.is_relative_to(root_real):
        raise ValidationError(f"Path {path!r} resolves outside the project root")
    return candidate


def find_project_root(start: Path) -> Path | None:
    """Find the nearest directory containing `.wrought/` by walking up from `start`."""
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / INTERNAL_DIR).is_dir():
            return p
    return None


def project_relative(root: Path, user_path: str | Path, *, allow_root: bool = False) -> str:
    """
    Turn a command-line path into a project path.

    Relative paths are taken from the cwd when it is inside the project,
    otherwise from the project root. With `allow_root`, the root itself
    comes back as ".".
    """
    p = Path(user_path)
    if not p.is_absolute():
        cwd = Path.cwd()
        base = cwd if cwd.resolve().is_relative_to(root.resolve()) else root
        p = base / p
    p = Path(posixpath.normpath(p.as_posix()))
    try:
        rel = p.relative_to(root.resolve())
    except ValueError:
        try:
            rel = p.relative_to(root)
        except ValueError as e:
            raise ValidationError(f"{user_path} is outside the project root {root}") from e
    if allow_root and rel.as_posix() == ".":
        return "."
    return normalize_path(rel.as_posix())

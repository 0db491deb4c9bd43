"""
Current-value metadata store.

Each tracked path has one JSON record holding its current key/value pairs.
Only current values live here; the history of every value is reconstructed
from the action log.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from .errors import StorageError
from .hashing import ContentHash


class MetadataStore:
    """
    Per-path key/value store.

    Records are named by the fingerprint of their path, in the same
    two-level layout as the content store:

        .wrought/metadata/3f/3f0a...e1.json  ->  {"path": "notes/a.md", "values": {...}}
    """

    def __init__(self, internal_dir: Path):
        self.internal_dir = internal_dir
        self.metadata_dir = internal_dir / "metadata"
        self._lock = threading.Lock()

    def _record_path(self, path: str) -> Path:
        key = ContentHash.from_text(path).hex
        return self.metadata_dir / key[:2] / f"{key}.json"

    def _load(self, path: str) -> dict[str, str]:
        record_path = self._record_path(path)
        try:
            data = json.loads(record_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Unable to read metadata for {path!r}: {e}") from e
        values = data.get("values", {})
        return {str(k): str(v) for k, v in values.items()}

    def _save(self, path: str, values: dict[str, str]) -> None:
        record_path = self._record_path(path)
        record: dict[str, Any] = {"path": path, "values": values}
        try:
            record_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=record_path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record, f, indent=2, sort_keys=True)
                os.replace(tmp_name, record_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Unable to write metadata for {path!r}: {e}") from e

    def get(self, path: str, key: str) -> str | None:
        """Current value of `key` on `path`, or None if absent."""
        return self._load(path).get(key)

    def set(self, path: str, key: str, value: str) -> str | None:
        """
        Set `key` on `path`.

        Returns:
            The previous value, or None if the key was absent
        """
        with self._lock:
            values = self._load(path)
            previous = values.get(key)
            values[key] = value
            self._save(path, values)
        return previous

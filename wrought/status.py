"""
File status derived from the action log.

Status is never stored. For a path P it is computed from the latest
committed write W to P and the current state of the project:

- dirty: P's current bytes no longer hash to W.after_hash (or P is gone)
- stale: some read-kind microaction that preceded W in W's own group
  would now observe a different value

Staleness is single-hop: the inputs of W are compared against the present,
but their own provenance is not followed further back.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .action_log import ActionLog
from .actions import FileExists, GetMetadata, Group, ReadFile, WriteFile
from .errors import ValidationError
from .hashing import ContentHash, text_or_none
from .metadata_store import MetadataStore
from .paths import INTERNAL_DIR, is_internal, is_reserved, normalize_path, resolve_in_root

logger = logging.getLogger(__name__)


class Status(str, Enum):
    UNTRACKED = "untracked"
    CLEAN = "clean"
    DIRTY = "dirty"
    STALE = "stale"
    DIRTY_STALE = "dirty+stale"

    @classmethod
    def combine(cls, dirty: bool, stale: bool) -> Status:
        if dirty and stale:
            return cls.DIRTY_STALE
        if dirty:
            return cls.DIRTY
        if stale:
            return cls.STALE
        return cls.CLEAN

    @property
    def label(self) -> str:
        return {
            Status.UNTRACKED: "Untracked",
            Status.CLEAN: "Clean",
            Status.DIRTY: "Dirty",
            Status.STALE: "Stale",
            Status.DIRTY_STALE: "Dirty+Stale",
        }[self]


@dataclass
class InputCheck:
    """One recorded input of a write, compared against the present."""

    seq: int
    kind: str
    path: str
    recorded: Any
    current: Any
    key: str | None = None

    @property
    def changed(self) -> bool:
        return self.recorded != self.current

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "seq": self.seq,
            "kind": self.kind,
            "path": self.path,
            "recorded": self.recorded,
            "current": self.current,
            "changed": self.changed,
        }
        if self.key is not None:
            result["key"] = self.key
        return result


@dataclass
class FileStatus:
    """Computed status of one path."""

    path: str
    status: Status
    exists: bool
    current_hash: ContentHash | None = None
    recorded_hash: ContentHash | None = None
    group_id: int | None = None
    seq: int | None = None
    command: str | None = None
    inputs: list[InputCheck] = field(default_factory=list)

    @property
    def tracked(self) -> bool:
        return self.status != Status.UNTRACKED

    @property
    def dirty(self) -> bool:
        return self.status in {Status.DIRTY, Status.DIRTY_STALE}

    @property
    def stale(self) -> bool:
        return self.status in {Status.STALE, Status.DIRTY_STALE}

    def changed_inputs(self) -> list[InputCheck]:
        return [i for i in self.inputs if i.changed]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: dict[str, Any] = {
            "path": self.path,
            "status": self.status.value,
            "exists": self.exists,
            "current_hash": text_or_none(self.current_hash),
        }
        if self.tracked:
            result.update({
                "recorded_hash": text_or_none(self.recorded_hash),
                "group_id": self.group_id,
                "seq": self.seq,
                "command": self.command,
                "inputs": [i.to_dict() for i in self.inputs],
            })
        return result


class LastWriteIndex:
    """
    Incrementally maintained path -> (group_id, seq) of the latest write.

    Groups can commit out of id order when several drivers run at once, so
    the scan restarts from a watermark below the lowest still-open group
    rather than from the highest id seen. Applying a group twice is harmless.
    """

    def __init__(self, action_log: ActionLog):
        self.action_log = action_log
        self._last: dict[str, tuple[int, int]] = {}
        self._watermark = 0

    def refresh(self) -> None:
        """Pick up groups committed since the last refresh."""
        max_id = self.action_log.max_group_id()
        open_ids = self.action_log.open_group_ids()
        for group in self.action_log.iterate_groups(after_id=self._watermark):
            self.apply(group)
        self._watermark = max(self._watermark, min([*open_ids, max_id + 1]) - 1)

    def apply(self, group: Group) -> None:
        if not group.is_committed:
            return
        for recorded in group.confirmed_actions():
            if isinstance(recorded.action, WriteFile):
                key = (group.id, recorded.seq)
                path = recorded.action.path
                if path not in self._last or self._last[path] < key:
                    self._last[path] = key

    def last_write(self, path: str) -> tuple[int, int] | None:
        return self._last.get(path)

    def paths(self) -> set[str]:
        return set(self._last)


class StatusEngine:
    """
    Read-side component: derives per-file status from committed groups and
    the current files and metadata.
    """

    def __init__(self, root: Path, action_log: ActionLog, metadata_store: MetadataStore):
        self.root = root
        self.action_log = action_log
        self.metadata_store = metadata_store
        self.index = LastWriteIndex(action_log)
        # Committed groups are immutable, so they can be cached forever
        self._groups: dict[int, Group] = {}

    def _group(self, group_id: int) -> Group:
        if group_id not in self._groups:
            self._groups[group_id] = self.action_log.get_group(group_id)
        return self._groups[group_id]

    def current_hash(self, path: str) -> ContentHash | None:
        """Hash of the file's current bytes, or None if it is not a regular file."""
        fs_path = resolve_in_root(self.root, path)
        try:
            return ContentHash.from_content(fs_path.read_bytes())
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None

    def _check_input(self, seq: int, action: FileExists | ReadFile | GetMetadata) -> InputCheck:
        if isinstance(action, FileExists):
            current_exists = resolve_in_root(self.root, action.path).exists()
            return InputCheck(seq, action.kind, action.path, action.result, current_exists)
        if isinstance(action, ReadFile):
            return InputCheck(
                seq,
                action.kind,
                action.path,
                text_or_none(action.hash),
                text_or_none(self.current_hash(action.path)),
            )
        current_value = self.metadata_store.get(action.path, action.key)
        return InputCheck(seq, action.kind, action.path, action.value, current_value, key=action.key)

    def _status_for(self, path: str) -> FileStatus:
        current = self.current_hash(path)
        last = self.index.last_write(path)
        if last is None:
            return FileStatus(path=path, status=Status.UNTRACKED, exists=current is not None, current_hash=current)

        group_id, seq = last
        group = self._group(group_id)
        write = next(a.action for a in group.actions if a.seq == seq)
        assert isinstance(write, WriteFile)

        inputs = [self._check_input(r.seq, r.action) for r in group.inputs_before(seq)]  # type: ignore[arg-type]
        dirty = current != write.after_hash
        stale = any(i.changed for i in inputs)
        return FileStatus(
            path=path,
            status=Status.combine(dirty, stale),
            exists=current is not None,
            current_hash=current,
            recorded_hash=write.after_hash,
            group_id=group_id,
            seq=seq,
            command=group.command,
            inputs=inputs,
        )

    def file_status(self, path: str) -> FileStatus:
        """Status of a single project path."""
        norm = normalize_path(path)
        self.index.refresh()
        return self._status_for(norm)

    def directory_status(self, directory: str | None = None, *, include_internal: bool = False) -> list[FileStatus]:
        """
        Status of every path under `directory` (default: the whole project)
        that has write history or exists on disk.

        The internal namespace is skipped unless `include_internal` is set;
        store-owned locations are always skipped.
        """
        prefix = None if directory in (None, "", ".") else normalize_path(directory)
        self.index.refresh()

        paths = set(self.index.paths()) | set(self._disk_paths(prefix, include_internal))
        selected = []
        for p in paths:
            if prefix is not None and p != prefix and not p.startswith(prefix + "/"):
                continue
            if is_reserved(p):
                continue
            if is_internal(p) and not include_internal:
                continue
            selected.append(p)

        result = []
        for p in sorted(selected):
            try:
                result.append(self._status_for(p))
            except ValidationError as e:
                logger.warning("Skipping %s: %s", p, e)
        return result

    def _disk_paths(self, prefix: str | None, include_internal: bool) -> list[str]:
        start = self.root if prefix is None else resolve_in_root(self.root, prefix)
        if start.is_file():
            return [prefix] if prefix is not None else []
        if not start.is_dir():
            return []

        result = []
        for dirpath, dirnames, filenames in os.walk(start):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir + "/"
            kept = []
            for d in dirnames:
                rel = rel_dir + d
                if rel == INTERNAL_DIR and not include_internal:
                    continue
                if is_reserved(rel) and rel != INTERNAL_DIR:
                    continue
                kept.append(d)
            dirnames[:] = kept
            for name in filenames:
                result.append(rel_dir + name)
        return result


def summarize(statuses: list[FileStatus]) -> dict[str, int]:
    """Count statuses by value."""
    counts = {s.value: 0 for s in Status}
    for st in statuses:
        counts[st.status.value] += 1
    return counts


"""
Per-file history reconstructed from the action log.

Walks every committed write to a path and notes where the file changed
outside wrought between runs, then compares the last write with what is on
disk now.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .action_log import ActionLog
from .actions import WriteFile
from .hashing import ContentHash, text_or_none
from .paths import normalize_path, resolve_in_root

HISTORY_WRITTEN = "written"  # written by a script run
HISTORY_UNKNOWN = "unknown"  # content wrought never recorded (edited between runs)
HISTORY_MISSING = "missing"  # file absent
HISTORY_LOCAL_CHANGES = "local_changes"  # current bytes differ from the last write


@dataclass(frozen=True)
class HistoryEntry:
    kind: str
    hash: ContentHash | None = None
    group_id: int | None = None
    command: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind, "hash": text_or_none(self.hash)}
        if self.group_id is not None:
            result["group_id"] = self.group_id
            result["command"] = self.command
        return result


def _current_hash(root: Path, path: str) -> ContentHash | None:
    try:
        return ContentHash.from_content(resolve_in_root(root, path).read_bytes())
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        return None


def file_history(action_log: ActionLog, root: Path, path: str) -> list[HistoryEntry]:
    """
    History of one path, oldest first.

    Args:
        action_log: Log to read writes from
        root: Project root (for the current state of the file)
        path: Project path

    Returns:
        Entries in order; the last entry describes the file on disk if it
        differs from the last recorded write
    """
    path = normalize_path(path)
    entries: list[HistoryEntry] = []
    last_hash: ContentHash | None = None
    commands: dict[int, str] = {}

    for group_id, recorded in action_log.writes_for(path):
        write = recorded.action
        assert isinstance(write, WriteFile)
        if write.before_hash != last_hash:
            if write.before_hash is not None:
                entries.append(HistoryEntry(HISTORY_UNKNOWN, hash=write.before_hash))
            else:
                entries.append(HistoryEntry(HISTORY_MISSING))
        if group_id not in commands:
            commands[group_id] = action_log.get_group(group_id).command
        entries.append(
            HistoryEntry(HISTORY_WRITTEN, hash=write.after_hash, group_id=group_id, command=commands[group_id])
        )
        last_hash = write.after_hash

    current = _current_hash(root, path)
    if current != last_hash:
        if current is not None:
            entries.append(HistoryEntry(HISTORY_LOCAL_CHANGES, hash=current))
        else:
            entries.append(HistoryEntry(HISTORY_MISSING))
    return entries

"""
Microactions and groups for the action log.

A Group is the record of one script execution; its microactions are the
atomic file and metadata operations the script performed, in order. Both
are immutable once the group is committed. State that depends on them
(file status, history) is always derived, never stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Mapping, Union

from .hashing import ContentHash, hash_or_none, text_or_none

# Action kinds (the action_kind column)
ACTION_EXISTS = "exists"
ACTION_READ = "read"
ACTION_WRITE = "write"
ACTION_GET_METADATA = "get_md"
ACTION_SET_METADATA = "set_md"

ACTION_KINDS = frozenset({
    ACTION_EXISTS,
    ACTION_READ,
    ACTION_WRITE,
    ACTION_GET_METADATA,
    ACTION_SET_METADATA,
})

# Kinds that observe state; these are the inputs of later writes in the group
READ_KINDS = frozenset({ACTION_EXISTS, ACTION_READ, ACTION_GET_METADATA})

# Entry states (confirm-after-effect protocol)
ENTRY_PENDING = "pending"
ENTRY_CONFIRMED = "confirmed"
ENTRY_FAILED = "failed"

# Group lifecycle: open -> committed | aborted
GROUP_OPEN = "open"
GROUP_COMMITTED = "committed"
GROUP_ABORTED = "aborted"

GROUP_STATES = frozenset({GROUP_OPEN, GROUP_COMMITTED, GROUP_ABORTED})


@dataclass(frozen=True)
class FileExists:
    """A script asked whether a path exists."""

    kind: ClassVar[str] = ACTION_EXISTS

    path: str
    result: bool


@dataclass(frozen=True)
class ReadFile:
    """A script read a file. hash is None when the file was missing."""

    kind: ClassVar[str] = ACTION_READ

    path: str
    hash: ContentHash | None


@dataclass(frozen=True)
class WriteFile:
    """A script wrote a file. before_hash is None when it did not exist."""

    kind: ClassVar[str] = ACTION_WRITE

    path: str
    before_hash: ContentHash | None
    after_hash: ContentHash


@dataclass(frozen=True)
class GetMetadata:
    """A script read a metadata key. value is None when absent."""

    kind: ClassVar[str] = ACTION_GET_METADATA

    path: str
    key: str
    value: str | None


@dataclass(frozen=True)
class SetMetadata:
    """A script set a metadata key."""

    kind: ClassVar[str] = ACTION_SET_METADATA

    path: str
    key: str
    before: str | None
    after: str


Microaction = Union[FileExists, ReadFile, WriteFile, GetMetadata, SetMetadata]


def action_to_row(action: Microaction) -> dict[str, Any]:
    """
    Column values for an Events row.

    Column use per kind:
        exists: file_path, read_result
        read:   file_path, before_hash (observed hash)
        write:  file_path, before_hash, after_hash
        get_md: file_path, metadata_key, metadata_value
        set_md: file_path, metadata_key, metadata_before, metadata_value
    """
    row: dict[str, Any] = {
        "action_kind": action.kind,
        "file_path": action.path,
        "before_hash": None,
        "after_hash": None,
        "metadata_key": None,
        "metadata_value": None,
        "metadata_before": None,
        "read_result": None,
    }
    if isinstance(action, FileExists):
        row["read_result"] = int(action.result)
    elif isinstance(action, ReadFile):
        row["before_hash"] = text_or_none(action.hash)
    elif isinstance(action, WriteFile):
        row["before_hash"] = text_or_none(action.before_hash)
        row["after_hash"] = str(action.after_hash)
    elif isinstance(action, GetMetadata):
        row["metadata_key"] = action.key
        row["metadata_value"] = action.value
    elif isinstance(action, SetMetadata):
        row["metadata_key"] = action.key
        row["metadata_before"] = action.before
        row["metadata_value"] = action.after
    else:
        raise TypeError(f"Not a microaction: {action!r}")
    return row


def action_from_row(row: Mapping[str, Any]) -> Microaction:
    """Reconstruct a microaction from an Events row."""
    kind = row["action_kind"]
    path = row["file_path"]
    if kind == ACTION_EXISTS:
        return FileExists(path=path, result=bool(row["read_result"]))
    if kind == ACTION_READ:
        return ReadFile(path=path, hash=hash_or_none(row["before_hash"]))
    if kind == ACTION_WRITE:
        return WriteFile(
            path=path,
            before_hash=hash_or_none(row["before_hash"]),
            after_hash=ContentHash.from_string(row["after_hash"]),
        )
    if kind == ACTION_GET_METADATA:
        return GetMetadata(path=path, key=row["metadata_key"], value=row["metadata_value"])
    if kind == ACTION_SET_METADATA:
        return SetMetadata(
            path=path,
            key=row["metadata_key"],
            before=row["metadata_before"],
            after=row["metadata_value"],
        )
    raise ValueError(f"Invalid action_kind: {kind}")


def action_to_dict(action: Microaction) -> dict[str, Any]:
    """Serialize to a JSON-compatible dict (for listings)."""
    result: dict[str, Any] = {"kind": action.kind, "path": action.path}
    if isinstance(action, FileExists):
        result["result"] = action.result
    elif isinstance(action, ReadFile):
        result["hash"] = text_or_none(action.hash)
    elif isinstance(action, WriteFile):
        result["before_hash"] = text_or_none(action.before_hash)
        result["after_hash"] = str(action.after_hash)
    elif isinstance(action, GetMetadata):
        result["key"] = action.key
        result["value"] = action.value
    elif isinstance(action, SetMetadata):
        result["key"] = action.key
        result["before"] = action.before
        result["after"] = action.after
    return result


@dataclass(frozen=True)
class RecordedAction:
    """A microaction at its position within a group."""

    seq: int
    action: Microaction
    state: str = ENTRY_CONFIRMED

    @property
    def confirmed(self) -> bool:
        return self.state == ENTRY_CONFIRMED


@dataclass
class Group:
    """
    One script execution and its ordered microactions.

    Loaded from the log; never mutated after commit.
    """

    id: int
    command: str
    parameters: dict[str, Any] = field(default_factory=dict)
    state: str = GROUP_OPEN
    started_at: datetime | None = None
    finished_at: datetime | None = None
    actions: list[RecordedAction] = field(default_factory=list)

    @property
    def is_committed(self) -> bool:
        return self.state == GROUP_COMMITTED

    def confirmed_actions(self) -> list[RecordedAction]:
        """Actions whose effect is known to have landed, in sequence order."""
        return [a for a in self.actions if a.confirmed]

    def inputs_before(self, seq: int) -> list[RecordedAction]:
        """Confirmed read-kind actions that precede position `seq`."""
        return [
            a
            for a in self.actions
            if a.seq < seq and a.confirmed and a.action.kind in READ_KINDS
        ]

    def has_trailing_pending(self) -> bool:
        """True if the last entry never got confirmed (crash mid-effect)."""
        return bool(self.actions) and self.actions[-1].state == ENTRY_PENDING

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        result: dict[str, Any] = {
            "id": self.id,
            "command": self.command,
            "parameters": self.parameters,
            "state": self.state,
            "actions": [
                {"seq": a.seq, "state": a.state, **action_to_dict(a.action)}
                for a in self.actions
            ],
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.finished_at is not None:
            result["finished_at"] = self.finished_at.isoformat()
        return result

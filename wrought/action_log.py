"""
Append-only action log.

The log is the source of truth for provenance. It holds one Group per
script execution and, inside each group, the ordered microactions that
execution performed. Rows are inserted and moved forward through their
state machines; they are never deleted.

Side effects and their log entries cannot share a transaction (the effect
lands on the filesystem), so effectful microactions follow a
confirm-after-effect protocol: the entry is appended as `pending`, the
effect runs, and the entry is then marked `confirmed` (or `failed` if the
effect raised). A trailing pending entry in a group that never finished
is evidence the script crashed mid-effect.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

from .actions import (
    ACTION_WRITE,
    ENTRY_CONFIRMED,
    ENTRY_FAILED,
    ENTRY_PENDING,
    GROUP_ABORTED,
    GROUP_COMMITTED,
    GROUP_OPEN,
    Group,
    Microaction,
    RecordedAction,
    action_from_row,
    action_to_row,
)
from .errors import NotFoundError, StorageError, ValidationError, WroughtError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS Groups (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    command TEXT NOT NULL,
    parameters TEXT NOT NULL DEFAULT '{}',
    state TEXT NOT NULL DEFAULT 'open',
    owner TEXT,
    started_at TEXT,
    finished_at TEXT
);

CREATE TABLE IF NOT EXISTS Events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    group_id INTEGER NOT NULL REFERENCES Groups(id),
    seq INTEGER NOT NULL,
    action_kind TEXT NOT NULL,
    file_path TEXT,
    before_hash TEXT,
    after_hash TEXT,
    metadata_key TEXT,
    metadata_value TEXT,
    metadata_before TEXT,
    read_result INTEGER,
    state TEXT NOT NULL DEFAULT 'confirmed',
    UNIQUE (group_id, seq)
);

CREATE INDEX IF NOT EXISTS idx_events_path_kind ON Events (file_path, action_kind);
"""

PAGE_SIZE = 100


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class GroupHandle:
    """
    Write access to one open group.

    Only the holder of the handle may append; the owner token is checked
    against the log on every append.
    """

    group_id: int
    command: str
    owner: str


@dataclass(frozen=True)
class PendingEntry:
    """An appended entry awaiting confirmation."""

    event_id: int
    seq: int


class ActionLog:
    """
    Transactional, append-only record of groups and microactions (SQLite).

    INVARIANT: committed groups and their events are never modified.
    Group ids are allocated by SQLite AUTOINCREMENT inside an IMMEDIATE
    transaction, so they are strictly increasing and never reused, even
    with several drivers writing at once.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn = self._init_db()

    def _init_db(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                timeout=10,
                check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=FULL")
            conn.execute("PRAGMA foreign_keys=ON")
            conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Unable to open action log {self.db_path}: {e}") from e
        return conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Unable to start log transaction: {e}") from e
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            try:
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise StorageError(f"Unable to commit log transaction: {e}") from e

    def _query(self, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Action log query failed: {e}") from e

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def begin_group(self, command: str, parameters: dict[str, Any] | None = None) -> GroupHandle:
        """Allocate the next group id and open the group."""
        owner = uuid.uuid4().hex
        try:
            params_json = json.dumps(parameters or {}, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Group parameters must be JSON-serializable: {e}") from e
        try:
            with self._transaction() as conn:
                cur = conn.execute(
                    "INSERT INTO Groups (command, parameters, state, owner, started_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (command, params_json, GROUP_OPEN, owner, _now()),
                )
                group_id = int(cur.lastrowid)
        except sqlite3.Error as e:
            raise StorageError(f"Unable to begin group for {command!r}: {e}") from e
        logger.info("Began group %d (%s)", group_id, command)
        return GroupHandle(group_id=group_id, command=command, owner=owner)

    def _check_open(self, conn: sqlite3.Connection, handle: GroupHandle) -> None:
        row = conn.execute(
            "SELECT state, owner FROM Groups WHERE id = ?", (handle.group_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Unknown group {handle.group_id}")
        if row["owner"] != handle.owner:
            raise ValidationError(
                "Group is owned by another script execution", group_id=handle.group_id
            )
        if row["state"] != GROUP_OPEN:
            raise ValidationError(
                f"Group is {row['state']}; no further actions accepted", group_id=handle.group_id
            )

    def _insert(self, handle: GroupHandle, action: Microaction, state: str) -> PendingEntry:
        row = action_to_row(action)
        try:
            with self._transaction() as conn:
                self._check_open(conn, handle)
                seq = conn.execute(
                    "SELECT COALESCE(MAX(seq), -1) + 1 FROM Events WHERE group_id = ?",
                    (handle.group_id,),
                ).fetchone()[0]
                cur = conn.execute(
                    "INSERT INTO Events (group_id, seq, action_kind, file_path, before_hash, "
                    "after_hash, metadata_key, metadata_value, metadata_before, read_result, state) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        handle.group_id,
                        seq,
                        row["action_kind"],
                        row["file_path"],
                        row["before_hash"],
                        row["after_hash"],
                        row["metadata_key"],
                        row["metadata_value"],
                        row["metadata_before"],
                        row["read_result"],
                        state,
                    ),
                )
                event_id = int(cur.lastrowid)
        except sqlite3.Error as e:
            raise StorageError(f"Unable to append {action.kind} action: {e}", group_id=handle.group_id) from e
        return PendingEntry(event_id=event_id, seq=int(seq))

    def append(self, handle: GroupHandle, action: Microaction) -> int:
        """
        Append an already-completed microaction (reads, whose effect is
        the observation itself).

        Returns:
            The sequence number of the action within its group
        """
        return self._insert(handle, action, ENTRY_CONFIRMED).seq

    def append_pending(self, handle: GroupHandle, action: Microaction) -> PendingEntry:
        """Append an effectful microaction before its effect runs."""
        return self._insert(handle, action, ENTRY_PENDING)

    def _resolve(self, handle: GroupHandle, entry: PendingEntry, state: str) -> None:
        try:
            with self._transaction() as conn:
                self._check_open(conn, handle)
                cur = conn.execute(
                    "UPDATE Events SET state = ? WHERE id = ? AND group_id = ? AND state = ?",
                    (state, entry.event_id, handle.group_id, ENTRY_PENDING),
                )
                if cur.rowcount != 1:
                    raise ValidationError(
                        f"Entry {entry.seq} is not pending", group_id=handle.group_id
                    )
        except sqlite3.Error as e:
            raise StorageError(f"Unable to mark entry {entry.seq} {state}: {e}", group_id=handle.group_id) from e

    def confirm(self, handle: GroupHandle, entry: PendingEntry) -> None:
        """Mark a pending entry as confirmed once its effect has landed."""
        self._resolve(handle, entry, ENTRY_CONFIRMED)

    def fail(self, handle: GroupHandle, entry: PendingEntry) -> None:
        """Mark a pending entry as failed: its effect raised and did not land."""
        self._resolve(handle, entry, ENTRY_FAILED)

    @contextmanager
    def record(self, handle: GroupHandle, action: Microaction) -> Iterator[int]:
        """
        Run a side effect under the confirm-after-effect protocol.

            with log.record(handle, WriteFile(...)):
                path.write_bytes(content)

        Yields the sequence number. If the body raises, the entry is marked
        failed and the exception propagates.
        """
        entry = self.append_pending(handle, action)
        try:
            yield entry.seq
        except BaseException:
            try:
                self.fail(handle, entry)
            except WroughtError:
                logger.exception("Unable to mark entry %d failed in group %d", entry.seq, handle.group_id)
            raise
        self.confirm(handle, entry)

    def _finish(self, handle: GroupHandle, state: str) -> None:
        try:
            with self._transaction() as conn:
                self._check_open(conn, handle)
                conn.execute(
                    "UPDATE Groups SET state = ?, finished_at = ? WHERE id = ?",
                    (state, _now(), handle.group_id),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Unable to mark group {state}: {e}", group_id=handle.group_id) from e
        logger.info("Group %d %s (%s)", handle.group_id, state, handle.command)

    def commit_group(self, handle: GroupHandle) -> None:
        """Open -> Committed. No further appends are accepted."""
        self._finish(handle, GROUP_COMMITTED)

    def abort_group(self, handle: GroupHandle) -> None:
        """
        Open -> Aborted.

        Appended actions are kept and performed side effects stay in place.
        """
        self._finish(handle, GROUP_ABORTED)

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _group_from_row(self, row: sqlite3.Row, event_rows: list[sqlite3.Row]) -> Group:
        return Group(
            id=int(row["id"]),
            command=row["command"],
            parameters=json.loads(row["parameters"] or "{}"),
            state=row["state"],
            started_at=datetime.fromisoformat(row["started_at"]) if row["started_at"] else None,
            finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
            actions=[
                RecordedAction(seq=int(e["seq"]), action=action_from_row(e), state=e["state"])
                for e in event_rows
            ],
        )

    def _load_events(self, group_id: int) -> list[sqlite3.Row]:
        return self._query("SELECT * FROM Events WHERE group_id = ? ORDER BY seq", (group_id,))

    def get_group(self, group_id: int) -> Group:
        """
        Load one group with all its actions.

        Raises:
            NotFoundError: if no group has this id
        """
        rows = self._query("SELECT * FROM Groups WHERE id = ?", (group_id,))
        if not rows:
            raise NotFoundError(f"No group with id {group_id}")
        return self._group_from_row(rows[0], self._load_events(group_id))

    def iterate_groups(
        self,
        after_id: int | None = None,
        *,
        states: Iterable[str] = (GROUP_COMMITTED,),
    ) -> Iterator[Group]:
        """
        Iterate over groups in ascending id order.

        The iteration is finite: groups begun after the call are not
        included. Restart from any point with `after_id`.

        Args:
            after_id: Only yield groups with a larger id
            states: Group states to include (default: committed only)
        """
        wanted = tuple(states)
        if not wanted:
            return
        rows = self._query("SELECT COALESCE(MAX(id), 0) FROM Groups")
        max_id = int(rows[0][0])
        cursor = after_id or 0
        placeholders = ",".join("?" for _ in wanted)
        while cursor < max_id:
            page = self._query(
                f"SELECT * FROM Groups WHERE id > ? AND id <= ? AND state IN ({placeholders}) "
                f"ORDER BY id LIMIT {PAGE_SIZE}",
                (cursor, max_id, *wanted),
            )
            if not page:
                return
            for row in page:
                yield self._group_from_row(row, self._load_events(int(row["id"])))
            cursor = int(page[-1]["id"])

    def open_group_ids(self) -> list[int]:
        """Ids of groups that are still open."""
        rows = self._query("SELECT id FROM Groups WHERE state = ? ORDER BY id", (GROUP_OPEN,))
        return [int(r["id"]) for r in rows]

    def max_group_id(self) -> int:
        rows = self._query("SELECT COALESCE(MAX(id), 0) FROM Groups")
        return int(rows[0][0])

    def interrupted_groups(self) -> list[Group]:
        """Open groups whose last entry is still pending."""
        result = []
        for group_id in self.open_group_ids():
            group = self.get_group(group_id)
            if group.has_trailing_pending():
                result.append(group)
        return result

    def recover(self, group_ids: Iterable[int] | None = None) -> list[int]:
        """
        Mark abandoned open groups as aborted.

        Only call this when no driver is running: an open group may belong
        to a live script execution.

        Args:
            group_ids: Groups to abort (default: every open group)

        Returns:
            The ids that were aborted
        """
        targets = list(group_ids) if group_ids is not None else self.open_group_ids()
        aborted: list[int] = []
        for group_id in targets:
            try:
                with self._transaction() as conn:
                    cur = conn.execute(
                        "UPDATE Groups SET state = ?, finished_at = ? WHERE id = ? AND state = ?",
                        (GROUP_ABORTED, _now(), group_id, GROUP_OPEN),
                    )
                    changed = cur.rowcount == 1
            except sqlite3.Error as e:
                raise StorageError(f"Unable to recover group: {e}", group_id=group_id) from e
            if changed:
                logger.warning("Recovered abandoned group %d as aborted", group_id)
                aborted.append(group_id)
        return aborted

    # -------------------------------------------------------------------------
    # Index lookups used by status and history
    # -------------------------------------------------------------------------

    def writes_for(self, path: str) -> list[tuple[int, RecordedAction]]:
        """All confirmed committed writes to `path`, oldest first, as (group_id, action)."""
        rows = self._query(
            "SELECT e.* FROM Events e JOIN Groups g ON g.id = e.group_id "
            "WHERE e.file_path = ? AND e.action_kind = ? AND e.state = ? AND g.state = ? "
            "ORDER BY e.group_id, e.seq",
            (path, ACTION_WRITE, ENTRY_CONFIRMED, GROUP_COMMITTED),
        )
        return [
            (int(r["group_id"]), RecordedAction(seq=int(r["seq"]), action=action_from_row(r), state=r["state"]))
            for r in rows
        ]

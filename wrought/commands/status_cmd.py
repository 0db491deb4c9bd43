"""Status and history CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..history import HISTORY_LOCAL_CHANGES, HISTORY_MISSING, HISTORY_UNKNOWN, file_history
from ..paths import project_relative
from ..project import Project
from ..status import FileStatus, Status, summarize

STATUS_STYLES = {
    Status.UNTRACKED: "dim",
    Status.CLEAN: "green",
    Status.DIRTY: "yellow",
    Status.STALE: "magenta",
    Status.DIRTY_STALE: "bold red",
}


def _short(value: object | None) -> str:
    return str(value)[:12] if value is not None else ""


def run_status(
    root: Path,
    directory: str | None = None,
    *,
    include_internal: bool = False,
    output_json: bool = False,
) -> int:
    console = Console()
    with Project.open(root) as project:
        include_internal = include_internal or project.config.status.include_internal
        prefix = project_relative(project.root, directory, allow_root=True) if directory else None
        statuses = project.status.directory_status(prefix, include_internal=include_internal)

    if output_json:
        payload = {"files": [s.to_dict() for s in statuses], "summary": summarize(statuses)}
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    table = Table(title="Project status")
    table.add_column("path", style="cyan")
    table.add_column("status")
    table.add_column("group", justify="right")
    table.add_column("command", style="dim")
    for s in statuses:
        table.add_row(
            s.path,
            f"[{STATUS_STYLES[s.status]}]{s.status.label}[/]",
            str(s.group_id) if s.group_id is not None else "",
            s.command or "",
        )
    console.print(table)

    counts = summarize(statuses)
    console.print(", ".join(f"{n} {name}" for name, n in counts.items() if n), style="dim")
    return 0


def _print_file_status(console: Console, st: FileStatus) -> None:
    console.print(f"{st.path}: [{STATUS_STYLES[st.status]}]{st.status.label}[/]")
    if not st.tracked:
        return
    console.print(f"  last write: group {st.group_id} ({st.command}), action {st.seq}", style="dim")
    console.print(f"  recorded: {st.recorded_hash}  current: {st.current_hash or 'missing'}", style="dim")
    for check in st.inputs:
        mark = "changed" if check.changed else "ok"
        key = f"[{check.key}]" if check.key else ""
        console.print(f"  input {check.seq} {check.kind} {check.path}{key}: {mark}", style="dim")
    if st.dirty:
        console.print("  edited since the last write", style=STATUS_STYLES[Status.DIRTY])
    if st.stale:
        changed = st.changed_inputs()
        console.print(f"  {len(changed)} input(s) changed since the last write", style=STATUS_STYLES[Status.STALE])


def run_file_status(root: Path, path: str, *, output_json: bool = False) -> int:
    console = Console()
    with Project.open(root) as project:
        st = project.status.file_status(project_relative(project.root, path))
    if output_json:
        print(json.dumps(st.to_dict(), indent=2, sort_keys=True))
    else:
        _print_file_status(console, st)
    return 0


def run_history(root: Path, path: str, *, output_json: bool = False) -> int:
    console = Console()
    with Project.open(root) as project:
        rel = project_relative(project.root, path)
        entries = file_history(project.action_log, project.root, rel)

    if output_json:
        print(json.dumps([e.to_dict() for e in entries], indent=2))
        return 0

    if not entries:
        console.print(f"{rel}: no recorded writes", style="dim")
        return 0

    table = Table(title=f"History of {rel}")
    table.add_column("event")
    table.add_column("hash", style="cyan", no_wrap=True)
    table.add_column("group", justify="right")
    table.add_column("command", style="dim")
    for e in entries:
        style = {
            HISTORY_UNKNOWN: "yellow",
            HISTORY_MISSING: "dim",
            HISTORY_LOCAL_CHANGES: "yellow",
        }.get(e.kind, "green")
        table.add_row(
            f"[{style}]{e.kind}[/]",
            _short(e.hash),
            str(e.group_id) if e.group_id is not None else "",
            e.command or "",
        )
    console.print(table)
    return 0

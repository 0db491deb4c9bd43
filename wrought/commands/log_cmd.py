"""Action log and content store CLI commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..actions import GROUP_COMMITTED, GROUP_STATES
from ..errors import ValidationError
from ..hashing import ContentHash
from ..project import Project


def run_log(root: Path, *, show_all: bool = False, output_json: bool = False) -> int:
    """List groups. Committed only, unless `show_all` (open and aborted too)."""
    console = Console()
    with Project.open(root) as project:
        states = sorted(GROUP_STATES) if show_all else [GROUP_COMMITTED]
        groups = list(project.action_log.iterate_groups(states=states))

    if output_json:
        print(json.dumps([g.to_dict() for g in groups], indent=2))
        return 0

    table = Table(title="Groups")
    table.add_column("id", justify="right", style="cyan")
    table.add_column("state")
    table.add_column("command")
    table.add_column("actions", justify="right")
    table.add_column("finished", style="dim")
    for g in groups:
        state_style = {"committed": "green", "aborted": "red"}.get(g.state, "yellow")
        table.add_row(
            str(g.id),
            f"[{state_style}]{g.state}[/]",
            g.command,
            str(len(g.confirmed_actions())),
            g.finished_at.isoformat(timespec="seconds") if g.finished_at else "",
        )
    console.print(table)
    return 0


def run_content_show(root: Path, hash_text: str) -> int:
    """Write a stored blob to stdout."""
    content_hash = _parse_hash(hash_text)
    with Project.open(root) as project:
        content = project.content_store.get(content_hash)
    sys.stdout.buffer.write(content)
    sys.stdout.flush()
    return 0


def run_recover(root: Path, *, assume_yes: bool = False) -> int:
    """Abort groups left open by a driver that is no longer running."""
    err = Console(stderr=True)
    with Project.open(root) as project:
        open_ids = project.action_log.open_group_ids()
        if not open_ids:
            err.print("No open groups.", style="dim")
            return 0
        interrupted = {g.id for g in project.action_log.interrupted_groups()}
        for group_id in open_ids:
            note = " (interrupted mid-effect)" if group_id in interrupted else ""
            err.print(f"open group {group_id}{note}", style="yellow")
        if not assume_yes:
            err.print("Pass --yes to mark these groups aborted. Make sure no script is running.", style="dim")
            return 1
        aborted = project.action_log.recover(open_ids)
    err.print(f"Aborted {len(aborted)} group(s): {', '.join(map(str, aborted))}", style="green")
    return 0


def _parse_hash(text: str) -> ContentHash:
    # Accept the base64 form shown by status and the hex form used for blob names
    for parse in (ContentHash.from_string, ContentHash.from_hex):
        try:
            return parse(text)
        except ValueError:
            continue
    raise ValidationError(f"{text!r} is not a content hash")

"""Script execution and project setup CLI commands."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console

from ..errors import ValidationError
from ..project import Project


def parse_parameters(pairs: tuple[str, ...] | list[str]) -> dict[str, str]:
    """Parse `key=value` command-line parameters."""
    result: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationError(f"Parameter {pair!r} must look like key=value")
        result[key] = value
    return result


def run_script_command(root: Path, script: str, parameters: tuple[str, ...] = ()) -> int:
    console = Console()
    params = parse_parameters(parameters)
    with Project.open(root) as project:
        result = project.run_script(script, params)
    if result.stdout:
        console.print(result.stdout, markup=False, highlight=False)
    return 0


def run_init(path: Path, *, package: Path | None = None) -> int:
    err = Console(stderr=True)
    project = Project.init(path, package=package)
    project.close()
    err.print(f"Initialized wrought project in {project.root}", style="green")
    return 0

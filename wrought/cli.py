"""CLI entrypoint for wrought."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, Callable

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .errors import WroughtError
from .paths import INTERNAL_DIR, find_project_root


def _configure_logging(verbose: bool) -> None:
    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=verbose)
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _project_root(ctx: click.Context) -> Path:
    root = ctx.obj.get("project_root")
    if root is None:
        root = find_project_root(Path.cwd())
        if root is None:
            raise click.ClickException(
                f"No {INTERNAL_DIR}/ directory found. Pass --project-root or run from inside a project."
            )
    return root


def _run(fn: Callable[..., int], *args: Any, **kwargs: Any) -> None:
    try:
        exit_code = fn(*args, **kwargs)
    except WroughtError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(exit_code)


@click.group()
@click.version_option(__version__, prog_name="wrought")
@click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    default=None,
    help="Project root (defaults to the nearest parent containing .wrought/)",
)
@click.option("--verbose", is_flag=True, help="Log debug output")
@click.pass_context
def cli(ctx: click.Context, project_root: Path | None, verbose: bool) -> None:
    """wrought - track how scripts turned inputs into files.

    Run scripts against a project and ask which generated files are
    still clean, edited by hand (dirty), or built from inputs that have
    since changed (stale).
    """
    ctx.ensure_object(dict)
    _configure_logging(verbose)
    ctx.obj["project_root"] = project_root.resolve() if project_root else None


@cli.command()
@click.argument("path", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--package",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Package directory to install into .wrought/packages/ (its init script is run)",
)
def init(path: Path, package: Path | None) -> None:
    """Create a new project at PATH."""
    from .commands.script_cmd import run_init

    _run(run_init, path, package=package)


@cli.command()
@click.argument("directory", required=False)
@click.option("--internal", "include_internal", is_flag=True, help="Include files under .wrought/")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def status(ctx: click.Context, directory: str | None, include_internal: bool, output_json: bool) -> None:
    """Show the status of every tracked or present file."""
    from .commands.status_cmd import run_status

    _run(run_status, _project_root(ctx), directory, include_internal=include_internal, output_json=output_json)


@cli.command("file-status")
@click.argument("path")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def file_status(ctx: click.Context, path: str, output_json: bool) -> None:
    """Explain the status of one file, including its recorded inputs."""
    from .commands.status_cmd import run_file_status

    _run(run_file_status, _project_root(ctx), path, output_json=output_json)


@cli.command()
@click.argument("path")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def history(ctx: click.Context, path: str, output_json: bool) -> None:
    """Show every recorded write to a file."""
    from .commands.status_cmd import run_history

    _run(run_history, _project_root(ctx), path, output_json=output_json)


@cli.command("run-script")
@click.argument("script")
@click.option("--param", "-p", "parameters", multiple=True, metavar="KEY=VALUE", help="Script parameter")
@click.pass_context
def run_script(ctx: click.Context, script: str, parameters: tuple[str, ...]) -> None:
    """Run a Lua or WebAssembly script in a new group."""
    from .commands.script_cmd import run_script_command

    _run(run_script_command, _project_root(ctx), script, parameters)


@cli.command()
@click.option("--all", "show_all", is_flag=True, help="Include open and aborted groups")
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_context
def log(ctx: click.Context, show_all: bool, output_json: bool) -> None:
    """List recorded groups."""
    from .commands.log_cmd import run_log

    _run(run_log, _project_root(ctx), show_all=show_all, output_json=output_json)


@cli.command("content-show")
@click.argument("content_hash", metavar="HASH")
@click.pass_context
def content_show(ctx: click.Context, content_hash: str) -> None:
    """Print a stored content blob."""
    from .commands.log_cmd import run_content_show

    _run(run_content_show, _project_root(ctx), content_hash)


@cli.command()
@click.option("--yes", "assume_yes", is_flag=True, help="Abort the open groups without asking")
@click.pass_context
def recover(ctx: click.Context, assume_yes: bool) -> None:
    """Abort groups left open by a crashed run."""
    from .commands.log_cmd import run_recover

    _run(run_recover, _project_root(ctx), assume_yes=assume_yes)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()

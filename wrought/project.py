"""
Project driver.

A Project owns the handles to one project's stores (content, metadata,
action log), its configuration and its AI client. They are opened once
and passed explicitly to every component; nothing is process-global.

Each script run gets its own group:

    begin_group -> ScriptHost bound to the group -> runtime adapter
        -> commit_group on success / abort_group on any failure

Aborted groups stay in the log. Side effects already performed by an
aborted script are not rolled back.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.console import Console

from .action_log import ActionLog
from .actions import GROUP_COMMITTED
from .blocking import BlockingRunner
from .config import WroughtConfig, load_config
from .content_store import ContentStore
from .errors import NotFoundError, ValidationError, WroughtError
from .host import ScriptHost
from .llm import LLM, create_llm
from .metadata_store import MetadataStore
from .paths import INTERNAL_DIR, PACKAGES_DIR, find_project_root, normalize_path, resolve_in_root
from .runtimes import RuntimeKind, run_script
from .secrets import SecretsProvider
from .status import StatusEngine

logger = logging.getLogger(__name__)

DB_FILENAME = "wrought.db"
INIT_SCRIPTS = ("init.lua", "init.luau")


@dataclass
class RunResult:
    """Outcome of one script run."""

    group_id: int
    state: str
    action_count: int
    stdout: str = ""

    @property
    def success(self) -> bool:
        return self.state == GROUP_COMMITTED


class Project:
    """Open handles for one project root."""

    def __init__(
        self,
        root: Path,
        *,
        config: WroughtConfig | None = None,
        llm: LLM | None = None,
        console: Console | None = None,
        secrets_provider: SecretsProvider | None = None,
    ):
        self.root = root.resolve()
        self.internal_dir = self.root / INTERNAL_DIR
        self.config = config or load_config(self.internal_dir)
        self.content_store = ContentStore(self.internal_dir)
        self.metadata_store = MetadataStore(self.internal_dir)
        self.action_log = ActionLog(self.internal_dir / DB_FILENAME)
        self.llm = llm if llm is not None else create_llm(self.config.llm, self.internal_dir, secrets_provider)
        self.console = console or Console(stderr=True)
        self.runner = BlockingRunner()
        self._status: StatusEngine | None = None

    @classmethod
    def open(cls, root: Path, **kwargs: Any) -> Project:
        """
        Open an existing project.

        Raises:
            NotFoundError: if `root` has no `.wrought/` directory
        """
        if not (root / INTERNAL_DIR).is_dir():
            raise NotFoundError(f"{root} is not a wrought project (no {INTERNAL_DIR}/ directory)")
        return cls(root, **kwargs)

    @classmethod
    def discover(cls, start: Path, **kwargs: Any) -> Project:
        """Open the project containing `start`."""
        root = find_project_root(start)
        if root is None:
            raise NotFoundError(f"No {INTERNAL_DIR}/ directory found in {start} or any parent")
        return cls(root, **kwargs)

    @classmethod
    def init(cls, root: Path, *, package: Path | None = None, **kwargs: Any) -> Project:
        """
        Create a new project at `root`.

        If `package` is given, the directory is copied to
        `.wrought/packages/<name>/` and its init script, if any, is run.

        Raises:
            ValidationError: if `root` is already inside a project
        """
        existing = _existing_ancestor(root)
        if existing is not None:
            enclosing = find_project_root(existing)
            if enclosing is not None:
                raise ValidationError(f"{root} is part of the project rooted at {enclosing}")

        (root / PACKAGES_DIR).mkdir(parents=True, exist_ok=True)
        project = cls(root, **kwargs)
        logger.info("Initialized project at %s", project.root)
        if package is None:
            return project

        try:
            if not package.is_dir():
                raise NotFoundError(f"Package directory {package} does not exist")
            target = project.root / PACKAGES_DIR / package.name
            shutil.copytree(package, target, dirs_exist_ok=True)
            for name in INIT_SCRIPTS:
                if (target / name).is_file():
                    project.console.print(f"Running init script {package.name}/{name}", style="dim")
                    project.run_script(f"{package.name}/{name}")
                    break
            else:
                project.console.print(f"No init script in package {package.name}", style="dim")
        except BaseException:
            project.close()
            raise
        return project

    def close(self) -> None:
        self.runner.close()
        self.action_log.close()
        close_llm = getattr(self.llm, "close", None)
        if callable(close_llm):
            close_llm()

    def __enter__(self) -> Project:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def status(self) -> StatusEngine:
        if self._status is None:
            self._status = StatusEngine(self.root, self.action_log, self.metadata_store)
        return self._status

    def resolve_script(self, script: str) -> tuple[str, Path]:
        """
        Find a script by project path, falling back to `.wrought/packages/`.

        Returns:
            (project-relative path, filesystem path)
        """
        norm = normalize_path(script)
        for candidate in (norm, f"{PACKAGES_DIR}/{norm}"):
            fs_path = resolve_in_root(self.root, candidate)
            if fs_path.is_file():
                return candidate, fs_path
        raise NotFoundError(f"Script {script!r} not found in the project or in {PACKAGES_DIR}/")

    def run_script(self, script: str, parameters: dict[str, Any] | None = None) -> RunResult:
        """
        Run one script in a new group.

        Raises:
            WroughtError: any failure, with the group id attached; the group
                is aborted before the error propagates
        """
        command, script_path = self.resolve_script(script)
        kind = RuntimeKind.for_script(script_path)
        parameters = dict(parameters or {})

        handle = self.action_log.begin_group(command, parameters)
        host = ScriptHost(
            self.root,
            content_store=self.content_store,
            metadata_store=self.metadata_store,
            action_log=self.action_log,
            handle=handle,
            llm=self.llm,
            runner=self.runner,
        )
        self.console.print(f"Running {command} (group {handle.group_id}, {kind.value})", style="dim")

        try:
            stdout = run_script(kind, host, script_path, parameters)
        except BaseException as e:
            try:
                self.action_log.abort_group(handle)
            except WroughtError:
                logger.exception("Unable to abort group %d", handle.group_id)
            self.console.print(f"{command} failed; group {handle.group_id} aborted", style="red")
            if isinstance(e, WroughtError):
                raise e.with_group(handle.group_id)
            raise
        finally:
            host.close()

        self.action_log.commit_group(handle)
        self.console.print(
            f"{command} complete: group {handle.group_id}, {host.action_count} actions", style="green"
        )
        return RunResult(
            group_id=handle.group_id,
            state=GROUP_COMMITTED,
            action_count=host.action_count,
            stdout=stdout,
        )


def _existing_ancestor(path: Path) -> Path | None:
    cur = path.absolute()
    for p in (cur, *cur.parents):
        if p.exists():
            return p
    return None


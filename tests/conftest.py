"""Pytest configuration and fixtures."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Callable, Iterator

import pytest
from rich.console import Console

from wrought.action_log import ActionLog
from wrought.content_store import ContentStore
from wrought.host import ScriptHost
from wrought.metadata_store import MetadataStore
from wrought.project import Project


class FakeLLM:
    """Answers prompts from a table, recording every prompt it sees."""

    def __init__(self, responses: dict[str, str] | None = None):
        self.responses = responses or {}
        self.prompts: list[str] = []

    def query(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.responses.get(prompt, f"answer to: {prompt}")


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """An empty project: a directory with .wrought/ in it."""
    root = tmp_path / "proj"
    (root / ".wrought").mkdir(parents=True)
    return root


@pytest.fixture
def internal_dir(project_root: Path) -> Path:
    return project_root / ".wrought"


@pytest.fixture
def content_store(internal_dir: Path) -> ContentStore:
    return ContentStore(internal_dir)


@pytest.fixture
def metadata_store(internal_dir: Path) -> MetadataStore:
    return MetadataStore(internal_dir)


@pytest.fixture
def action_log(internal_dir: Path) -> Iterator[ActionLog]:
    log = ActionLog(internal_dir / "wrought.db")
    yield log
    log.close()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def make_host(
    project_root: Path,
    content_store: ContentStore,
    metadata_store: MetadataStore,
    action_log: ActionLog,
    fake_llm: FakeLLM,
) -> Iterator[Callable[..., ScriptHost]]:
    """Factory: begin a new group and bind a ScriptHost to it."""
    hosts: list[ScriptHost] = []

    def _make(command: str = "script.lua") -> ScriptHost:
        handle = action_log.begin_group(command, {})
        host = ScriptHost(
            project_root,
            content_store=content_store,
            metadata_store=metadata_store,
            action_log=action_log,
            handle=handle,
            llm=fake_llm,
        )
        hosts.append(host)
        return host

    yield _make
    for host in hosts:
        host.close()


@pytest.fixture
def project(project_root: Path, fake_llm: FakeLLM) -> Iterator[Project]:
    """An open Project with a fake AI client and a silent console."""
    p = Project.open(project_root, llm=fake_llm, console=Console(file=io.StringIO()))
    yield p
    p.close()

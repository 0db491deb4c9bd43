"""Tests for the ScriptHost capability surface."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from wrought.actions import ENTRY_CONFIRMED, ENTRY_FAILED, FileExists, GetMetadata, ReadFile, SetMetadata, WriteFile
from wrought.content_store import ContentStore
from wrought.errors import NotFoundError, ReentrancyError, StorageError, ValidationError
from wrought.hashing import ContentHash
from wrought.host import ScriptHost
from wrought.metadata_store import MetadataStore


def _actions(host: ScriptHost) -> list:
    return [a.action for a in host.action_log.get_group(host.group_id).actions]


def test_file_capabilities_record_microactions(
    make_host: Callable[..., ScriptHost], project_root: Path, content_store: ContentStore
) -> None:
    (project_root / "in.txt").write_bytes(b"input")
    host = make_host()

    assert host.file_exists("in.txt") is True
    assert host.read_file("in.txt") == b"input"
    assert host.read_file("missing.txt") is None
    host.write_file("out/result.txt", b"result")

    assert (project_root / "out" / "result.txt").read_bytes() == b"result"
    assert content_store.get(ContentHash.from_content(b"result")) == b"result"
    assert _actions(host) == [
        FileExists("in.txt", True),
        ReadFile("in.txt", ContentHash.from_content(b"input")),
        ReadFile("missing.txt", None),
        WriteFile("out/result.txt", None, ContentHash.from_content(b"result")),
    ]
    assert host.action_count == 4


def test_write_records_previous_content(make_host: Callable[..., ScriptHost], project_root: Path) -> None:
    (project_root / "a.txt").write_bytes(b"old")
    host = make_host()
    host.write_file("a.txt", b"new")
    assert _actions(host) == [
        WriteFile("a.txt", ContentHash.from_content(b"old"), ContentHash.from_content(b"new"))
    ]


def test_metadata_capabilities(make_host: Callable[..., ScriptHost], metadata_store: MetadataStore) -> None:
    host = make_host()
    assert host.get_metadata("a.md", "title") is None
    host.set_metadata("a.md", "title", "Hello")
    host.set_metadata("a.md", "title", "Hello again")
    assert metadata_store.get("a.md", "title") == "Hello again"
    assert _actions(host) == [
        GetMetadata("a.md", "title", None),
        SetMetadata("a.md", "title", None, "Hello"),
        SetMetadata("a.md", "title", "Hello", "Hello again"),
    ]


@pytest.mark.parametrize("bad_path", ["../outside.txt", "/etc/passwd", "a/../../b", ""])
def test_escaping_paths_fail_and_record_nothing(make_host: Callable[..., ScriptHost], bad_path: str) -> None:
    host = make_host()
    with pytest.raises(ValidationError) as excinfo:
        host.write_file(bad_path, b"x")
    assert excinfo.value.group_id == host.group_id
    with pytest.raises(ValidationError):
        host.read_file(bad_path)
    with pytest.raises(ValidationError):
        host.set_metadata(bad_path, "k", "v")
    assert _actions(host) == []


@pytest.mark.parametrize("reserved", [".wrought/wrought.db", ".wrought/content/ab/cd", ".wrought/config.toml", ".wrought"])
def test_store_locations_are_unreachable(make_host: Callable[..., ScriptHost], reserved: str) -> None:
    host = make_host()
    with pytest.raises(ValidationError, match="reserved"):
        host.read_file(reserved)
    with pytest.raises(ValidationError, match="reserved"):
        host.write_file(reserved, b"x")
    assert _actions(host) == []


def test_internal_namespace_is_writable(make_host: Callable[..., ScriptHost], project_root: Path) -> None:
    host = make_host()
    host.write_file(".wrought/packages/p/cache.json", b"{}")
    assert (project_root / ".wrought" / "packages" / "p" / "cache.json").read_bytes() == b"{}"


def test_symlink_escape_is_rejected(make_host: Callable[..., ScriptHost], project_root: Path, tmp_path: Path) -> None:
    outside = tmp_path / "outside"
    outside.mkdir()
    (project_root / "link").symlink_to(outside)
    host = make_host()
    with pytest.raises(ValidationError):
        host.write_file("link/x.txt", b"x")
    assert not (outside / "x.txt").exists()


def test_directory_targets_are_rejected(make_host: Callable[..., ScriptHost], project_root: Path) -> None:
    (project_root / "dir").mkdir()
    host = make_host()
    with pytest.raises(ValidationError, match="directory"):
        host.read_file("dir")
    with pytest.raises(ValidationError, match="directory"):
        host.write_file("dir", b"x")


def test_failed_write_is_marked_failed(
    make_host: Callable[..., ScriptHost], monkeypatch: pytest.MonkeyPatch
) -> None:
    host = make_host()

    def broken(fs_path: Path, content: bytes, display: str) -> None:
        raise StorageError(f"Unable to write {display!r}: disk full")

    monkeypatch.setattr("wrought.host._atomic_write", broken)
    with pytest.raises(StorageError, match="disk full") as excinfo:
        host.write_file("a.txt", b"x")
    assert excinfo.value.group_id == host.group_id

    [entry] = host.action_log.get_group(host.group_id).actions
    assert entry.state == ENTRY_FAILED
    assert host.action_count == 0


def test_set_metadata_is_confirmed(make_host: Callable[..., ScriptHost]) -> None:
    host = make_host()
    host.set_metadata("a.md", "k", "v")
    [entry] = host.action_log.get_group(host.group_id).actions
    assert entry.state == ENTRY_CONFIRMED


def test_calls_after_commit_fail(make_host: Callable[..., ScriptHost]) -> None:
    host = make_host()
    host.action_log.commit_group(host.handle)
    with pytest.raises(ValidationError, match="committed"):
        host.file_exists("a.txt")


def test_templates(make_host: Callable[..., ScriptHost]) -> None:
    host = make_host()
    set_id = host.create_template_set()
    host.add_template(set_id, "greeting", "Hello {{ name }}!")
    assert host.render_template(set_id, "greeting", {"name": "World"}) == "Hello World!"

    with pytest.raises(NotFoundError):
        host.render_template(set_id, "missing", {})
    with pytest.raises(ValidationError):
        host.render_template(set_id, "greeting", {})
    host.drop_template_set(set_id)
    with pytest.raises(NotFoundError):
        host.render_template(set_id, "greeting", {"name": "x"})
    # Templating leaves no trace in the log
    assert _actions(host) == []


def test_query_uses_llm_and_is_not_logged(make_host: Callable[..., ScriptHost], fake_llm: Any) -> None:
    host = make_host()
    assert host.query("Summarize chapter 1") == "answer to: Summarize chapter 1"
    assert fake_llm.prompts == ["Summarize chapter 1"]
    assert _actions(host) == []


def test_query_runs_off_the_calling_thread(make_host: Callable[..., ScriptHost]) -> None:
    host = make_host()
    seen: list[str] = []

    class ThreadLLM:
        def query(self, prompt: str) -> str:
            seen.append(threading.current_thread().name)
            return "ok"

    host.llm = ThreadLLM()
    host.query("p")
    assert seen and seen[0] != threading.current_thread().name


def test_query_without_llm(make_host: Callable[..., ScriptHost]) -> None:
    host = make_host()
    host.llm = None
    with pytest.raises(NotFoundError, match="No AI service"):
        host.query("p")


def test_nested_host_call_is_reentrancy_error(make_host: Callable[..., ScriptHost]) -> None:
    host = make_host()

    class NestingLLM:
        def query(self, prompt: str) -> str:
            return host.query("nested " + prompt)

    host.llm = NestingLLM()
    with pytest.raises(ReentrancyError) as excinfo:
        host.query("p")
    assert excinfo.value.group_id == host.group_id

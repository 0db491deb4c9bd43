"""
ScriptHost: the capability surface guest scripts see.

Every file and metadata capability validates its path, performs the
operation and records one microaction in the script's open group. Reads
are recorded after the read; writes and metadata updates are recorded
pending, performed, then confirmed. Templating and AI queries are
pass-through and leave no trace in the log.

Both runtime adapters call into the same ScriptHost; they differ only in
how arguments cross the guest boundary.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .action_log import ActionLog, GroupHandle
from .actions import FileExists, GetMetadata, ReadFile, SetMetadata, WriteFile
from .blocking import BlockingRunner
from .content_store import ContentStore
from .errors import NotFoundError, ReentrancyError, StorageError, ValidationError, WroughtError
from .hashing import ContentHash
from .llm import LLM
from .metadata_store import MetadataStore
from .paths import is_reserved, normalize_path, resolve_in_root
from .templating import TemplateRegistry

logger = logging.getLogger(__name__)


class ScriptHost:
    """
    Capabilities bound to one open group.

    Calls are strictly sequential: a call that arrives while another is
    still running (a guest callback re-entering the host) is rejected with
    ReentrancyError instead of interleaving entries in the group.
    """

    def __init__(
        self,
        root: Path,
        *,
        content_store: ContentStore,
        metadata_store: MetadataStore,
        action_log: ActionLog,
        handle: GroupHandle,
        llm: LLM | None = None,
        runner: BlockingRunner | None = None,
    ):
        self.root = root
        self.content_store = content_store
        self.metadata_store = metadata_store
        self.action_log = action_log
        self.handle = handle
        self.llm = llm
        self.runner = runner or BlockingRunner()
        self._owns_runner = runner is None
        self.templates = TemplateRegistry()
        self.action_count = 0
        self._busy = threading.Lock()

    @property
    def group_id(self) -> int:
        return self.handle.group_id

    def close(self) -> None:
        if self._owns_runner:
            self.runner.close()

    @contextmanager
    def _call(self, name: str) -> Iterator[None]:
        if not self._busy.acquire(blocking=False):
            raise ReentrancyError(f"{name} called while another host call is in progress", group_id=self.group_id)
        try:
            yield
        except WroughtError as e:
            raise e.with_group(self.group_id)
        finally:
            self._busy.release()

    def _resolve(self, path: str) -> tuple[str, Path]:
        if not isinstance(path, str):
            raise ValidationError(f"Path must be a string, got {type(path).__name__}")
        norm = normalize_path(path)
        if is_reserved(norm):
            raise ValidationError(f"Path {norm!r} is reserved for wrought's own stores")
        return norm, resolve_in_root(self.root, norm)

    def _append(self, action: Any) -> int:
        seq = self.action_log.append(self.handle, action)
        self.action_count += 1
        return seq

    @staticmethod
    def _check_key(key: str) -> None:
        if not isinstance(key, str) or not key:
            raise ValidationError("Metadata key must be a non-empty string")

    # -------------------------------------------------------------------------
    # File capabilities
    # -------------------------------------------------------------------------

    def file_exists(self, path: str) -> bool:
        with self._call("file_exists"):
            norm, fs_path = self._resolve(path)
            result = fs_path.exists()
            self._append(FileExists(norm, result))
            logger.debug("file_exists(%s) -> %s", norm, result)
            return result

    def read_file(self, path: str) -> bytes | None:
        """Contents of `path`, or None if it does not exist."""
        with self._call("read_file"):
            norm, fs_path = self._resolve(path)
            if fs_path.is_dir():
                raise ValidationError(f"{norm!r} is a directory")
            try:
                content: bytes | None = fs_path.read_bytes()
            except FileNotFoundError:
                content = None
            except OSError as e:
                raise StorageError(f"Unable to read {norm!r}: {e}") from e
            digest = ContentHash.from_content(content) if content is not None else None
            self._append(ReadFile(norm, digest))
            logger.debug("read_file(%s) -> %s", norm, digest)
            return content

    def write_file(self, path: str, content: bytes) -> None:
        """
        Replace the contents of `path`, creating parent directories.

        The bytes go to the content store first, so the recorded after-hash
        always names content that can be retrieved later.
        """
        with self._call("write_file"):
            norm, fs_path = self._resolve(path)
            if not isinstance(content, (bytes, bytearray)):
                raise ValidationError(f"write_file content must be bytes, got {type(content).__name__}")
            content = bytes(content)
            if fs_path.is_dir():
                raise ValidationError(f"{norm!r} is a directory")
            try:
                before = ContentHash.from_content(fs_path.read_bytes())
            except FileNotFoundError:
                before = None
            except OSError as e:
                raise StorageError(f"Unable to read {norm!r}: {e}") from e

            after = self.content_store.put(content)
            with self.action_log.record(self.handle, WriteFile(norm, before, after)):
                _atomic_write(fs_path, content, norm)
            self.action_count += 1
            logger.info("Wrote %s (%s -> %s)", norm, before, after)

    def get_metadata(self, path: str, key: str) -> str | None:
        with self._call("get_metadata"):
            norm, _ = self._resolve(path)
            self._check_key(key)
            value = self.metadata_store.get(norm, key)
            self._append(GetMetadata(norm, key, value))
            return value

    def set_metadata(self, path: str, key: str, value: str) -> None:
        with self._call("set_metadata"):
            norm, _ = self._resolve(path)
            self._check_key(key)
            if not isinstance(value, str):
                raise ValidationError(f"Metadata value must be a string, got {type(value).__name__}")
            before = self.metadata_store.get(norm, key)
            with self.action_log.record(self.handle, SetMetadata(norm, key, before, value)):
                self.metadata_store.set(norm, key, value)
            self.action_count += 1
            logger.info("Set %s[%s] = %r", norm, key, value)

    # -------------------------------------------------------------------------
    # Pass-through capabilities
    # -------------------------------------------------------------------------

    def create_template_set(self) -> int:
        with self._call("create_template_set"):
            return self.templates.create()

    def add_template(self, set_id: int, name: str, source: str) -> None:
        with self._call("add_template"):
            if not isinstance(name, str) or not isinstance(source, str):
                raise ValidationError("Template name and source must be strings")
            self.templates.get(set_id).add(name, source)

    def render_template(self, set_id: int, name: str, values: Any) -> str:
        with self._call("render_template"):
            return self.templates.get(set_id).render(name, values)

    def drop_template_set(self, set_id: int) -> None:
        with self._call("drop_template_set"):
            self.templates.drop(set_id)

    def query(self, prompt: str) -> str:
        """
        Send a prompt to the AI service.

        Runs on the blocking runner, never on the guest's stack.
        """
        with self._call("query"):
            if not isinstance(prompt, str):
                raise ValidationError(f"Prompt must be a string, got {type(prompt).__name__}")
            if self.llm is None:
                raise NotFoundError("No AI service is configured")
            return self.runner.run(self.llm.query, prompt)


def _atomic_write(fs_path: Path, content: bytes, display: str) -> None:
    try:
        fs_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=fs_path.parent, prefix=f".{fs_path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp_name, fs_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise StorageError(f"Unable to write {display!r}: {e}") from e

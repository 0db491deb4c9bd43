"""
Sandboxed-Module runtime: WebAssembly scripts via wasmtime.

The module may import only the host functions below (module "env") plus
WASI, which is linked with no preopened directories, no environment and
no arguments, so the only route to files is through the ScriptHost.
Anything else fails at instantiation.

Calling convention: strings and byte buffers are passed as (ptr, len)
pairs into the module's exported `memory`. Every capability leaves its
result in a host-side call buffer as JSON, `{"Ok": value}` or
`{"Err": message}`; the guest asks for its length with
`get_call_buffer_len()` and copies it out with `read_call_buffer(ptr, len)`.
Byte strings inside JSON are arrays of integers.

The entry point is `plugin() -> i32`; zero means success.
"""

from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Callable

from wasmtime import (
    Caller,
    Engine,
    FuncType,
    Linker,
    Memory,
    Module,
    Store,
    Trap,
    ValType,
    WasiConfig,
    WasmtimeError,
)

from ..errors import GuestRuntimeError, ValidationError, WroughtError
from ..host import ScriptHost

logger = logging.getLogger(__name__)

IMPORT_MODULE = "env"
ENTRY_POINT = "plugin"

ERROR_KIND_ERROR = 1
ERROR_KIND_PANIC = 2


class WasmRuntimeAdapter:
    """Runs one WebAssembly module against a ScriptHost."""

    def __init__(self, host: ScriptHost, engine: Engine | None = None):
        self.host = host
        self.engine = engine or Engine()
        self.parameters: dict[str, Any] = {}
        self.reported_errors: list[str] = []
        self._call_buffer: bytes | None = None

    # -------------------------------------------------------------------------
    # Memory helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _memory(caller: Caller) -> Memory:
        memory = caller.get("memory")
        if not isinstance(memory, Memory):
            raise GuestRuntimeError("Module does not export a memory")
        return memory

    def _read(self, caller: Caller, ptr: int, length: int) -> bytes:
        memory = self._memory(caller)
        if ptr < 0 or length < 0 or ptr + length > memory.data_len(caller):
            raise GuestRuntimeError(f"Out-of-bounds guest memory access at {ptr} (+{length})")
        return bytes(memory.read(caller, ptr, ptr + length))

    def _read_text(self, caller: Caller, ptr: int, length: int, what: str) -> str:
        try:
            return self._read(caller, ptr, length).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"{what} is not valid UTF-8") from e

    def _read_json(self, caller: Caller, ptr: int, length: int, what: str) -> Any:
        try:
            return json.loads(self._read_text(caller, ptr, length, what))
        except json.JSONDecodeError as e:
            raise ValidationError(f"{what} is not valid JSON: {e}") from e

    # -------------------------------------------------------------------------
    # Call buffer
    # -------------------------------------------------------------------------

    def _set_result(self, fn: Callable[[], Any]) -> None:
        """Run a capability and leave its outcome in the call buffer."""
        try:
            payload: dict[str, Any] = {"Ok": fn()}
        except GuestRuntimeError:
            raise
        except WroughtError as e:
            logger.debug("Capability failed for guest: %s", e)
            payload = {"Err": str(e)}
        self._call_buffer = json.dumps(payload).encode("utf-8")

    @property
    def last_result(self) -> Any:
        """The unread call-buffer result, decoded, or None if the guest consumed it."""
        return json.loads(self._call_buffer) if self._call_buffer is not None else None

    def get_call_buffer_len(self, caller: Caller) -> int:
        if self._call_buffer is None:
            raise GuestRuntimeError("get_call_buffer_len called with an empty call buffer")
        return len(self._call_buffer)

    def read_call_buffer(self, caller: Caller, ptr: int, length: int) -> None:
        if self._call_buffer is None:
            raise GuestRuntimeError("read_call_buffer called with an empty call buffer")
        data, self._call_buffer = self._call_buffer, None
        if len(data) > length:
            raise GuestRuntimeError(f"Call buffer of {len(data)} bytes does not fit in {length}")
        memory = self._memory(caller)
        if ptr < 0 or ptr + len(data) > memory.data_len(caller):
            raise GuestRuntimeError(f"Out-of-bounds guest memory access at {ptr} (+{len(data)})")
        memory.write(caller, data, ptr)

    def host_report_error(self, caller: Caller, kind: int, ptr: int, length: int) -> None:
        message = self._read(caller, ptr, length).decode("utf-8", errors="replace")
        label = "panic" if kind == ERROR_KIND_PANIC else "error"
        self.reported_errors.append(f"{label}: {message}")
        logger.warning("Guest reported %s: %s", label, message)

    # -------------------------------------------------------------------------
    # Capabilities
    # -------------------------------------------------------------------------

    def file_exists(self, caller: Caller, p: int, pl: int) -> None:
        self._set_result(lambda: self.host.file_exists(self._read_text(caller, p, pl, "path")))

    def read_file(self, caller: Caller, p: int, pl: int) -> None:
        def op() -> list[int] | None:
            content = self.host.read_file(self._read_text(caller, p, pl, "path"))
            return list(content) if content is not None else None

        self._set_result(op)

    def write_file(self, caller: Caller, p: int, pl: int, c: int, cl: int) -> None:
        self._set_result(
            lambda: self.host.write_file(self._read_text(caller, p, pl, "path"), self._read(caller, c, cl))
        )

    def get_metadata(self, caller: Caller, p: int, pl: int, k: int, kl: int) -> None:
        self._set_result(
            lambda: self.host.get_metadata(
                self._read_text(caller, p, pl, "path"),
                self._read_text(caller, k, kl, "metadata key"),
            )
        )

    def set_metadata(self, caller: Caller, p: int, pl: int, k: int, kl: int, v: int, vl: int) -> None:
        self._set_result(
            lambda: self.host.set_metadata(
                self._read_text(caller, p, pl, "path"),
                self._read_text(caller, k, kl, "metadata key"),
                self._read_text(caller, v, vl, "metadata value"),
            )
        )

    def ai_query(self, caller: Caller, q: int, ql: int) -> None:
        self._set_result(lambda: self.host.query(self._read_text(caller, q, ql, "prompt")))

    def init_template(self, caller: Caller) -> None:
        self._set_result(self.host.create_template_set)

    def drop_template(self, caller: Caller, set_id: int) -> None:
        self._set_result(lambda: self.host.drop_template_set(set_id))

    def add_templates(self, caller: Caller, set_id: int, p: int, pl: int) -> None:
        def op() -> None:
            pairs = self._read_json(caller, p, pl, "template list")
            if not isinstance(pairs, list) or not all(
                isinstance(pair, list) and len(pair) == 2 for pair in pairs
            ):
                raise ValidationError("Templates must be a JSON list of [name, source] pairs")
            for name, source in pairs:
                self.host.add_template(set_id, name, source)

        self._set_result(op)

    def render_template(self, caller: Caller, set_id: int, k: int, kl: int, c: int, cl: int) -> None:
        self._set_result(
            lambda: self.host.render_template(
                set_id,
                self._read_text(caller, k, kl, "template name"),
                self._read_json(caller, c, cl, "template context"),
            )
        )

    def get_parameters(self, caller: Caller) -> None:
        self._set_result(lambda: dict(self.parameters))

    # -------------------------------------------------------------------------
    # Linking and execution
    # -------------------------------------------------------------------------

    def _imports(self) -> dict[str, tuple[Callable[..., Any], int, bool]]:
        # name -> (callback, number of i32 params, returns i32)
        return {
            "wrought_file_exists": (self.file_exists, 2, False),
            "wrought_read_file": (self.read_file, 2, False),
            "wrought_write_file": (self.write_file, 4, False),
            "wrought_get_metadata": (self.get_metadata, 4, False),
            "wrought_set_metadata": (self.set_metadata, 6, False),
            "wrought_ai_query": (self.ai_query, 2, False),
            "wrought_init_template": (self.init_template, 0, False),
            "wrought_drop_template": (self.drop_template, 1, False),
            "wrought_add_templates": (self.add_templates, 3, False),
            "wrought_render_template": (self.render_template, 5, False),
            "wrought_get_parameters": (self.get_parameters, 0, False),
            "get_call_buffer_len": (self.get_call_buffer_len, 0, True),
            "read_call_buffer": (self.read_call_buffer, 2, False),
            "host_report_error": (self.host_report_error, 3, False),
        }

    def _linker(self) -> Linker:
        linker = Linker(self.engine)
        linker.define_wasi()
        for name, (callback, n_params, returns) in self._imports().items():
            ty = FuncType([ValType.i32()] * n_params, [ValType.i32()] if returns else [])
            linker.define_func(IMPORT_MODULE, name, ty, callback, access_caller=True)
        return linker

    def _load_module(self, script_path: Path) -> Module:
        try:
            if script_path.suffix == ".wat":
                return Module(self.engine, script_path.read_text(encoding="utf-8"))
            return Module(self.engine, script_path.read_bytes())
        except (OSError, UnicodeDecodeError, WasmtimeError) as e:
            raise GuestRuntimeError(f"Unable to load module {script_path}: {e}", group_id=self.host.group_id) from e

    def run_module(self, module: Module, name: str = "module") -> str:
        """
        Instantiate and run a compiled module. Returns captured stdout.

        Raises:
            GuestRuntimeError: on link failure, trap, or a non-zero return
        """
        with tempfile.TemporaryDirectory(prefix="wrought-wasm-") as tmp:
            stdout_path = Path(tmp) / "stdout"
            stderr_path = Path(tmp) / "stderr"
            wasi = WasiConfig()
            wasi.stdout_file = str(stdout_path)
            wasi.stderr_file = str(stderr_path)

            store = Store(self.engine)
            store.set_wasi(wasi)
            try:
                instance = self._linker().instantiate(store, module)
            except (WasmtimeError, Trap) as e:
                raise GuestRuntimeError(f"Unable to instantiate {name}: {e}", group_id=self.host.group_id) from e

            entry = instance.exports(store).get(ENTRY_POINT)
            if entry is None:
                raise GuestRuntimeError(f"{name} does not export {ENTRY_POINT}()", group_id=self.host.group_id)

            try:
                code = entry(store)
            except (Trap, WasmtimeError) as e:
                raise GuestRuntimeError(self._failure(name, f"trapped: {e}"), group_id=self.host.group_id) from e
            except WroughtError as e:
                raise GuestRuntimeError(self._failure(name, e.message), group_id=self.host.group_id) from e
            except Exception as e:
                raise GuestRuntimeError(
                    self._failure(name, f"failed: {type(e).__name__}: {e}"), group_id=self.host.group_id
                ) from e
            finally:
                stdout = _read_captured(stdout_path)
                for line in _read_captured(stderr_path).splitlines():
                    logger.warning("[wasm stderr] %s", line)

        for line in stdout.splitlines():
            logger.info("[wasm] %s", line)
        if code != 0:
            raise GuestRuntimeError(self._failure(name, f"returned {code}"), group_id=self.host.group_id)
        return stdout

    def _failure(self, name: str, what: str) -> str:
        message = f"{name} {what}"
        if self.reported_errors:
            message += "; " + "; ".join(self.reported_errors)
        return message

    def run(self, script_path: Path, parameters: dict[str, Any] | None = None) -> str:
        self.parameters = dict(parameters or {})
        module = self._load_module(script_path)
        logger.debug("Running module %s", script_path)
        return self.run_module(module, script_path.name)


def _read_captured(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return ""

"""
Runtime adapters.

Two adapters present the same ScriptHost surface to guest code: an
interpreted one (Lua) and a sandboxed compiled-module one (WebAssembly).
They are selected by tag, not by subclassing; each adapter only differs
in argument marshaling and confinement.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePath
from typing import Any

from ..errors import ValidationError
from ..host import ScriptHost
from .lua import LuaRuntimeAdapter
from .wasm import WasmRuntimeAdapter


class RuntimeKind(str, Enum):
    INTERPRETED = "interpreted"
    SANDBOXED_MODULE = "sandboxed_module"

    @classmethod
    def for_script(cls, path: str | PurePath) -> RuntimeKind:
        """Pick the runtime from the script's extension."""
        suffix = PurePath(path).suffix.lower()
        if suffix in INTERPRETED_SUFFIXES:
            return cls.INTERPRETED
        if suffix in MODULE_SUFFIXES:
            return cls.SANDBOXED_MODULE
        raise ValidationError(f"Unsupported script type {suffix or '(none)'!r} for {path}")


INTERPRETED_SUFFIXES = frozenset({".lua", ".luau"})
MODULE_SUFFIXES = frozenset({".wasm", ".wat"})


def run_script(kind: RuntimeKind, host: ScriptHost, script_path: Path, parameters: dict[str, Any] | None = None) -> str:
    """
    Run one script against `host` with the adapter for `kind`.

    Returns:
        Text the script printed
    """
    if kind is RuntimeKind.INTERPRETED:
        return LuaRuntimeAdapter(host).run(script_path, parameters)
    if kind is RuntimeKind.SANDBOXED_MODULE:
        return WasmRuntimeAdapter(host).run(script_path, parameters)
    raise ValidationError(f"Unknown runtime {kind!r}")


__all__ = [
    "RuntimeKind",
    "LuaRuntimeAdapter",
    "WasmRuntimeAdapter",
    "run_script",
]

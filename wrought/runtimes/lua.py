"""
Interpreted runtime: Lua scripts via lupa.

The script runs in an in-process Lua state whose globals are the host
capabilities. Ambient access is removed (os, io, module loading, the
Python bridge) and Python attribute access from Lua is denied, so the
only way out of the sandbox is through the ScriptHost.

The runtime is created with encoding=None: Lua strings arrive as bytes,
which keeps file contents binary-safe. Text arguments (paths, keys,
values, template sources) are decoded as UTF-8 here.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import lupa

from ..errors import GuestRuntimeError, ValidationError, WroughtError
from ..host import ScriptHost

logger = logging.getLogger(__name__)

# Globals removed before the script runs
REMOVED_GLOBALS = (
    "os",
    "io",
    "require",
    "dofile",
    "loadfile",
    "load",
    "loadstring",
    "package",
    "debug",
    "collectgarbage",
    "python",
)

MAX_TABLE_DEPTH = 64

TEMPLATE_PRELUDE = """
local create_set, add_template, render_template = ...
local Template = {}
Template.__index = Template

function Template:add_template(name, source)
    add_template(self.id, name, source)
end

function Template:render_template(name, values)
    return render_template(self.id, name, values)
end

function wrought_template()
    return setmetatable({id = create_set()}, Template)
end
"""


def _deny_attributes(obj: Any, attr_name: Any, is_setting: bool) -> Any:
    raise AttributeError("attribute access is not available to scripts")


def _text(value: Any, what: str) -> str:
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"{what} is not valid UTF-8") from e
    if isinstance(value, str):
        return value
    raise ValidationError(f"{what} must be a string, got {_lua_type_name(value)}")


def _lua_type_name(value: Any) -> str:
    if value is None:
        return "nil"
    return lupa.lua_type(value) or type(value).__name__


def lua_to_python(value: Any, depth: int = 0) -> Any:
    """
    Convert a Lua value to plain Python data.

    Tables whose keys are exactly 1..n become lists, other tables become
    dicts with string keys. An empty table becomes an empty dict.
    """
    if depth > MAX_TABLE_DEPTH:
        raise ValidationError("Table nesting is too deep (cyclic table?)")
    if isinstance(value, bytes):
        return _text(value, "string value")
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if lupa.lua_type(value) != "table":
        raise ValidationError(f"Cannot convert Lua {_lua_type_name(value)} to data")

    items = list(value.items())
    keys = [k for k, _ in items]
    if keys and all(isinstance(k, int) and not isinstance(k, bool) for k in keys):
        if sorted(keys) == list(range(1, len(keys) + 1)):
            return [lua_to_python(v, depth + 1) for _, v in sorted(items, key=lambda kv: kv[0])]

    result = {}
    for k, v in items:
        key = _text(k, "table key") if isinstance(k, bytes) else str(k)
        result[key] = lua_to_python(v, depth + 1)
    return result


class LuaRuntimeAdapter:
    """Runs one Lua script against a ScriptHost."""

    def __init__(self, host: ScriptHost):
        self.host = host
        self.output: list[str] = []
        self.lua = lupa.LuaRuntime(
            encoding=None,
            register_eval=False,
            register_builtins=False,
            attribute_filter=_deny_attributes,
        )
        self._install_globals()

    def _install_globals(self) -> None:
        g = self.lua.globals()
        for name in REMOVED_GLOBALS:
            g[name.encode("ascii")] = None

        host = self.host

        def file_exists(path: Any = None) -> bool:
            return host.file_exists(_text(path, "path"))

        def read_file(path: Any = None) -> bytes | None:
            return host.read_file(_text(path, "path"))

        def write_file(path: Any = None, content: Any = None) -> None:
            if isinstance(content, str):
                content = content.encode("utf-8")
            if not isinstance(content, bytes):
                raise ValidationError(f"write_file content must be a string, got {_lua_type_name(content)}")
            host.write_file(_text(path, "path"), content)

        def get_metadata(path: Any = None, key: Any = None) -> bytes | None:
            return _lua_string(host.get_metadata(_text(path, "path"), _text(key, "metadata key")))

        def set_metadata(path: Any = None, key: Any = None, value: Any = None) -> None:
            host.set_metadata(_text(path, "path"), _text(key, "metadata key"), _text(value, "metadata value"))

        def ai_query(prompt: Any = None) -> bytes | None:
            return _lua_string(host.query(_text(prompt, "prompt")))

        def create_set() -> int:
            return host.create_template_set()

        def add_template(set_id: int, name: Any = None, source: Any = None) -> None:
            host.add_template(int(set_id), _text(name, "template name"), _text(source, "template source"))

        def render_template(set_id: int, name: Any = None, values: Any = None) -> bytes | None:
            return _lua_string(host.render_template(int(set_id), _text(name, "template name"), lua_to_python(values)))

        def print_(*args: Any) -> None:
            line = "\t".join(
                a.decode("utf-8", errors="replace") if isinstance(a, bytes) else _print_value(a) for a in args
            )
            self.output.append(line)
            logger.info("[lua] %s", line)

        g[b"file_exists"] = file_exists
        g[b"read_file"] = read_file
        g[b"write_file"] = write_file
        g[b"get_metadata"] = get_metadata
        g[b"set_metadata"] = set_metadata
        g[b"ai_query"] = ai_query
        g[b"print"] = print_
        self.lua.execute(TEMPLATE_PRELUDE, create_set, add_template, render_template)

    def set_parameters(self, parameters: dict[str, Any]) -> None:
        """Expose run parameters to the script as the `params` table."""
        self.lua.globals()[b"params"] = self.lua.table_from(
            {_lua_string(str(k)): _lua_string(str(v)) for k, v in parameters.items()}
        )

    def run_source(self, source: str, chunk_name: str = "script") -> str:
        """
        Execute Lua source. Returns everything the script printed.

        Raises:
            GuestRuntimeError: on a Lua error or an uncaught host error
        """
        try:
            self.lua.execute(source)
        except lupa.LuaError as e:
            raise GuestRuntimeError(f"Lua error in {chunk_name}: {e}", group_id=self.host.group_id) from e
        except WroughtError as e:
            raise GuestRuntimeError(f"{chunk_name} failed: {e.message}", group_id=self.host.group_id) from e
        except Exception as e:
            raise GuestRuntimeError(
                f"{chunk_name} failed: {type(e).__name__}: {e}", group_id=self.host.group_id
            ) from e
        return "\n".join(self.output)

    def run(self, script_path: Path, parameters: dict[str, Any] | None = None) -> str:
        try:
            source = script_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise GuestRuntimeError(f"Unable to load script {script_path}: {e}", group_id=self.host.group_id) from e
        self.set_parameters(parameters or {})
        logger.debug("Running Lua script %s", script_path)
        return self.run_source(source, script_path.name)


def _print_value(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, str)):
        return str(value)
    return f"<{_lua_type_name(value)}>"


def _lua_string(value: str | None) -> bytes | None:
    # With encoding=None, only bytes become Lua strings
    return value.encode("utf-8") if value is not None else None

"""
Project configuration (.wrought/config.toml).

Every setting has a default, so a project without a config file works.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ValidationError

CONFIG_FILENAME = "config.toml"


@dataclass
class LLMConfig:
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = "env:OPENAI_API_KEY"  # secret reference, never the key itself
    timeout: float = 90.0


@dataclass
class StatusConfig:
    include_internal: bool = False


@dataclass
class WroughtConfig:
    llm: LLMConfig = field(default_factory=LLMConfig)
    status: StatusConfig = field(default_factory=StatusConfig)
    source: Path | None = None


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _typed(section: str, data: dict[str, Any], key: str, default: Any, kind: type | tuple[type, ...]) -> Any:
    if key not in data:
        return default
    value = data[key]
    # bool is an int subclass; don't accept it for numeric settings
    if not isinstance(value, kind) or (isinstance(value, bool) and kind is not bool):
        raise ValidationError(f"[{section}] {key} has the wrong type ({type(value).__name__})")
    return value


def load_config(internal_dir: Path) -> WroughtConfig:
    """
    Load configuration from `<internal_dir>/config.toml`.

    Raises:
        ValidationError: if the file is not valid TOML or a value has the wrong type
    """
    path = internal_dir / CONFIG_FILENAME
    if not path.exists():
        return WroughtConfig()

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"Invalid config file {path}: {e}") from e

    llm_raw = _coerce_dict(data.get("llm"))
    defaults = LLMConfig()
    llm = LLMConfig(
        model=_typed("llm", llm_raw, "model", defaults.model, str),
        base_url=_typed("llm", llm_raw, "base_url", defaults.base_url, str).rstrip("/"),
        api_key=_typed("llm", llm_raw, "api_key", defaults.api_key, str),
        timeout=float(_typed("llm", llm_raw, "timeout", defaults.timeout, (int, float))),
    )

    status_raw = _coerce_dict(data.get("status"))
    status = StatusConfig(
        include_internal=_typed("status", status_raw, "include_internal", False, bool),
    )
    return WroughtConfig(llm=llm, status=status, source=path)

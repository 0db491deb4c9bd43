"""
Secrets reference provider.

Secrets are configured as references (e.g., "env:OPENAI_API_KEY"), not raw
values, so config files can be shared and logs never contain them.

The reference format is: "<provider>:<key>"
- env:VAR_NAME - environment variable
- file:PATH - first line of a file (relative paths are taken from the
  directory holding config.toml)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol


class SecretsProvider(Protocol):
    """Protocol for resolving secret references to values."""

    def get(self, ref: str) -> str | None:
        """
        Resolve a secret reference to its value.

        Returns:
            The secret value, or None if not found.
        """
        ...

    def supports(self, ref: str) -> bool:
        """Check if this provider can handle the given reference."""
        ...


class EnvSecretsProvider:
    """
    Resolve secrets from environment variables.

    Example: "env:OPENAI_API_KEY" resolves to os.environ["OPENAI_API_KEY"]
    """

    PREFIX = "env:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        value = os.environ.get(ref[len(self.PREFIX) :])
        return value or None


class FileSecretsProvider:
    """Resolve secrets from key files: "file:~/.config/openai.key"."""

    PREFIX = "file:"

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        path = Path(ref[len(self.PREFIX) :]).expanduser()
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None
        if not lines:
            return None
        return lines[0].strip() or None


class CompositeSecretsProvider:
    """
    Combine multiple secrets providers.

    Tries each provider in order until one returns a value.
    """

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider(), FileSecretsProvider()]

    def supports(self, ref: str) -> bool:
        return any(p.supports(ref) for p in self.providers)

    def get(self, ref: str) -> str | None:
        for provider in self.providers:
            if provider.supports(ref):
                value = provider.get(ref)
                if value is not None:
                    return value
        return None

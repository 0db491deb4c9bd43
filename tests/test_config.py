"""Tests for configuration and secret references."""

from __future__ import annotations

from pathlib import Path

import pytest

from wrought.config import load_config
from wrought.errors import ValidationError
from wrought.secrets import CompositeSecretsProvider, EnvSecretsProvider, FileSecretsProvider


def test_defaults_without_file(internal_dir: Path) -> None:
    config = load_config(internal_dir)
    assert config.llm.model == "gpt-4o-mini"
    assert config.llm.api_key == "env:OPENAI_API_KEY"
    assert config.status.include_internal is False
    assert config.source is None


def test_values_from_file(internal_dir: Path) -> None:
    (internal_dir / "config.toml").write_text(
        '[llm]\nmodel = "local-model"\nbase_url = "http://localhost:8080/v1/"\ntimeout = 5\n'
        "[status]\ninclude_internal = true\n"
    )
    config = load_config(internal_dir)
    assert config.llm.model == "local-model"
    assert config.llm.base_url == "http://localhost:8080/v1"
    assert config.llm.timeout == 5.0
    assert config.status.include_internal is True
    assert config.source == internal_dir / "config.toml"


def test_invalid_toml(internal_dir: Path) -> None:
    (internal_dir / "config.toml").write_text("[llm\nmodel = ")
    with pytest.raises(ValidationError, match="Invalid config file"):
        load_config(internal_dir)


def test_wrong_types(internal_dir: Path) -> None:
    (internal_dir / "config.toml").write_text("[llm]\ntimeout = true\n")
    with pytest.raises(ValidationError, match="timeout"):
        load_config(internal_dir)

    (internal_dir / "config.toml").write_text('[status]\ninclude_internal = "yes"\n')
    with pytest.raises(ValidationError, match="include_internal"):
        load_config(internal_dir)


def test_env_secret(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WROUGHT_TEST_KEY", "sk-test")
    provider = EnvSecretsProvider()
    assert provider.get("env:WROUGHT_TEST_KEY") == "sk-test"
    assert provider.get("env:WROUGHT_UNSET_KEY") is None
    assert provider.get("file:whatever") is None


def test_file_secret_relative_to_base(tmp_path: Path) -> None:
    (tmp_path / "key.txt").write_text("sk-file\nignored\n")
    provider = FileSecretsProvider(tmp_path)
    assert provider.get("file:key.txt") == "sk-file"
    assert provider.get("file:missing.txt") is None


def test_composite_tries_providers_in_order(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("WROUGHT_UNSET_KEY", raising=False)
    (tmp_path / "key.txt").write_text("sk-file")
    composite = CompositeSecretsProvider([EnvSecretsProvider(), FileSecretsProvider(tmp_path)])
    assert composite.supports("env:X")
    assert not composite.supports("vault:X")
    assert composite.get("env:WROUGHT_UNSET_KEY") is None
    assert composite.get("file:key.txt") == "sk-file"

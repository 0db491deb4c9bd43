"""
AI query capability.

Scripts send a prompt and get text back. Responses are cached on disk by
prompt fingerprint, so rerunning a script replays the same answer instead
of asking again. Responses are not recorded in the action log; what the
script writes with them is.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import httpx

from .config import LLMConfig
from .errors import NotFoundError, ServiceError, StorageError
from .secrets import CompositeSecretsProvider, EnvSecretsProvider, FileSecretsProvider, SecretsProvider

logger = logging.getLogger(__name__)


class LLM(Protocol):
    """Anything that can answer a prompt."""

    def query(self, prompt: str) -> str:
        ...


class OpenAILLM:
    """
    Client for OpenAI-compatible chat completion endpoints.

    Synchronous on purpose: it is only ever called from the blocking
    runner's worker thread.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str,
        timeout: float = 90.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
            transport=transport,
        )

    def query(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": prompt}],
        }
        url = f"{self.base_url}/chat/completions"
        logger.info("Querying %s (%s, %d chars)", url, self.model, len(prompt))
        try:
            response = self._client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except httpx.TimeoutException as e:
            raise ServiceError(f"AI query timed out after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise ServiceError(f"AI query failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ServiceError(f"AI query failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ServiceError(f"AI query returned an unexpected response: {e}") from e
        if not isinstance(content, str):
            raise ServiceError("AI query returned no text content")
        logger.info("AI response: %d chars", len(content))
        return content

    def close(self) -> None:
        self._client.close()


class UnavailableLLM:
    """Stands in when no client can be configured; every query fails."""

    def __init__(self, error_message: str):
        self.error_message = error_message

    def query(self, prompt: str) -> str:
        raise NotFoundError(f"Unable to access AI service: {self.error_message}")


def prompt_fingerprint(prompt: str, model: str) -> str:
    """Stable cache key for a prompt sent to a given model."""
    canonical = json.dumps({"model": model, "prompt": prompt}, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CachedLLM:
    """
    Disk cache in front of another LLM.

        .wrought/llm_cache/<fingerprint>.json
    """

    def __init__(self, inner: LLM, cache_dir: Path, *, model: str):
        self.inner = inner
        self.cache_dir = cache_dir
        self.model = model

    def _cache_path(self, fingerprint: str) -> Path:
        return self.cache_dir / f"{fingerprint}.json"

    def query(self, prompt: str) -> str:
        fingerprint = prompt_fingerprint(prompt, self.model)
        cache_path = self._cache_path(fingerprint)
        if cache_path.exists():
            try:
                cached = json.loads(cache_path.read_text(encoding="utf-8"))
                logger.debug("AI cache hit %s", fingerprint[:12])
                return str(cached["response"])
            except (OSError, json.JSONDecodeError, KeyError) as e:
                logger.warning("Ignoring unreadable AI cache entry %s: %s", cache_path.name, e)

        response = self.inner.query(prompt)
        self._store(cache_path, prompt, response)
        return response

    def close(self) -> None:
        close_inner = getattr(self.inner, "close", None)
        if callable(close_inner):
            close_inner()

    def _store(self, cache_path: Path, prompt: str, response: str) -> None:
        record = {
            "model": self.model,
            "prompt": prompt,
            "response": response,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=cache_path.parent, prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record, f, indent=2)
                os.replace(tmp_name, cache_path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Unable to cache AI response: {e}") from e


def create_llm(config: LLMConfig, internal_dir: Path, secrets: SecretsProvider | None = None) -> LLM:
    """Build the cached AI client for a project, or an UnavailableLLM if no key resolves."""
    secrets = secrets or CompositeSecretsProvider([EnvSecretsProvider(), FileSecretsProvider(internal_dir)])
    api_key = secrets.get(config.api_key)
    if api_key is None:
        inner: LLM = UnavailableLLM(f"no API key found for reference {config.api_key!r}")
    else:
        inner = OpenAILLM(api_key, model=config.model, base_url=config.base_url, timeout=config.timeout)
    return CachedLLM(inner, internal_dir / "llm_cache", model=config.model)

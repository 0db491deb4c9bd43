"""
Template sets for scripts.

A template set is a named collection of Jinja templates. Scripts create a
set, register templates on it, and render them against a data value.
Rendering has no side effects and is not recorded in the action log; only
what the script later writes is.
"""

from __future__ import annotations

import itertools
from typing import Any

import jinja2

from .errors import NotFoundError, ValidationError


class TemplateSet:
    """One independent collection of named templates."""

    def __init__(self) -> None:
        self._sources: dict[str, str] = {}
        self._env = jinja2.Environment(
            loader=jinja2.DictLoader(self._sources),
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def add(self, name: str, source: str) -> None:
        """Register (or replace) a template. Syntax errors are reported here."""
        try:
            self._env.parse(source)
        except jinja2.TemplateSyntaxError as e:
            raise ValidationError(f"Template {name!r} has a syntax error on line {e.lineno}: {e.message}") from e
        self._sources[name] = source

    def render(self, name: str, values: Any) -> str:
        if name not in self._sources:
            raise NotFoundError(f"Unknown template {name!r}")
        if values is None:
            values = {}
        if not isinstance(values, dict):
            raise ValidationError(f"Template values must be a mapping, got {type(values).__name__}")
        try:
            return self._env.get_template(name).render(values)
        except jinja2.TemplateError as e:
            raise ValidationError(f"Rendering template {name!r} failed: {e}") from e
        except Exception as e:
            # Errors raised by template expressions themselves, e.g. 1 / 0
            raise ValidationError(f"Rendering template {name!r} failed: {type(e).__name__}: {e}") from e


class TemplateRegistry:
    """Template sets owned by one script execution, addressed by integer id."""

    def __init__(self) -> None:
        self._sets: dict[int, TemplateSet] = {}
        self._ids = itertools.count()

    def create(self) -> int:
        set_id = next(self._ids)
        self._sets[set_id] = TemplateSet()
        return set_id

    def get(self, set_id: int) -> TemplateSet:
        try:
            return self._sets[set_id]
        except KeyError:
            raise NotFoundError(f"Unknown template set {set_id}") from None

    def drop(self, set_id: int) -> None:
        if self._sets.pop(set_id, None) is None:
            raise NotFoundError(f"Unknown template set {set_id}")

    def __len__(self) -> int:
        return len(self._sets)

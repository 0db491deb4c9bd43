"""Tests for template sets."""

from __future__ import annotations

import pytest

from wrought.errors import NotFoundError, ValidationError
from wrought.templating import TemplateRegistry, TemplateSet


def test_render_named_template() -> None:
    ts = TemplateSet()
    ts.add("page", "# {{ title }}\n{% for p in paragraphs %}{{ p }}\n{% endfor %}")
    out = ts.render("page", {"title": "Intro", "paragraphs": ["a", "b"]})
    assert out == "# Intro\na\nb\n"


def test_templates_can_include_each_other() -> None:
    ts = TemplateSet()
    ts.add("header", "== {{ title }} ==")
    ts.add("page", "{% include 'header' %}\n{{ body }}")
    assert ts.render("page", {"title": "T", "body": "B"}) == "== T ==\nB"


def test_replacing_a_template() -> None:
    ts = TemplateSet()
    ts.add("t", "one")
    assert ts.render("t", {}) == "one"
    ts.add("t", "two")
    assert ts.render("t", {}) == "two"


def test_syntax_error_reported_on_add() -> None:
    ts = TemplateSet()
    with pytest.raises(ValidationError, match="syntax error"):
        ts.add("bad", "{% for x in %}")
    with pytest.raises(NotFoundError):
        ts.render("bad", {})


def test_unknown_template_and_missing_values() -> None:
    ts = TemplateSet()
    ts.add("t", "{{ missing }}")
    with pytest.raises(NotFoundError):
        ts.render("nope", {})
    with pytest.raises(ValidationError, match="Rendering template 't' failed"):
        ts.render("t", {})
    with pytest.raises(ValidationError, match="mapping"):
        ts.render("t", [1, 2])


def test_no_html_escaping() -> None:
    ts = TemplateSet()
    ts.add("t", "{{ v }}")
    assert ts.render("t", {"v": "<b>&</b>"}) == "<b>&</b>"


def test_registry_sets_are_independent() -> None:
    reg = TemplateRegistry()
    a = reg.create()
    b = reg.create()
    assert a != b
    reg.get(a).add("t", "A")
    with pytest.raises(NotFoundError):
        reg.get(b).render("t", {})

    reg.drop(a)
    assert len(reg) == 1
    with pytest.raises(NotFoundError):
        reg.get(a)
    with pytest.raises(NotFoundError):
        reg.drop(a)


def test_expression_errors_are_validation_errors() -> None:
    ts = TemplateSet()
    ts.add("ratio", "{{ 1 / n }}")
    ts.add("concat", "{{ 'a' + n }}")
    assert ts.render("ratio", {"n": 4}) == "0.25"
    with pytest.raises(ValidationError, match="ZeroDivisionError"):
        ts.render("ratio", {"n": 0})
    with pytest.raises(ValidationError, match="TypeError"):
        ts.render("concat", {"n": 1})

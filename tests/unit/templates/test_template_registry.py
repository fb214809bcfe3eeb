"""Tests for the template registry."""

import json

import pytest

from reporting.errors import ArgumentError
from reporting.templates import TaskTemplate, TemplateRegistry

TEMPLATE = {
    "fetch_options": {"index": "logs-*"},
    "layouts": [
        {"figures": [{"type": "metric", "data": "total"}]},
        {"figures": [{"type": "bar", "data": "histogram"}]},
    ],
}


def insert(at: int, text: str) -> dict:
    return {"at": at, "fetcher": "none", "data": {}, "figures": [{"type": "md", "data": text}]}


@pytest.fixture
def registry():
    registry = TemplateRegistry()
    registry.register("custom", TEMPLATE)
    return registry


class TestRegister:
    def test_bundled_templates(self):
        registry = TemplateRegistry.from_directory()
        assert registry.names == ["basic", "platforms"]
        assert "basic" in registry
        assert len(registry.get("basic").layouts) == 2

    def test_duplicate_name(self, registry):
        with pytest.raises(ArgumentError, match="already registered"):
            registry.register("custom", TEMPLATE)

    def test_invalid_definition(self, registry):
        with pytest.raises(ArgumentError, match='Template "broken" is not valid'):
            registry.register("broken", {"layouts": []})
        assert "broken" not in registry

    def test_from_directory_invalid_json(self, tmp_path):
        (tmp_path / "bad.json").write_text("{", encoding="utf-8")
        with pytest.raises(ArgumentError, match="not valid JSON"):
            TemplateRegistry.from_directory(tmp_path)

    def test_from_directory(self, tmp_path):
        (tmp_path / "mine.json").write_text(json.dumps(TEMPLATE), encoding="utf-8")
        assert TemplateRegistry.from_directory(tmp_path).names == ["mine"]

    def test_get_returns_a_copy(self, registry):
        registry.get("custom").layouts.pop()
        assert len(registry.get("custom").layouts) == 2

    def test_unknown_template(self, registry):
        with pytest.raises(ArgumentError, match='Template "nope" not found'):
            registry.get("nope")


class TestResolve:
    def test_without_inserts(self, registry):
        resolved = registry.resolve({"extends": "custom", "fetch_options": {"index": "other"}})

        assert resolved.name == "custom"
        assert len(resolved.layouts) == 2
        assert resolved.fetch_options == {"index": "logs-*"}
        assert resolved.task_fetch_options == {"index": "other"}

    def test_inserts_spliced_in_order(self, registry):
        resolved = registry.resolve(
            TaskTemplate(extends="custom", inserts=[insert(0, "first"), insert(1, "second")])
        )

        texts = [layout.figures[0].data for layout in resolved.layouts]
        assert texts == ["first", "second", "total", "histogram"]
        assert resolved.layouts[0].fetcher == "none"

    def test_insert_past_the_end_appended(self, registry):
        resolved = registry.resolve({"extends": "custom", "inserts": [insert(10, "last")]})
        assert resolved.layouts[-1].figures[0].data == "last"

    def test_unknown_base(self, registry):
        with pytest.raises(ArgumentError, match="not found"):
            registry.resolve({"extends": "nope"})

    def test_path_in_name_rejected(self, registry):
        with pytest.raises(ArgumentError, match="template is not valid"):
            registry.resolve({"extends": "../custom"})

    def test_unknown_property_rejected(self, registry):
        with pytest.raises(ArgumentError):
            registry.resolve({"extends": "custom", "layouts": []})

    def test_base_untouched(self, registry):
        registry.resolve({"extends": "custom", "inserts": [insert(0, "x")]})
        assert len(registry.get("custom").layouts) == 2

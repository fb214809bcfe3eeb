"""Tests for building figures from template definitions."""

import pytest

from reporting.compositor.figures import (
    ChartFigure,
    MarkdownFigure,
    MetricFigure,
    TableFigure,
    build_figure,
    layout_producer,
)
from reporting.errors import ArgumentError
from reporting.templates.models import FigureDefinition, LayoutDefinition


class TestBuildFigure:
    def test_chart_uses_named_data(self):
        definition = FigureDefinition(type="bar", data="histogram", params={"title": "t"})
        figure = build_figure(definition, {"histogram": [{"key": 1, "doc_count": 2}]})

        assert isinstance(figure, ChartFigure)
        assert figure.mark == "bar"
        assert figure.data == [{"key": 1, "doc_count": 2}]
        assert figure.params == {"title": "t"}

    def test_missing_data_key(self):
        definition = FigureDefinition(type="arc", data="platforms")
        with pytest.raises(ArgumentError, match='Data "platforms" not found for figure "arc"'):
            build_figure(definition, {"histogram": []})

    def test_layout_data_list_used_when_no_key(self):
        figure = build_figure(FigureDefinition(type="table"), [{"a": 1}, {"a": 2}])
        assert isinstance(figure, TableFigure)
        assert len(figure.data) == 2

    def test_no_data_at_all(self):
        with pytest.raises(ArgumentError, match="has no data"):
            build_figure(FigureDefinition(type="line"), None)

    def test_inline_data(self):
        figure = build_figure(FigureDefinition(type="table", data=[1, 2]), None)
        assert figure.data == [{"value": 1}, {"value": 2}]

    def test_metric_gets_label(self):
        definition = FigureDefinition(type="metric", data="total", params={"label": "Consultations"})
        figure = build_figure(definition, {"total": 120})

        assert isinstance(figure, MetricFigure)
        assert figure.data == [{"label": "Consultations", "value": 120}]

    def test_markdown_text(self):
        definition = FigureDefinition(type="md", data="# Titre", slots=[0, 1])
        figure = build_figure(definition, None)

        assert isinstance(figure, MarkdownFigure)
        assert figure.text == "# Titre"
        assert figure.slots == [0, 1]


def test_layout_producer_builds_every_figure():
    layout = LayoutDefinition(
        data={"a": [{"key": "x", "doc_count": 1}], "b": 3},
        figures=[
            FigureDefinition(type="arc", data="a"),
            FigureDefinition(type="metric", data="b"),
        ],
    )
    figures = layout_producer(layout)(None)

    assert [type(f) for f in figures] == [ChartFigure, MetricFigure]

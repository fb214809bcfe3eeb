"""Figures: the typed visual units placed into slots."""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from reporting.errors import ArgumentError
from reporting.templates.models import FigureDefinition, LayoutDefinition

TABLE = "table"
MARKDOWN = "md"
METRIC = "metric"


@dataclass
class ChartFigure:
    """A Vega-Lite chart; ``mark`` is the Vega-Lite mark type."""

    mark: str
    data: list[dict[str, Any]]
    params: dict[str, Any] = field(default_factory=dict)
    slots: Optional[list[int]] = None


@dataclass
class TableFigure:
    data: list[dict[str, Any]]
    params: dict[str, Any] = field(default_factory=dict)
    slots: Optional[list[int]] = None


@dataclass
class MarkdownFigure:
    text: str
    slots: Optional[list[int]] = None


@dataclass
class MetricFigure:
    """Key figures displayed as big labelled numbers."""

    data: list[dict[str, Any]]
    params: dict[str, Any] = field(default_factory=dict)
    slots: Optional[list[int]] = None


Figure = Union[ChartFigure, TableFigure, MarkdownFigure, MetricFigure]

# Invoked with the render context, returns the figures of one page
PageProducer = Callable[[Any], Union[Figure, list[Figure]]]


def _resolve_data(definition: FigureDefinition, layout_data: Any) -> Any:
    """Inline data, or the entry of the layout's data named by ``data``."""
    if isinstance(definition.data, str):
        if not isinstance(layout_data, dict) or definition.data not in layout_data:
            raise ArgumentError(
                f'Data "{definition.data}" not found for figure "{definition.type}"'
            )
        return layout_data[definition.data]
    if definition.data is not None:
        return definition.data
    if isinstance(layout_data, list):
        return layout_data
    raise ArgumentError(f'Figure "{definition.type}" has no data')


def _as_rows(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, list):
        return [row if isinstance(row, dict) else {"value": row} for row in value]
    if isinstance(value, dict):
        return [value]
    return [{"value": value}]


def build_figure(definition: FigureDefinition, layout_data: Any) -> Figure:
    """Turn a figure definition and its layout's data into a figure."""
    slots = list(definition.slots) if definition.slots else None

    if definition.type == MARKDOWN:
        # Markdown figures carry their text in ``data``
        text = definition.data if isinstance(definition.data, str) else ""
        return MarkdownFigure(text=text or definition.params.get("text", ""), slots=slots)

    data = _resolve_data(definition, layout_data)
    if definition.type == TABLE:
        return TableFigure(data=_as_rows(data), params=definition.params, slots=slots)
    if definition.type == METRIC:
        rows = _as_rows(data)
        label = definition.params.get("label")
        if label and len(rows) == 1 and "label" not in rows[0]:
            rows = [{"label": label, **rows[0]}]
        return MetricFigure(data=rows, params=definition.params, slots=slots)
    return ChartFigure(
        mark=definition.type,
        data=_as_rows(data),
        params=definition.params,
        slots=slots,
    )


def layout_producer(layout: LayoutDefinition) -> PageProducer:
    """Page producer building the figures of a (fetched) layout."""

    def produce(_context: Any) -> list[Figure]:
        return [build_figure(fig, layout.data) for fig in layout.figures]

    return produce

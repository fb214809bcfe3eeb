"""Vega-Lite chart specs for chart figures."""

import copy
from dataclasses import dataclass
from typing import Any, Optional

import structlog
import vl_convert
from babel.numbers import format_decimal, format_percent
from jinja2 import TemplateError
from jinja2.sandbox import SandboxedEnvironment

from reporting.compositor.figures import ChartFigure
from reporting.compositor.layout import Rect
from reporting.errors import ArgumentError
from reporting.recurrence import Interval, Recurrence, calc_format

logger = structlog.get_logger(__name__)

VEGA_LITE_SCHEMA = "https://vega.github.io/schema/vega-lite/v5.json"

COLOR_SCHEME = "tableau10"
# Label color for each color of the tableau10 scheme
LABEL_COLORS = [
    "white",  # white on blue
    "black",  # black on orange
    "black",  # black on red
    "black",  # black on cyan
    "black",  # black on green
    "black",  # black on yellow
    "black",  # black on purple
    "black",  # black on pink
    "white",  # white on brown
    "black",  # black on grey
]

DEFAULT_PERCENT_MIN_VALUE = 0.02
# Field holding the computed data label of a row
LABEL_FIELD = "_data_label"

_title_env = SandboxedEnvironment(autoescape=False)


@dataclass
class ChartContext:
    """What charts need to know about the report."""

    recurrence: Recurrence
    period: Optional[Interval] = None
    locale: str = "fr_FR"
    scale: float = 1.5


def is_label_visible(value: float, total: float, fmt: str, min_value: Optional[float]) -> bool:
    """Whether a data label is shown.

    Percent labels are shown when the share of the total reaches
    ``min_value`` (default 2%); numeric labels when the raw value does.
    """
    if fmt == "percent":
        threshold = DEFAULT_PERCENT_MIN_VALUE if min_value is None else min_value
        if not total:
            return False
        return value / total >= threshold
    if min_value is None:
        return True
    return value >= min_value


def format_label(value: float, total: float, fmt: str, locale: str) -> str:
    if fmt == "percent":
        # Up to two decimals, locale spacing and sign (98 % in French)
        return format_percent(round(value / total, 4), locale=locale, decimal_quantization=False)
    return format_decimal(value, locale=locale)


def add_data_labels(
    rows: list[dict[str, Any]],
    value_field: str,
    options: dict[str, Any],
    locale: str,
) -> list[dict[str, Any]]:
    """Copy rows with their data label text (empty when hidden)."""
    fmt = options.get("format", "numeric")
    min_value = options.get("min_value")
    values = [float(row.get(value_field) or 0) for row in rows]
    total = sum(values)

    labelled = []
    for row, value in zip(rows, values):
        text = ""
        if is_label_visible(value, total, fmt, min_value):
            text = format_label(value, total, fmt, locale)
        labelled.append({**row, LABEL_FIELD: text})
    return labelled


def render_title(title: Any, data: list[dict[str, Any]], context: ChartContext) -> Any:
    """Render Jinja expressions in a title (``{{ length }}`` = number of rows)."""
    variables = {"length": len(data), "period": context.period}
    try:
        if isinstance(title, str):
            return _title_env.from_string(title).render(**variables)
        if isinstance(title, list):
            return [_title_env.from_string(str(t)).render(**variables) for t in title]
    except TemplateError as e:
        raise ArgumentError(f"Chart title is not valid: {e}") from e
    return title or ""


def _encoding(figure: ChartFigure, context: ChartContext) -> dict[str, Any]:
    params = figure.params
    value_field = params.get("value_field", "value")
    label_field = params.get("label_field", "key")
    color_field = params.get("color_field")

    encoding: dict[str, Any] = {"color": {"scale": {"scheme": COLOR_SCHEME}}}

    if figure.mark == "arc":
        encoding["theta"] = {"field": value_field, "type": "quantitative", "stack": True}
        encoding["order"] = {"field": value_field, "type": "quantitative", "sort": "descending"}
        encoding["color"].update(
            {
                "field": label_field,
                "type": "nominal",
                "sort": {"field": value_field, "order": "descending"},
            }
        )
        return encoding

    x: dict[str, Any] = {"field": label_field, "type": "nominal"}
    if params.get("temporal"):
        display = calc_format(context.recurrence)
        x.update(
            {
                "type": "ordinal",
                "timeUnit": display.time_unit,
                "axis": {"format": display.format},
            }
        )
    encoding["x"] = x
    encoding["y"] = {"field": value_field, "type": "quantitative", "stack": "zero"}
    if color_field:
        encoding["color"].update({"field": color_field, "type": "nominal"})
    return encoding


def _label_layers(figure: ChartFigure, slot: Rect) -> list[dict[str, Any]]:
    options = figure.params.get("data_label") or {}
    mark: dict[str, Any] = {"type": "text", "align": "center", "baseline": "top", "dy": 5}
    if figure.mark == "arc":
        mark["radius"] = slot.height / 2.9

    color = {
        "field": figure.params.get("label_field", "key"),
        "type": "nominal",
        "legend": None,
        "scale": {"range": LABEL_COLORS},
    }
    value_layer = {"mark": mark, "encoding": {"text": {"field": LABEL_FIELD}, "color": color}}
    if not options.get("show_label"):
        return [value_layer]

    label_mark = {**mark, "dy": -7}
    value_layer["mark"] = {**mark, "fontWeight": "bold"}
    label_layer = {
        "mark": label_mark,
        "encoding": {
            "text": {
                "condition": {
                    "test": f"datum['{LABEL_FIELD}'] != ''",
                    "field": figure.params.get("label_field", "key"),
                },
                "value": "",
            },
            "color": color,
        },
    }
    return [label_layer, value_layer]


def build_chart_spec(figure: ChartFigure, slot: Rect, context: ChartContext) -> dict[str, Any]:
    """Build the Vega-Lite spec of a chart figure sized to its slot."""
    params = figure.params
    data = figure.data
    layers: list[dict[str, Any]] = []

    data_layer = {"mark": {"type": figure.mark, "point": True, "radius2": slot.height / 5}}
    if figure.mark != "line":
        data_layer["mark"].pop("point")
    if figure.mark != "arc":
        data_layer["mark"].pop("radius2")
    if params.get("data_layer"):
        data_layer["mark"].update(params["data_layer"].get("mark", {}))
    layers.append(data_layer)

    if params.get("data_label"):
        data = add_data_labels(
            data,
            params.get("value_field", "value"),
            params["data_label"],
            context.locale,
        )
        layers.extend(_label_layers(figure, slot))

    return {
        "$schema": VEGA_LITE_SCHEMA,
        "width": slot.width,
        "height": slot.height,
        "autosize": {"type": "fit", "contains": "padding"},
        "background": "transparent",
        "title": {
            "text": render_title(params.get("title"), figure.data, context),
            "anchor": "start",
            "dy": -5,
        },
        "data": {"values": copy.deepcopy(data)},
        "encoding": _encoding(figure, context),
        "layer": layers,
    }


def rasterize(spec: dict[str, Any], scale: float = 1.5) -> bytes:
    """Render a Vega-Lite spec to PNG bytes."""
    return vl_convert.vegalite_to_png(vl_spec=spec, scale=scale)

"""Table, markdown and metric figures drawn directly with PyMuPDF."""

import math
from typing import Any, Optional

import fitz  # pymupdf
import markdown
import structlog
from babel.numbers import format_decimal

from reporting.compositor.figures import MarkdownFigure, MetricFigure, TableFigure
from reporting.compositor.layout import Rect

logger = structlog.get_logger(__name__)

ROW_HEIGHT = 20.0
TITLE_HEIGHT = 20.0
FONT_SIZE = 9
TITLE_FONT_SIZE = 11
HEADER_FILL = (0.86, 0.89, 0.93)
BORDER_COLOR = (0.75, 0.75, 0.75)

MARKDOWN_CSS = "* { font-family: sans-serif; font-size: 10pt; }"


def max_table_rows(height: float) -> int:
    """Body rows fitting in a slot, once the title and header row are drawn."""
    return max(0, math.floor((height - TITLE_HEIGHT - ROW_HEIGHT) / ROW_HEIGHT))


def fit_rows(
    rows: list[dict[str, Any]],
    height: float,
    max_length: Optional[int] = None,
    title: str = "",
) -> list[dict[str, Any]]:
    """Truncate rows to ``max_length`` and to what fits in ``height``."""
    fitted = list(rows)
    if max_length is not None and max_length > 0:
        fitted = fitted[:max_length]

    max_rows = max_table_rows(height)
    if len(fitted) > max_rows:
        logger.warning(
            "table_truncated",
            title=title,
            rows=len(fitted),
            max_rows=max_rows,
        )
        fitted = fitted[:max_rows]
    return fitted


def _cell_text(value: Any, locale: str) -> str:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return format_decimal(value, locale=locale)
    return str(value)


def draw_table(page: "fitz.Page", figure: TableFigure, rect: Rect, locale: str = "fr_FR") -> int:
    """Draw a table figure in its slot. Returns the number of body rows drawn."""
    params = figure.params
    title = params.get("title", "")
    rows = fit_rows(figure.data, rect.height, params.get("max_length"), title)

    columns = params.get("columns")
    if not columns:
        keys = list(figure.data[0].keys()) if figure.data else []
        columns = [{"header": key, "field": key} for key in keys]

    page.insert_text(
        (rect.x, rect.y + TITLE_FONT_SIZE),
        title,
        fontsize=TITLE_FONT_SIZE,
        fontname="hebo",
    )
    if not columns:
        return 0

    col_width = rect.width / len(columns)
    y = rect.y + TITLE_HEIGHT

    header = fitz.Rect(rect.x, y, rect.right, y + ROW_HEIGHT)
    page.draw_rect(header, color=BORDER_COLOR, fill=HEADER_FILL, width=0.5)
    for i, column in enumerate(columns):
        cell = fitz.Rect(rect.x + i * col_width + 3, y + 4, rect.x + (i + 1) * col_width - 3, y + ROW_HEIGHT)
        page.insert_textbox(cell, str(column.get("header", "")), fontsize=FONT_SIZE, fontname="hebo")

    for row in rows:
        y += ROW_HEIGHT
        page.draw_rect(fitz.Rect(rect.x, y, rect.right, y + ROW_HEIGHT), color=BORDER_COLOR, width=0.5)
        for i, column in enumerate(columns):
            cell = fitz.Rect(rect.x + i * col_width + 3, y + 4, rect.x + (i + 1) * col_width - 3, y + ROW_HEIGHT)
            page.insert_textbox(cell, _cell_text(row.get(column.get("field")), locale), fontsize=FONT_SIZE)
    return len(rows)


def draw_markdown(page: "fitz.Page", figure: MarkdownFigure, rect: Rect) -> None:
    html = markdown.markdown(figure.text)
    page.insert_htmlbox(fitz.Rect(*rect.as_tuple()), html, css=MARKDOWN_CSS)


def draw_metric(page: "fitz.Page", figure: MetricFigure, rect: Rect, locale: str = "fr_FR") -> None:
    """Draw key figures side by side: big value, label under it."""
    if not figure.data:
        return
    width = rect.width / len(figure.data)
    for i, item in enumerate(figure.data):
        x = rect.x + i * width
        value = _cell_text(item.get("value"), locale)
        label = str(item.get("label", item.get("key", "")))
        page.insert_textbox(
            fitz.Rect(x, rect.y, x + width, rect.y + 34),
            value,
            fontsize=24,
            fontname="hebo",
            align=fitz.TEXT_ALIGN_CENTER,
        )
        page.insert_textbox(
            fitz.Rect(x, rect.y + 36, x + width, rect.y + 56),
            label,
            fontsize=10,
            align=fitz.TEXT_ALIGN_CENTER,
        )

"""Report compositor: lays figures out on PDF pages."""

from reporting.compositor.document import PDFReport, RenderStats
from reporting.compositor.figures import (
    ChartFigure,
    Figure,
    MarkdownFigure,
    MetricFigure,
    TableFigure,
    build_figure,
    layout_producer,
)
from reporting.compositor.layout import PageGeometry, Rect, assign_slots, make_slots
from reporting.compositor.renderer import render_report, render_report_sync

__all__ = [
    "ChartFigure",
    "Figure",
    "MarkdownFigure",
    "MetricFigure",
    "PDFReport",
    "PageGeometry",
    "Rect",
    "RenderStats",
    "TableFigure",
    "assign_slots",
    "build_figure",
    "layout_producer",
    "make_slots",
    "render_report",
    "render_report_sync",
]

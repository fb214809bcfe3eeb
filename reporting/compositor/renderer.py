"""Report compositor: page producers -> figures -> slots -> PDF."""

import asyncio
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Optional, Sequence

import fitz  # pymupdf
import structlog

from reporting.compositor.charts import ChartContext, build_chart_spec, rasterize
from reporting.compositor.document import PDFReport, RenderStats
from reporting.compositor.drawing import draw_markdown, draw_metric, draw_table
from reporting.compositor.figures import (
    ChartFigure,
    Figure,
    MarkdownFigure,
    MetricFigure,
    PageProducer,
    TableFigure,
)
from reporting.compositor.layout import PageGeometry, Rect, assign_slots, make_slots
from reporting.recurrence import Interval, Recurrence

logger = structlog.get_logger(__name__)

Rasterizer = Callable[[dict[str, Any], float], bytes]


@dataclass
class RenderContext:
    """Passed to each page producer."""

    name: str
    recurrence: Recurrence
    period: Optional[Interval]
    viewport: Rect
    slots: list[Rect] = field(default_factory=list)
    locale: str = "fr_FR"
    debug: bool = False


def draw_figure(
    report: PDFReport,
    figure: Figure,
    rect: Rect,
    chart_context: ChartContext,
    rasterizer: Rasterizer = rasterize,
) -> None:
    """Draw one figure into its slot of the current page."""
    page = report.page
    if isinstance(figure, TableFigure):
        draw_table(page, figure, rect, chart_context.locale)
    elif isinstance(figure, MarkdownFigure):
        draw_markdown(page, figure, rect)
    elif isinstance(figure, MetricFigure):
        draw_metric(page, figure, rect, chart_context.locale)
    elif isinstance(figure, ChartFigure):
        spec = build_chart_spec(figure, rect, chart_context)
        image = rasterizer(spec, chart_context.scale)
        page.insert_image(fitz.Rect(*rect.as_tuple()), stream=image, keep_proportion=True)
    else:
        raise TypeError(f"Unsupported figure: {type(figure).__name__}")


def render_report_sync(
    path: str,
    name: str,
    producers: Sequence[PageProducer],
    recurrence: Recurrence,
    period: Optional[Interval] = None,
    geometry: Optional[PageGeometry] = None,
    grid: tuple[int, int] = (2, 2),
    locale: str = "fr_FR",
    debug: bool = False,
    rasterizer: Rasterizer = rasterize,
) -> RenderStats:
    """Render a PDF report; nothing is left on disk if anything fails.

    Args:
        path: Output file path
        name: Report title
        producers: One per page, each returning one or more figures
        recurrence: Recurrence of the task (axis labels)
        period: Period covered by the report
        geometry: Page geometry (A4 landscape by default)
        grid: (rows, cols) of the slot grid

    Returns:
        RenderStats with page count and file size
    """
    start = time.monotonic()
    report = PDFReport(path, name, period=period, geometry=geometry)
    rows, cols = grid
    slots = make_slots(report.viewport, rows=rows, cols=cols, gutter=report.geometry.margin.left)
    context = RenderContext(
        name=name,
        recurrence=recurrence,
        period=period,
        viewport=report.viewport,
        slots=slots,
        locale=locale,
        debug=debug,
    )
    chart_context = ChartContext(recurrence=recurrence, period=period, locale=locale)

    try:
        for index, producer in enumerate(producers):
            if index > 0:
                report.new_page()

            figures = producer(context)
            if not isinstance(figures, list):
                figures = [figures]

            for figure, rect in assign_slots(figures, slots, report.viewport):
                draw_figure(report, figure, rect, chart_context, rasterizer)

        stats = report.save()
    except Exception:
        report.discard()
        raise

    logger.info(
        "report_rendered",
        path=path,
        page_count=stats.page_count,
        size=stats.size,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return stats


async def render_report(*args: Any, **kwargs: Any) -> RenderStats:
    """Async wrapper of render_report_sync (rendering is CPU bound)."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(render_report_sync, *args, **kwargs))

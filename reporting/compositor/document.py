"""PDF document with header, footer and a figure viewport."""

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import fitz  # pymupdf

from reporting.compositor.layout import PageGeometry, Rect, compute_viewport
from reporting.recurrence import Interval

TEXT_COLOR = (0.2, 0.2, 0.2)


@dataclass
class RenderStats:
    path: str
    page_count: int
    size: int

    def to_dict(self) -> dict[str, int]:
        # The path is already known by callers
        return {"page_count": self.page_count, "size": self.size}


def _format_date(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


class PDFReport:
    """A report being written.

    The first page exists as soon as the report is created.
    """

    def __init__(
        self,
        path: str,
        name: str,
        period: Optional[Interval] = None,
        geometry: Optional[PageGeometry] = None,
    ):
        self.path = path
        self.name = name
        self.period = period
        self.geometry = geometry or PageGeometry()
        self.viewport: Rect = compute_viewport(self.geometry)
        self._doc = fitz.open()
        self.page = self.new_page()

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def new_page(self) -> "fitz.Page":
        page = self._doc.new_page(width=self.geometry.width, height=self.geometry.height)
        self._draw_header(page)
        self.page = page
        return page

    def _draw_header(self, page: "fitz.Page") -> None:
        margin = self.geometry.margin
        page.insert_text(
            (margin.left, margin.top + 16),
            self.name,
            fontsize=16,
            fontname="hebo",
            color=TEXT_COLOR,
        )
        if self.period:
            period = (
                f"Période du {_format_date(self.period.start)}"
                f" au {_format_date(self.period.end)}"
            )
            page.insert_text(
                (margin.left, margin.top + 34),
                period,
                fontsize=10,
                color=TEXT_COLOR,
            )

    def _draw_footers(self) -> None:
        margin = self.geometry.margin
        total = self._doc.page_count
        for index, page in enumerate(self._doc, start=1):
            page.insert_text(
                (self.geometry.width - margin.right - 40, self.geometry.height - margin.bottom),
                f"{index} / {total}",
                fontsize=8,
                color=TEXT_COLOR,
            )

    def save(self) -> RenderStats:
        """Write the document to its path."""
        self._draw_footers()
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        page_count = self._doc.page_count
        self._doc.save(self.path, garbage=3, deflate=True)
        self._doc.close()
        return RenderStats(path=self.path, page_count=page_count, size=os.path.getsize(self.path))

    def discard(self) -> None:
        """Drop the document and whatever was already written."""
        if not self._doc.is_closed:
            self._doc.close()
        if os.path.exists(self.path):
            os.remove(self.path)

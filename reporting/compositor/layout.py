"""Page geometry and slot assignment.

Coordinates are PDF points with the origin at the top-left corner of the
page, like PyMuPDF.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, TypeVar

import structlog

from reporting.errors import ArgumentError

logger = structlog.get_logger(__name__)

# A4 in points
A4_WIDTH = 595.0
A4_HEIGHT = 842.0

T = TypeVar("T")


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def union(self, other: "Rect") -> "Rect":
        """Bounding box of both rectangles."""
        x = min(self.x, other.x)
        y = min(self.y, other.y)
        return Rect(
            x=x,
            y=y,
            width=max(self.right, other.right) - x,
            height=max(self.bottom, other.bottom) - y,
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        """(x0, y0, x1, y1), as expected by fitz.Rect."""
        return (self.x, self.y, self.right, self.bottom)


@dataclass(frozen=True)
class Margin:
    top: float = 20.0
    right: float = 20.0
    bottom: float = 20.0
    left: float = 20.0

    @property
    def horizontal(self) -> float:
        return self.left + self.right

    @property
    def vertical(self) -> float:
        return self.top + self.bottom


@dataclass(frozen=True)
class PageGeometry:
    """Page size, margins and the space reserved for header and footer."""

    width: float = A4_HEIGHT
    height: float = A4_WIDTH
    margin: Margin = Margin()
    header_offset: float = 50.0
    footer_offset: float = 25.0

    @classmethod
    def a4(cls, orientation: str = "landscape") -> "PageGeometry":
        if orientation == "portrait":
            return cls(width=A4_WIDTH, height=A4_HEIGHT)
        return cls()


def compute_viewport(geometry: PageGeometry) -> Rect:
    """Area of a page available to figures."""
    margin = geometry.margin
    return Rect(
        x=margin.left,
        y=margin.top + geometry.header_offset,
        width=geometry.width - margin.horizontal,
        height=geometry.height
        - margin.vertical
        - geometry.header_offset
        - geometry.footer_offset,
    )


def make_slots(viewport: Rect, rows: int = 2, cols: int = 2, gutter: float = 20.0) -> list[Rect]:
    """Split the viewport in a grid of slots, row by row.

    Cells are separated by ``gutter`` points, so each one loses half a gutter
    on every inner side.
    """
    if rows < 1 or cols < 1:
        raise ArgumentError(f"Grid must have at least one row and column, got {rows}x{cols}")

    width = (viewport.width - (cols - 1) * gutter) / cols
    height = (viewport.height - (rows - 1) * gutter) / rows
    return [
        Rect(
            x=viewport.x + col * (width + gutter),
            y=viewport.y + row * (height + gutter),
            width=width,
            height=height,
        )
        for row in range(rows)
        for col in range(cols)
    ]


def _explicit_slot(requested: Sequence[int], slots: Sequence[Rect]) -> Rect:
    """Bounding box of the requested slots."""
    rect: Optional[Rect] = None
    for index in requested:
        if index < 0 or index >= len(slots):
            raise ArgumentError(
                f"Slot {index} doesn't exist (page has {len(slots)} slots)"
            )
        rect = slots[index] if rect is None else rect.union(slots[index])
    if rect is None:
        raise ArgumentError("A figure can't request an empty list of slots")
    return rect


def assign_slots(
    figures: Sequence[T],
    slots: Sequence[Rect],
    viewport: Rect,
) -> list[tuple[T, Rect]]:
    """Place figures on a page.

    Rules, by precedence:
      - a single figure takes the whole viewport;
      - a figure listing explicit ``slots`` takes their bounding box;
      - when every figure fits on the first row (count <= slots - 2), figures
        take the full viewport height;
      - the last figure landing on the second-to-last slot absorbs the last
        slot, so no cell is left empty.

    Figures beyond the number of slots are dropped with a warning.
    """
    if not figures:
        return []
    if len(figures) == 1:
        return [(figures[0], viewport)]

    count = min(len(figures), len(slots))
    if len(figures) > len(slots):
        logger.warning(
            "figures_dropped",
            figures=len(figures),
            slots=len(slots),
        )

    single_row = len(figures) <= len(slots) - 2
    placed = []
    for i, figure in enumerate(figures[:count]):
        requested = getattr(figure, "slots", None)
        if requested:
            rect = _explicit_slot(requested, slots)
        elif single_row:
            rect = Rect(x=slots[i].x, y=viewport.y, width=slots[i].width, height=viewport.height)
        elif i == len(slots) - 2 and i == len(figures) - 1:
            rect = slots[i].union(slots[-1])
        else:
            rect = slots[i]
        placed.append((figure, rect))
    return placed

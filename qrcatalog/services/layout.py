"""Pack QR code images into a grid on fixed-size printable pages.

For ``codes_per_page = p`` the grid is ``ceil(sqrt(p))`` columns by
``ceil(p / columns)`` rows on every page, whatever the number of items left.
Items fill cells row-major; a page holds at most ``p`` items, so ``n`` items
need ``ceil(n / p)`` pages.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from fpdf import FPDF
from fpdf.enums import MethodReturnValue

from ..errors import ValidationError

MIN_CODES_PER_PAGE = 1
MAX_CODES_PER_PAGE = 25

A4_PORTRAIT_MM = (210.0, 297.0)
PAGE_MARGIN_MM = 20.0
IMAGE_SCALE = 0.6
IMAGE_TOP_OFFSET_MM = 10.0
LABEL_INSET_MM = 10.0
LABEL_GAP_MM = 4.0
LABEL_FONT_SIZE = 8
LABEL_LINE_HEIGHT_MM = 3.5


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class CellPlacement:
    item_index: int
    cell_index: int
    row: int
    column: int
    cell: Box
    image: Box
    label: Box


@dataclass(frozen=True)
class PagePlan:
    number: int
    columns: int
    rows: int
    placements: tuple[CellPlacement, ...]


@dataclass(frozen=True)
class LayoutItem:
    image: bytes
    label: Optional[str] = None


@dataclass(frozen=True)
class RenderedSheet:
    content: bytes
    page_count: int


def validate_codes_per_page(codes_per_page: int) -> int:
    if isinstance(codes_per_page, bool) or not isinstance(codes_per_page, int):
        raise ValidationError("codes_per_page must be an integer")
    if not MIN_CODES_PER_PAGE <= codes_per_page <= MAX_CODES_PER_PAGE:
        raise ValidationError(f"codes_per_page must be between {MIN_CODES_PER_PAGE} and {MAX_CODES_PER_PAGE}")
    return codes_per_page


def grid_dimensions(codes_per_page: int) -> tuple[int, int]:
    """Return ``(columns, rows)`` for a page holding ``codes_per_page`` codes."""
    validate_codes_per_page(codes_per_page)
    columns = math.ceil(math.sqrt(codes_per_page))
    rows = math.ceil(codes_per_page / columns)
    return columns, rows


def page_count(item_count: int, codes_per_page: int) -> int:
    validate_codes_per_page(codes_per_page)
    return math.ceil(max(item_count, 0) / codes_per_page)


def plan_pages(
    item_count: int,
    codes_per_page: int,
    page_size: tuple[float, float] = A4_PORTRAIT_MM,
    margin: float = PAGE_MARGIN_MM,
) -> list[PagePlan]:
    columns, rows = grid_dimensions(codes_per_page)
    page_width, page_height = page_size
    cell_width = (page_width - margin * 2) / columns
    cell_height = (page_height - margin * 2) / rows
    image_size = min(cell_width, cell_height) * IMAGE_SCALE

    pages: list[PagePlan] = []
    for page_idx in range(page_count(item_count, codes_per_page)):
        first = page_idx * codes_per_page
        placements: list[CellPlacement] = []
        for cell_index in range(min(codes_per_page, item_count - first)):
            row, column = divmod(cell_index, columns)
            x = margin + column * cell_width
            y = margin + row * cell_height
            image_y = y + IMAGE_TOP_OFFSET_MM
            label_y = image_y + image_size + LABEL_GAP_MM
            placements.append(
                CellPlacement(
                    item_index=first + cell_index,
                    cell_index=cell_index,
                    row=row,
                    column=column,
                    cell=Box(x, y, cell_width, cell_height),
                    image=Box(x + (cell_width - image_size) / 2, image_y, image_size, image_size),
                    label=Box(
                        x + LABEL_INSET_MM / 2,
                        label_y,
                        max(cell_width - LABEL_INSET_MM, 1.0),
                        max(y + cell_height - label_y, 0.0),
                    ),
                )
            )
        pages.append(PagePlan(number=page_idx + 1, columns=columns, rows=rows, placements=tuple(placements)))
    return pages


def _pdf_safe(text: str) -> str:
    # Core PDF fonts only cover Latin-1.
    return text.encode("latin-1", errors="replace").decode("latin-1")


def fit_label(pdf: FPDF, text: str, box: Box) -> str:
    """Wrap ``text`` to the label box, cutting it to the lines that fit.

    The last kept line ends in ``...`` when anything was dropped.
    """
    max_lines = max(1, int(box.height // LABEL_LINE_HEIGHT_MM))
    lines = pdf.multi_cell(
        box.width, LABEL_LINE_HEIGHT_MM, text, align="C", dry_run=True, output=MethodReturnValue.LINES
    )
    if len(lines) <= max_lines:
        return text

    kept = list(lines[:max_lines])
    available = box.width - 2 * pdf.c_margin
    last = kept[-1].rstrip()
    while last and pdf.get_string_width(last + "...") > available:
        last = last[:-1].rstrip()
    kept[-1] = last + "..."
    return "\n".join(kept)


class CodeSheetPDF(FPDF):
    """Plain A4 sheet; no header or footer so the grid owns the page."""

    def __init__(self) -> None:
        super().__init__(orientation="P", unit="mm", format="A4")
        self.set_auto_page_break(auto=False)
        self.set_margins(PAGE_MARGIN_MM, PAGE_MARGIN_MM, PAGE_MARGIN_MM)


def render_pdf(items: Sequence[LayoutItem], codes_per_page: int) -> RenderedSheet:
    if not items:
        raise ValidationError("Nothing to export")

    plans = plan_pages(len(items), codes_per_page)
    pdf = CodeSheetPDF()
    pdf.set_font("helvetica", "", LABEL_FONT_SIZE)

    for plan in plans:
        pdf.add_page()
        for placement in plan.placements:
            item = items[placement.item_index]
            box = placement.image
            pdf.image(io.BytesIO(item.image), x=box.x, y=box.y, w=box.width, h=box.height)
            if item.label:
                label = fit_label(pdf, _pdf_safe(item.label), placement.label)
                pdf.set_xy(placement.label.x, placement.label.y)
                pdf.multi_cell(placement.label.width, LABEL_LINE_HEIGHT_MM, label, align="C")

    return RenderedSheet(content=bytes(pdf.output()), page_count=pdf.page_no())

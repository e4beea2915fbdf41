from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font

from ..errors import PartialGenerationFailure, ValidationError
from .codes import CodeGenerator, refs_for_document
from .document_store import Document, Record
from .layout import LayoutItem, render_pdf, validate_codes_per_page
from .metrics import record_export

logger = logging.getLogger(__name__)

DEFAULT_LABEL_FIELDS = ("Product Name", "Name")
QR_COLUMN = "QR Code"
WORKBOOK_SHEET_TITLE = "Products"


@dataclass
class ExportResult:
    content: bytes
    page_count: int
    exported_count: int
    failures: list[PartialGenerationFailure] = field(default_factory=list)


def record_label(record: Record, label_fields: Sequence[str] = DEFAULT_LABEL_FIELDS) -> str:
    for name in label_fields:
        value = record.get(name)
        if value is not None and str(value).strip():
            return str(value)
    return f"Product {record.id}"


class ExportPipeline:
    """Renders a document's records as QR codes and lays them out on pages."""

    def __init__(self, generator: Optional[CodeGenerator] = None, label_fields: Sequence[str] = DEFAULT_LABEL_FIELDS) -> None:
        self.generator = generator or CodeGenerator()
        self.label_fields = tuple(label_fields)

    async def export_pdf(self, document: Document, codes_per_page: int) -> ExportResult:
        validate_codes_per_page(codes_per_page)
        if not document.records:
            raise ValidationError("Document has no records to export")

        generated = await self.generator.generate_batch(refs_for_document(document))

        items = [
            LayoutItem(image=generated.images[record.id], label=record_label(record, self.label_fields))
            for record in document.records
            if record.id in generated.images
        ]
        if not items:
            raise ValidationError("No QR codes could be generated for this document")

        # rendering the PDF is CPU-bound, keep it off the event loop
        sheet = await asyncio.to_thread(render_pdf, items, codes_per_page)
        record_export(sheet.page_count)
        logger.info(
            "pdf_exported document_id=%s codes=%s pages=%s failed=%s",
            document.id,
            len(items),
            sheet.page_count,
            len(generated.failures),
        )
        return ExportResult(
            content=sheet.content,
            page_count=sheet.page_count,
            exported_count=len(items),
            failures=list(generated.failures),
        )

    def export_pdf_sync(self, document: Document, codes_per_page: int) -> ExportResult:
        return asyncio.run(self.export_pdf(document, codes_per_page))

    def export_workbook(self, document: Document) -> bytes:
        """Write the records plus each record's code URL to an ``.xlsx`` workbook."""
        if not document.records:
            raise ValidationError("Document has no records to export")

        columns: list[str] = []
        for record in document.records:
            for name, _ in record.fields:
                if name not in columns:
                    columns.append(name)

        wb = Workbook()
        ws = wb.active
        ws.title = WORKBOOK_SHEET_TITLE
        ws.append(["id", *columns, QR_COLUMN])
        for cell in ws[1]:
            cell.font = Font(bold=True)

        for record, ref in zip(document.records, refs_for_document(document)):
            values = record.as_dict()
            url = self.generator.url_for(ref)
            ws.append([record.id, *(values.get(name) for name in columns), url])

        buf = io.BytesIO()
        wb.save(buf)
        logger.info("workbook_exported document_id=%s rows=%s", document.id, len(document.records))
        return buf.getvalue()

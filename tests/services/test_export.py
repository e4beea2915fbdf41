from __future__ import annotations

import io

import pytest
from openpyxl import load_workbook

from qrcatalog.errors import ValidationError
from qrcatalog.services import codes
from qrcatalog.services.codes import CodeGenerator
from qrcatalog.services.document_store import Document, DocumentKind, Record, utcnow
from qrcatalog.services.export import QR_COLUMN, ExportPipeline, record_label


def _document(count: int, doc_id: str = "doc-1") -> Document:
    now = utcnow()
    records = tuple(
        Record(id=f"r{idx}", fields=(("Product Name", f"Item {idx}"), ("Price", idx * 10))) for idx in range(count)
    )
    return Document(id=doc_id, name="Spring", kind=DocumentKind.IMPORTED, records=records, created_at=now, updated_at=now)


@pytest.fixture()
def pipeline() -> ExportPipeline:
    return ExportPipeline(CodeGenerator(base_url="https://catalog.example.com", width=64))


def test_record_label_prefers_product_name_then_name():
    assert record_label(Record(id="a", fields=(("Name", "Lamp"), ("Product Name", "Desk lamp")))) == "Desk lamp"
    assert record_label(Record(id="b", fields=(("Product Name", "  "), ("Name", "Lamp")))) == "Lamp"


def test_record_label_falls_back_to_record_id():
    assert record_label(Record(id="r9", fields=(("SKU", "A1"), ("Price", 10)))) == "Product r9"
    assert record_label(Record(id="r10", fields=(("Name", ""),))) == "Product r10"


def test_pdf_export_of_five_records_four_per_page(pipeline):
    result = pipeline.export_pdf_sync(_document(5), 4)

    assert result.page_count == 2
    assert result.exported_count == 5
    assert result.failures == []
    assert result.content.startswith(b"%PDF")


def test_pdf_export_skips_records_that_fail(pipeline, monkeypatch):
    real_render = codes.render_code

    def flaky_render(payload, width=200, margin=2):
        if payload.endswith("/r2"):
            raise RuntimeError("too long")
        return real_render(payload, width, margin)

    monkeypatch.setattr(codes, "render_code", flaky_render)

    result = pipeline.export_pdf_sync(_document(5), 4)

    assert result.exported_count == 4
    assert result.page_count == 1
    assert [failure.record_id for failure in result.failures] == ["r2"]


def test_pdf_export_fails_when_no_code_renders(pipeline, monkeypatch):
    def broken_render(payload, width=200, margin=2):
        raise RuntimeError("encoder unavailable")

    monkeypatch.setattr(codes, "render_code", broken_render)

    with pytest.raises(ValidationError):
        pipeline.export_pdf_sync(_document(2), 4)


@pytest.mark.parametrize("codes_per_page", [0, 26])
def test_pdf_export_rejects_codes_per_page_out_of_range(pipeline, codes_per_page):
    with pytest.raises(ValidationError):
        pipeline.export_pdf_sync(_document(1), codes_per_page)


def test_pdf_export_of_empty_document(pipeline):
    with pytest.raises(ValidationError):
        pipeline.export_pdf_sync(_document(0), 4)


def test_workbook_export_adds_qr_code_column(pipeline):
    document = _document(2)

    content = pipeline.export_workbook(document)

    ws = load_workbook(io.BytesIO(content)).active
    rows = [list(row) for row in ws.iter_rows(values_only=True)]
    assert rows[0] == ["id", "Product Name", "Price", QR_COLUMN]
    assert rows[1] == ["r0", "Item 0", 0, "https://catalog.example.com/product/r0"]
    assert rows[2] == ["r1", "Item 1", 10, "https://catalog.example.com/product/r1"]


def test_workbook_export_unions_columns_across_records(pipeline):
    now = utcnow()
    document = Document(
        id="doc-2",
        name="Mixed",
        kind=DocumentKind.MANUAL,
        records=(Record(id="a", fields=(("Name", "Lamp"),)), Record(id="b", fields=(("Color", "Red"),))),
        created_at=now,
        updated_at=now,
    )

    ws = load_workbook(io.BytesIO(pipeline.export_workbook(document))).active
    rows = [list(row) for row in ws.iter_rows(values_only=True)]

    assert rows[0] == ["id", "Name", "Color", QR_COLUMN]
    assert rows[1][:3] == ["a", "Lamp", None]
    assert rows[2][:3] == ["b", None, "Red"]


def test_indexed_urls_in_workbook_export():
    pipeline = ExportPipeline(CodeGenerator(base_url="https://catalog.example.com", url_style="indexed"))

    ws = load_workbook(io.BytesIO(pipeline.export_workbook(_document(2, doc_id="doc-7")))).active
    urls = [row[-1] for row in ws.iter_rows(min_row=2, values_only=True)]

    assert urls == ["https://catalog.example.com/product/doc-7/0", "https://catalog.example.com/product/doc-7/1"]

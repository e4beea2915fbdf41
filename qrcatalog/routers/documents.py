from __future__ import annotations

import io
import logging
import os
import re
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..dependencies.store import get_document_store, get_export_pipeline
from ..errors import CatalogError, NotFound, StorageFailure, Unauthenticated, ValidationError
from ..services.codes import RecordRef
from ..services.document_store import (
    Document,
    DocumentDraft,
    DocumentKind,
    DocumentStore,
    Record,
    VersionSnapshot,
)
from ..services.export import ExportPipeline
from ..services.importer import document_name_from_filename, parse_workbook, validate_upload

logger = logging.getLogger(__name__)

router = APIRouter()

FieldValue = Union[bool, int, float, str, None]


class RecordIn(BaseModel):
    id: Optional[str] = None
    fields: Dict[str, FieldValue] = Field(default_factory=dict)

    def to_record(self) -> Record:
        return Record.from_fields(self.fields, record_id=self.id or None)


class DocumentIn(BaseModel):
    name: str
    records: list[RecordIn]


class RecordsUpdateIn(BaseModel):
    records: list[RecordIn]
    change_note: str = "Updated product data"


def _http_error(exc: CatalogError) -> HTTPException:
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, Unauthenticated):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, StorageFailure):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable, try again.")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unexpected error")


def sanitize_filename(filename: str, default: str = "export") -> str:
    name = os.path.basename(filename or default)
    name = re.sub(r"[^A-Za-z0-9._-]", "_", name)
    return name[:100] or default


def _serialize_record(record: Record) -> Dict[str, Any]:
    return {"id": record.id, "fields": record.as_dict()}


def _serialize_version(version: VersionSnapshot) -> Dict[str, Any]:
    return {
        "sequence_number": version.sequence_number,
        "timestamp": version.timestamp.isoformat(),
        "change_note": version.change_note,
        "record_count": len(version.captured_records),
        "records": [_serialize_record(record) for record in version.captured_records],
    }


def _serialize_document(document: Document, include_records: bool = True) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": document.id,
        "name": document.name,
        "kind": document.kind.value,
        "created_at": document.created_at.isoformat(),
        "updated_at": document.updated_at.isoformat(),
        "record_count": len(document.records),
        "version_count": len(document.versions),
    }
    if include_records:
        payload["records"] = [_serialize_record(record) for record in document.records]
    return payload


def _find_record(document: Document, record_id: str) -> tuple[int, Record]:
    for idx, record in enumerate(document.records):
        if record.id == record_id:
            return idx, record
    raise NotFound(f"Record not found: {record_id}")


def _locate_record(store: DocumentStore, record_id: str) -> tuple[Document, int, Record]:
    # most recently updated document wins when ids repeat across documents
    for document in store.list_documents():
        for idx, record in enumerate(document.records):
            if record.id == record_id:
                return document, idx, record
    raise NotFound(f"Product not found: {record_id}")


def _serialize_product(document: Document, index: int, record: Record) -> Dict[str, Any]:
    return {
        "document_id": document.id,
        "document_name": document.name,
        "index": index,
        "record": _serialize_record(record),
    }


@router.post("/documents", status_code=201)
def create_document(payload: DocumentIn, store: DocumentStore = Depends(get_document_store)):
    try:
        document_id = store.create(
            DocumentDraft(
                name=payload.name,
                records=[item.to_record() for item in payload.records],
                kind=DocumentKind.MANUAL,
            )
        )
        return _serialize_document(store.get(document_id))
    except CatalogError as exc:
        raise _http_error(exc) from exc


@router.post("/documents/import", status_code=201)
def import_document(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    store: DocumentStore = Depends(get_document_store),
):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename required")

    buffer = io.BytesIO()
    total_bytes = 0
    try:
        while True:
            chunk = file.file.read(1024 * 1024)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > settings.max_import_bytes:
                limit_mb = settings.max_import_bytes // (1024 * 1024)
                raise HTTPException(status_code=400, detail=f"File size must be less than {limit_mb}MB")
            buffer.write(chunk)
    finally:
        file.file.close()

    try:
        validate_upload(file.filename, total_bytes, file.content_type)
        records = parse_workbook(buffer.getvalue(), file.filename)
        document_id = store.create(
            DocumentDraft(
                name=document_name_from_filename(file.filename, name),
                records=records,
                kind=DocumentKind.IMPORTED,
            )
        )
        document = store.get(document_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc

    logger.info("document_imported document_id=%s filename=%s bytes=%s", document_id, file.filename, total_bytes)
    return _serialize_document(document)


@router.get("/documents")
def list_documents(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    store: DocumentStore = Depends(get_document_store),
):
    try:
        documents = store.list_documents()
    except CatalogError as exc:
        raise _http_error(exc) from exc

    total = len(documents)
    offset = (page - 1) * limit
    return {
        "items": [_serialize_document(document, include_records=False) for document in documents[offset : offset + limit]],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if total else 0,
        },
    }


@router.get("/documents/{doc_id}")
def get_document(doc_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        return _serialize_document(store.get(doc_id))
    except CatalogError as exc:
        raise _http_error(exc) from exc


@router.put("/documents/{doc_id}/records")
def update_records(doc_id: str, payload: RecordsUpdateIn, store: DocumentStore = Depends(get_document_store)):
    try:
        store.update(doc_id, [item.to_record() for item in payload.records], payload.change_note)
        # narrow refetch of the one document instead of reloading every view
        return _serialize_document(store.get(doc_id))
    except CatalogError as exc:
        raise _http_error(exc) from exc


@router.delete("/documents/{doc_id}", status_code=204)
def delete_document(doc_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        store.delete(doc_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@router.get("/documents/{doc_id}/versions")
def list_versions(doc_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        versions = store.list_versions(doc_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return {"items": [_serialize_version(version) for version in versions]}


@router.get("/documents/{doc_id}/records/{record_id}")
def get_record(doc_id: str, record_id: str, store: DocumentStore = Depends(get_document_store)):
    try:
        _, record = _find_record(store.get(doc_id), record_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return _serialize_record(record)


@router.get("/documents/{doc_id}/records/{record_id}/code.png")
def get_record_code(
    doc_id: str,
    record_id: str,
    store: DocumentStore = Depends(get_document_store),
    pipeline: ExportPipeline = Depends(get_export_pipeline),
):
    try:
        document = store.get(doc_id)
        index, record = _find_record(document, record_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc

    try:
        code = pipeline.generator.generate(RecordRef(document_id=document.id, record_id=record.id, index=index))
    except Exception as exc:
        logger.exception("code_render_failed document_id=%s record_id=%s", doc_id, record_id)
        raise HTTPException(status_code=500, detail="QR code generation failed.") from exc

    return Response(content=code.png, media_type="image/png", headers={"x-code-url": code.url})


@router.get("/documents/{doc_id}/export.pdf")
async def export_pdf(
    doc_id: str,
    codes_per_page: int = Query(default=settings.default_codes_per_page),
    store: DocumentStore = Depends(get_document_store),
    pipeline: ExportPipeline = Depends(get_export_pipeline),
):
    try:
        document = await run_in_threadpool(store.get, doc_id)
        result = await pipeline.export_pdf(document, codes_per_page)
    except CatalogError as exc:
        raise _http_error(exc) from exc

    filename = sanitize_filename(f"{document.name}-qr-codes.pdf")
    headers = {
        "content-disposition": f'attachment; filename="{filename}"',
        "x-page-count": str(result.page_count),
        "x-exported-count": str(result.exported_count),
    }
    if result.failures:
        headers["x-failed-records"] = ",".join(failure.record_id for failure in result.failures)
    return Response(content=result.content, media_type="application/pdf", headers=headers)


@router.get("/documents/{doc_id}/export.xlsx")
def export_workbook(
    doc_id: str,
    store: DocumentStore = Depends(get_document_store),
    pipeline: ExportPipeline = Depends(get_export_pipeline),
):
    try:
        content = pipeline.export_workbook(store.get(doc_id))
    except CatalogError as exc:
        raise _http_error(exc) from exc

    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"content-disposition": 'attachment; filename="products-with-qr.xlsx"'},
    )


@router.get("/product/{record_id}")
def get_product(record_id: str, store: DocumentStore = Depends(get_document_store)):
    """Resolve the URL encoded in a per-record QR code."""
    try:
        document, index, record = _locate_record(store, record_id)
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return _serialize_product(document, index, record)


@router.get("/product/{doc_id}/{index}")
def get_product_by_index(doc_id: str, index: int, store: DocumentStore = Depends(get_document_store)):
    """Resolve the URL encoded in an indexed QR code."""
    try:
        document = store.get(doc_id)
        if not 0 <= index < len(document.records):
            raise NotFound(f"Product not found: {doc_id}/{index}")
    except CatalogError as exc:
        raise _http_error(exc) from exc
    return _serialize_product(document, index, document.records[index])

from __future__ import annotations

from prometheus_client import Counter, Histogram


DOCUMENTS_CREATED_COUNTER = Counter(
    "qr_documents_created_total",
    "Documents created per store backend and document kind",
    ["backend", "kind"],
)

VERSIONS_CAPTURED_COUNTER = Counter(
    "qr_versions_captured_total",
    "Version snapshots captured by document updates",
    ["backend"],
)

DOCUMENTS_DELETED_COUNTER = Counter(
    "qr_documents_deleted_total",
    "Documents deleted together with their history",
    ["backend"],
)

CODES_GENERATED_COUNTER = Counter(
    "qr_codes_generated_total",
    "QR code images rendered successfully",
)

CODES_FAILED_COUNTER = Counter(
    "qr_codes_failed_total",
    "QR code images that failed to render",
)

EXPORT_PAGES_HISTOGRAM = Histogram(
    "qr_export_pages",
    "Pages per exported PDF sheet",
    buckets=(1, 2, 5, 10, 25, 50, 100, 250),
)


def record_document_created(backend: str, kind: str) -> None:
    DOCUMENTS_CREATED_COUNTER.labels(backend=backend, kind=kind).inc()


def record_version_captured(backend: str) -> None:
    VERSIONS_CAPTURED_COUNTER.labels(backend=backend).inc()


def record_document_deleted(backend: str) -> None:
    DOCUMENTS_DELETED_COUNTER.labels(backend=backend).inc()


def record_codes_generated(succeeded: int, failed: int) -> None:
    if succeeded > 0:
        CODES_GENERATED_COUNTER.inc(succeeded)
    if failed > 0:
        CODES_FAILED_COUNTER.inc(failed)


def record_export(page_count: int) -> None:
    EXPORT_PAGES_HISTOGRAM.observe(page_count)

"""Document store interface shared by the local and remote adapters.

A Document is a named, ordered set of Records plus the append-only list of
snapshots captured before each update. Adapters are bound to one owner at
construction; every call only ever sees that owner's documents.
"""

from __future__ import annotations

import abc
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from ..errors import NotFound, Unauthenticated, ValidationError

Scalar = Union[str, int, float, bool, None]


class DocumentKind(str, Enum):
    IMPORTED = "imported"
    MANUAL = "manual"


@dataclass(frozen=True)
class Record:
    id: str
    fields: tuple[tuple[str, Scalar], ...] = ()

    @classmethod
    def from_fields(cls, fields: Mapping[str, Scalar] | Iterable[tuple[str, Scalar]], record_id: str | None = None) -> "Record":
        items = fields.items() if isinstance(fields, Mapping) else fields
        return cls(id=record_id or str(uuid.uuid4()), fields=tuple((str(name), value) for name, value in items))

    def as_dict(self) -> dict[str, Scalar]:
        return dict(self.fields)

    def get(self, name: str, default: Scalar = None) -> Scalar:
        for key, value in self.fields:
            if key == name:
                return value
        return default

    def replace_field(self, name: str, value: Scalar) -> "Record":
        updated = dict(self.fields)
        updated[name] = value
        return Record(id=self.id, fields=tuple(updated.items()))


@dataclass(frozen=True)
class VersionSnapshot:
    sequence_number: int
    captured_records: tuple[Record, ...]
    timestamp: datetime
    change_note: str = ""


@dataclass(frozen=True)
class Document:
    id: str
    name: str
    kind: DocumentKind
    records: tuple[Record, ...]
    created_at: datetime
    updated_at: datetime
    versions: tuple[VersionSnapshot, ...] = ()
    owner_id: Optional[str] = None


@dataclass
class DocumentDraft:
    """Input to :meth:`DocumentStore.create`; the store assigns the id and timestamps."""

    name: str
    records: Sequence[Record]
    kind: DocumentKind = DocumentKind.MANUAL


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_timestamp(previous: datetime | None) -> datetime:
    """Wall-clock now, nudged forward so it is strictly after ``previous``."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


def parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def encode_records(records: Sequence[Record]) -> list[dict[str, Any]]:
    # Fields are kept as [name, value] pairs: JSONB does not preserve key order.
    return [{"id": record.id, "fields": [[name, value] for name, value in record.fields]} for record in records]


def decode_records(payload: Any) -> tuple[Record, ...]:
    records: list[Record] = []
    for item in payload or []:
        records.append(Record(id=str(item["id"]), fields=tuple((str(name), value) for name, value in item.get("fields", []))))
    return tuple(records)


def normalize_records(records: Sequence[Record]) -> tuple[Record, ...]:
    """Check a record set before it is written.

    Raises ``ValidationError`` for an empty set or duplicate ids and gives
    records without an id a fresh one.
    """
    if not records:
        raise ValidationError("Record set must not be empty")

    seen: set[str] = set()
    normalized: list[Record] = []
    for record in records:
        if not isinstance(record, Record):
            raise ValidationError("Records must be Record instances")
        record_id = record.id or str(uuid.uuid4())
        if record_id in seen:
            raise ValidationError(f"Duplicate record id: {record_id}")
        seen.add(record_id)
        normalized.append(record if record.id else Record(id=record_id, fields=record.fields))
    return tuple(normalized)


def normalize_draft(draft: DocumentDraft) -> tuple[str, DocumentKind, tuple[Record, ...]]:
    name = (draft.name or "").strip()
    if not name:
        raise ValidationError("Document name is required")
    try:
        kind = DocumentKind(draft.kind)
    except ValueError as exc:
        raise ValidationError(f"Unsupported document kind: {draft.kind}") from exc
    return name, kind, normalize_records(draft.records)


def sort_newest_first(documents: Iterable[Document]) -> list[Document]:
    return sorted(documents, key=lambda doc: (doc.updated_at, doc.created_at, doc.id), reverse=True)


class DocumentStore(abc.ABC):
    """Versioned document persistence.

    ``update`` snapshots the current records as the next version before
    replacing them. Implementations must behave identically for identical
    call sequences.
    """

    def __init__(self, owner_id: str | uuid.UUID | None = None) -> None:
        self.owner_id = str(owner_id) if owner_id is not None else None

    @property
    def owner_uuid(self) -> uuid.UUID:
        """The bound owner; every operation fails with ``Unauthenticated`` without one."""
        owner_uuid = parse_uuid(self.owner_id) if self.owner_id else None
        if owner_uuid is None:
            raise Unauthenticated("Authentication required")
        return owner_uuid

    def _resolve_owner(self, owner: str | None = None) -> str:
        owner_uuid = self.owner_uuid
        if owner is not None and parse_uuid(owner) != owner_uuid:
            raise Unauthenticated("Documents of another owner are not visible")
        return str(owner_uuid)

    @staticmethod
    def _not_found(document_id: str) -> NotFound:
        return NotFound(f"Document not found: {document_id}")

    @abc.abstractmethod
    def create(self, draft: DocumentDraft) -> str:
        """Persist a new document and return its id."""

    @abc.abstractmethod
    def get(self, document_id: str) -> Document:
        """Return the current state of a document or raise ``NotFound``."""

    @abc.abstractmethod
    def list_documents(self, owner: str | None = None) -> list[Document]:
        """Return the owner's documents, most recently updated first."""

    @abc.abstractmethod
    def update(self, document_id: str, records: Sequence[Record], change_note: str = "") -> None:
        """Snapshot the current records, then replace them."""

    @abc.abstractmethod
    def delete(self, document_id: str) -> None:
        """Remove a document and all of its snapshots."""

    @abc.abstractmethod
    def list_versions(self, document_id: str) -> list[VersionSnapshot]:
        """Return the document's snapshots, newest first."""

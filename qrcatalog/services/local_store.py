from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Sequence

from ..config import settings
from ..errors import StorageFailure
from .blob import BlobStore, get_blob_store
from .document_store import (
    Document,
    DocumentDraft,
    DocumentKind,
    DocumentStore,
    Record,
    VersionSnapshot,
    decode_records,
    encode_records,
    next_timestamp,
    normalize_draft,
    normalize_records,
    sort_newest_first,
    utcnow,
)
from .metrics import record_document_created, record_document_deleted, record_version_captured

logger = logging.getLogger(__name__)


class LocalAdapter(DocumentStore):
    """Keeps every document in one JSON blob under a single storage key.

    Each mutating call loads the whole collection, applies the change and
    writes the whole collection back. Meant for a single session at a time.
    """

    def __init__(
        self,
        blob_store: BlobStore | None = None,
        owner_id: str | uuid.UUID | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(owner_id)
        self._blob_store = blob_store
        self.key = key or settings.local_store_key

    @property
    def blob_store(self) -> BlobStore:
        if self._blob_store is None:
            self._blob_store = get_blob_store()
        return self._blob_store

    # --- blob I/O -------------------------------------------------------
    def _load(self) -> list[dict[str, Any]]:
        raw = self.blob_store.read(self.key)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageFailure(f"Stored collection {self.key!r} is not valid JSON") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("documents"), list):
            raise StorageFailure(f"Stored collection {self.key!r} has an unexpected layout")
        return payload["documents"]

    def _save(self, entries: list[dict[str, Any]]) -> None:
        payload = json.dumps({"documents": entries}, separators=(",", ":"), ensure_ascii=False)
        self.blob_store.write(self.key, payload.encode("utf-8"))

    def _find(self, entries: list[dict[str, Any]], document_id: str) -> dict[str, Any]:
        owner_id = self._resolve_owner()
        for entry in entries:
            if entry.get("id") == document_id and entry.get("owner_id") == owner_id:
                return entry
        raise self._not_found(document_id)

    # --- (de)serialization ----------------------------------------------
    @staticmethod
    def _to_document(entry: dict[str, Any]) -> Document:
        versions = tuple(
            VersionSnapshot(
                sequence_number=int(version["sequence_number"]),
                captured_records=decode_records(version.get("records")),
                timestamp=datetime.fromisoformat(version["timestamp"]),
                change_note=version.get("change_note") or "",
            )
            for version in entry.get("versions", [])
        )
        return Document(
            id=entry["id"],
            name=entry["name"],
            kind=DocumentKind(entry["kind"]),
            records=decode_records(entry.get("records")),
            created_at=datetime.fromisoformat(entry["created_at"]),
            updated_at=datetime.fromisoformat(entry["updated_at"]),
            versions=versions,
            owner_id=entry.get("owner_id"),
        )

    # --- DocumentStore --------------------------------------------------
    def create(self, draft: DocumentDraft) -> str:
        owner_id = self._resolve_owner()
        name, kind, records = normalize_draft(draft)
        entries = self._load()
        now = utcnow().isoformat()
        document_id = str(uuid.uuid4())
        entries.append(
            {
                "id": document_id,
                "name": name,
                "kind": kind.value,
                "owner_id": owner_id,
                "created_at": now,
                "updated_at": now,
                "records": encode_records(records),
                "versions": [],
            }
        )
        self._save(entries)
        record_document_created("local", kind.value)
        logger.info("document_created backend=local document_id=%s records=%s", document_id, len(records))
        return document_id

    def get(self, document_id: str) -> Document:
        self._resolve_owner()
        return self._to_document(self._find(self._load(), document_id))

    def list_documents(self, owner: str | None = None) -> list[Document]:
        owner_id = self._resolve_owner(owner)
        documents = [self._to_document(entry) for entry in self._load() if entry.get("owner_id") == owner_id]
        return sort_newest_first(documents)

    def update(self, document_id: str, records: Sequence[Record], change_note: str = "") -> None:
        self._resolve_owner()
        new_records = normalize_records(records)
        entries = self._load()
        entry = self._find(entries, document_id)

        versions = entry.setdefault("versions", [])
        sequence_number = len(versions) + 1
        updated_at = next_timestamp(datetime.fromisoformat(entry["updated_at"]))
        versions.append(
            {
                "sequence_number": sequence_number,
                "timestamp": updated_at.isoformat(),
                "change_note": change_note or "",
                "records": list(entry.get("records", [])),
            }
        )
        entry["records"] = encode_records(new_records)
        entry["updated_at"] = updated_at.isoformat()

        self._save(entries)
        record_version_captured("local")
        logger.info(
            "document_updated backend=local document_id=%s version=%s records=%s",
            document_id,
            sequence_number,
            len(new_records),
        )

    def delete(self, document_id: str) -> None:
        self._resolve_owner()
        entries = self._load()
        target = self._find(entries, document_id)
        self._save([entry for entry in entries if entry is not target])
        record_document_deleted("local")
        logger.info("document_deleted backend=local document_id=%s", document_id)

    def list_versions(self, document_id: str) -> list[VersionSnapshot]:
        document = self.get(document_id)
        return sorted(document.versions, key=lambda version: version.sequence_number, reverse=True)

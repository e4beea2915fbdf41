from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Sequence

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import StorageFailure
from ..models import StoredDocument, StoredVersion
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
    parse_uuid,
    utcnow,
)
from .metrics import record_document_created, record_document_deleted, record_version_captured

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RemoteAdapter(DocumentStore):
    """Owner-scoped document store on the ``documents`` and ``versions`` tables.

    Every query filters on ``owner_id``. ``update`` reads the current row,
    inserts the snapshot and rewrites the row inside a single transaction,
    so a failed write never leaves a snapshot behind.
    """

    def __init__(self, session_factory: SessionFactory, owner_id: str | uuid.UUID | None) -> None:
        super().__init__(owner_id)
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("remote_store_failure action=%s owner_id=%s error=%s", action, self.owner_id, exc)
            raise StorageFailure(f"Database error during {action}") from exc
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _load_row(self, db: Session, document_id: str, *, for_update: bool = False) -> StoredDocument:
        owner_uuid = self.owner_uuid
        document_uuid = parse_uuid(document_id)
        if document_uuid is None:
            raise self._not_found(document_id)

        stmt = select(StoredDocument).where(
            StoredDocument.id == document_uuid,
            StoredDocument.owner_id == owner_uuid,
        )
        if for_update:
            stmt = stmt.with_for_update()
        row = db.execute(stmt).scalar_one_or_none()
        if row is None:
            raise self._not_found(document_id)
        return row

    def _version_rows(self, db: Session, document_uuid: uuid.UUID) -> list[StoredVersion]:
        stmt = (
            select(StoredVersion)
            .where(StoredVersion.document_id == document_uuid, StoredVersion.owner_id == self.owner_uuid)
            .order_by(StoredVersion.version_number.desc())
        )
        return list(db.execute(stmt).scalars())

    @staticmethod
    def _to_snapshot(row: StoredVersion) -> VersionSnapshot:
        return VersionSnapshot(
            sequence_number=row.version_number,
            captured_records=decode_records(row.data),
            timestamp=_aware(row.created_at),
            change_note=row.change_note or "",
        )

    def _to_document(self, row: StoredDocument, versions: list[StoredVersion]) -> Document:
        return Document(
            id=str(row.id),
            name=row.name,
            kind=DocumentKind(row.kind),
            records=decode_records(row.data),
            created_at=_aware(row.created_at),
            updated_at=_aware(row.updated_at),
            versions=tuple(self._to_snapshot(version) for version in reversed(versions)),
            owner_id=str(row.owner_id),
        )

    # --- DocumentStore --------------------------------------------------
    def create(self, draft: DocumentDraft) -> str:
        owner_uuid = self.owner_uuid
        name, kind, records = normalize_draft(draft)
        now = utcnow()
        with self._transaction("create") as db:
            row = StoredDocument(
                owner_id=owner_uuid,
                name=name,
                kind=kind.value,
                data=encode_records(records),
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.flush()
            document_id = str(row.id)

        record_document_created("remote", kind.value)
        logger.info(
            "document_created backend=remote document_id=%s owner_id=%s records=%s",
            document_id,
            self.owner_id,
            len(records),
        )
        return document_id

    def get(self, document_id: str) -> Document:
        with self._transaction("get") as db:
            row = self._load_row(db, document_id)
            return self._to_document(row, self._version_rows(db, row.id))

    def list_documents(self, owner: str | None = None) -> list[Document]:
        owner_uuid = parse_uuid(self._resolve_owner(owner))
        with self._transaction("list") as db:
            rows = db.execute(
                select(StoredDocument)
                .where(StoredDocument.owner_id == owner_uuid)
                .order_by(
                    StoredDocument.updated_at.desc(),
                    StoredDocument.created_at.desc(),
                    StoredDocument.id.desc(),
                )
            ).scalars().all()
            return [self._to_document(row, self._version_rows(db, row.id)) for row in rows]

    def update(self, document_id: str, records: Sequence[Record], change_note: str = "") -> None:
        self._resolve_owner()
        new_records = normalize_records(records)
        with self._transaction("update") as db:
            row = self._load_row(db, document_id, for_update=True)
            current_max = db.execute(
                select(func.max(StoredVersion.version_number)).where(StoredVersion.document_id == row.id)
            ).scalar()
            version_number = (current_max or 0) + 1
            updated_at = next_timestamp(_aware(row.updated_at))

            db.add(
                StoredVersion(
                    document_id=row.id,
                    owner_id=row.owner_id,
                    version_number=version_number,
                    data=list(row.data or []),
                    change_note=change_note or "",
                    created_at=updated_at,
                )
            )
            row.data = encode_records(new_records)
            row.updated_at = updated_at
            db.flush()

        record_version_captured("remote")
        logger.info(
            "document_updated backend=remote document_id=%s owner_id=%s version=%s records=%s",
            document_id,
            self.owner_id,
            version_number,
            len(new_records),
        )

    def delete(self, document_id: str) -> None:
        with self._transaction("delete") as db:
            row = self._load_row(db, document_id, for_update=True)
            db.execute(sa_delete(StoredVersion).where(StoredVersion.document_id == row.id))
            db.execute(sa_delete(StoredDocument).where(StoredDocument.id == row.id))

        record_document_deleted("remote")
        logger.info("document_deleted backend=remote document_id=%s owner_id=%s", document_id, self.owner_id)

    def list_versions(self, document_id: str) -> list[VersionSnapshot]:
        with self._transaction("list_versions") as db:
            row = self._load_row(db, document_id)
            return [self._to_snapshot(version) for version in self._version_rows(db, row.id)]

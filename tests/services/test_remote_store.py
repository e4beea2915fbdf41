from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from qrcatalog.errors import StorageFailure
from qrcatalog.models import StoredDocument, StoredVersion
from qrcatalog.services import remote_store
from qrcatalog.services.document_store import DocumentDraft, DocumentKind, Record
from qrcatalog.services.remote_store import RemoteAdapter


@pytest.fixture()
def remote(session_factory, owner_id) -> RemoteAdapter:
    return RemoteAdapter(session_factory, owner_id)


def _draft() -> DocumentDraft:
    return DocumentDraft(
        name="Products",
        records=[Record(id="r1", fields=(("SKU", "A1"), ("Price", 10)))],
        kind=DocumentKind.IMPORTED,
    )


def test_update_writes_snapshot_row_for_owner(remote, session_factory, owner_id):
    document_id = remote.create(_draft())
    remote.update(document_id, [Record(id="r1", fields=(("SKU", "A1"), ("Price", 12)))], "price change")

    with session_factory() as db:
        versions = db.execute(select(StoredVersion)).scalars().all()
        assert len(versions) == 1
        assert versions[0].version_number == 1
        assert str(versions[0].owner_id) == owner_id
        assert versions[0].change_note == "price change"
        assert versions[0].data == [{"id": "r1", "fields": [["SKU", "A1"], ["Price", 10]]}]

        document = db.get(StoredDocument, uuid.UUID(document_id))
        assert document.data == [{"id": "r1", "fields": [["SKU", "A1"], ["Price", 12]]}]


def test_failed_update_leaves_no_snapshot_behind(remote, monkeypatch):
    document_id = remote.create(_draft())
    before = remote.get(document_id)

    def broken_encode(records):
        raise OperationalError("UPDATE documents", {}, Exception("connection lost"))

    monkeypatch.setattr(remote_store, "encode_records", broken_encode)

    with pytest.raises(StorageFailure):
        remote.update(document_id, [Record(id="r1", fields=(("Price", 99),))])

    monkeypatch.undo()
    assert remote.list_versions(document_id) == []
    after = remote.get(document_id)
    assert after.records == before.records
    assert after.updated_at == before.updated_at


def test_delete_removes_version_rows(remote, session_factory):
    document_id = remote.create(_draft())
    remote.update(document_id, [Record(id="r1", fields=(("Price", 1),))])
    remote.update(document_id, [Record(id="r1", fields=(("Price", 2),))])

    remote.delete(document_id)

    with session_factory() as db:
        assert db.execute(select(StoredVersion)).scalars().all() == []
        assert db.execute(select(StoredDocument)).scalars().all() == []


def test_timestamps_are_timezone_aware(remote):
    document_id = remote.create(_draft())
    remote.update(document_id, [Record(id="r1", fields=(("Price", 1),))])

    document = remote.get(document_id)
    assert document.created_at.tzinfo is not None
    assert document.updated_at.tzinfo is not None
    assert document.versions[0].timestamp.tzinfo is not None

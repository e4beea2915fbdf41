from __future__ import annotations

import io
import os
import pathlib
import sys
import uuid
from typing import Any, Callable, Iterator

# Settings are read once at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORE_BACKEND", "remote")
os.environ.setdefault("APP_URL", "https://catalog.example.com")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_REGION", "us-east-1")

import boto3
import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from qrcatalog.config import settings
from qrcatalog.dependencies.store import get_session_factory
from qrcatalog.main import app
from qrcatalog.models import Base
from qrcatalog.services.auth import OwnerTokenService
from qrcatalog.services.blob import FileBlobStore
from qrcatalog.services.document_store import DocumentStore
from qrcatalog.services.local_store import LocalAdapter
from qrcatalog.services.remote_store import RemoteAdapter


@pytest.fixture()
def engine():
    """In-memory SQLite database shared by every session of one test."""
    _engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(_engine)
    try:
        yield _engine
    finally:
        Base.metadata.drop_all(_engine)
        _engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def owner_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture(params=["local", "remote"])
def store_factory(request, tmp_path, session_factory) -> Callable[[str], DocumentStore]:
    """Build adapters of one backend that share the same underlying storage."""
    if request.param == "local":
        blob_store = FileBlobStore(tmp_path / "blobs")
        return lambda owner: LocalAdapter(blob_store=blob_store, owner_id=owner)
    return lambda owner: RemoteAdapter(session_factory, owner)


@pytest.fixture()
def store(store_factory, owner_id) -> DocumentStore:
    return store_factory(owner_id)


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """FastAPI TestClient backed by the per-test SQLite database."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        with TestClient(app) as _client:
            yield _client
    finally:
        app.dependency_overrides.pop(get_session_factory, None)


@pytest.fixture()
def auth_headers(owner_id) -> dict[str, str]:
    token = OwnerTokenService().issue(owner_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def local_backend(monkeypatch, tmp_path) -> pathlib.Path:
    """Switch the API to the local adapter writing under ``tmp_path``."""
    store_dir = tmp_path / "local-store"
    monkeypatch.setattr(settings, "store_backend", "local")
    monkeypatch.setattr(settings, "blob_backend", "file")
    monkeypatch.setattr(settings, "local_store_dir", store_dir)
    return store_dir


@pytest.fixture()
def mock_s3_bucket():
    from moto import mock_aws

    with mock_aws():
        s3 = boto3.client("s3", region_name=settings.aws.region)
        bucket = "test-catalog-bucket"
        s3.create_bucket(Bucket=bucket)
        previous_bucket = settings.aws.s3_bucket
        settings.aws.s3_bucket = bucket
        try:
            yield s3
        finally:
            settings.aws.s3_bucket = previous_bucket


def build_workbook(rows: list[list[Any]], extra_sheets: dict[str, list[list[Any]]] | None = None) -> bytes:
    """Serialize ``rows`` as the first sheet of an ``.xlsx`` workbook."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Products"
    for row in rows:
        ws.append(row)
    for title, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(title)
        for row in sheet_rows:
            extra.append(row)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.fixture()
def workbook_bytes() -> Callable[..., bytes]:
    return build_workbook


@pytest.fixture()
def product_sheet() -> bytes:
    return build_workbook(
        [
            ["SKU", "Price"],
            ["A1", 10],
            ["B2", 20],
        ]
    )

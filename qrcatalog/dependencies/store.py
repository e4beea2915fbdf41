from __future__ import annotations

from fastapi import Depends

from ..config import settings
from ..db.session import SessionLocal
from ..services.codes import CodeGenerator
from ..services.document_store import DocumentStore
from ..services.export import ExportPipeline
from ..services.local_store import LocalAdapter
from ..services.remote_store import RemoteAdapter, SessionFactory
from .auth import OwnerContext, require_owner


def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_document_store(
    context: OwnerContext = Depends(require_owner),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> DocumentStore:
    if settings.store_backend == "local":
        return LocalAdapter(owner_id=context.owner_id)
    return RemoteAdapter(session_factory, context.owner_id)


def get_export_pipeline() -> ExportPipeline:
    return ExportPipeline(CodeGenerator())

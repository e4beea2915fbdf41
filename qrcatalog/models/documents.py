from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from .base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class StoredDocument(Base):
    __tablename__ = "documents"
    __table_args__ = (Index("ix_documents_owner_updated", "owner_id", "updated_at"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    name = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="manual")   # "imported" | "manual"
    data = Column(JSONType, nullable=False, default=list)      # encoded record list
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    versions = relationship(
        "StoredVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StoredVersion.version_number",
    )

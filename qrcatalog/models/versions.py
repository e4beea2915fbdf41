from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from .base import Base
from .documents import JSONType


class StoredVersion(Base):
    __tablename__ = "versions"
    __table_args__ = (UniqueConstraint("document_id", "version_number", name="uq_versions_document_number"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    document_id = Column(
        Uuid(as_uuid=True), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    owner_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    version_number = Column(Integer, nullable=False)
    data = Column(JSONType, nullable=False)          # records as they were before the update
    change_note = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    document = relationship("StoredDocument", back_populates="versions")

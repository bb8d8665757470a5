import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base
from app.models.types import EncryptedString


class BusinessDocument(Base):
    __tablename__ = "business_documents"
    __table_args__ = (
        Index("ix_business_documents_business_deleted", "business_id", "deleted_at"),
        Index("ix_business_documents_business_type", "business_id", "doc_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_id = Column(
        UUID(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    doc_type = Column(String(50), nullable=False)
    doc_url = Column(Text, nullable=False)
    is_password_protected = Column(Boolean, nullable=False, default=False)
    doc_password = Column(EncryptedString(), nullable=True)
    doc_bank_name = Column(String(100), nullable=True)
    doc_year = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"eager_defaults": True}

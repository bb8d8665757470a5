import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class DocumentRequest(Base):
    __tablename__ = "document_requests"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'fulfilled')", name="ck_document_request_status"),
        Index("ix_document_requests_application_status", "loan_application_id", "status"),
        Index("ix_document_requests_requested_from_type", "requested_from", "document_type"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    requested_from = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    document_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    is_required = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="pending")
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    fulfilled_with = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __mapper_args__ = {"eager_defaults": True}

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base


class LoanProductSnapshot(Base):
    """Product terms as they stood when an application was made against them."""

    __tablename__ = "loan_product_snapshots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    loan_product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_snapshot = Column(JSONB, nullable=False)
    product_version = Column(Integer, nullable=False)
    snapshot_reason = Column(String(50), nullable=False, default="application_creation")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

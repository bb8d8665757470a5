import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class BusinessProfile(Base):
    __tablename__ = "business_profiles"
    __table_args__ = (
        CheckConstraint(
            "ownership_percentage IS NULL OR (ownership_percentage >= 0 AND ownership_percentage <= 100)",
            name="ck_business_ownership_percentage",
        ),
        Index("ix_business_profiles_user_deleted", "user_id", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(1024), nullable=True)
    entity_type = Column(String(50), nullable=True)
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    address = Column(String(255), nullable=True)
    zip_code = Column(String(20), nullable=True)
    sector = Column(String(100), nullable=True)
    year_of_incorporation = Column(Integer, nullable=True)
    avg_monthly_turnover = Column(Numeric(18, 2), nullable=True)
    avg_yearly_turnover = Column(Numeric(18, 2), nullable=True)
    borrowing_history = Column(Boolean, nullable=True)
    amount_borrowed = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    ownership_type = Column(String(50), nullable=True)
    ownership_percentage = Column(Integer, nullable=True)
    is_owned = Column(Boolean, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"eager_defaults": True}

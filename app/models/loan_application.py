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
from sqlalchemy.dialects.postgresql import JSONB, UUID

from app.db.base import Base


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        CheckConstraint("loan_amount > 0", name="ck_loan_app_amount_positive"),
        CheckConstraint("loan_term > 0", name="ck_loan_app_term_positive"),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        CheckConstraint(
            "status IN ('draft', 'submitted', 'under_review', 'approved', 'rejected', 'withdrawn', 'disbursed')",
            name="ck_loan_app_status",
        ),
        CheckConstraint(
            "offer_stage IN ('none', 'offer_letter_sent', 'offer_letter_signed', 'offer_letter_declined')",
            name="ck_loan_app_offer_stage",
        ),
        Index("ix_loan_applications_user_status", "user_id", "status"),
        Index("ix_loan_applications_deleted_at", "deleted_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_number = Column(String(32), nullable=False, unique=True)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    business_id = Column(
        UUID(as_uuid=True),
        ForeignKey("business_profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    loan_product_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    co_applicant_ids = Column(JSONB, nullable=False, default=list)
    loan_amount = Column(Numeric(18, 2), nullable=False)
    loan_term = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    purpose = Column(String(50), nullable=False)
    purpose_description = Column(Text, nullable=True)
    is_business_loan = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    status_reason = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    offer_stage = Column(String(30), nullable=False, default="none")
    last_updated_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_updated_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

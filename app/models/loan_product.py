import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class LoanProduct(Base):
    __tablename__ = "loan_products"
    __table_args__ = (
        CheckConstraint("min_amount >= 0", name="ck_loan_product_min_amount_nonneg"),
        CheckConstraint("min_amount <= max_amount", name="ck_loan_product_amount_range"),
        CheckConstraint("min_term >= 1", name="ck_loan_product_min_term_positive"),
        CheckConstraint("min_term <= max_term", name="ck_loan_product_term_range"),
        CheckConstraint("interest_rate >= 0", name="ck_loan_product_rate_nonneg"),
        CheckConstraint(
            "term_unit IN ('days', 'weeks', 'months', 'quarters', 'years')",
            name="ck_loan_product_term_unit",
        ),
        CheckConstraint(
            "interest_type IN ('fixed', 'variable')",
            name="ck_loan_product_interest_type",
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(150), nullable=False)
    slug = Column(String(180), nullable=False, unique=True)
    summary = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False)
    min_amount = Column(Numeric(18, 2), nullable=False)
    max_amount = Column(Numeric(18, 2), nullable=False)
    min_term = Column(Integer, nullable=False)
    max_term = Column(Integer, nullable=False)
    term_unit = Column(String(20), nullable=False, default="months")
    interest_rate = Column(Numeric(7, 4), nullable=False)
    interest_type = Column(String(20), nullable=False, default="fixed")
    rate_period = Column(String(20), nullable=False, default="per_year")
    repayment_frequency = Column(String(20), nullable=False, default="monthly")
    processing_fee_flat = Column(Numeric(18, 2), nullable=True)
    grace_period_days = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __mapper_args__ = {"eager_defaults": True}

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
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from app.db.base import Base


class OfferLetter(Base):
    __tablename__ = "offer_letters"
    __table_args__ = (
        CheckConstraint("version >= 1", name="ck_offer_letter_version_positive"),
        CheckConstraint("offer_amount > 0", name="ck_offer_letter_amount_positive"),
        CheckConstraint("offer_term > 0", name="ck_offer_letter_term_positive"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'delivered', 'viewed', 'signed', 'declined', 'voided', 'expired')",
            name="ck_offer_letter_status",
        ),
        CheckConstraint(
            "docusign_status IN ('not_sent', 'sent', 'delivered', 'viewed', 'completed', 'declined', 'voided', 'expired')",
            name="ck_offer_letter_docusign_status",
        ),
        UniqueConstraint("loan_application_id", "version", name="uq_offer_letters_application_version"),
        Index(
            "uq_offer_letters_application_active",
            "loan_application_id",
            unique=True,
            postgresql_where=text("is_active AND deleted_at IS NULL"),
        ),
        Index("ix_offer_letters_status_expires", "status", "expires_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    offer_number = Column(String(32), nullable=False, unique=True)
    version = Column(Integer, nullable=False, default=1)
    offer_amount = Column(Numeric(18, 2), nullable=False)
    offer_term = Column(Integer, nullable=False)
    interest_rate = Column(Numeric(7, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    special_conditions = Column(Text, nullable=True)
    requires_guarantor = Column(Boolean, nullable=False, default=False)
    requires_collateral = Column(Boolean, nullable=False, default=False)
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default="draft", index=True)
    docusign_status = Column(String(20), nullable=False, default="not_sent")
    docusign_envelope_id = Column(String(64), nullable=True, unique=True)
    docusign_template_id = Column(String(64), nullable=True)
    offer_letter_url = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    viewed_at = Column(DateTime(timezone=True), nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    row_version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": row_version, "eager_defaults": True}

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError
from sqlalchemy import UniqueConstraint
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ServiceError
from app.models.application_audit_trail import ApplicationAuditTrail
from app.models.loan_application import LoanApplication
from app.models.offer_letter import OfferLetter
from app.schemas.offer_letters import (
    OfferLetterCreate,
    OfferLetterListQuery,
    OfferLetterSend,
    OfferLetterUpdate,
    OfferLetterVoid,
)
from app.services import offer_letters
from app.services.docusign import DocuSignError
from conftest import (
    FakeAsyncSession,
    FakeResult,
    entity_handler,
    make_application,
    make_offer,
    make_staff,
    sequence_handler,
)


class FakeDocuSign:
    def __init__(self, *, fail_send: bool = False, fail_view: bool = False, fail_void: bool = False) -> None:
        self.fail_send = fail_send
        self.fail_view = fail_view
        self.fail_void = fail_void
        self.envelopes: list[dict] = []
        self.voided: list[tuple[str, str]] = []

    async def create_and_send_envelope(self, **kwargs) -> str:
        if self.fail_send:
            raise DocuSignError("Authentication failed: 401")
        self.envelopes.append(kwargs)
        return "env-123"

    async def create_recipient_view(self, envelope_id, **kwargs) -> str:
        if self.fail_view:
            raise DocuSignError("view unavailable")
        return f"https://sign.example.com/{envelope_id}"

    async def void_envelope(self, envelope_id: str, reason: str) -> None:
        if self.fail_void:
            raise DocuSignError("void failed")
        self.voided.append((envelope_id, reason))


def _create_body(application: LoanApplication, **overrides) -> OfferLetterCreate:
    data = dict(
        loan_application_id=application.id,
        offer_amount=Decimal("9000"),
        offer_term=12,
        interest_rate=Decimal("11.5"),
        currency="usd",
        recipient_email="ada@example.com",
        recipient_name="Ada Applicant",
    )
    data.update(overrides)
    return OfferLetterCreate(**data)


def _db_for(application: LoanApplication, offers: list[OfferLetter] | None = None) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    db.on_execute(entity_handler(OfferLetter, FakeResult(items=offers or [])))
    return db


def _db_with_offer(offer: OfferLetter, application: LoanApplication) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(OfferLetter, FakeResult(scalar=offer)))
    db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    return db


def test_offer_number_format() -> None:
    number = offer_letters.generate_offer_number(datetime(2026, 5, 1, tzinfo=timezone.utc))
    prefix, year, serial = number.split("-")
    assert (prefix, year) == ("OFFER", "2026")
    assert len(serial) == 6 and serial.isdigit()


@pytest.mark.asyncio
async def test_create_first_offer_for_approved_application() -> None:
    officer = make_staff()
    application = make_application(status="approved")
    db = _db_for(application)

    dto = await offer_letters.create(db, _create_body(application), officer)

    assert dto.version == 1
    assert dto.status == "draft"
    assert dto.docusign_status == "not_sent"
    assert dto.currency == "USD"
    assert dto.is_active is True
    assert dto.created_by == officer.id
    assert dto.expires_at > datetime.now(timezone.utc) + timedelta(days=29)
    audits = db.added_of(ApplicationAuditTrail)
    assert [entry.action for entry in audits] == ["offer_letter_created"]
    assert audits[0].metadata_["version"] == 1
    assert db.committed is True


@pytest.mark.asyncio
async def test_new_offer_takes_next_version_after_voided_ones() -> None:
    application = make_application(status="approved")
    previous = [
        make_offer(application=application, status="voided", version=1, is_active=False),
        make_offer(application=application, status="declined", version=3, is_active=False),
    ]
    db = _db_for(application, previous)

    dto = await offer_letters.create(db, _create_body(application), make_staff())

    assert dto.version == 4


@pytest.mark.asyncio
async def test_second_active_offer_rejected() -> None:
    application = make_application(status="approved")
    db = _db_for(application, [make_offer(application=application, status="sent")])

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.create(db, _create_body(application), make_staff())

    assert exc_info.value.code == "ACTIVE_OFFER_EXISTS"
    assert db.added == []


@pytest.mark.asyncio
async def test_deleted_active_offer_does_not_block() -> None:
    application = make_application(status="approved")
    deleted = make_offer(application=application, deleted_at=datetime.now(timezone.utc))
    db = _db_for(application, [deleted])

    dto = await offer_letters.create(db, _create_body(application), make_staff())

    assert dto.version == 2


@pytest.mark.asyncio
async def test_offer_requires_approved_application() -> None:
    application = make_application(status="under_review")
    db = _db_for(application)

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.create(db, _create_body(application), make_staff())

    assert exc_info.value.code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_update_draft_records_diff() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application)
    db = _db_with_offer(offer, application)

    dto = await offer_letters.update(
        db, offer.id, OfferLetterUpdate(offer_amount=Decimal("8000"), currency="kes"), make_staff()
    )

    assert dto.offer_amount == Decimal("8000")
    assert dto.currency == "KES"
    audit = db.added_of(ApplicationAuditTrail)[0]
    assert audit.action == "offer_letter_updated"
    assert audit.metadata_["changes"]["currency"] == {"from": "USD", "to": "KES"}


@pytest.mark.asyncio
async def test_update_only_allowed_for_drafts() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application, status="sent")

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.update(
            _db_with_offer(offer, application), offer.id, OfferLetterUpdate(offer_term=6), make_staff()
        )

    assert exc_info.value.code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_remove_soft_deletes_draft() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application)
    db = _db_with_offer(offer, application)

    await offer_letters.remove(db, offer.id, make_staff())

    assert offer.deleted_at is not None
    assert offer.is_active is False
    assert db.added_of(ApplicationAuditTrail)[0].action == "offer_letter_deleted"


@pytest.mark.asyncio
async def test_get_missing_offer() -> None:
    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.get(FakeAsyncSession(), uuid4())
    assert exc_info.value.code == "OFFER_LETTER_NOT_FOUND"


@pytest.mark.asyncio
async def test_send_creates_envelope_and_moves_offer_stage(monkeypatch) -> None:
    sent_emails: list[tuple] = []

    async def fake_send_email(to, subject, html, **kwargs):
        sent_emails.append((to, subject, html))
        return offer_letters.email_service.EmailResult(success=True, message_id="m1")

    monkeypatch.setattr(offer_letters.email_service, "send_email", fake_send_email)
    officer = make_staff()
    application = make_application(status="approved")
    offer = make_offer(application=application)
    db = _db_with_offer(offer, application)
    docusign = FakeDocuSign()

    dto = await offer_letters.send(db, offer.id, OfferLetterSend(email_message="Welcome"), officer, client=docusign)

    assert dto.status == "sent"
    assert dto.docusign_status == "sent"
    assert dto.docusign_envelope_id == "env-123"
    assert dto.offer_letter_url == "https://sign.example.com/env-123"
    assert dto.sent_at is not None
    assert application.offer_stage == "offer_letter_sent"
    assert docusign.envelopes[0]["signer_email"] == offer.recipient_email
    assert docusign.envelopes[0]["client_user_id"] == str(application.user_id)
    assert offer.offer_number in docusign.envelopes[0]["document_html"]
    assert [entry.action for entry in db.added_of(ApplicationAuditTrail)] == [
        "offer_letter_sent",
        "application_offer_letter_sent",
    ]
    assert db.committed is True
    assert sent_emails and sent_emails[0][0] == offer.recipient_email


@pytest.mark.asyncio
async def test_send_falls_back_to_demo_signing_url(monkeypatch) -> None:
    monkeypatch.setattr(offer_letters.email_service.settings, "resend_api_key", None)
    application = make_application(status="approved")
    offer = make_offer(application=application)

    dto = await offer_letters.send(
        _db_with_offer(offer, application),
        offer.id,
        OfferLetterSend(),
        make_staff(),
        client=FakeDocuSign(fail_view=True),
    )

    assert dto.offer_letter_url == offer_letters.FALLBACK_SIGNING_URL.format(envelope_id="env-123")


@pytest.mark.asyncio
async def test_send_provider_failure_leaves_offer_in_draft() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application)
    db = _db_with_offer(offer, application)

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.send(db, offer.id, OfferLetterSend(), make_staff(), client=FakeDocuSign(fail_send=True))

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "SEND_OFFER_LETTER_ERROR"
    assert offer.status == "draft"
    assert application.offer_stage == "none"
    assert db.committed is False


@pytest.mark.asyncio
async def test_void_sent_offer_voids_envelope() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application, status="sent", docusign_envelope_id="env-9")
    db = _db_with_offer(offer, application)
    docusign = FakeDocuSign()

    dto = await offer_letters.void(db, offer.id, OfferLetterVoid(reason="Terms changed"), make_staff(), client=docusign)

    assert dto.status == "voided"
    assert dto.is_active is False
    assert dto.voided_at is not None
    assert docusign.voided == [("env-9", "Terms changed")]
    audit = db.added_of(ApplicationAuditTrail)[0]
    assert audit.action == "offer_letter_voided"
    assert audit.metadata_["previous_status"] == "sent"


@pytest.mark.asyncio
async def test_void_tolerates_provider_failure() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application, status="viewed", docusign_envelope_id="env-9")

    dto = await offer_letters.void(
        _db_with_offer(offer, application),
        offer.id,
        OfferLetterVoid(reason="Duplicate"),
        make_staff(),
        client=FakeDocuSign(fail_void=True),
    )

    assert dto.status == "voided"


@pytest.mark.asyncio
async def test_signed_offer_cannot_be_voided() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application, status="signed")

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.void(
            _db_with_offer(offer, application), offer.id, OfferLetterVoid(reason="x"), make_staff()
        )

    assert exc_info.value.code == "INVALID_STATUS"


@pytest.mark.asyncio
async def test_list_offer_letters_paginates() -> None:
    application = make_application(status="approved")
    offers = [make_offer(application=application), make_offer(application=application, version=2)]
    db = FakeAsyncSession()
    db.on_execute(sequence_handler([FakeResult(scalar=5), FakeResult(items=offers)]))

    response = await offer_letters.list_offer_letters(db, OfferLetterListQuery(page=1, limit=2))

    assert len(response.items) == 2
    assert response.pagination.total == 5
    assert response.pagination.total_pages == 3


@pytest.mark.asyncio
async def test_get_expiring_returns_dtos() -> None:
    application = make_application(status="approved")
    soon = make_offer(application=application, status="sent", expires_at=datetime.now(timezone.utc) + timedelta(hours=3))
    db = FakeAsyncSession()
    db.on_execute(entity_handler(OfferLetter, FakeResult(items=[soon])))

    expiring = await offer_letters.get_expiring(db, 24)

    assert [dto.id for dto in expiring] == [soon.id]


@pytest.mark.asyncio
async def test_concurrent_create_losing_unique_index_reports_active_offer() -> None:
    application = make_application(status="approved")
    db = _db_for(application)
    db.flush_error = IntegrityError("INSERT INTO offer_letters", {}, Exception("duplicate key value"))

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.create(db, _create_body(application), make_staff())

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "ACTIVE_OFFER_EXISTS"
    assert db.rolled_back is True
    assert db.committed is False


def test_offer_model_guards_active_offer_and_version() -> None:
    indexes = {index.name: index for index in OfferLetter.__table__.indexes}
    active = indexes["uq_offer_letters_application_active"]
    assert active.unique is True
    assert [column.name for column in active.columns] == ["loan_application_id"]
    assert "is_active" in str(active.dialect_options["postgresql"]["where"])

    unique_sets = {
        tuple(column.name for column in constraint.columns)
        for constraint in OfferLetter.__table__.constraints
        if isinstance(constraint, UniqueConstraint)
    }
    assert ("loan_application_id", "version") in unique_sets


def test_update_schema_rejects_null_required_fields() -> None:
    with pytest.raises(ValidationError):
        OfferLetterUpdate.model_validate({"offer_amount": None})
    with pytest.raises(ValidationError):
        OfferLetterUpdate.model_validate({"recipient_name": None})

    body = OfferLetterUpdate.model_validate({"notes": None, "special_conditions": None})
    assert body.model_dump(exclude_unset=True) == {"notes": None, "special_conditions": None}


def test_update_endpoint_rejects_null_amount(staff_client) -> None:
    response = staff_client.patch(f"/api/v1/offer-letters/{uuid4()}", json={"offer_amount": None})

    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_send_voids_envelope_when_save_conflicts() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application)
    db = _db_with_offer(offer, application)
    db.commit_error = StaleDataError("offer_letters row version mismatch")
    docusign = FakeDocuSign()

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.send(db, offer.id, OfferLetterSend(), make_staff(), client=docusign)

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "OFFER_LETTER_CONFLICT"
    assert [envelope_id for envelope_id, _ in docusign.voided] == ["env-123"]
    assert db.rolled_back is True


@pytest.mark.asyncio
async def test_send_save_failure_survives_void_failure() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application)
    db = _db_with_offer(offer, application)
    db.commit_error = RuntimeError("connection reset")

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.send(db, offer.id, OfferLetterSend(), make_staff(), client=FakeDocuSign(fail_void=True))

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "SEND_OFFER_LETTER_ERROR"


@pytest.mark.asyncio
async def test_unexpected_create_failure_is_tagged() -> None:
    application = make_application(status="approved")
    db = _db_for(application)
    db.commit_error = RuntimeError("connection reset")

    with pytest.raises(ServiceError) as exc_info:
        await offer_letters.create(db, _create_body(application), make_staff())

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "CREATE_OFFER_LETTER_ERROR"

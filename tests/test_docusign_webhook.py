from datetime import datetime, timezone

import pytest

from app.core.errors import ServiceError
from app.models.application_audit_trail import ApplicationAuditTrail
from app.models.loan_application import LoanApplication
from app.models.loan_application_snapshot import LoanApplicationSnapshot
from app.models.offer_letter import OfferLetter
from app.services import offer_letters
from conftest import FakeAsyncSession, FakeResult, entity_handler, make_application, make_offer, make_staff

NOW = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)


def _payload(status: str | None, envelope_id: str = "env-1", event: str = "envelope-completed") -> dict:
    summary = {"envelopeId": envelope_id, "statusChangedDateTime": "2026-06-01T07:59:00Z"}
    if status is not None:
        summary["status"] = status
    return {"event": event, "data": {"envelopeSummary": summary}}


def _db(offer: OfferLetter | None, application: LoanApplication | None = None) -> FakeAsyncSession:
    db = FakeAsyncSession()
    # snapshot collection also selects OfferLetter rows; scalar and items share one result
    db.on_execute(entity_handler(OfferLetter, FakeResult(scalar=offer, items=[offer] if offer else [])))
    db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    return db


def test_parse_envelope_summary_shape() -> None:
    event, envelope_id, status, changed_at = offer_letters.parse_docusign_event(_payload("Completed"))
    assert (event, envelope_id, status) == ("envelope-completed", "env-1", "completed")
    assert changed_at == datetime(2026, 6, 1, 7, 59, tzinfo=timezone.utc)


def test_parse_flat_shape_and_status_from_event() -> None:
    event, envelope_id, status, changed_at = offer_letters.parse_docusign_event(
        {"event": "envelope-delivered", "data": {"envelopeId": "env-2"}}
    )
    assert (envelope_id, status, changed_at) == ("env-2", "delivered", None)


def test_parse_rejects_missing_envelope() -> None:
    with pytest.raises(ServiceError) as exc_info:
        offer_letters.parse_docusign_event({"event": "envelope-sent", "data": {}})
    assert exc_info.value.code == "INVALID_WEBHOOK_PAYLOAD"


def test_parse_rejects_missing_status() -> None:
    with pytest.raises(ServiceError):
        offer_letters.parse_docusign_event({"event": "recipient-completed", "data": {"envelopeId": "env-3"}})


@pytest.mark.asyncio
async def test_unknown_envelope_acknowledged() -> None:
    result = await offer_letters.handle_docusign_webhook(_db(None), _payload("completed"), now=NOW)
    assert result.success is True
    assert result.message == "Webhook processed (envelope not found)"
    assert result.offer_letter_id is None


@pytest.mark.asyncio
async def test_delivered_event_updates_offer_only() -> None:
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    offer = make_offer(application=application, status="sent", docusign_envelope_id="env-1")
    db = _db(offer, application)

    result = await offer_letters.handle_docusign_webhook(db, _payload("delivered"), now=NOW)

    assert result.status == "delivered"
    assert offer.status == "delivered"
    assert offer.docusign_status == "delivered"
    assert offer.delivered_at == datetime(2026, 6, 1, 7, 59, tzinfo=timezone.utc)
    assert offer.is_active is True
    assert application.offer_stage == "offer_letter_sent"
    assert [entry.action for entry in db.added_of(ApplicationAuditTrail)] == ["offer_letter_delivered"]
    assert db.committed is True


@pytest.mark.asyncio
async def test_completed_event_signs_offer_and_snapshots() -> None:
    officer = make_staff()
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    offer = make_offer(
        application=application, status="viewed", docusign_envelope_id="env-1", created_by=officer.id
    )
    db = _db(offer, application)

    result = await offer_letters.handle_docusign_webhook(db, _payload("completed"), now=NOW)

    assert result.message == "Webhook processed"
    assert offer.status == "signed"
    assert offer.docusign_status == "completed"
    assert offer.signed_at is not None
    assert offer.is_active is True
    assert application.offer_stage == "offer_letter_signed"

    audits = db.added_of(ApplicationAuditTrail)
    assert [entry.action for entry in audits] == [
        "offer_letter_signed",
        "application_offer_letter_signed",
        "snapshot_created",
    ]
    assert all(entry.user_id == officer.id for entry in audits)
    snapshots = db.added_of(LoanApplicationSnapshot)
    assert len(snapshots) == 1
    assert snapshots[0].approval_stage == "offer_letter_signed"
    assert snapshots[0].snapshot_data["application"]["offer_stage"] == "offer_letter_signed"


@pytest.mark.asyncio
async def test_declined_event_deactivates_offer() -> None:
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    offer = make_offer(application=application, status="sent", docusign_envelope_id="env-1")
    db = _db(offer, application)

    await offer_letters.handle_docusign_webhook(db, _payload("declined"), now=NOW)

    assert offer.status == "declined"
    assert offer.is_active is False
    assert application.offer_stage == "offer_letter_declined"
    audits = db.added_of(ApplicationAuditTrail)
    assert [entry.action for entry in audits] == ["offer_letter_declined", "application_offer_letter_declined"]
    assert audits[0].user_id == application.user_id
    assert db.added_of(LoanApplicationSnapshot) == []


@pytest.mark.asyncio
async def test_event_for_terminal_offer_is_ignored() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application, status="signed", docusign_envelope_id="env-1")
    db = _db(offer, application)

    result = await offer_letters.handle_docusign_webhook(db, _payload("voided"), now=NOW)

    assert result.message == "Webhook processed (offer letter already signed)"
    assert offer.status == "signed"
    assert db.added == []
    assert db.committed is False


@pytest.mark.asyncio
async def test_unmapped_status_is_ignored() -> None:
    application = make_application(status="approved")
    offer = make_offer(application=application, status="sent", docusign_envelope_id="env-1")
    db = _db(offer, application)

    result = await offer_letters.handle_docusign_webhook(db, _payload("sent", event="envelope-sent"), now=NOW)

    assert "ignored" in result.message
    assert offer.status == "sent"
    assert db.added == []


@pytest.mark.asyncio
async def test_late_delivered_event_does_not_rewind_viewed_offer() -> None:
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    offer = make_offer(application=application, status="viewed", docusign_envelope_id="env-1")
    db = _db(offer, application)

    result = await offer_letters.handle_docusign_webhook(
        db, _payload("delivered", event="envelope-delivered"), now=NOW
    )

    assert result.status == "viewed"
    assert offer.status == "viewed"
    assert offer.delivered_at is None
    assert db.added_of(ApplicationAuditTrail) == []
    assert db.committed is False


@pytest.mark.asyncio
async def test_repeated_viewed_event_is_idempotent() -> None:
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    offer = make_offer(application=application, status="viewed", docusign_envelope_id="env-1")
    db = _db(offer, application)

    await offer_letters.handle_docusign_webhook(db, _payload("viewed", event="envelope-viewed"), now=NOW)

    assert db.added_of(ApplicationAuditTrail) == []


@pytest.mark.asyncio
async def test_terminal_event_still_applies_after_viewed() -> None:
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    offer = make_offer(application=application, status="viewed", docusign_envelope_id="env-1")
    db = _db(offer, application)

    result = await offer_letters.handle_docusign_webhook(db, _payload("declined", event="envelope-declined"), now=NOW)

    assert result.status == "declined"
    assert offer.is_active is False

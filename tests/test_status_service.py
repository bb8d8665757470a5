from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import ServiceError
from app.models.application_audit_trail import ApplicationAuditTrail
from app.models.loan_application import LoanApplication
from app.models.loan_application_snapshot import LoanApplicationSnapshot
from app.models.user import User
from app.schemas.notifications import NotificationResult
from app.services import status as status_service
from conftest import (
    FakeAsyncSession,
    FakeResult,
    entity_handler,
    make_application,
    make_staff,
    make_user,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self, *, fail: bool = False, results=None) -> None:
        self.calls: list[dict] = []
        self.fail = fail
        self.results = results or []

    async def __call__(self, db, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise RuntimeError("mail relay down")
        return self.results


def _session_for(application: LoanApplication, actor: User | None) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(LoanApplication, FakeResult(scalar=application)))
    db.on_execute(entity_handler(User, FakeResult(scalar=actor)))
    return db


@pytest.mark.asyncio
async def test_approval_writes_audit_and_snapshot_in_one_commit() -> None:
    applicant = make_user()
    officer = make_staff()
    application = make_application(user=applicant, status="under_review")
    db = _session_for(application, officer)
    notifier = RecordingNotifier()

    result = await status_service.update_status(
        db,
        application.id,
        "approved",
        officer.id,
        reason="Strong cash flow",
        now=NOW,
        notifier=notifier,
    )

    assert result.success is True
    assert result.previous_status == "under_review"
    assert result.new_status == "approved"
    assert result.snapshot_created is True
    assert result.message == "Status successfully updated from under_review to approved"
    assert application.status == "approved"
    assert application.approved_at == NOW
    assert application.last_updated_by == officer.id
    assert application.status_reason == "Strong cash flow"
    assert db.committed is True

    audits = db.added_of(ApplicationAuditTrail)
    assert [entry.action for entry in audits] == ["application_approved", "snapshot_created"]
    assert audits[0].id == result.audit_entry_id
    assert audits[0].metadata_["previous_status"] == "under_review"
    assert audits[0].metadata_["new_status"] == "approved"
    assert audits[0].before_data == {"status": "under_review", "status_reason": None}

    snapshots = db.added_of(LoanApplicationSnapshot)
    assert len(snapshots) == 1
    assert snapshots[0].approval_stage == "loan_approved"
    assert snapshots[0].snapshot_data["application"]["status"] == "approved"
    assert snapshots[0].snapshot_data["metadata"]["created_by"] == str(officer.id)
    assert snapshots[0].snapshot_data["business_profile"] is None

    assert len(notifier.calls) == 1
    assert notifier.calls[0]["recipient_id"] == applicant.id
    assert notifier.calls[0]["previous_status"] == "under_review"
    assert notifier.calls[0]["new_status"] == "approved"


@pytest.mark.asyncio
async def test_rejection_records_reason_without_snapshot() -> None:
    officer = make_staff()
    application = make_application(status="under_review")
    db = _session_for(application, officer)

    result = await status_service.update_status(
        db,
        application.id,
        "rejected",
        officer.id,
        rejection_reason="Insufficient collateral",
        now=NOW,
        notifier=RecordingNotifier(),
    )

    assert result.snapshot_created is False
    assert application.status == "rejected"
    assert application.rejected_at == NOW
    assert application.rejection_reason == "Insufficient collateral"
    assert application.status_reason == "Status updated to rejected"
    assert db.added_of(LoanApplicationSnapshot) == []
    audits = db.added_of(ApplicationAuditTrail)
    assert [entry.action for entry in audits] == ["application_rejected"]
    assert audits[0].details == "Insufficient collateral"


@pytest.mark.asyncio
async def test_invalid_transition_changes_nothing() -> None:
    officer = make_staff()
    application = make_application(status="submitted")
    db = _session_for(application, officer)
    notifier = RecordingNotifier()

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(
            db, application.id, "approved", officer.id, now=NOW, notifier=notifier
        )

    assert exc_info.value.status_code == 400
    assert exc_info.value.code == "INVALID_STATUS_TRANSITION"
    assert exc_info.value.details["allowed_transitions"] == ["under_review", "withdrawn"]
    assert application.status == "submitted"
    assert application.approved_at is None
    assert db.added_of(ApplicationAuditTrail) == []
    assert db.committed is False
    assert db.rolled_back is True
    assert notifier.calls == []


@pytest.mark.asyncio
async def test_terminal_application_cannot_move() -> None:
    officer = make_staff()
    application = make_application(status="withdrawn")
    db = _session_for(application, officer)

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(
            db, application.id, "submitted", officer.id, notifier=RecordingNotifier()
        )

    assert "Cannot change status of a withdrawn application" in exc_info.value.message


@pytest.mark.asyncio
async def test_unknown_status_rejected_before_any_query() -> None:
    db = FakeAsyncSession()

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(db, uuid4(), "archived", uuid4(), notifier=RecordingNotifier())

    assert exc_info.value.code == "INVALID_STATUS"
    assert "draft" in exc_info.value.details["valid_statuses"]
    assert db.statements == []


@pytest.mark.asyncio
async def test_missing_application_is_not_found() -> None:
    db = _session_for(None, make_staff())

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(db, uuid4(), "submitted", uuid4(), notifier=RecordingNotifier())

    assert exc_info.value.status_code == 404
    assert exc_info.value.code == "LOAN_APPLICATION_NOT_FOUND"


@pytest.mark.asyncio
async def test_missing_actor_is_not_found() -> None:
    application = make_application(status="draft")
    db = _session_for(application, None)

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(
            db, application.id, "submitted", uuid4(), notifier=RecordingNotifier()
        )

    assert exc_info.value.code == "USER_NOT_FOUND"
    assert application.status == "draft"


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_transition() -> None:
    officer = make_staff()
    application = make_application(status="submitted")
    db = _session_for(application, officer)

    result = await status_service.update_status(
        db, application.id, "under_review", officer.id, now=NOW, notifier=RecordingNotifier(fail=True)
    )

    assert result.success is True
    assert application.status == "under_review"
    assert application.reviewed_at == NOW
    assert db.committed is True


@pytest.mark.asyncio
async def test_undelivered_notification_is_tolerated() -> None:
    officer = make_staff()
    application = make_application(status="submitted")
    db = _session_for(application, officer)
    notifier = RecordingNotifier(
        results=[NotificationResult(success=False, channel="email", error="Email transport not configured")]
    )

    result = await status_service.update_status(db, application.id, "under_review", officer.id, notifier=notifier)

    assert result.success is True
    assert len(notifier.calls) == 1


@pytest.mark.asyncio
async def test_concurrent_modification_maps_to_conflict() -> None:
    officer = make_staff()
    application = make_application(status="submitted")
    db = _session_for(application, officer)
    db.commit_error = StaleDataError("version mismatch")
    notifier = RecordingNotifier()

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(db, application.id, "under_review", officer.id, notifier=notifier)

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "STATUS_UPDATE_CONFLICT"
    assert db.rolled_back is True
    assert notifier.calls == []


@pytest.mark.asyncio
async def test_unexpected_failure_maps_to_internal_error() -> None:
    officer = make_staff()
    application = make_application(status="submitted")
    db = _session_for(application, officer)
    db.commit_error = RuntimeError("connection reset")

    with pytest.raises(ServiceError) as exc_info:
        await status_service.update_status(
            db, application.id, "under_review", officer.id, notifier=RecordingNotifier()
        )

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "UPDATE_STATUS_ERROR"


@pytest.mark.asyncio
async def test_get_status_reports_allowed_transitions() -> None:
    application = make_application(status="approved", offer_stage="offer_letter_sent")
    db = _session_for(application, None)

    dto = await status_service.get_status(db, application.id)

    assert dto.status == "approved"
    assert dto.offer_stage == "offer_letter_sent"
    assert dto.allowed_transitions == ["disbursed", "withdrawn"]
    assert dto.is_terminal is False


@pytest.mark.asyncio
async def test_status_history_resolves_actor_names() -> None:
    application = make_application(status="under_review")
    officer = make_staff(first_name="Grace", last_name="Hopper")
    submitted = ApplicationAuditTrail(
        id=uuid4(),
        loan_application_id=application.id,
        user_id=application.user_id,
        action="application_submitted",
        reason="Submitted",
        metadata_={"previous_status": "draft"},
        created_at=NOW,
    )
    reviewing = ApplicationAuditTrail(
        id=uuid4(),
        loan_application_id=application.id,
        user_id=officer.id,
        action="application_under_review",
        reason="Picked up",
        created_at=NOW + timedelta(hours=1),
    )
    orphaned = ApplicationAuditTrail(
        id=uuid4(),
        loan_application_id=application.id,
        user_id=None,
        action="application_withdrawn",
        created_at=NOW + timedelta(hours=2),
    )
    db = FakeAsyncSession()
    db.on_execute(
        entity_handler(
            ApplicationAuditTrail,
            FakeResult(rows=[(submitted, make_user(first_name="Ada", last_name="Lovelace")), (reviewing, officer), (orphaned, None)]),
        )
    )

    history = await status_service.get_status_history(db, application.id)

    assert [entry.status for entry in history] == ["submitted", "under_review", "withdrawn"]
    assert history[0].user_name == "Ada Lovelace"
    assert history[0].metadata == {"previous_status": "draft"}
    assert history[1].user_name == "Grace Hopper"
    assert history[1].user_email == "officer@example.com"
    assert history[2].user_name == status_service.UNKNOWN_USER_NAME
    assert history[2].user_email == status_service.UNKNOWN_USER_EMAIL

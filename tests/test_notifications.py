from uuid import uuid4

import pytest

from app.core.errors import ServiceError
from app.models.user import User
from app.schemas.notifications import NotificationRequest
from app.services import email as email_service
from app.services import notifications
from conftest import FakeAsyncSession, FakeResult, entity_handler, make_user


class CapturedEmail:
    def __init__(self, *, success: bool = True) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.success = success

    async def __call__(self, to, subject, html, **kwargs):
        self.sent.append((to, subject, html))
        if self.success:
            return email_service.EmailResult(success=True, message_id="msg_1")
        return email_service.EmailResult(success=False, error="provider down")


def _db_with(user: User | None) -> FakeAsyncSession:
    db = FakeAsyncSession()
    db.on_execute(entity_handler(User, FakeResult(scalar=user)))
    return db


@pytest.mark.asyncio
async def test_status_update_email_rendered_and_sent(monkeypatch) -> None:
    recipient = make_user(first_name="Ada")
    captured = CapturedEmail()
    monkeypatch.setattr(email_service, "send_email", captured)

    results = await notifications.send_status_update_notification(
        _db_with(recipient),
        recipient_id=recipient.id,
        loan_application_id=uuid4(),
        application_number="LOAN-2026-000001",
        previous_status="submitted",
        new_status="under_review",
        reason="Assigned to underwriter",
    )

    assert [result.success for result in results] == [True]
    assert results[0].message_id == "msg_1"
    to, subject, html = captured.sent[0]
    assert to == recipient.email
    assert subject == "Update on LOAN-2026-000001: under review"
    assert "Ada" in html


@pytest.mark.asyncio
async def test_transport_failure_returned_not_raised(monkeypatch) -> None:
    recipient = make_user()
    monkeypatch.setattr(email_service, "send_email", CapturedEmail(success=False))

    result = await notifications.send_notification(
        _db_with(recipient),
        NotificationRequest(type="loan_approval", channel="email", recipient_id=recipient.id),
    )

    assert result.success is False
    assert result.error == "provider down"


@pytest.mark.asyncio
async def test_unknown_type_rejected() -> None:
    with pytest.raises(ServiceError) as exc_info:
        await notifications.send_notification(
            FakeAsyncSession(),
            NotificationRequest(type="birthday", channel="email", recipient_id=uuid4()),
        )
    assert exc_info.value.code == "UNSUPPORTED_NOTIFICATION_TYPE"


@pytest.mark.asyncio
async def test_unknown_channel_rejected() -> None:
    with pytest.raises(ServiceError) as exc_info:
        await notifications.send_notification(
            FakeAsyncSession(),
            NotificationRequest(type="document_request", channel="pigeon", recipient_id=uuid4()),
        )
    assert exc_info.value.code == "INVALID_CHANNEL"


@pytest.mark.asyncio
async def test_missing_recipient_rejected() -> None:
    with pytest.raises(ServiceError) as exc_info:
        await notifications.send_notification(
            _db_with(None),
            NotificationRequest(type="document_request", channel="email", recipient_id=uuid4()),
        )
    assert exc_info.value.code == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_sms_channel_acknowledged_without_transport() -> None:
    recipient = make_user()
    result = await notifications.send_notification(
        _db_with(recipient),
        NotificationRequest(type="payment_reminder", channel="sms", recipient_id=recipient.id),
    )
    assert result.success is True
    assert result.channel == "sms"


@pytest.mark.asyncio
async def test_dispatch_collects_errors_per_channel(monkeypatch) -> None:
    monkeypatch.setattr(email_service, "send_email", CapturedEmail())

    results = await notifications.send_document_request_notification(
        _db_with(None),
        recipient_id=uuid4(),
        loan_application_id=uuid4(),
        application_number=None,
        document_type="bank_statement",
        description="Six months",
        channels=("email", "push"),
    )

    assert [result.success for result in results] == [False, False]
    assert "Notification recipient not found" in results[0].error


@pytest.mark.asyncio
async def test_send_email_without_api_key_reports_failure(monkeypatch) -> None:
    monkeypatch.setattr(email_service.settings, "resend_api_key", None)
    result = await email_service.send_email("a@example.com", "Hi", "<p>Hi</p>")
    assert result.success is False
    assert result.error == "Email transport not configured"

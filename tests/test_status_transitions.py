import pytest

from app.services import status as status_service


def test_all_statuses_listed_in_lifecycle_order() -> None:
    assert status_service.get_all_statuses() == [
        "draft",
        "submitted",
        "under_review",
        "approved",
        "rejected",
        "withdrawn",
        "disbursed",
    ]


@pytest.mark.parametrize(
    "current, expected",
    [
        ("draft", ["submitted", "withdrawn"]),
        ("submitted", ["under_review", "withdrawn"]),
        ("under_review", ["approved", "rejected", "withdrawn"]),
        ("approved", ["disbursed", "withdrawn"]),
        ("rejected", ["submitted", "withdrawn"]),
        ("withdrawn", []),
        ("disbursed", []),
    ],
)
def test_allowed_transitions(current: str, expected: list[str]) -> None:
    assert status_service.get_allowed_transitions(current) == expected


def test_unknown_status_has_no_transitions_and_is_not_terminal() -> None:
    assert status_service.get_allowed_transitions("archived") == []
    assert status_service.is_terminal_status("archived") is False


def test_terminal_statuses() -> None:
    assert status_service.is_terminal_status("withdrawn") is True
    assert status_service.is_terminal_status("disbursed") is True
    assert status_service.is_terminal_status("approved") is False


def test_validate_transition_accepts_allowed_move() -> None:
    result = status_service.validate_transition("under_review", "approved")
    assert result.is_valid is True
    assert result.error is None
    assert result.allowed_transitions == ["approved", "rejected", "withdrawn"]


def test_validate_transition_rejects_skipping_review() -> None:
    result = status_service.validate_transition("submitted", "approved")
    assert result.is_valid is False
    assert result.error == "Invalid status transition from submitted to approved"
    assert result.allowed_transitions == ["under_review", "withdrawn"]


def test_validate_transition_from_terminal_status() -> None:
    result = status_service.validate_transition("disbursed", "approved")
    assert result.is_valid is False
    assert result.error == "Cannot change status of a disbursed application"
    assert result.allowed_transitions == []


def test_validate_transition_from_unknown_status() -> None:
    result = status_service.validate_transition("archived", "submitted")
    assert result.is_valid is False
    assert "Unknown current status" in result.error


def test_rejected_application_can_be_resubmitted() -> None:
    assert status_service.validate_transition("rejected", "submitted").is_valid is True


def test_self_transition_is_invalid() -> None:
    assert status_service.validate_transition("submitted", "submitted").is_valid is False

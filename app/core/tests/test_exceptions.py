"""
Tests for the application exception hierarchy.

These tests verify that:
- Every error carries a message, an error code and optional details
- to_dict() produces the websocket error frame body
- Chat errors keep their core category for generic handlers
"""

import pytest

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    PermissionDeniedError,
    ValidationError,
)

from chat.exceptions import (
    ChatCreationFailed,
    DuplicateChat,
    EmptyMessage,
    NotParticipant,
    SendFailed,
    UnreadUpdateFailed,
)
from chat.types import PairKey


class TestBaseApplicationError:
    def test_defaults_error_code(self):
        error = ValidationError("Bad input")

        assert error.error_code == "VALIDATION_ERROR"
        assert error.details == {}
        assert str(error) == "[VALIDATION_ERROR] Bad input"

    def test_explicit_error_code_and_details(self):
        error = ValidationError(
            "Cannot chat with yourself", error_code="SAME_USER", details={"user_id": 4}
        )

        assert error.to_dict() == {
            "message": "Cannot chat with yourself",
            "error_code": "SAME_USER",
            "details": {"user_id": 4},
        }

    def test_to_dict_omits_empty_details(self):
        assert "details" not in ConflictError("Taken").to_dict()

    def test_repr_names_the_class(self):
        assert repr(PermissionDeniedError("No")).startswith("PermissionDeniedError(")


class TestChatErrorCategories:
    @pytest.mark.parametrize(
        "error, category, code",
        [
            (ChatCreationFailed("Could not add participants"), ExternalServiceError, "CHAT_CREATION_FAILED"),
            (SendFailed("Timed out"), ExternalServiceError, "SEND_FAILED"),
            (EmptyMessage("Empty"), ValidationError, "EMPTY_CONTENT"),
            (NotParticipant("Not a member"), PermissionDeniedError, "NOT_PARTICIPANT"),
        ],
    )
    def test_category_and_code(self, error, category, code):
        assert isinstance(error, category)
        assert isinstance(error, BaseApplicationError)
        assert error.error_code == code

    def test_retryable_failures(self):
        assert ChatCreationFailed("x").retryable is True
        assert SendFailed("x").retryable is True
        assert ExternalServiceError("x").retryable is False

    def test_duplicate_chat_describes_the_pair(self):
        error = DuplicateChat(PairKey.for_users(9, 3))

        assert isinstance(error, ConflictError)
        assert error.details == {"user_lower": 3, "user_higher": 9}

    def test_unread_update_failed_carries_ids(self):
        error = UnreadUpdateFailed(chat_id=5, user_id=2)

        assert (error.chat_id, error.user_id) == (5, 2)
        assert error.to_dict()["details"] == {"chat_id": 5, "user_id": 2}
        assert "user 2" in error.message

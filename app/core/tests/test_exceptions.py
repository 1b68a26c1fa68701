"""
Tests for the application error hierarchy and ServiceResult conversion.
"""

import pytest

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionFailedError,
    ValidationError,
)
from core.services import ServiceResult


class TestBaseApplicationError:
    def test_defaults(self):
        error = BaseApplicationError("Something broke")

        assert error.error_code == "APPLICATION_ERROR"
        assert error.details == {}
        assert str(error) == "[APPLICATION_ERROR] Something broke"

    def test_to_dict(self):
        error = NotFoundError(
            "Order 42 not found",
            error_code="ORDER_NOT_FOUND",
            details={"order_id": "42"},
        )

        assert error.to_dict() == {
            "error": {
                "code": "ORDER_NOT_FOUND",
                "message": "Order 42 not found",
                "details": {"order_id": "42"},
            }
        }

    @pytest.mark.parametrize(
        "exc_class,code",
        [
            (ValidationError, "VALIDATION_ERROR"),
            (NotFoundError, "NOT_FOUND"),
            (PermissionDeniedError, "PERMISSION_DENIED"),
            (ConflictError, "CONFLICT"),
            (PreconditionFailedError, "PRECONDITION_FAILED"),
        ],
    )
    def test_default_codes(self, exc_class, code):
        assert exc_class("x").error_code == code


class TestServiceResultFromException:
    def test_application_error_keeps_code_and_details(self):
        result = ServiceResult.from_exception(
            ConflictError("Already open", error_code="DISPUTE_ALREADY_OPEN", details={"id": "1"})
        )

        assert not result
        assert result.error == "Already open"
        assert result.error_code == "DISPUTE_ALREADY_OPEN"
        assert result.details == {"id": "1"}
        assert result.retryable is False

    def test_not_found_is_retryable(self):
        assert ServiceResult.from_exception(NotFoundError("later")).retryable is True

    def test_other_exceptions_use_class_name(self):
        result = ServiceResult.from_exception(KeyError("amount"))

        assert result.error_code == "KEYERROR"
        assert result.retryable is True

    def test_explicit_code_wins(self):
        result = ServiceResult.from_exception(ValidationError("bad"), error_code="BAD_PAYLOAD")

        assert result.error_code == "BAD_PAYLOAD"

"""
Base exception classes for application-wide error handling.

Every domain error raised by the escrow core derives from
BaseApplicationError so callers can catch one type, log a machine-readable
code, and turn the error into a response body with to_dict().

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input or business-rule validation failures
    ├── NotFoundError - Referenced order/hold/dispute/payout missing
    ├── PermissionDeniedError - Actor not allowed to perform the action
    ├── ConflictError - State conflicts (invalid transitions, duplicates)
    ├── PreconditionFailedError - Verification mismatch, possible fraud
    └── ExternalServiceError - Payout provider / dispatcher failures

Usage:
    from core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(
        f"Order {order_id} not found",
        error_code="ORDER_NOT_FOUND",
        details={"order_id": str(order_id)},
    )

    try:
        ...
    except BaseApplicationError as e:
        logger.warning(str(e), extra=e.details)
        return Response(e.to_dict(), status=400)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, allowed states)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": {
                    "code": "INSUFFICIENT_AMOUNT",
                    "message": "Payout amount is below the minimum of 100.00 NGN",
                    "details": {"minimum_cents": 10000}
                }
            }
        """
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails in the service layer.

    Use for amounts out of range, malformed payout method details,
    or any business rule the caller can correct.
    """

    default_error_code: str = "VALIDATION_ERROR"
    is_retryable: bool = False


class NotFoundError(BaseApplicationError):
    """
    Raised when a referenced record does not exist.

    No side effects are performed before this is raised.
    """

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """Raised when the acting user may not perform the operation."""

    default_error_code: str = "PERMISSION_DENIED"
    is_retryable: bool = False


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current record state.

    Use for:
    - Invalid state transitions
    - A second open dispute/return on the same order
    - Concurrent claims that lost the race

    HTTP 409 Conflict is the appropriate status for these errors.
    """

    default_error_code: str = "CONFLICT"
    is_retryable: bool = False


class PreconditionFailedError(BaseApplicationError):
    """
    Raised when a verification precondition does not hold.

    A provider confirming a payment with a different amount or currency than
    recorded is treated as a potential fraud signal: log at CRITICAL and never
    retry automatically.
    """

    default_error_code: str = "PRECONDITION_FAILED"
    is_retryable: bool = False


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Use for payout providers and the notification dispatcher. Log the original
    error for debugging but don't expose provider internals to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"

"""
Escrow-specific exceptions.

Exception Hierarchy:
    EscrowError (base for the escrow domain)
    ├── EscrowNotFoundError (also NotFoundError) - order/hold/dispute/refund/
    │   payment/payout lookups
    ├── EscrowValidationError (also ValidationError)
    │   ├── InsufficientAmountError - payout below minimum
    │   └── PayoutMethodValidationError - malformed payout descriptor
    └── ProviderFailureError (also ExternalServiceError)
        ├── ProviderTimeoutError - no answer within timeout (retryable)
        ├── ProviderUnavailableError - connection error / 5xx (retryable)
        └── ProviderRejectedError - provider refused the payout (permanent)

    InvalidTransitionError - state change not allowed (inherits ConflictError)

Ledger errors (InsufficientBalance, ...) live in escrow.ledger.exceptions.

Usage:
    from escrow.exceptions import InvalidTransitionError, InsufficientAmountError

    raise InvalidTransitionError(
        current="processing",
        target="delivered",
        allowed=["canceled", "shipped"],
        entity="order",
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any


class EscrowError(BaseApplicationError):
    """Base exception for the escrow domain."""

    default_error_code: str = "ESCROW_ERROR"


class EscrowNotFoundError(EscrowError, NotFoundError):
    """
    Raised when a referenced escrow record does not exist.

    Pass an entity-specific error_code (ORDER_NOT_FOUND, HOLD_NOT_FOUND, ...).
    """

    default_error_code: str = "NOT_FOUND"

    @classmethod
    def for_entity(cls, entity: str, entity_id: Any) -> EscrowNotFoundError:
        return cls(
            f"{entity.replace('_', ' ').capitalize()} {entity_id} not found",
            error_code=f"{entity.upper()}_NOT_FOUND",
            details={f"{entity}_id": str(entity_id)},
        )


class EscrowValidationError(EscrowError, ValidationError):
    default_error_code: str = "ESCROW_VALIDATION_ERROR"


class InsufficientAmountError(EscrowValidationError):
    """
    Raised when a payout amount is below the configured minimum.

    The message quotes the minimum in major units so it can be shown
    to the seller as-is.
    """

    default_error_code: str = "INSUFFICIENT_AMOUNT"

    def __init__(self, amount_cents: int, minimum_cents: int, currency: str):
        self.amount_cents = amount_cents
        self.minimum_cents = minimum_cents
        self.currency = currency
        super().__init__(
            f"Payout amount {amount_cents / 100:,.2f} {currency} is below the "
            f"minimum payout of {minimum_cents / 100:,.2f} {currency}",
            details={
                "amount_cents": amount_cents,
                "minimum_cents": minimum_cents,
                "currency": currency,
            },
        )


class PayoutMethodValidationError(EscrowValidationError):
    """
    Raised when a payout method descriptor fails its variant's validation.

    details["fields"] maps field name to a list of messages.
    """

    default_error_code: str = "INVALID_PAYOUT_METHOD"

    def __init__(
        self,
        message: str,
        method_type: str,
        field_errors: dict[str, list[str]] | None = None,
    ):
        self.method_type = method_type
        self.field_errors = field_errors or {}
        super().__init__(
            message,
            details={"method_type": method_type, "fields": self.field_errors},
        )


class ProviderFailureError(EscrowError, ExternalServiceError):
    """
    Base exception for payout provider failures.

    is_retryable tells the orchestrator whether to fall back to the next
    provider for the same method.
    """

    default_error_code: str = "PROVIDER_FAILURE"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["provider"] = provider
        self.provider = provider
        super().__init__(message, error_code=error_code, details=details)


class ProviderTimeoutError(ProviderFailureError):
    """No response within the configured timeout. Never assumed successful."""

    default_error_code: str = "PROVIDER_TIMEOUT"
    is_retryable: bool = True


class ProviderUnavailableError(ProviderFailureError):
    default_error_code: str = "PROVIDER_UNAVAILABLE"
    is_retryable: bool = True


class ProviderRejectedError(ProviderFailureError):
    default_error_code: str = "PROVIDER_REJECTED"
    is_retryable: bool = False


class InvalidTransitionError(ConflictError):
    """
    Raised when a requested state change is not in the allowed table.

    Attributes:
        current: State the record is in
        target: State that was requested
        allowed: States reachable from current
    """

    default_error_code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        current: str,
        target: str,
        allowed: Iterable[str],
        entity: str = "order",
    ):
        self.current = current
        self.target = target
        self.allowed = sorted(allowed)
        allowed_text = ", ".join(self.allowed) or "none (terminal state)"
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{target}'. "
            f"Allowed: {allowed_text}",
            details={
                "entity": entity,
                "current": current,
                "target": target,
                "allowed": self.allowed,
            },
        )

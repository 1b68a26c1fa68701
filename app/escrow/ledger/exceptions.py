"""
Ledger-specific exceptions.

Exception Hierarchy:
    LedgerError (base)
    ├── InsufficientBalance - Requested amount exceeds the spendable balance
    └── LedgerIntegrityError - Append would break a ledger invariant

Usage:
    from escrow.ledger.exceptions import InsufficientBalance

    if amount_cents > balance.spendable:
        raise InsufficientBalance(
            seller_id, currency, required=amount_cents, available=balance.spendable
        )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any


class LedgerError(BaseApplicationError):
    """Base exception for all ledger operations."""

    default_error_code: str = "LEDGER_ERROR"


class InsufficientBalance(LedgerError):
    """
    Raised when a seller's spendable balance cannot cover a debit.

    The message quotes both amounts in major units so it can be shown to
    the seller as-is.

    Attributes:
        seller_id: Seller whose balance was checked
        currency: Currency of the balance
        required: Amount requested in minor units
        available: Spendable amount in minor units
    """

    default_error_code: str = "INSUFFICIENT_BALANCE"

    def __init__(
        self,
        seller_id: Any,
        currency: str,
        required: int,
        available: int,
        details: dict[str, Any] | None = None,
    ):
        self.seller_id = seller_id
        self.currency = currency
        self.required = required
        self.available = available

        message = (
            f"Requested {required / 100:,.2f} {currency} but only "
            f"{available / 100:,.2f} {currency} is available for payout"
        )
        full_details = {
            "seller_id": str(seller_id),
            "currency": currency,
            "required_cents": required,
            "available_cents": available,
        }
        if details:
            full_details.update(details)
        super().__init__(message=message, details=full_details)


class LedgerIntegrityError(LedgerError):
    """
    Raised when an append would contradict the ledger's own records.

    Example: an idempotency key reused for an entry with a different amount.
    """

    default_error_code: str = "LEDGER_INTEGRITY_ERROR"

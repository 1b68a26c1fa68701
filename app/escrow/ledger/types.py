"""
Data types for ledger operations.

Types:
    Money: A signed amount in minor units with its currency
    AppendEntryParams: Parameters for appending one ledger entry
    Balance: Computed balance buckets for a seller and currency

Usage:
    from escrow.ledger.types import AppendEntryParams, Money

    params = AppendEntryParams(
        seller_id=seller.id,
        transaction_type=TransactionType.SALE,
        amount_cents=500000,
        currency="NGN",
        status=EntryStatus.PENDING,
        order_id=order.id,
        idempotency_key=f"hold:{payment.id}:create",
    )

    print(Money(500000, "NGN"))  # "5,000.00 NGN"
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from escrow.ledger.models import EntryStatus, TransactionType


@dataclass(frozen=True)
class Money:
    """
    A monetary amount in minor currency units.

    Conversion to major units (divide by 100) happens only in to_major()
    and __str__, i.e. at presentation boundaries.
    """

    cents: int
    currency: str

    def to_major(self) -> float:
        return self.cents / 100

    def __str__(self) -> str:
        return f"{self.to_major():,.2f} {self.currency.upper()}"

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot add Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot subtract Money with different currencies: "
                f"{self.currency} and {other.currency}"
            )
        return Money(cents=self.cents - other.cents, currency=self.currency)

    def __neg__(self) -> Money:
        return Money(cents=-self.cents, currency=self.currency)


@dataclass
class AppendEntryParams:
    """
    Parameters for appending a ledger entry.

    Required Attributes:
        seller_id: Seller whose balance the entry affects
        transaction_type: One of TransactionType
        amount_cents: Signed amount (positive = credit to seller)
        currency: ISO 4217 code; normalized to uppercase
        status: One of EntryStatus

    Optional Attributes:
        order_id: Related order
        scheduled_payout_id: Related payout instruction
        reverses_id: Entry this one compensates
        idempotency_key: Natural key; a second append with the same key
            returns the first entry
        description / metadata / created_by: Audit context
    """

    seller_id: Any
    transaction_type: str
    amount_cents: int
    currency: str
    status: str

    order_id: uuid.UUID | None = None
    scheduled_payout_id: uuid.UUID | None = None
    reverses_id: uuid.UUID | None = None
    idempotency_key: str | None = None
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    created_by: str = ""

    def __post_init__(self) -> None:
        if self.transaction_type not in TransactionType.values:
            raise ValueError(f"Unknown transaction type: {self.transaction_type!r}")
        if self.status not in EntryStatus.values:
            raise ValueError(f"Unknown entry status: {self.status!r}")
        if not isinstance(self.amount_cents, int) or isinstance(self.amount_cents, bool):
            raise ValueError(
                f"amount_cents must be an integer, got {type(self.amount_cents).__name__}"
            )
        if not self.currency or len(self.currency) != 3:
            raise ValueError(f"currency must be a 3-letter ISO code, got {self.currency!r}")
        self.currency = self.currency.upper()


@dataclass(frozen=True)
class Balance:
    """
    Seller balance for one currency.

    Attributes:
        available: Sum of completed/paid entries
        pending: Sum of pending/processing entries
        total: available + pending
        in_flight_payouts: Sum (<= 0) of payout entries still pending or
            processing; these already left the seller's control
    """

    currency: str
    available: int = 0
    pending: int = 0
    in_flight_payouts: int = 0

    @property
    def total(self) -> int:
        return self.available + self.pending

    @property
    def spendable(self) -> int:
        """Amount a new payout may draw on."""
        return max(0, self.available + self.in_flight_payouts)

    def as_money(self) -> dict[str, Money]:
        return {
            "available": Money(self.available, self.currency),
            "pending": Money(self.pending, self.currency),
            "total": Money(self.total, self.currency),
        }

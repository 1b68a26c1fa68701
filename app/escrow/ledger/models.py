"""
Ledger model for seller earnings.

FinancialLedgerEntry is an append-only, signed record of every monetary
event that touches a seller: escrowed sales, refunds, payouts, fees and
manual adjustments. Balances are never stored; they are always computed
from entries.

Sign convention:
    positive amount_cents = credit to the seller
    negative amount_cents = debit from the seller

Status drives which balance bucket an entry counts toward:
    completed / paid      -> available
    pending / processing  -> pending
    failed                -> neither (kept for audit)

Usage:
    from escrow.ledger.models import FinancialLedgerEntry, TransactionType

    FinancialLedgerEntry.objects.filter(
        seller=seller, transaction_type=TransactionType.SALE
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import AppendOnlyModel


class TransactionType(models.TextChoices):
    """
    Categories of ledger entries.

    Values:
        SALE: Escrowed sale proceeds (pending while held, completed on release)
        REFUND_INITIATED: Dispute opened, zero-amount marker
        REFUND_COMPLETED: Money returned to the buyer (negative)
        RETURN_APPROVED: Return approved by seller/admin, zero-amount marker
        PAYOUT: Money sent to the seller's payout method (negative)
        FEE: Platform fee (negative)
        ADJUSTMENT: Manual correction
    """

    SALE = "sale", "Sale"
    REFUND_INITIATED = "refund_initiated", "Refund Initiated"
    REFUND_COMPLETED = "refund_completed", "Refund Completed"
    RETURN_APPROVED = "return_approved", "Return Approved"
    PAYOUT = "payout", "Payout"
    FEE = "fee", "Fee"
    ADJUSTMENT = "adjustment", "Adjustment"


class EntryStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


AVAILABLE_STATUSES = (EntryStatus.COMPLETED, EntryStatus.PAID)
PENDING_STATUSES = (EntryStatus.PENDING, EntryStatus.PROCESSING)


class FinancialLedgerEntry(UUIDPrimaryKeyMixin, AppendOnlyModel):
    """
    One immutable monetary event for a seller.

    Fields:
        seller: Seller whose balance this entry affects
        order: Order the entry belongs to (null for non-order adjustments)
        scheduled_payout: Payout instruction for payout entries
        transaction_type: Category of the entry
        amount_cents: Signed amount in minor units
        status: Balance bucket (see module docstring)
        reverses: Entry this one compensates, if any
        idempotency_key: Natural key guarding at-most-once writes

    Constraints:
        - idempotency_key unique (NULLs allowed for ad-hoc adjustments)
    """

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
        help_text="Seller whose balance this entry affects",
    )
    order = models.ForeignKey(
        "escrow.Order",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="ledger_entries",
        help_text="Order this entry belongs to",
    )
    scheduled_payout = models.ForeignKey(
        "escrow.ScheduledPayout",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="ledger_entries",
        help_text="Payout instruction for payout entries",
    )

    transaction_type = models.CharField(
        max_length=30,
        choices=TransactionType.choices,
        help_text="Category of this entry",
    )
    amount_cents = models.BigIntegerField(
        help_text="Signed amount in minor units (positive = credit to seller)",
    )
    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (uppercase)",
    )
    status = models.CharField(
        max_length=20,
        choices=EntryStatus.choices,
        help_text="Balance bucket this entry counts toward",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable description of this entry",
    )
    reverses = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="compensations",
        help_text="Entry this one compensates",
    )
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON data (provider, transaction ref, refund id)",
    )
    created_by = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Identifier of service/user that created this entry",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Unique key to prevent duplicate entries",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Ledger Entry"
        verbose_name_plural = "Ledger Entries"
        indexes = [
            models.Index(fields=["seller", "currency", "status"], name="ledger_seller_bucket_idx"),
            models.Index(fields=["order", "transaction_type"], name="ledger_order_type_idx"),
        ]

    def __str__(self) -> str:
        return (
            f"{self.get_transaction_type_display()}: "
            f"{self.amount_cents} {self.currency} ({self.status})"
        )

    @property
    def counts_as_available(self) -> bool:
        return self.status in AVAILABLE_STATUSES

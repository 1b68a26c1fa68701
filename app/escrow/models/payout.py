"""
PayoutMethod and ScheduledPayout models.

PayoutMethod stores a seller's payout destination as a method type plus a
JSON details blob. The blob is only ever read back through
escrow.payouts.methods.parse_payout_method, which turns it into a typed,
validated descriptor.

ScheduledPayout is a seller-authored payout instruction, either immediate
(one-off) or recurring. The orchestrator claims due rows with a
compare-and-set on status, so concurrent scheduler instances never execute
the same run twice.
"""

from __future__ import annotations

from datetime import datetime

from dateutil.relativedelta import relativedelta
from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from escrow.state_machines import PayoutSchedule, ScheduledPayoutStatus


class PayoutMethodType(models.TextChoices):
    """
    Closed set of payout destinations.

    ESCROW_PROVIDER is only valid on recurring schedules.
    """

    BANK_TRANSFER = "bank_transfer", "Bank Transfer"
    PAYPAL = "paypal", "PayPal"
    CRYPTO = "crypto", "Crypto Wallet"
    WISE = "wise", "Wise (international wire)"
    ESCROW_PROVIDER = "escrow_provider", "Escrow Provider Wallet"


class PayoutMethod(UUIDPrimaryKeyMixin, BaseModel):
    """
    A seller's saved payout destination.
    """

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_methods",
    )
    method_type = models.CharField(
        max_length=20,
        choices=PayoutMethodType.choices,
        help_text="Variant of the payout descriptor",
    )
    details = models.JSONField(
        default=dict,
        help_text="Variant-specific fields (account number, email, wallet)",
    )
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payout Method"
        verbose_name_plural = "Payout Methods"
        constraints = [
            models.UniqueConstraint(
                fields=["seller"],
                condition=models.Q(is_default=True, is_active=True),
                name="unique_default_payout_method",
            ),
        ]

    def __str__(self) -> str:
        return f"PayoutMethod({self.method_type}, seller={self.seller_id})"

    def to_descriptor(self):
        """Build the validated tagged-variant descriptor for this method."""
        from escrow.payouts.methods import parse_payout_method

        return parse_payout_method(self.method_type, self.details)

    def clean(self):
        self.to_descriptor()


SCHEDULE_INTERVALS = {
    PayoutSchedule.DAILY: relativedelta(days=1),
    PayoutSchedule.WEEKLY: relativedelta(weeks=1),
    PayoutSchedule.BI_WEEKLY: relativedelta(weeks=2),
    PayoutSchedule.MONTHLY: relativedelta(months=1),
}


def next_run_after(schedule: str, after: datetime) -> datetime | None:
    """
    Compute the next run for a recurring schedule.

    Monthly adds one calendar month (Jan 31 -> Feb 28/29).
    Returns None for immediate payouts.
    """
    interval = SCHEDULE_INTERVALS.get(schedule)
    if interval is None:
        return None
    return after + interval


class ScheduledPayoutQuerySet(models.QuerySet):
    def recurring(self):
        return self.exclude(schedule=PayoutSchedule.IMMEDIATE)

    def due(self, now):
        return self.recurring().filter(
            is_active=True,
            next_scheduled_at__lte=now,
        ).exclude(status=ScheduledPayoutStatus.PROCESSING)

    def retry_due(self, now):
        """One-off payouts that failed transiently and whose backoff has passed."""
        return self.filter(
            schedule=PayoutSchedule.IMMEDIATE,
            status=ScheduledPayoutStatus.FAILED,
            is_active=True,
            retry_at__lte=now,
        )


class ScheduledPayout(UUIDPrimaryKeyMixin, BaseModel):
    """
    Seller-authored payout instruction.

    Fields:
        amount_cents: Fixed amount per run; null sweeps the whole spendable
            balance at execution time
        schedule: immediate (one-off) or a recurring interval
        status: Outcome of the latest run (PROCESSING while claimed)
        next_scheduled_at: Advanced only after a successful run
        attempt_count: Runs attempted so far (successes and failures)
        retry_at: Set on one-off payouts after a retryable provider failure
    """

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="scheduled_payouts",
    )
    payout_method = models.ForeignKey(
        PayoutMethod,
        on_delete=models.PROTECT,
        related_name="scheduled_payouts",
    )

    amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount per run; empty means pay out the full spendable balance",
    )
    currency = models.CharField(max_length=3)

    schedule = models.CharField(
        max_length=20,
        choices=PayoutSchedule.choices,
        default=PayoutSchedule.IMMEDIATE,
    )
    status = models.CharField(
        max_length=20,
        choices=ScheduledPayoutStatus.choices,
        default=ScheduledPayoutStatus.PENDING,
        db_index=True,
    )
    next_scheduled_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When the next run is due (recurring only)",
    )
    is_active = models.BooleanField(default=True)

    # ==========================================================================
    # Last run
    # ==========================================================================

    attempt_count = models.PositiveIntegerField(default=0)
    last_attempted_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True, default="")
    last_transaction_ref = models.CharField(max_length=255, blank=True, default="")
    last_provider = models.CharField(max_length=50, blank=True, default="")
    last_amount_cents = models.PositiveBigIntegerField(null=True, blank=True)
    retry_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="When a one-off payout that failed transiently is tried again",
    )

    objects = ScheduledPayoutQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Scheduled Payout"
        verbose_name_plural = "Scheduled Payouts"
        indexes = [
            models.Index(fields=["is_active", "next_scheduled_at"], name="payout_active_next_idx"),
            models.Index(fields=["status", "last_attempted_at"], name="payout_status_attempted_idx"),
        ]

    def __str__(self) -> str:
        return f"ScheduledPayout({self.id}, {self.schedule}, {self.status})"

    @property
    def is_recurring(self) -> bool:
        return self.schedule != PayoutSchedule.IMMEDIATE

    def reference(self, at: datetime) -> str:
        """Provider-facing reference for one run."""
        return f"payout_{str(self.id)[:8]}_{int(at.timestamp())}"

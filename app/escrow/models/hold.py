"""
PaymentHold model for escrowed funds.

A hold reserves a completed payment's amount against its order until the
order is delivered (release), refunded, or the hold expires and the
scheduler auto-releases it. Every hold mutation is paired with ledger
entries written in the same transaction by HoldService.

Usage:
    from escrow.models import PaymentHold

    PaymentHold.objects.active().filter(releaseable_at__lte=timezone.now())
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from escrow.state_machines import HoldStatus


class PaymentHoldQuerySet(models.QuerySet):
    def active(self):
        return self.filter(hold_status=HoldStatus.ACTIVE)

    def due_for_release(self, now=None):
        now = now or timezone.now()
        return self.active().filter(releaseable_at__lte=now)


class PaymentHold(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Funds held in escrow against one order.

    State Flow:
        ACTIVE -> RELEASED (delivery confirmed / dispute resolved for seller)
        ACTIVE -> REFUNDED (remaining amount returned to buyer)
        ACTIVE -> EXPIRED  (auto-released after releaseable_at)

    Fields:
        amount_cents: Remaining held amount; partial refunds reduce it
        original_amount_cents: Amount held at creation
        releaseable_at: Soft timeout after which the scheduler may release
        sale_entry: The pending sale ledger entry written at creation

    Constraints:
        - At most one ACTIVE hold per order (partial unique index)
        - amount_cents never exceeds original_amount_cents
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    order = models.ForeignKey(
        "escrow.Order",
        on_delete=models.PROTECT,
        related_name="holds",
        help_text="Order these funds are held against",
    )

    payment = models.OneToOneField(
        "escrow.Payment",
        on_delete=models.PROTECT,
        related_name="hold",
        help_text="Completed payment that funded this hold",
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="escrow_holds",
        help_text="Seller who receives the funds on release",
    )

    sale_entry = models.OneToOneField(
        "escrow.FinancialLedgerEntry",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="Pending sale ledger entry written when the hold was created",
    )

    # ==========================================================================
    # Amount & State
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Remaining held amount in smallest currency unit",
    )

    original_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount held at creation",
    )

    currency = models.CharField(
        max_length=3,
        help_text="ISO 4217 currency code (uppercase)",
    )

    hold_status = FSMField(
        default=HoldStatus.ACTIVE,
        choices=HoldStatus.choices,
        db_index=True,
        protected=True,
        help_text="Hold state (managed by FSM)",
    )

    releaseable_at = models.DateTimeField(
        db_index=True,
        help_text="When the scheduler becomes entitled to auto-release",
    )

    released_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)

    objects = PaymentHoldQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Hold"
        verbose_name_plural = "Payment Holds"
        indexes = [
            models.Index(fields=["hold_status", "releaseable_at"], name="hold_status_releaseable_idx"),
            models.Index(fields=["seller", "currency", "hold_status"], name="hold_seller_currency_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(hold_status="active"),
                name="unique_active_hold_per_order",
            ),
            models.CheckConstraint(
                condition=models.Q(amount_cents__lte=models.F("original_amount_cents")),
                name="hold_amount_within_original",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency}"
        return f"PaymentHold({self.id}, {self.hold_status}, {amount_display})"

    @property
    def is_active(self) -> bool:
        return self.hold_status == HoldStatus.ACTIVE

    @property
    def refunded_amount_cents(self) -> int:
        return self.original_amount_cents - self.amount_cents

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=hold_status, source=HoldStatus.ACTIVE, target=HoldStatus.RELEASED)
    def release(self):
        self.released_at = timezone.now()

    @transition(field=hold_status, source=HoldStatus.ACTIVE, target=HoldStatus.REFUNDED)
    def refund(self):
        self.refunded_at = timezone.now()

    @transition(field=hold_status, source=HoldStatus.ACTIVE, target=HoldStatus.EXPIRED)
    def expire(self):
        self.expired_at = timezone.now()

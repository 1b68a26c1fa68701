"""
Dispute and Refund (return) models.

Dispute tracks a buyer complaint against an order through review,
escalation and resolution. Refund tracks a buyer-initiated return with an
RMA number through approval and the final money movement. Both move money
only through HoldService and the ledger; neither holds balances itself.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from escrow.state_machines import (
    DisputeResolution,
    DisputeStatus,
    ItemCondition,
    RefundStatus,
    RefundType,
)

UNRESOLVED_DISPUTE_STATUSES = (
    DisputeStatus.OPEN,
    DisputeStatus.UNDER_REVIEW,
    DisputeStatus.ESCALATED,
)

OPEN_REFUND_STATUSES = (
    RefundStatus.PENDING,
    RefundStatus.RETURN_REQUESTED,
    RefundStatus.RETURN_APPROVED,
)


class Dispute(UUIDPrimaryKeyMixin, BaseModel):
    """
    Buyer dispute against an order.

    State Flow:
        OPEN -> UNDER_REVIEW -> RESOLVED
        OPEN/UNDER_REVIEW -> ESCALATED -> RESOLVED

    escalation_level counts SLA thresholds crossed (0..3); level 3 moves the
    dispute to ESCALATED. Escalation never resolves a dispute.
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    order = models.ForeignKey(
        "escrow.Order",
        on_delete=models.PROTECT,
        related_name="disputes",
        help_text="Disputed order",
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="disputes_opened",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="disputes_received",
    )

    # ==========================================================================
    # Claim
    # ==========================================================================

    reason = models.CharField(max_length=255, help_text="Short dispute reason")
    description = models.TextField(blank=True, default="")
    evidence = models.JSONField(
        default=list,
        blank=True,
        help_text="List of evidence references (media ids, URLs)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=DisputeStatus.OPEN,
        choices=DisputeStatus.choices,
        db_index=True,
        protected=True,
        help_text="Dispute state (managed by FSM)",
    )
    escalation_level = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of SLA thresholds crossed without resolution",
    )
    escalated_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Resolution
    # ==========================================================================

    resolution = models.CharField(
        max_length=20,
        choices=DisputeResolution.choices,
        blank=True,
        default="",
    )
    refund_amount_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Amount refunded to the buyer by the resolution",
    )
    resolution_note = models.TextField(blank=True, default="")
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
    )
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Dispute"
        verbose_name_plural = "Disputes"
        indexes = [
            models.Index(fields=["status", "created_at"], name="dispute_status_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status__in=["open", "under_review", "escalated"]),
                name="unique_unresolved_dispute_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Dispute({self.id}, {self.status})"

    @property
    def is_resolved(self) -> bool:
        return self.status == DisputeStatus.RESOLVED

    @transition(field=status, source=DisputeStatus.OPEN, target=DisputeStatus.UNDER_REVIEW)
    def start_review(self):
        pass

    @transition(
        field=status,
        source=[DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW],
        target=DisputeStatus.ESCALATED,
    )
    def escalate(self):
        self.escalated_at = timezone.now()

    @transition(
        field=status,
        source=list(UNRESOLVED_DISPUTE_STATUSES),
        target=DisputeStatus.RESOLVED,
    )
    def resolve(self, resolution: str, refund_amount_cents: int | None = None):
        self.resolution = resolution
        self.refund_amount_cents = refund_amount_cents
        self.resolved_at = timezone.now()


class Refund(UUIDPrimaryKeyMixin, BaseModel):
    """
    Buyer return/refund request.

    State Flow:
        PENDING -> RETURN_REQUESTED -> RETURN_APPROVED -> REFUNDED
        RETURN_REQUESTED/RETURN_APPROVED -> RETURN_REJECTED
        PENDING/RETURN_REQUESTED/RETURN_APPROVED -> CANCELED (buyer only)

    Terminal states: REFUNDED, RETURN_REJECTED, CANCELED
    """

    order = models.ForeignKey(
        "escrow.Order",
        on_delete=models.PROTECT,
        related_name="refunds",
    )
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refunds_requested",
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="refunds_received",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Requested refund amount in smallest currency unit",
    )
    currency = models.CharField(max_length=3)
    reason = models.CharField(max_length=255)

    refund_status = FSMField(
        default=RefundStatus.PENDING,
        choices=RefundStatus.choices,
        db_index=True,
        protected=True,
        help_text="Return/refund state (managed by FSM)",
    )
    refund_type = models.CharField(
        max_length=20,
        choices=RefundType.choices,
        default=RefundType.FULL,
    )

    # ==========================================================================
    # Return specifics
    # ==========================================================================

    rma_number = models.CharField(
        max_length=64,
        unique=True,
        null=True,
        blank=True,
        help_text="Return Merchandise Authorization number",
    )
    item_condition = models.CharField(
        max_length=20,
        choices=ItemCondition.choices,
        blank=True,
        default="",
    )
    condition_notes = models.TextField(blank=True, default="")
    evidence = models.JSONField(default=list, blank=True)
    seller_note = models.TextField(blank=True, default="")

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the seller/admin decided on the return",
    )
    refunded_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Refund"
        verbose_name_plural = "Refunds"
        indexes = [
            models.Index(fields=["order", "refund_status"], name="refund_order_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="refund_amount_positive",
            ),
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(
                    refund_status__in=["pending", "return_requested", "return_approved"]
                ),
                name="unique_open_refund_per_order",
            ),
        ]

    def __str__(self) -> str:
        return f"Refund({self.rma_number or self.id}, {self.refund_status})"

    @transition(
        field=refund_status,
        source=RefundStatus.PENDING,
        target=RefundStatus.RETURN_REQUESTED,
    )
    def request_return(self, rma_number: str):
        self.rma_number = rma_number

    @transition(
        field=refund_status,
        source=RefundStatus.RETURN_REQUESTED,
        target=RefundStatus.RETURN_APPROVED,
    )
    def approve(self):
        self.processed_at = timezone.now()

    @transition(
        field=refund_status,
        source=[RefundStatus.RETURN_REQUESTED, RefundStatus.RETURN_APPROVED],
        target=RefundStatus.RETURN_REJECTED,
    )
    def reject(self, seller_note: str = ""):
        self.processed_at = timezone.now()
        self.seller_note = seller_note

    @transition(
        field=refund_status,
        source=RefundStatus.RETURN_APPROVED,
        target=RefundStatus.REFUNDED,
    )
    def complete(self):
        self.refunded_at = timezone.now()

    @transition(
        field=refund_status,
        source=list(OPEN_REFUND_STATUSES),
        target=RefundStatus.CANCELED,
    )
    def cancel(self):
        self.canceled_at = timezone.now()

"""
Order, OrderTransition and Payment models.

Order is the checkout record the escrow core protects. Its order_status is
an FSM field: every change goes through OrderService.transition_order, which
applies the transition, writes an OrderTransition audit row and runs the
hold/ledger side effects in one transaction.

Usage:
    from escrow.models import Order, Payment

    order = Order.objects.create(
        buyer=buyer,
        seller=seller,
        listing_id="lst_123",
        amount_cents=500000,
        currency="NGN",
    )
    Payment.objects.create(
        order=order,
        provider="tsara",
        provider_reference="txn_abc",
        amount_cents=order.amount_cents,
        currency=order.currency,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import AppendOnlyModel, BaseModel

from escrow.state_machines import (
    DeliveryStatus,
    OrderPayoutStatus,
    OrderStatus,
    PaymentStatus,
)


class Order(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Marketplace order whose funds are held in escrow.

    State Flow:
        PROCESSING -> SHIPPED -> DELIVERED -> RETURNED
        PROCESSING/SHIPPED -> CANCELED

    Fields:
        buyer / seller: Parties to the sale
        listing_id: External catalog reference (opaque)
        amount_cents: Order total in minor currency units
        order_status: Fulfilment state (FSM)
        delivery_status: Shipping state, set as a side effect of transitions
        payout_status: Where the money sits (escrow, seller, buyer)
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="purchases",
        help_text="User who paid for the order",
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sales",
        help_text="User who receives the funds once released",
    )

    listing_id = models.CharField(
        max_length=64,
        db_index=True,
        help_text="External catalog listing identifier",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Order total in smallest currency unit (e.g., kobo)",
    )

    currency = models.CharField(
        max_length=3,
        default="NGN",
        help_text="ISO 4217 currency code (uppercase)",
    )

    # ==========================================================================
    # Status
    # ==========================================================================

    order_status = FSMField(
        default=OrderStatus.PROCESSING,
        choices=OrderStatus.choices,
        db_index=True,
        protected=True,
        help_text="Fulfilment state (managed by FSM)",
    )

    delivery_status = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.NOT_SHIPPED,
        help_text="Shipping state",
    )

    payout_status = models.CharField(
        max_length=20,
        choices=OrderPayoutStatus.choices,
        default=OrderPayoutStatus.IN_ESCROW,
        db_index=True,
        help_text="Where the order's funds currently sit",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    returned_at = models.DateTimeField(null=True, blank=True)

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata (shipping carrier, tracking number)",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Order"
        verbose_name_plural = "Orders"
        indexes = [
            models.Index(fields=["seller", "payout_status"], name="order_seller_payout_idx"),
            models.Index(fields=["buyer", "created_at"], name="order_buyer_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="order_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency}"
        return f"Order({self.id}, {self.order_status}, {amount_display})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=order_status,
        source=OrderStatus.PROCESSING,
        target=OrderStatus.SHIPPED,
    )
    def ship(self):
        self.shipped_at = timezone.now()
        self.delivery_status = DeliveryStatus.IN_TRANSIT

    @transition(
        field=order_status,
        source=OrderStatus.SHIPPED,
        target=OrderStatus.DELIVERED,
    )
    def deliver(self):
        """
        Mark the order delivered.

        Transition: SHIPPED -> DELIVERED

        The caller releases the escrow hold in the same transaction.
        """
        self.delivered_at = timezone.now()
        self.delivery_status = DeliveryStatus.DELIVERED

    @transition(
        field=order_status,
        source=[OrderStatus.PROCESSING, OrderStatus.SHIPPED],
        target=OrderStatus.CANCELED,
    )
    def cancel(self):
        self.canceled_at = timezone.now()

    @transition(
        field=order_status,
        source=OrderStatus.DELIVERED,
        target=OrderStatus.RETURNED,
    )
    def mark_returned(self):
        self.returned_at = timezone.now()

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.order_status in (OrderStatus.CANCELED, OrderStatus.RETURNED)

    @property
    def is_editable(self) -> bool:
        """
        True while buyer-initiated requests may still be withdrawn.

        The order must not be terminal and its money must not have left
        escrow for good (paid out or refunded).
        """
        return not self.is_terminal and self.payout_status not in (
            OrderPayoutStatus.PAID,
            OrderPayoutStatus.REFUNDED,
        )


class OrderTransition(UUIDPrimaryKeyMixin, AppendOnlyModel):
    """
    Immutable audit row written with every accepted order transition.
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="transitions",
        help_text="Order that changed state",
    )

    from_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    to_status = models.CharField(max_length=20, choices=OrderStatus.choices)

    reason = models.TextField(
        blank=True,
        default="",
        help_text="Why the transition happened (free text or event id)",
    )

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        help_text="User who triggered the transition (null for system/webhook)",
    )

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Order Transition"
        verbose_name_plural = "Order Transitions"
        indexes = [
            models.Index(fields=["order", "created_at"], name="order_transition_order_idx"),
        ]

    def __str__(self) -> str:
        return f"OrderTransition({self.order_id}, {self.from_status} -> {self.to_status})"


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    One payment attempt against an order.

    An order can have several payments (buyer retries after a failure),
    but only a completed one creates an escrow hold.

    State Flow:
        PENDING -> COMPLETED
        PENDING -> FAILED
    """

    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Order this payment pays for",
    )

    provider = models.CharField(
        max_length=50,
        help_text="Payment provider name",
    )

    provider_reference = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider transaction reference used to match webhooks",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Charged amount in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="NGN",
        help_text="ISO 4217 currency code (uppercase)",
    )

    status = FSMField(
        default=PaymentStatus.PENDING,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=True,
        help_text="Payment state (managed by FSM)",
    )

    completed_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    failure_reason = models.TextField(
        blank=True,
        default="",
        help_text="Provider-reported failure reason",
    )

    provider_payload = models.JSONField(
        default=dict,
        blank=True,
        help_text="Last provider payload received for this payment",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.provider_reference}, {self.status})"

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.COMPLETED,
    )
    def complete(self):
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.PENDING,
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str = ""):
        self.failed_at = timezone.now()
        self.failure_reason = reason

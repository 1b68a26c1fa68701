"""
Create the escrow schema.

Changes:
    - Create Order, OrderTransition and Payment
    - Create PayoutMethod and ScheduledPayout
    - Create FinancialLedgerEntry (append-only seller ledger)
    - Create PaymentHold with the one-active-hold-per-order constraint
    - Create Dispute and Refund with their open-per-order constraints
    - Create WebhookEvent and WebhookLog
    - Create PeriodicTaskRun (scheduler claim state)
"""

import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


def _timestamps():
    return [
        (
            "created_at",
            models.DateTimeField(
                auto_now_add=True,
                db_index=True,
                help_text="Timestamp when this record was created",
            ),
        ),
        (
            "updated_at",
            models.DateTimeField(
                auto_now=True,
                help_text="Timestamp when this record was last modified",
            ),
        ),
    ]


def _uuid_pk():
    return (
        "id",
        models.UUIDField(
            default=uuid.uuid4,
            editable=False,
            help_text="Unique identifier (UUID v4)",
            primary_key=True,
            serialize=False,
        ),
    )


def _version():
    return (
        "version",
        models.PositiveIntegerField(
            default=1,
            help_text="Version for optimistic locking - incremented on each save",
        ),
    )


def _user_fk(related_name, **kwargs):
    return models.ForeignKey(
        on_delete=django.db.models.deletion.PROTECT,
        related_name=related_name,
        to=settings.AUTH_USER_MODEL,
        **kwargs,
    )


ORDER_STATUS_CHOICES = [
    ("processing", "Processing"),
    ("shipped", "Shipped"),
    ("delivered", "Delivered"),
    ("canceled", "Canceled"),
    ("returned", "Returned"),
]

SCHEDULED_PAYOUT_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("processing", "Processing"),
    ("completed", "Completed"),
    ("failed", "Failed"),
]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        # =====================================================================
        # Orders
        # =====================================================================
        migrations.CreateModel(
            name="Order",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                (
                    "listing_id",
                    models.CharField(
                        db_index=True,
                        help_text="External catalog listing identifier",
                        max_length=64,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Order total in smallest currency unit (e.g., kobo)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="NGN",
                        help_text="ISO 4217 currency code (uppercase)",
                        max_length=3,
                    ),
                ),
                (
                    "order_status",
                    django_fsm.FSMField(
                        choices=ORDER_STATUS_CHOICES,
                        db_index=True,
                        default="processing",
                        help_text="Fulfilment state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "delivery_status",
                    models.CharField(
                        choices=[
                            ("not_shipped", "Not Shipped"),
                            ("in_transit", "In Transit"),
                            ("delivered", "Delivered"),
                        ],
                        default="not_shipped",
                        help_text="Shipping state",
                        max_length=20,
                    ),
                ),
                (
                    "payout_status",
                    models.CharField(
                        choices=[
                            ("in_escrow", "In Escrow"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("refunded", "Refunded"),
                            ("disputed", "Disputed"),
                        ],
                        db_index=True,
                        default="in_escrow",
                        help_text="Where the order's funds currently sit",
                        max_length=20,
                    ),
                ),
                ("shipped_at", models.DateTimeField(blank=True, null=True)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                ("returned_at", models.DateTimeField(blank=True, null=True)),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON metadata (shipping carrier, tracking number)",
                    ),
                ),
                (
                    "buyer",
                    _user_fk("purchases", help_text="User who paid for the order"),
                ),
                (
                    "seller",
                    _user_fk("sales", help_text="User who receives the funds once released"),
                ),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["seller", "payout_status"], name="order_seller_payout_idx"),
                    models.Index(fields=["buyer", "created_at"], name="order_buyer_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__gt=0),
                        name="order_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="OrderTransition",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was written",
                    ),
                ),
                _uuid_pk(),
                ("from_status", models.CharField(choices=ORDER_STATUS_CHOICES, max_length=20)),
                ("to_status", models.CharField(choices=ORDER_STATUS_CHOICES, max_length=20)),
                (
                    "reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Why the transition happened (free text or event id)",
                    ),
                ),
                (
                    "actor",
                    _user_fk(
                        "+",
                        blank=True,
                        null=True,
                        help_text="User who triggered the transition (null for system/webhook)",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order that changed state",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transitions",
                        to="escrow.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Order Transition",
                "verbose_name_plural": "Order Transitions",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["order", "created_at"], name="order_transition_order_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("provider", models.CharField(help_text="Payment provider name", max_length=50)),
                (
                    "provider_reference",
                    models.CharField(
                        help_text="Provider transaction reference used to match webhooks",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(help_text="Charged amount in smallest currency unit"),
                ),
                (
                    "currency",
                    models.CharField(
                        default="NGN",
                        help_text="ISO 4217 currency code (uppercase)",
                        max_length=3,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Payment state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "failure_reason",
                    models.TextField(blank=True, default="", help_text="Provider-reported failure reason"),
                ),
                (
                    "provider_payload",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Last provider payload received for this payment",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order this payment pays for",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="escrow.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__gt=0),
                        name="payment_amount_positive",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Payouts
        # =====================================================================
        migrations.CreateModel(
            name="PayoutMethod",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "method_type",
                    models.CharField(
                        choices=[
                            ("bank_transfer", "Bank Transfer"),
                            ("paypal", "PayPal"),
                            ("crypto", "Crypto Wallet"),
                            ("wise", "Wise (international wire)"),
                            ("escrow_provider", "Escrow Provider Wallet"),
                        ],
                        help_text="Variant of the payout descriptor",
                        max_length=20,
                    ),
                ),
                (
                    "details",
                    models.JSONField(
                        default=dict,
                        help_text="Variant-specific fields (account number, email, wallet)",
                    ),
                ),
                ("is_default", models.BooleanField(default=False)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("seller", _user_fk("payout_methods")),
            ],
            options={
                "verbose_name": "Payout Method",
                "verbose_name_plural": "Payout Methods",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(is_default=True, is_active=True),
                        fields=["seller"],
                        name="unique_default_payout_method",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ScheduledPayout",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount per run; empty means pay out the full spendable balance",
                        null=True,
                    ),
                ),
                ("currency", models.CharField(max_length=3)),
                (
                    "schedule",
                    models.CharField(
                        choices=[
                            ("immediate", "Immediate"),
                            ("daily", "Daily"),
                            ("weekly", "Weekly"),
                            ("bi_weekly", "Bi-Weekly"),
                            ("monthly", "Monthly"),
                        ],
                        default="immediate",
                        max_length=20,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=SCHEDULED_PAYOUT_STATUS_CHOICES,
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "next_scheduled_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="When the next run is due (recurring only)",
                        null=True,
                    ),
                ),
                ("is_active", models.BooleanField(default=True)),
                ("attempt_count", models.PositiveIntegerField(default=0)),
                ("last_attempted_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True, default="")),
                ("last_transaction_ref", models.CharField(blank=True, default="", max_length=255)),
                ("last_provider", models.CharField(blank=True, default="", max_length=50)),
                ("last_amount_cents", models.PositiveBigIntegerField(blank=True, null=True)),
                (
                    "payout_method",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="scheduled_payouts",
                        to="escrow.payoutmethod",
                    ),
                ),
                ("seller", _user_fk("scheduled_payouts")),
            ],
            options={
                "verbose_name": "Scheduled Payout",
                "verbose_name_plural": "Scheduled Payouts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["is_active", "next_scheduled_at"], name="payout_active_next_idx"),
                    models.Index(fields=["status", "last_attempted_at"], name="payout_status_attempted_idx"),
                ],
            },
        ),
        # =====================================================================
        # Ledger
        # =====================================================================
        migrations.CreateModel(
            name="FinancialLedgerEntry",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was written",
                    ),
                ),
                _uuid_pk(),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("sale", "Sale"),
                            ("refund_initiated", "Refund Initiated"),
                            ("refund_completed", "Refund Completed"),
                            ("return_approved", "Return Approved"),
                            ("payout", "Payout"),
                            ("fee", "Fee"),
                            ("adjustment", "Adjustment"),
                        ],
                        help_text="Category of this entry",
                        max_length=30,
                    ),
                ),
                (
                    "amount_cents",
                    models.BigIntegerField(
                        help_text="Signed amount in minor units (positive = credit to seller)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(help_text="ISO 4217 currency code (uppercase)", max_length=3),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        help_text="Balance bucket this entry counts toward",
                        max_length=20,
                    ),
                ),
                (
                    "description",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Human-readable description of this entry",
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Arbitrary JSON data (provider, transaction ref, refund id)",
                    ),
                ),
                (
                    "created_by",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Identifier of service/user that created this entry",
                        max_length=255,
                    ),
                ),
                (
                    "idempotency_key",
                    models.CharField(
                        blank=True,
                        help_text="Unique key to prevent duplicate entries",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        help_text="Order this entry belongs to",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="escrow.order",
                    ),
                ),
                (
                    "reverses",
                    models.ForeignKey(
                        blank=True,
                        help_text="Entry this one compensates",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="compensations",
                        to="escrow.financialledgerentry",
                    ),
                ),
                (
                    "scheduled_payout",
                    models.ForeignKey(
                        blank=True,
                        help_text="Payout instruction for payout entries",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="ledger_entries",
                        to="escrow.scheduledpayout",
                    ),
                ),
                (
                    "seller",
                    _user_fk("ledger_entries", help_text="Seller whose balance this entry affects"),
                ),
            ],
            options={
                "verbose_name": "Ledger Entry",
                "verbose_name_plural": "Ledger Entries",
                "ordering": ["created_at"],
                "indexes": [
                    models.Index(fields=["seller", "currency", "status"], name="ledger_seller_bucket_idx"),
                    models.Index(fields=["order", "transaction_type"], name="ledger_order_type_idx"),
                ],
            },
        ),
        # =====================================================================
        # Holds
        # =====================================================================
        migrations.CreateModel(
            name="PaymentHold",
            fields=[
                *_timestamps(),
                _version(),
                _uuid_pk(),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Remaining held amount in smallest currency unit",
                    ),
                ),
                ("original_amount_cents", models.PositiveBigIntegerField(help_text="Amount held at creation")),
                ("currency", models.CharField(help_text="ISO 4217 currency code (uppercase)", max_length=3)),
                (
                    "hold_status",
                    django_fsm.FSMField(
                        choices=[
                            ("active", "Active"),
                            ("released", "Released"),
                            ("refunded", "Refunded"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="active",
                        help_text="Hold state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "releaseable_at",
                    models.DateTimeField(
                        db_index=True,
                        help_text="When the scheduler becomes entitled to auto-release",
                    ),
                ),
                ("released_at", models.DateTimeField(blank=True, null=True)),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("expired_at", models.DateTimeField(blank=True, null=True)),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order these funds are held against",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="holds",
                        to="escrow.order",
                    ),
                ),
                (
                    "payment",
                    models.OneToOneField(
                        help_text="Completed payment that funded this hold",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="hold",
                        to="escrow.payment",
                    ),
                ),
                (
                    "sale_entry",
                    models.OneToOneField(
                        blank=True,
                        help_text="Pending sale ledger entry written when the hold was created",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="escrow.financialledgerentry",
                    ),
                ),
                (
                    "seller",
                    _user_fk("escrow_holds", help_text="Seller who receives the funds on release"),
                ),
            ],
            options={
                "verbose_name": "Payment Hold",
                "verbose_name_plural": "Payment Holds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["hold_status", "releaseable_at"], name="hold_status_releaseable_idx"),
                    models.Index(fields=["seller", "currency", "hold_status"], name="hold_seller_currency_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(hold_status="active"),
                        fields=["order"],
                        name="unique_active_hold_per_order",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__lte=models.F("original_amount_cents")),
                        name="hold_amount_within_original",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Disputes & Returns
        # =====================================================================
        migrations.CreateModel(
            name="Dispute",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("reason", models.CharField(help_text="Short dispute reason", max_length=255)),
                ("description", models.TextField(blank=True, default="")),
                (
                    "evidence",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="List of evidence references (media ids, URLs)",
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("open", "Open"),
                            ("under_review", "Under Review"),
                            ("escalated", "Escalated"),
                            ("resolved", "Resolved"),
                        ],
                        db_index=True,
                        default="open",
                        help_text="Dispute state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "escalation_level",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of SLA thresholds crossed without resolution",
                    ),
                ),
                ("escalated_at", models.DateTimeField(blank=True, null=True)),
                (
                    "resolution",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("buyer_refund", "Refund Buyer"),
                            ("seller_keep", "Seller Keeps Funds"),
                            ("partial_refund", "Partial Refund"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                (
                    "refund_amount_cents",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Amount refunded to the buyer by the resolution",
                        null=True,
                    ),
                ),
                ("resolution_note", models.TextField(blank=True, default="")),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("buyer", _user_fk("disputes_opened")),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Disputed order",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="disputes",
                        to="escrow.order",
                    ),
                ),
                ("resolved_by", _user_fk("+", blank=True, null=True)),
                ("seller", _user_fk("disputes_received")),
            ],
            options={
                "verbose_name": "Dispute",
                "verbose_name_plural": "Disputes",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="dispute_status_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(status__in=["open", "under_review", "escalated"]),
                        fields=["order"],
                        name="unique_unresolved_dispute_per_order",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Requested refund amount in smallest currency unit",
                    ),
                ),
                ("currency", models.CharField(max_length=3)),
                ("reason", models.CharField(max_length=255)),
                (
                    "refund_status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("return_requested", "Return Requested"),
                            ("return_approved", "Return Approved"),
                            ("return_rejected", "Return Rejected"),
                            ("refunded", "Refunded"),
                            ("canceled", "Canceled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Return/refund state (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "refund_type",
                    models.CharField(
                        choices=[
                            ("full", "Full Refund"),
                            ("partial", "Partial Refund"),
                            ("store_credit", "Store Credit"),
                        ],
                        default="full",
                        max_length=20,
                    ),
                ),
                (
                    "rma_number",
                    models.CharField(
                        blank=True,
                        help_text="Return Merchandise Authorization number",
                        max_length=64,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "item_condition",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("unopened", "Unopened"),
                            ("like_new", "Like New"),
                            ("used", "Used"),
                            ("damaged", "Damaged"),
                            ("defective", "Defective"),
                        ],
                        default="",
                        max_length=20,
                    ),
                ),
                ("condition_notes", models.TextField(blank=True, default="")),
                ("evidence", models.JSONField(blank=True, default=list)),
                ("seller_note", models.TextField(blank=True, default="")),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the seller/admin decided on the return",
                        null=True,
                    ),
                ),
                ("refunded_at", models.DateTimeField(blank=True, null=True)),
                ("canceled_at", models.DateTimeField(blank=True, null=True)),
                ("buyer", _user_fk("refunds_requested")),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="escrow.order",
                    ),
                ),
                ("seller", _user_fk("refunds_received")),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["order", "refund_status"], name="refund_order_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount_cents__gt=0),
                        name="refund_amount_positive",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(
                            refund_status__in=["pending", "return_requested", "return_approved"]
                        ),
                        fields=["order"],
                        name="unique_open_refund_per_order",
                    ),
                ],
            },
        ),
        # =====================================================================
        # Webhooks
        # =====================================================================
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                (
                    "event_id",
                    models.CharField(
                        help_text="Provider event id (idempotency key)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Event type (e.g., 'payment.success')",
                        max_length=100,
                    ),
                ),
                ("provider", models.CharField(blank=True, default="", max_length=50)),
                ("payload", models.JSONField(help_text="Normalized event payload")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("retry_count", models.PositiveIntegerField(default=0)),
                ("next_retry_at", models.DateTimeField(blank=True, db_index=True, null=True)),
                ("error_message", models.TextField(blank=True, default="")),
                ("requires_manual_review", models.BooleanField(db_index=True, default=False)),
                ("processed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "next_retry_at"], name="webhook_status_retry_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookLog",
            fields=[
                *_timestamps(),
                _uuid_pk(),
                ("provider", models.CharField(blank=True, default="", max_length=50)),
                ("event_type", models.CharField(max_length=100)),
                (
                    "retry_count",
                    models.PositiveIntegerField(
                        help_text="Attempt number this log row records (1-based)",
                    ),
                ),
                (
                    "next_retry_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Scheduled retry; empty once retries are exhausted",
                        null=True,
                    ),
                ),
                ("error_code", models.CharField(blank=True, default="", max_length=100)),
                ("error_message", models.TextField(blank=True, default="")),
                (
                    "event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="logs",
                        to="escrow.webhookevent",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Log",
                "verbose_name_plural": "Webhook Logs",
                "ordering": ["-created_at"],
            },
        ),
        # =====================================================================
        # Scheduler
        # =====================================================================
        migrations.CreateModel(
            name="PeriodicTaskRun",
            fields=[
                (
                    "name",
                    models.CharField(
                        help_text="Registered task name",
                        max_length=100,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "last_run_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the latest run was claimed",
                        null=True,
                    ),
                ),
                ("last_finished_at", models.DateTimeField(blank=True, null=True)),
                ("last_status", models.CharField(blank=True, default="", max_length=20)),
                ("last_error", models.TextField(blank=True, default="")),
                ("last_result", models.JSONField(blank=True, default=dict)),
            ],
            options={
                "verbose_name": "Periodic Task Run",
                "verbose_name_plural": "Periodic Task Runs",
                "ordering": ["name"],
            },
        ),
    ]

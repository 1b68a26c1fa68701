"""
Django admin configuration for escrow models.

Ledger entries, order transitions and webhook logs are append-only: their
admins allow viewing only. Everything that moves money goes through the
escrow services, so the other admins are mostly read-only as well.
"""

from django.contrib import admin

from escrow.models import (
    Dispute,
    FinancialLedgerEntry,
    Order,
    OrderTransition,
    Payment,
    PaymentHold,
    PayoutMethod,
    PeriodicTaskRun,
    Refund,
    ScheduledPayout,
    WebhookEvent,
    WebhookLog,
)


def _money(cents, currency) -> str:
    if cents is None:
        return "-"
    return f"{cents / 100:.2f} {currency}"


class ReadOnlyAdmin(admin.ModelAdmin):
    """Admin for append-only tables: view, never add/change/delete."""

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class OrderTransitionInline(admin.TabularInline):
    model = OrderTransition
    extra = 0
    can_delete = False
    fields = ["from_status", "to_status", "reason", "actor", "created_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "buyer",
        "seller",
        "amount_display",
        "order_status",
        "delivery_status",
        "payout_status",
        "created_at",
    ]
    list_filter = ["order_status", "delivery_status", "payout_status", "currency"]
    search_fields = ["id", "listing_id", "buyer__email", "seller__email"]
    raw_id_fields = ["buyer", "seller"]
    ordering = ["-created_at"]
    inlines = [OrderTransitionInline]
    # order_status is FSM-protected; transitions go through OrderService
    readonly_fields = [
        "id",
        "order_status",
        "delivery_status",
        "payout_status",
        "shipped_at",
        "delivered_at",
        "canceled_at",
        "returned_at",
        "version",
        "created_at",
        "updated_at",
    ]

    @admin.display(description="Amount")
    def amount_display(self, obj):
        return _money(obj.amount_cents, obj.currency)


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ["provider_reference", "order", "provider", "amount_display", "status", "created_at"]
    list_filter = ["status", "provider"]
    search_fields = ["provider_reference", "order__id"]
    raw_id_fields = ["order"]
    readonly_fields = ["id", "status", "completed_at", "failed_at", "provider_payload", "created_at", "updated_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj):
        return _money(obj.amount_cents, obj.currency)


@admin.register(PaymentHold)
class PaymentHoldAdmin(ReadOnlyAdmin):
    list_display = ["id", "order", "seller", "amount_display", "hold_status", "releaseable_at"]
    list_filter = ["hold_status", "currency"]
    search_fields = ["id", "order__id", "seller__email"]
    ordering = ["releaseable_at"]

    @admin.display(description="Held")
    def amount_display(self, obj):
        return _money(obj.amount_cents, obj.currency)


@admin.register(FinancialLedgerEntry)
class FinancialLedgerEntryAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "seller",
        "transaction_type",
        "amount_display",
        "status",
        "order",
        "idempotency_key",
        "created_at",
    ]
    list_filter = ["transaction_type", "status", "currency"]
    search_fields = ["id", "idempotency_key", "seller__email", "order__id"]
    ordering = ["-created_at"]

    @admin.display(description="Amount")
    def amount_display(self, obj):
        return _money(obj.amount_cents, obj.currency)


@admin.register(OrderTransition)
class OrderTransitionAdmin(ReadOnlyAdmin):
    list_display = ["order", "from_status", "to_status", "actor", "created_at"]
    list_filter = ["to_status"]
    search_fields = ["order__id", "reason"]


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ["id", "order", "buyer", "status", "escalation_level", "resolution", "created_at"]
    list_filter = ["status", "escalation_level", "resolution"]
    search_fields = ["id", "order__id", "reason"]
    raw_id_fields = ["order", "buyer", "seller", "resolved_by"]
    readonly_fields = [
        "status",
        "escalation_level",
        "escalated_at",
        "resolution",
        "refund_amount_cents",
        "resolved_by",
        "resolved_at",
        "created_at",
        "updated_at",
    ]


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ["rma_number", "order", "buyer", "amount_cents", "refund_status", "refund_type", "created_at"]
    list_filter = ["refund_status", "refund_type", "item_condition"]
    search_fields = ["rma_number", "order__id"]
    raw_id_fields = ["order", "buyer", "seller"]
    readonly_fields = ["refund_status", "rma_number", "processed_at", "refunded_at", "canceled_at"]


@admin.register(PayoutMethod)
class PayoutMethodAdmin(admin.ModelAdmin):
    list_display = ["id", "seller", "method_type", "is_default", "is_active", "created_at"]
    list_filter = ["method_type", "is_default", "is_active"]
    search_fields = ["id", "seller__email"]
    raw_id_fields = ["seller"]


@admin.register(ScheduledPayout)
class ScheduledPayoutAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "seller",
        "schedule",
        "status",
        "amount_cents",
        "next_scheduled_at",
        "attempt_count",
        "last_provider",
    ]
    list_filter = ["schedule", "status", "is_active"]
    search_fields = ["id", "seller__email", "last_transaction_ref"]
    raw_id_fields = ["seller", "payout_method"]
    readonly_fields = [
        "status",
        "attempt_count",
        "last_attempted_at",
        "last_error",
        "last_transaction_ref",
        "last_provider",
        "last_amount_cents",
        "retry_at",
    ]


class WebhookLogInline(admin.TabularInline):
    model = WebhookLog
    extra = 0
    can_delete = False
    fields = ["retry_count", "error_code", "error_message", "next_retry_at", "created_at"]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = [
        "event_id",
        "event_type",
        "provider",
        "status",
        "retry_count",
        "requires_manual_review",
        "created_at",
    ]
    list_filter = ["status", "event_type", "requires_manual_review"]
    search_fields = ["event_id"]
    readonly_fields = ["event_id", "event_type", "provider", "payload", "processed_at", "created_at", "updated_at"]
    inlines = [WebhookLogInline]


@admin.register(PeriodicTaskRun)
class PeriodicTaskRunAdmin(ReadOnlyAdmin):
    list_display = ["name", "last_run_at", "last_finished_at", "last_status"]
    list_filter = ["last_status"]

"""
Django admin configuration for notification models.

Registers:
- NotificationEvent (read-only content, delivery fields visible)
- NotificationCooldown
"""

from django.contrib import admin

from notifications.models import NotificationCooldown, NotificationEvent


@admin.register(NotificationEvent)
class NotificationEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for NotificationEvent.

    Provides read-only view of outbound events for debugging and support.
    """

    list_display = [
        "id",
        "notification_type",
        "audience",
        "recipient",
        "severity",
        "status",
        "attempt_count",
        "created_at",
    ]
    list_filter = ["audience", "severity", "status", "notification_type"]
    search_fields = ["title", "related_entity_id", "idempotency_key"]
    ordering = ["-created_at"]
    readonly_fields = [
        "audience",
        "recipient",
        "notification_type",
        "related_entity_type",
        "related_entity_id",
        "title",
        "message",
        "severity",
        "action_url",
        "idempotency_key",
        "attempt_count",
        "sent_at",
        "failure_reason",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["recipient"]


@admin.register(NotificationCooldown)
class NotificationCooldownAdmin(admin.ModelAdmin):
    list_display = ["key", "last_generated_at"]
    search_fields = ["key"]
    ordering = ["-last_generated_at"]

"""
Notification outbox models.

This module defines the persistence for outbound notification events:
- NotificationEvent: One structured event addressed to a user or to admins
- NotificationCooldown: Shared "last generated" marker used to rate-limit
  repeated alerts across every worker process

Design Decisions:
    - The escrow core never formats email/push/HTML; it persists a
      structured event and a Celery task hands it to the dispatcher
    - idempotency_key is unique when present so a retried caller never
      emits the same event twice
    - Cooldowns live in the database, not in process memory, so two
      scheduler instances share one cooldown window

Usage:
    from notifications.models import NotificationEvent, NotificationAudience

    NotificationEvent.objects.filter(
        audience=NotificationAudience.ADMIN,
        severity=NotificationSeverity.CRITICAL,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


# =============================================================================
# Enums
# =============================================================================


class NotificationAudience(models.TextChoices):
    BUYER = "buyer", "Buyer"
    SELLER = "seller", "Seller"
    ADMIN = "admin", "Admin"


class NotificationSeverity(models.TextChoices):
    INFO = "info", "Info"
    WARNING = "warning", "Warning"
    CRITICAL = "critical", "Critical"


class NotificationEventStatus(models.TextChoices):
    """
    Delivery state of a NotificationEvent.

    SKIPPED: no dispatcher configured, event kept for audit only
    """

    PENDING = "pending", "Pending"
    SENT = "sent", "Sent"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


# =============================================================================
# Models
# =============================================================================


class NotificationEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Outbound structured notification.

    Fields:
        audience: Who the event is for (buyer, seller, admin)
        recipient: Target user; null for the admin audience
        notification_type: Machine-readable type (e.g. "payout_completed")
        related_entity_type / related_entity_id: The order, payout, dispute
            or webhook event the notification is about
        severity: info | warning | critical
        status: Delivery state, updated by notifications.tasks
    """

    audience = models.CharField(
        max_length=20,
        choices=NotificationAudience.choices,
        db_index=True,
    )

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notification_events",
        help_text="User who receives the notification (null for admins)",
    )

    notification_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Machine-readable notification type",
    )

    related_entity_type = models.CharField(max_length=50, blank=True, default="")
    related_entity_id = models.CharField(max_length=64, blank=True, default="")

    title = models.CharField(max_length=255)
    message = models.TextField()

    severity = models.CharField(
        max_length=20,
        choices=NotificationSeverity.choices,
        default=NotificationSeverity.INFO,
    )

    action_url = models.CharField(max_length=500, blank=True, default="")

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Unique key preventing duplicate events from retried callers",
    )

    # ==========================================================================
    # Delivery tracking
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=NotificationEventStatus.choices,
        default=NotificationEventStatus.PENDING,
        db_index=True,
    )
    attempt_count = models.PositiveIntegerField(default=0)
    sent_at = models.DateTimeField(null=True, blank=True)
    failure_reason = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Notification Event"
        verbose_name_plural = "Notification Events"
        indexes = [
            models.Index(
                fields=["related_entity_type", "related_entity_id"],
                name="notif_event_related_idx",
            ),
            models.Index(fields=["status", "created_at"], name="notif_event_status_idx"),
        ]

    def __str__(self) -> str:
        return f"NotificationEvent({self.notification_type} -> {self.audience})"

    def to_payload(self) -> dict:
        """Body POSTed to the dispatcher."""
        return {
            "id": str(self.id),
            "audience": self.audience,
            "recipientId": self.recipient_id,
            "type": self.notification_type,
            "relatedEntityType": self.related_entity_type,
            "relatedEntityId": self.related_entity_id,
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "actionUrl": self.action_url,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class NotificationCooldown(models.Model):
    """
    Shared cooldown marker.

    A caller may emit an alert for `key` only if last_generated_at is
    older than its cooldown window; the claim is a conditional UPDATE so
    only one process wins per window.
    """

    key = models.CharField(max_length=255, unique=True)
    last_generated_at = models.DateTimeField()

    class Meta:
        verbose_name = "Notification Cooldown"
        verbose_name_plural = "Notification Cooldowns"

    def __str__(self) -> str:
        return f"NotificationCooldown({self.key})"

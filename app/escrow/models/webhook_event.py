"""
WebhookEvent and WebhookLog models for payment-provider webhooks.

WebhookEvent stores every inbound provider event. The unique event_id
constraint is the concurrency guard: whichever instance inserts the row
first owns processing, every later delivery of the same id is a duplicate.

WebhookLog records each failed processing attempt together with the
retry time computed from the backoff schedule.

Usage:
    from escrow.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        event_id="evt_123",
        defaults={"event_type": "payment.success", "payload": payload},
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from escrow.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Inbound provider event, processed at most once.

    Fields:
        event_id: Provider event id (unique)
        retry_count: Failed processing attempts so far
        next_retry_at: When the retry job may pick the event up again
        requires_manual_review: Retries exhausted or a non-retryable
            failure; the event stays failed until an operator acts
    """

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider event id (idempotency key)",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Event type (e.g., 'payment.success')",
    )
    provider = models.CharField(max_length=50, default="", blank=True)
    payload = models.JSONField(help_text="Normalized event payload")

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    retry_count = models.PositiveIntegerField(default=0)
    next_retry_at = models.DateTimeField(null=True, blank=True, db_index=True)
    error_message = models.TextField(blank=True, default="")
    requires_manual_review = models.BooleanField(default=False, db_index=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "next_retry_at"], name="webhook_status_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    def mark_processed(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = ""
        self.next_retry_at = None


class WebhookLog(UUIDPrimaryKeyMixin, BaseModel):
    """
    One failed processing attempt of a WebhookEvent.
    """

    event = models.ForeignKey(
        WebhookEvent,
        on_delete=models.CASCADE,
        related_name="logs",
    )
    provider = models.CharField(max_length=50, default="", blank=True)
    event_type = models.CharField(max_length=100)
    retry_count = models.PositiveIntegerField(
        help_text="Attempt number this log row records (1-based)",
    )
    next_retry_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Scheduled retry; empty once retries are exhausted",
    )
    error_code = models.CharField(max_length=100, blank=True, default="")
    error_message = models.TextField(blank=True, default="")

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Log"
        verbose_name_plural = "Webhook Logs"

    def __str__(self) -> str:
        return f"WebhookLog({self.event_id}, attempt {self.retry_count})"

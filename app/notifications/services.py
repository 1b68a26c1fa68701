"""
Notification service layer.

Persists outbound NotificationEvents and hands them to the delivery task.
The escrow core calls this from its own transactions; a notification
failure must never undo or block a money movement, so every entry point
other than notify() swallows and logs its errors.

Services:
    NotificationService: Event creation, cooldown claims, on-commit emission

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures (duplicate key) return ServiceResult.failure()
    - Delivery is enqueued only after the creating transaction commits
    - Cooldowns are claimed with a conditional UPDATE on a shared row

Usage:
    from notifications.services import NotificationService

    # Inside an escrow transaction: emitted after commit, errors logged
    NotificationService.notify_on_commit(
        audience=NotificationAudience.SELLER,
        recipient=order.seller,
        notification_type="order_delivered",
        related_entity_type="order",
        related_entity_id=order.id,
        title="Order delivered",
        message="Funds for your order were released to your balance.",
    )

    # Admin alert at most once per 6 hours per payout
    NotificationService.notify_with_cooldown(
        cooldown_key=f"payout_failure:{payout.id}",
        cooldown=timedelta(hours=6),
        audience=NotificationAudience.ADMIN,
        notification_type="payout_failed",
        ...
    )
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult

from notifications.models import (
    NotificationCooldown,
    NotificationEvent,
    NotificationSeverity,
)

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

logger = logging.getLogger(__name__)


class NotificationService(BaseService):
    """
    Service for outbound notification events.

    Methods:
        notify: Persist an event and enqueue its delivery
        emit_safely: notify() that never raises
        notify_on_commit: emit_safely() deferred until the current
            transaction commits
        claim_cooldown: Claim a shared cooldown window
        notify_with_cooldown: emit_safely() guarded by claim_cooldown()
    """

    @classmethod
    def notify(
        cls,
        audience: str,
        notification_type: str,
        title: str,
        message: str,
        related_entity_id: Any = "",
        related_entity_type: str = "",
        severity: str = NotificationSeverity.INFO,
        action_url: str = "",
        recipient=None,
        idempotency_key: str | None = None,
    ) -> ServiceResult[NotificationEvent]:
        """
        Persist a notification event and enqueue its delivery.

        Args:
            audience: NotificationAudience value
            notification_type: Machine-readable type key
            title / message: Plain text content
            related_entity_id / related_entity_type: What the event is about
            severity: NotificationSeverity value
            action_url: Deep link for the recipient
            recipient: Target user (None for the admin audience)
            idempotency_key: Optional key preventing duplicate events

        Returns:
            ServiceResult with the created NotificationEvent

        Error codes:
            DUPLICATE: An event with this idempotency_key already exists
        """
        if (
            idempotency_key
            and NotificationEvent.objects.filter(idempotency_key=idempotency_key).exists()
        ):
            cls.get_logger().info(
                f"Duplicate notification prevented: idempotency_key={idempotency_key}"
            )
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
                retryable=False,
            )

        try:
            with transaction.atomic():
                event = NotificationEvent.objects.create(
                    audience=audience,
                    recipient=recipient,
                    notification_type=notification_type,
                    related_entity_type=related_entity_type,
                    related_entity_id=str(related_entity_id) if related_entity_id else "",
                    title=title,
                    message=message,
                    severity=severity,
                    action_url=action_url,
                    idempotency_key=idempotency_key,
                )
        except IntegrityError:
            if not idempotency_key:
                raise
            return ServiceResult.failure(
                f"Notification with idempotency_key already exists: {idempotency_key}",
                error_code="DUPLICATE",
                retryable=False,
            )

        event_id = str(event.id)
        transaction.on_commit(lambda: cls._enqueue_delivery(event_id))

        cls.get_logger().info(
            f"Notification {notification_type} created for {audience}",
            extra={
                "notification_event_id": event_id,
                "related_entity_type": related_entity_type,
                "related_entity_id": event.related_entity_id,
                "severity": severity,
            },
        )
        return ServiceResult.success(event)

    @classmethod
    def emit_safely(cls, **kwargs) -> NotificationEvent | None:
        """
        Call notify() and swallow any error.

        Returns the created event, or None if it was a duplicate or failed.
        """
        try:
            result = cls.notify(**kwargs)
        except Exception as e:
            logger.exception(
                f"Failed to emit notification {kwargs.get('notification_type')}: {e}",
                extra={
                    "notification_type": kwargs.get("notification_type"),
                    "related_entity_id": str(kwargs.get("related_entity_id", "")),
                },
            )
            return None
        return result.data if result.success else None

    @classmethod
    def notify_on_commit(cls, **kwargs) -> None:
        """
        Emit a notification once the current transaction commits.

        Outside a transaction the callback runs immediately.
        """
        transaction.on_commit(lambda: cls.emit_safely(**kwargs))

    @classmethod
    def claim_cooldown(
        cls,
        key: str,
        cooldown: timedelta,
        now: datetime | None = None,
    ) -> bool:
        """
        Claim the cooldown window for `key`.

        Returns True if the caller may emit now. The first claim creates the
        row; later claims succeed only when the stored timestamp is older
        than the window, and exactly one concurrent caller wins the update.
        """
        now = now or timezone.now()
        _, created = NotificationCooldown.objects.get_or_create(
            key=key,
            defaults={"last_generated_at": now},
        )
        if created:
            return True

        claimed = (
            NotificationCooldown.objects.filter(
                key=key,
                last_generated_at__lte=now - cooldown,
            ).update(last_generated_at=now)
            == 1
        )
        if not claimed:
            logger.debug(f"Notification cooldown active for {key}")
        return claimed

    @classmethod
    def notify_with_cooldown(
        cls,
        cooldown_key: str,
        cooldown: timedelta,
        now: datetime | None = None,
        **kwargs,
    ) -> NotificationEvent | None:
        """Emit a notification unless one for cooldown_key went out recently."""
        try:
            if not cls.claim_cooldown(cooldown_key, cooldown, now=now):
                return None
        except Exception as e:
            logger.exception(f"Failed to claim notification cooldown {cooldown_key}: {e}")
            return None
        return cls.emit_safely(**kwargs)

    @staticmethod
    def _enqueue_delivery(event_id: str) -> None:
        # Import tasks here to avoid circular imports
        from notifications import tasks

        try:
            tasks.deliver_notification.delay(event_id)
        except Exception as e:
            logger.error(
                f"Failed to enqueue notification delivery {event_id}: {e}",
                extra={"notification_event_id": event_id},
            )

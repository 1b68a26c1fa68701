"""
Celery tasks for notification delivery.

The escrow core does not render or send email/push itself. Each
NotificationEvent is POSTed as JSON to the configured dispatcher
(NOTIFICATION_DISPATCH_URL), which owns templates and channels.

Tasks:
    deliver_notification: POST one event to the dispatcher

Design:
    - Tasks receive the event id (UUID string), never the model instance
    - Re-running on a non-PENDING event is a no-op
    - Connection errors, timeouts and 5xx are transient and retried;
      4xx is permanent
    - No dispatcher configured: the event is marked SKIPPED

Usage:
    from notifications.tasks import deliver_notification

    # Called automatically by NotificationService.notify() after commit
    deliver_notification.delay(event_id="uuid-string")
"""

from __future__ import annotations

import logging

import requests
from celery import shared_task
from django.conf import settings
from django.utils import timezone as django_timezone

from notifications.models import NotificationEvent, NotificationEventStatus

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Transient dispatcher failure; the task is retried."""

    def __init__(self, message: str, code: str):
        super().__init__(message)
        self.code = code


def _get_pending_event(event_id: str) -> NotificationEvent | None:
    """
    Fetch the event if it still needs delivery.

    Returns None if the event is not found or not in PENDING status.
    """
    try:
        event = NotificationEvent.objects.get(id=event_id)
    except NotificationEvent.DoesNotExist:
        logger.warning(f"Notification event {event_id} not found")
        return None

    if event.status != NotificationEventStatus.PENDING:
        logger.info(f"Notification event {event_id} status is {event.status}, skipping")
        return None
    return event


def _mark_sent(event: NotificationEvent) -> None:
    event.status = NotificationEventStatus.SENT
    event.sent_at = django_timezone.now()
    event.failure_reason = ""
    event.save(update_fields=["status", "sent_at", "failure_reason", "attempt_count", "updated_at"])


def _mark_failed(event: NotificationEvent, reason: str) -> None:
    event.status = NotificationEventStatus.FAILED
    event.failure_reason = reason
    event.save(update_fields=["status", "failure_reason", "attempt_count", "updated_at"])


def _mark_skipped(event: NotificationEvent, reason: str) -> None:
    event.status = NotificationEventStatus.SKIPPED
    event.failure_reason = reason
    event.save(update_fields=["status", "failure_reason", "updated_at"])


@shared_task(
    bind=True,
    autoretry_for=(DispatchError,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def deliver_notification(self, event_id: str) -> bool:
    """
    Deliver a notification event to the dispatcher.

    Flow:
        1. Fetch the event; skip if not PENDING
        2. Skip if no dispatcher URL is configured
        3. Increment attempt_count and POST the event payload
        4. 2xx: SENT
        5. 4xx: FAILED (permanent)
        6. Connection error / timeout / 5xx: raise DispatchError for retry,
           FAILED once retries are exhausted

    Args:
        event_id: UUID string of the NotificationEvent

    Returns:
        True if sent or skipped, False on permanent failure

    Raises:
        DispatchError: On transient failure (triggers retry)
    """
    event = _get_pending_event(event_id)
    if event is None:
        return True

    url = getattr(settings, "NOTIFICATION_DISPATCH_URL", "")
    if not url:
        _mark_skipped(event, "No notification dispatcher configured")
        logger.debug(f"Notification event {event_id} skipped: no dispatcher configured")
        return True

    timeout = getattr(settings, "NOTIFICATION_DISPATCH_TIMEOUT_SECONDS", 10)
    event.attempt_count += 1

    try:
        response = requests.post(url, json=event.to_payload(), timeout=timeout)
    except requests.Timeout as e:
        error = DispatchError(f"Dispatcher timed out after {timeout}s: {e}", code="timeout")
    except requests.RequestException as e:
        error = DispatchError(f"Dispatcher unreachable: {e}", code="connection_error")
    else:
        if response.ok:
            _mark_sent(event)
            logger.info(
                f"Notification event {event_id} delivered",
                extra={"notification_event_id": event_id, "status_code": response.status_code},
            )
            return True
        if response.status_code < 500:
            _mark_failed(event, f"Dispatcher rejected event: HTTP {response.status_code}")
            logger.warning(
                f"Notification event {event_id} permanently rejected: HTTP {response.status_code}",
                extra={"notification_event_id": event_id},
            )
            return False
        error = DispatchError(
            f"Dispatcher error: HTTP {response.status_code}",
            code="provider_unavailable",
        )

    if self.request.retries >= self.max_retries:
        _mark_failed(event, str(error))
        logger.error(
            f"Notification event {event_id} failed after {event.attempt_count} attempts: {error}",
            extra={"notification_event_id": event_id, "error_code": error.code},
        )
        return False

    event.save(update_fields=["attempt_count", "updated_at"])
    logger.warning(
        f"Notification event {event_id} transiently failed: {error.code} - {error}, will retry",
        extra={"notification_event_id": event_id},
    )
    raise error

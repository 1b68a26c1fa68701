"""
Webhook ingestion gateway.

WebhookGateway.ingest() is the single entry point for provider events,
whether they arrive over HTTP or from a test harness. It stores the event
once, runs its handler once, and owns retries from then on.

Processing flow:
1. get_or_create on the unique event_id; a second delivery is a DUPLICATE
2. Claim the row by compare-and-set to PROCESSING
3. Run the handler inside transaction.atomic(); a failed ServiceResult
   rolls back whatever the handler wrote
4. On failure, log a WebhookLog row and schedule a retry with backoff;
   after WEBHOOK_MAX_ATTEMPTS (or any non-retryable failure) flag the
   event for manual review and alert admins

Configuration (via settings):
- WEBHOOK_MAX_ATTEMPTS: Processing attempts before manual review (default: 5)
- WEBHOOK_RETRY_BACKOFF_SECONDS: Delay per attempt (default: 1, 2, 5, 10, 30)
- WEBHOOK_RETRY_BACKOFF_SCALE: Multiplier for the delays (default: 60)

Usage:
    from escrow.webhooks import WebhookGateway

    result = WebhookGateway.ingest(
        event_id="evt_123",
        event_type="payment.success",
        payload={"provider_reference": "txn_abc", "amount_cents": 500000},
        provider="paystack",
    )
    result.outcome  # IngestOutcome.ACCEPTED
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.services import ServiceResult
from notifications.models import NotificationAudience, NotificationSeverity
from notifications.services import NotificationService

from escrow.models import WebhookEvent, WebhookLog
from escrow.state_machines import WebhookEventStatus
from escrow.webhooks.handlers import dispatch_webhook

if TYPE_CHECKING:
    from datetime import datetime

logger = logging.getLogger(__name__)


DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BACKOFF_SECONDS = (1, 2, 5, 10, 30)
DEFAULT_BACKOFF_SCALE = 60

STUCK_PROCESSING_MINUTES = 30
RETRY_BATCH_SIZE = 100


class IngestOutcome(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass
class IngestResult:
    """
    Outcome of one ingest() call.

    ACCEPTED means the event is stored and owned by the gateway; error is
    set when its first processing attempt failed and a retry is scheduled.
    """

    outcome: IngestOutcome
    event: WebhookEvent | None = None
    error: str = ""


class _HandlerFailed(Exception):
    """Raised inside the handler transaction to roll it back."""

    def __init__(self, result: ServiceResult):
        super().__init__(result.error)
        self.result = result


def retry_delay(attempt: int) -> timedelta:
    """Backoff before retry number `attempt` (1-based)."""
    delays = getattr(settings, "WEBHOOK_RETRY_BACKOFF_SECONDS", DEFAULT_BACKOFF_SECONDS)
    scale = getattr(settings, "WEBHOOK_RETRY_BACKOFF_SCALE", DEFAULT_BACKOFF_SCALE)
    index = min(max(attempt, 1), len(delays)) - 1
    return timedelta(seconds=delays[index] * scale)


class WebhookGateway:
    """
    Exactly-once ingestion of provider webhook events.

    All methods are classmethods - no instance state is maintained.
    """

    @classmethod
    def ingest(
        cls,
        event_id: str,
        event_type: str,
        payload: dict[str, Any],
        provider: str = "",
    ) -> IngestResult:
        if not event_id or not event_type:
            logger.warning(
                "Rejected webhook without event id or type",
                extra={"event_id": event_id, "event_type": event_type, "provider": provider},
            )
            return IngestResult(
                outcome=IngestOutcome.REJECTED,
                error="eventId and eventType are required",
            )

        event, created = WebhookEvent.objects.get_or_create(
            event_id=event_id,
            defaults={
                "event_type": event_type,
                "payload": payload,
                "provider": provider,
            },
        )
        if not created:
            logger.info(
                f"Duplicate webhook {event_id} ignored",
                extra={"event_id": event_id, "status": event.status},
            )
            return IngestResult(outcome=IngestOutcome.DUPLICATE, event=event)

        logger.info(
            f"Received webhook: {event_type}",
            extra={"event_id": event_id, "provider": provider},
        )
        cls.process(event)
        return IngestResult(
            outcome=IngestOutcome.ACCEPTED,
            event=event,
            error=event.error_message,
        )

    @classmethod
    def process(cls, event: WebhookEvent, now: datetime | None = None) -> bool:
        """
        Claim and run one event.

        Returns True if the handler succeeded, False if it failed or the
        event could not be claimed (already processing, processed, or
        waiting for manual review).
        """
        now = now or timezone.now()
        claimed = WebhookEvent.objects.filter(
            id=event.id,
            status__in=[WebhookEventStatus.PENDING, WebhookEventStatus.FAILED],
            requires_manual_review=False,
        ).update(status=WebhookEventStatus.PROCESSING, updated_at=now)
        if not claimed:
            logger.info(
                f"Webhook {event.event_id} not claimed",
                extra={"event_id": event.event_id},
            )
            return False
        event.status = WebhookEventStatus.PROCESSING

        try:
            with transaction.atomic():
                result = dispatch_webhook(event)
                if not result.success:
                    raise _HandlerFailed(result)
        except _HandlerFailed as e:
            cls._record_failure(event, e.result, now)
            return False
        except Exception as e:
            logger.exception(
                f"Webhook handler for {event.event_type} raised: {e}",
                extra={"event_id": event.event_id},
            )
            cls._record_failure(
                event,
                ServiceResult.failure(str(e), error_code=type(e).__name__.upper()),
                now,
            )
            return False

        event.mark_processed()
        event.save()
        logger.info(
            f"Webhook {event.event_id} processed",
            extra={"event_id": event.event_id, "event_type": event.event_type},
        )
        return True

    @classmethod
    def retry_failed_events(cls, now: datetime | None = None) -> dict[str, int]:
        """Re-run failed events whose next_retry_at has passed."""
        now = now or timezone.now()
        due = list(
            WebhookEvent.objects.filter(
                status=WebhookEventStatus.FAILED,
                requires_manual_review=False,
                next_retry_at__lte=now,
            ).order_by("next_retry_at")[:RETRY_BATCH_SIZE]
        )
        counts = {"due": len(due), "processed": 0, "failed": 0}
        for event in due:
            if cls.process(event, now=now):
                counts["processed"] += 1
            else:
                counts["failed"] += 1

        if due:
            logger.info("Webhook retry pass finished", extra=counts)
        return counts

    @classmethod
    def cleanup_stuck_events(cls, now: datetime | None = None) -> int:
        """Reset events stuck in PROCESSING (worker died mid-handler) to FAILED."""
        now = now or timezone.now()
        reset = WebhookEvent.objects.filter(
            status=WebhookEventStatus.PROCESSING,
            updated_at__lt=now - timedelta(minutes=STUCK_PROCESSING_MINUTES),
        ).update(
            status=WebhookEventStatus.FAILED,
            error_message="Processing did not finish; retrying",
            next_retry_at=now,
            updated_at=now,
        )
        if reset:
            logger.warning(
                f"Reset {reset} stuck webhook events",
                extra={"count": reset},
            )
        return reset

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _record_failure(cls, event: WebhookEvent, result: ServiceResult, now: datetime) -> None:
        max_attempts = getattr(settings, "WEBHOOK_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS)
        attempt = event.retry_count + 1
        precondition_failed = result.error_code == "PRECONDITION_FAILED"
        permanent = not result.retryable or attempt >= max_attempts
        next_retry_at = None if permanent else now + retry_delay(attempt)

        event.status = WebhookEventStatus.FAILED
        event.retry_count = attempt
        event.error_message = result.error or ""
        event.next_retry_at = next_retry_at
        event.requires_manual_review = permanent
        event.save()

        WebhookLog.objects.create(
            event=event,
            provider=event.provider,
            event_type=event.event_type,
            retry_count=attempt,
            next_retry_at=next_retry_at,
            error_code=result.error_code or "",
            error_message=result.error or "",
        )

        extra = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "retry_count": attempt,
            "error_code": result.error_code,
            "next_retry_at": next_retry_at.isoformat() if next_retry_at else None,
        }
        if precondition_failed:
            logger.critical(
                f"Webhook {event.event_id} failed verification: {result.error}",
                extra=extra,
            )
        elif permanent:
            logger.error(f"Webhook {event.event_id} needs manual review: {result.error}", extra=extra)
        else:
            logger.warning(f"Webhook {event.event_id} failed, retry scheduled: {result.error}", extra=extra)

        if permanent:
            NotificationService.emit_safely(
                audience=NotificationAudience.ADMIN,
                notification_type="webhook_manual_review",
                related_entity_type="webhook_event",
                related_entity_id=event.id,
                title="Webhook requires manual review",
                message=(
                    f"{event.event_type} event {event.event_id} failed after "
                    f"{attempt} attempt(s): {result.error}"
                ),
                severity=NotificationSeverity.CRITICAL,
                idempotency_key=f"webhook:{event.id}:manual_review",
            )

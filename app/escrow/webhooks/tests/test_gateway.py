"""
Tests for WebhookGateway.

Tests cover:
- ingest() outcomes (accepted, duplicate, rejected)
- Handler failures rolling back and scheduling retries
- Manual review after retries run out or on non-retryable failures
- Retry and stuck-event sweeps
"""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from core.services import ServiceResult
from escrow.models import Payment, WebhookEvent, WebhookLog
from escrow.state_machines import PaymentStatus, WebhookEventStatus
from escrow.tests.factories import PaymentFactory, WebhookEventFactory
from escrow.webhooks.gateway import IngestOutcome, WebhookGateway, retry_delay
from escrow.webhooks.handlers import WEBHOOK_HANDLERS
from notifications.models import NotificationEvent


def _event(pk) -> WebhookEvent:
    return WebhookEvent.objects.get(pk=pk)


def _failing_handler(retryable=True, error_code="UPSTREAM_DOWN"):
    def handler(webhook_event):
        # Written inside the handler transaction; must not survive the failure
        WebhookLog.objects.create(
            event=webhook_event,
            event_type="marker",
            retry_count=99,
        )
        return ServiceResult.failure("Upstream down", error_code=error_code, retryable=retryable)

    return handler


@pytest.fixture
def payment(order):
    return PaymentFactory(order=order)


class TestRetryDelay:
    @pytest.mark.parametrize(
        "attempt,minutes",
        [(1, 1), (2, 2), (3, 5), (4, 10), (5, 30), (9, 30), (0, 1)],
    )
    def test_schedule(self, attempt, minutes):
        assert retry_delay(attempt) == timedelta(minutes=minutes)

    def test_scale_from_settings(self, settings):
        settings.WEBHOOK_RETRY_BACKOFF_SCALE = 1

        assert retry_delay(3) == timedelta(seconds=5)


@pytest.mark.django_db
class TestIngest:
    def test_accepts_and_processes_payment(self, payment):
        result = WebhookGateway.ingest(
            event_id="evt_1",
            event_type="payment.success",
            payload={"provider_reference": payment.provider_reference, "amount_cents": 500_000},
            provider="paystack",
        )

        assert result.outcome == IngestOutcome.ACCEPTED
        assert result.error == ""

        event = _event(result.event.pk)
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.processed_at is not None
        assert event.provider == "paystack"
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.COMPLETED

    def test_duplicate_is_not_processed_again(self, payment):
        payload = {"provider_reference": payment.provider_reference}
        WebhookGateway.ingest("evt_1", "payment.success", payload)

        with patch("escrow.webhooks.gateway.dispatch_webhook") as dispatch:
            result = WebhookGateway.ingest("evt_1", "payment.success", payload)

        assert result.outcome == IngestOutcome.DUPLICATE
        dispatch.assert_not_called()
        assert WebhookEvent.objects.count() == 1

    def test_duplicate_of_failed_event_does_not_retry_early(self, db):
        with patch.dict(WEBHOOK_HANDLERS, {"test.flaky": _failing_handler()}):
            WebhookGateway.ingest("evt_1", "test.flaky", {})
            result = WebhookGateway.ingest("evt_1", "test.flaky", {})

        assert result.outcome == IngestOutcome.DUPLICATE
        assert _event(result.event.pk).retry_count == 1

    @pytest.mark.parametrize("event_id,event_type", [("", "payment.success"), ("evt_1", "")])
    def test_rejects_missing_identity(self, db, event_id, event_type):
        result = WebhookGateway.ingest(event_id, event_type, {})

        assert result.outcome == IngestOutcome.REJECTED
        assert result.error == "eventId and eventType are required"
        assert not WebhookEvent.objects.exists()

    def test_unknown_event_type_is_marked_processed(self, db):
        result = WebhookGateway.ingest("evt_1", "charge.dispute.created", {})

        assert result.outcome == IngestOutcome.ACCEPTED
        assert _event(result.event.pk).status == WebhookEventStatus.PROCESSED

    def test_first_attempt_failure_is_still_accepted(self, db):
        with patch.dict(WEBHOOK_HANDLERS, {"test.flaky": _failing_handler()}):
            result = WebhookGateway.ingest("evt_1", "test.flaky", {})

        assert result.outcome == IngestOutcome.ACCEPTED
        assert result.error == "Upstream down"


@pytest.mark.django_db
class TestHandlerFailure:
    def test_failure_rolls_back_and_schedules_retry(self):
        event = WebhookEventFactory(event_type="test.flaky")
        now = timezone.now()

        with patch.dict(WEBHOOK_HANDLERS, {"test.flaky": _failing_handler()}):
            assert WebhookGateway.process(event, now=now) is False

        event = _event(event.pk)
        assert event.status == WebhookEventStatus.FAILED
        assert event.retry_count == 1
        assert event.error_message == "Upstream down"
        assert event.next_retry_at == now + retry_delay(1)
        assert event.requires_manual_review is False

        log = WebhookLog.objects.get(event=event)
        assert log.retry_count == 1
        assert log.error_code == "UPSTREAM_DOWN"
        assert log.next_retry_at == event.next_retry_at
        assert not WebhookLog.objects.filter(event_type="marker").exists()

    def test_handler_exception_is_recorded(self):
        event = WebhookEventFactory(event_type="test.boom")

        def boom(webhook_event):
            raise KeyError("provider_reference")

        with patch.dict(WEBHOOK_HANDLERS, {"test.boom": boom}):
            WebhookGateway.process(event)

        event = _event(event.pk)
        assert event.status == WebhookEventStatus.FAILED
        assert event.requires_manual_review is False
        assert WebhookLog.objects.get(event=event).error_code == "KEYERROR"

    def test_manual_review_after_max_attempts(self):
        event = WebhookEventFactory(event_type="test.flaky", retry_count=4)

        with patch.dict(WEBHOOK_HANDLERS, {"test.flaky": _failing_handler()}):
            WebhookGateway.process(event)

        event = _event(event.pk)
        assert event.retry_count == 5
        assert event.requires_manual_review is True
        assert event.next_retry_at is None

        alert = NotificationEvent.objects.get(idempotency_key=f"webhook:{event.id}:manual_review")
        assert alert.notification_type == "webhook_manual_review"

    def test_non_retryable_failure_goes_straight_to_review(self):
        event = WebhookEventFactory(event_type="test.bad")

        with patch.dict(
            WEBHOOK_HANDLERS, {"test.bad": _failing_handler(retryable=False, error_code="BAD")}
        ):
            WebhookGateway.process(event)

        event = _event(event.pk)
        assert event.retry_count == 1
        assert event.requires_manual_review is True

    def test_amount_mismatch_is_logged_critical(self, payment, caplog):
        event = WebhookEventFactory(
            payload={"provider_reference": payment.provider_reference, "amount_cents": 1},
        )

        with caplog.at_level(logging.CRITICAL, logger="escrow.webhooks.gateway"):
            WebhookGateway.process(event)

        event = _event(event.pk)
        assert event.requires_manual_review is True
        assert WebhookLog.objects.get(event=event).error_code == "PRECONDITION_FAILED"
        assert any(
            r.levelno == logging.CRITICAL and r.name == "escrow.webhooks.gateway"
            for r in caplog.records
        )
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.PENDING

    @pytest.mark.parametrize(
        "status",
        [WebhookEventStatus.PROCESSING, WebhookEventStatus.PROCESSED],
    )
    def test_unclaimable_event_is_skipped(self, status):
        event = WebhookEventFactory(status=status)

        with patch("escrow.webhooks.gateway.dispatch_webhook") as dispatch:
            assert WebhookGateway.process(event) is False

        dispatch.assert_not_called()

    def test_event_under_review_is_skipped(self):
        event = WebhookEventFactory(status=WebhookEventStatus.FAILED, requires_manual_review=True)

        with patch("escrow.webhooks.gateway.dispatch_webhook") as dispatch:
            assert WebhookGateway.process(event) is False

        dispatch.assert_not_called()


@pytest.mark.django_db
class TestRetryFailedEvents:
    def test_retries_due_events_only(self):
        now = timezone.now()
        due = WebhookEventFactory(
            event_type="test.ok",
            status=WebhookEventStatus.FAILED,
            retry_count=1,
            next_retry_at=now - timedelta(seconds=1),
        )
        later = WebhookEventFactory(
            event_type="test.ok",
            status=WebhookEventStatus.FAILED,
            retry_count=1,
            next_retry_at=now + timedelta(minutes=5),
        )
        WebhookEventFactory(
            event_type="test.ok",
            status=WebhookEventStatus.FAILED,
            requires_manual_review=True,
            next_retry_at=None,
        )

        with patch.dict(WEBHOOK_HANDLERS, {"test.ok": lambda e: ServiceResult.success(None)}):
            counts = WebhookGateway.retry_failed_events(now=now)

        assert counts == {"due": 1, "processed": 1, "failed": 0}
        assert _event(due.pk).status == WebhookEventStatus.PROCESSED
        assert _event(later.pk).status == WebhookEventStatus.FAILED

    def test_failed_retry_backs_off_further(self):
        now = timezone.now()
        event = WebhookEventFactory(
            event_type="test.flaky",
            status=WebhookEventStatus.FAILED,
            retry_count=2,
            next_retry_at=now,
        )

        with patch.dict(WEBHOOK_HANDLERS, {"test.flaky": _failing_handler()}):
            counts = WebhookGateway.retry_failed_events(now=now)

        assert counts["failed"] == 1
        event = _event(event.pk)
        assert event.retry_count == 3
        assert event.next_retry_at == now + retry_delay(3)


@pytest.mark.django_db
class TestCleanupStuckEvents:
    def test_resets_old_processing_events(self):
        now = timezone.now()
        stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        fresh = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=stuck.pk).update(updated_at=now - timedelta(minutes=31))
        WebhookEvent.objects.filter(pk=fresh.pk).update(updated_at=now - timedelta(minutes=5))

        assert WebhookGateway.cleanup_stuck_events(now=now) == 1

        stuck = _event(stuck.pk)
        assert stuck.status == WebhookEventStatus.FAILED
        assert stuck.next_retry_at == now
        assert stuck.error_message == "Processing did not finish; retrying"
        assert _event(fresh.pk).status == WebhookEventStatus.PROCESSING

    def test_reset_event_is_picked_up_by_retry(self):
        now = timezone.now()
        stuck = WebhookEventFactory(event_type="test.ok", status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=stuck.pk).update(updated_at=now - timedelta(hours=1))

        WebhookGateway.cleanup_stuck_events(now=now)
        with patch.dict(WEBHOOK_HANDLERS, {"test.ok": lambda e: ServiceResult.success(None)}):
            WebhookGateway.retry_failed_events(now=now)

        assert _event(stuck.pk).status == WebhookEventStatus.PROCESSED

"""
Tests for the escrow periodic workers.

Each job is run through the scheduler the way celery-beat runs it, so the
registration, the service call and the recorded result are all covered.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from escrow.models import Dispute, PaymentHold, PeriodicTaskRun, ScheduledPayout, WebhookEvent
from escrow.scheduler import RunStatus, Ticker
from escrow.services import PayoutService
from escrow.state_machines import HoldStatus, WebhookEventStatus
from escrow.tests.factories import DisputeFactory, WebhookEventFactory


def _run(name, now=None):
    status = Ticker().run_task(name, now=now or timezone.now(), force=True)
    return status, PeriodicTaskRun.objects.get(name=name).last_result


@pytest.mark.django_db
class TestHoldExpiryWorker:
    def test_releases_expired_holds(self, order, fund_order):
        fund_order(order, duration_days=1)

        status, result = _run("release_expired_holds", now=timezone.now() + timedelta(days=2))

        assert status == RunStatus.SUCCEEDED
        assert result == {"scanned": 1, "expired": 1, "skipped": 0, "failed": 0}
        assert PaymentHold.objects.get(order=order).hold_status == HoldStatus.EXPIRED

    def test_interval(self):
        from escrow.scheduler import registry

        assert registry.get("release_expired_holds").every == timedelta(hours=6)


@pytest.mark.django_db
class TestPayoutWorkers:
    def test_execute_scheduled_payouts(self):
        with patch(
            "escrow.services.PayoutService.execute_scheduled_payouts",
            return_value={"due": 0, "completed": 0, "failed": 0, "skipped": 0},
        ) as execute:
            status, result = _run("execute_scheduled_payouts")

        assert status == RunStatus.SUCCEEDED
        assert execute.call_count == 1
        assert result["due"] == 0

    def test_retry_failed_payouts(self, seller, credit_seller, bank_method, fake_providers):
        credit_seller(seller, 500_000)
        fake_providers["paystack"].fail("timeout", retryable=True)
        fake_providers["wise"].fail("timeout", retryable=True)
        failed = PayoutService.execute_immediate_payout(seller.pk, bank_method.id, 100_000, "NGN")

        status, result = _run("retry_failed_payouts", now=timezone.now() + timedelta(days=2))

        assert status == RunStatus.SUCCEEDED
        assert result == {"due": 1, "completed": 1, "failed": 0, "skipped": 0}
        assert ScheduledPayout.objects.get(pk=failed.payout.id).attempt_count == 2

    def test_recover_stuck_payouts_with_nothing_stuck(self):
        status, result = _run("recover_stuck_payouts")

        assert status == RunStatus.SUCCEEDED
        assert result == {"stuck": 0, "recovered": 0}


@pytest.mark.django_db
class TestDisputeEscalationWorker:
    def test_escalates_old_disputes(self, funded_order):
        dispute = DisputeFactory(order=funded_order)
        Dispute.objects.filter(pk=dispute.pk).update(
            created_at=timezone.now() - timedelta(days=30)
        )

        status, result = _run("escalate_stale_disputes")

        assert status == RunStatus.SUCCEEDED
        assert result["escalated"] == 1


@pytest.mark.django_db
class TestWebhookWorkers:
    def test_retry_failed_webhooks(self):
        now = timezone.now()
        event = WebhookEventFactory(
            event_type="customer.updated",
            status=WebhookEventStatus.FAILED,
            retry_count=1,
            next_retry_at=now - timedelta(minutes=1),
        )

        status, result = _run("retry_failed_webhooks", now=now)

        assert status == RunStatus.SUCCEEDED
        assert result == {"due": 1, "processed": 1, "failed": 0}
        assert WebhookEvent.objects.get(pk=event.pk).status == WebhookEventStatus.PROCESSED

    def test_cleanup_stuck_webhooks(self):
        now = timezone.now()
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=event.pk).update(updated_at=now - timedelta(hours=1))

        status, result = _run("cleanup_stuck_webhooks", now=now)

        assert status == RunStatus.SUCCEEDED
        assert result == {"reset": 1}
        assert WebhookEvent.objects.get(pk=event.pk).status == WebhookEventStatus.FAILED

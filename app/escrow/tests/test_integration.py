"""
End-to-end escrow journeys.

Each test drives a whole order lifecycle through the public surfaces: the
signed webhook endpoint, the order/dispute services, the Celery tasks and
the scheduler. Payout providers are fakes.
"""

import json
from datetime import timedelta

import pytest
from django.urls import reverse
from django.utils import timezone
from freezegun import freeze_time
from rest_framework.test import APIClient

from escrow.ledger import ledger
from escrow.models import Order, PaymentHold, ScheduledPayout
from escrow.services import DisputeService, OrderService, PayoutService
from escrow.state_machines import (
    DisputeResolution,
    HoldStatus,
    OrderPayoutStatus,
    OrderStatus,
    ScheduledPayoutStatus,
)
from escrow.tasks import scheduler_tick
from escrow.tests.factories import PaymentFactory
from escrow.webhooks.signing import compute_signature

SECRET = "whsec_integration"


@pytest.fixture(autouse=True)
def webhook_secret(settings):
    settings.ESCROW_WEBHOOK_SECRET = SECRET


@pytest.fixture
def api_client():
    return APIClient()


def _send_webhook(client, event_id, event_type, reference, **fields):
    body = json.dumps(
        {"eventId": event_id, "eventType": event_type, "providerReference": reference, **fields}
    ).encode()
    return client.post(
        reverse("escrow:escrow_webhook"),
        data=body,
        content_type="application/json",
        HTTP_X_ESCROW_SIGNATURE=compute_signature(body, SECRET),
    )


def _order(order_id) -> Order:
    return Order.objects.get(pk=order_id)


@pytest.fixture
def paid_order(api_client, order):
    """Order paid through the provider webhook; funds held in escrow."""
    payment = PaymentFactory(order=order)
    response = _send_webhook(
        api_client,
        "evt_pay_1",
        "payment.success",
        payment.provider_reference,
        amount=payment.amount_cents,
        currency="NGN",
    )
    assert response.status_code == 200
    return _order(order.id)


@pytest.mark.django_db
class TestOrderToPayout:
    def test_delivery_then_manual_payout(
        self, paid_order, seller, bank_method, fake_providers, django_capture_on_commit_callbacks
    ):
        hold = PaymentHold.objects.get(order=paid_order)
        assert hold.hold_status == HoldStatus.ACTIVE
        assert ledger.balance(seller.pk, "NGN").pending == 500_000

        OrderService.transition_order(paid_order.id, OrderStatus.SHIPPED)
        OrderService.transition_order(paid_order.id, OrderStatus.DELIVERED)

        assert PaymentHold.objects.get(pk=hold.pk).hold_status == HoldStatus.RELEASED
        assert ledger.balance(seller.pk, "NGN").spendable == 500_000

        with django_capture_on_commit_callbacks(execute=True):
            payout = PayoutService.request_manual_payout(seller.pk, bank_method.id, 200_000, "NGN")

        payout = ScheduledPayout.objects.get(pk=payout.pk)
        assert payout.status == ScheduledPayoutStatus.COMPLETED
        assert payout.last_provider == "paystack"

        balance = ledger.balance(seller.pk, "NGN")
        assert balance.available == 300_000
        assert balance.spendable == 300_000

    def test_processing_payout_settled_by_webhook(
        self, api_client, paid_order, seller, bank_method, fake_providers
    ):
        OrderService.transition_order(paid_order.id, OrderStatus.SHIPPED)
        OrderService.transition_order(paid_order.id, OrderStatus.DELIVERED)
        fake_providers["paystack"].succeed(status="processing", transaction_ref="ps_e2e")

        PayoutService.execute_immediate_payout(seller.pk, bank_method.id, 500_000, "NGN")
        assert ledger.balance(seller.pk, "NGN").spendable == 0

        response = _send_webhook(api_client, "evt_payout_1", "payout.success", "ps_e2e")

        assert response.status_code == 200
        balance = ledger.balance(seller.pk, "NGN")
        assert balance.available == 0
        assert balance.in_flight_payouts == 0

    def test_duplicate_payment_webhook_creates_one_hold(self, api_client, paid_order):
        reference = paid_order.payments.get().provider_reference

        response = _send_webhook(
            api_client, "evt_pay_1", "payment.success", reference, amount=500_000, currency="NGN"
        )

        assert response.json()["status"] == "duplicate"
        assert PaymentHold.objects.filter(order=paid_order).count() == 1


@pytest.mark.django_db
class TestDisputedOrder:
    def test_buyer_refund_before_delivery(self, paid_order, buyer, seller, staff_user):
        dispute = DisputeService.initiate_dispute(paid_order.id, buyer.pk, reason="Never arrived")
        assert _order(paid_order.id).payout_status == OrderPayoutStatus.DISPUTED

        DisputeService.start_review(dispute.id)
        DisputeService.resolve_dispute(
            dispute.id, DisputeResolution.BUYER_REFUND, resolved_by=staff_user
        )

        assert PaymentHold.objects.get(order=paid_order).hold_status == HoldStatus.REFUNDED
        assert _order(paid_order.id).payout_status == OrderPayoutStatus.REFUNDED
        assert ledger.balance(seller.pk, "NGN").total == 0

    def test_disputed_hold_is_not_auto_released(self, paid_order, buyer, seller):
        DisputeService.initiate_dispute(paid_order.id, buyer.pk, reason="Damaged")

        with freeze_time(timezone.now() + timedelta(days=31)):
            scheduler_tick()

        assert PaymentHold.objects.get(order=paid_order).hold_status == HoldStatus.ACTIVE
        assert ledger.balance(seller.pk, "NGN").spendable == 0


@pytest.mark.django_db
class TestHoldExpiry:
    def test_scheduler_releases_expired_hold(self, paid_order, seller):
        with freeze_time(timezone.now() + timedelta(days=31)):
            ran = scheduler_tick()

        assert ran["release_expired_holds"] == "succeeded"
        assert PaymentHold.objects.get(order=paid_order).hold_status == HoldStatus.EXPIRED
        assert ledger.balance(seller.pk, "NGN").spendable == 500_000

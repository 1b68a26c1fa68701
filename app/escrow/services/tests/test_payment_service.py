"""
Tests for PaymentService.confirm_payment().

Tests cover:
- success: payment completed, hold created, parties notified
- failed / pending / refunded confirmations
- Idempotent re-application of the same status
- Amount and currency mismatch rejection
"""

import logging

import pytest

from core.exceptions import PreconditionFailedError
from escrow.exceptions import EscrowNotFoundError, EscrowValidationError
from escrow.ledger import ledger
from escrow.models import Order, OrderTransition, Payment, PaymentHold
from escrow.services import PaymentService
from escrow.state_machines import (
    HoldStatus,
    OrderPayoutStatus,
    OrderStatus,
    PaymentStatus,
)
from escrow.tests.factories import OrderFactory, PaymentFactory
from notifications.models import NotificationEvent


@pytest.fixture
def payment(order):
    return PaymentFactory(order=order)


def _reload(payment) -> Payment:
    return Payment.objects.get(pk=payment.pk)


class TestConfirmSuccess:
    def test_completes_payment_and_creates_hold(self, payment):
        result = PaymentService.confirm_payment(
            payment.provider_reference,
            "success",
            amount_cents=500_000,
            currency="ngn",
            payload={"channel": "card"},
        )

        assert result.status == PaymentStatus.COMPLETED
        assert result.completed_at is not None
        assert _reload(payment).provider_payload == {"channel": "card"}

        hold = PaymentHold.objects.get(payment=payment)
        assert hold.hold_status == HoldStatus.ACTIVE
        assert hold.amount_cents == 500_000
        assert ledger.balance(payment.order.seller_id, "NGN").pending == 500_000

    def test_notifies_buyer_and_seller(self, payment, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            PaymentService.confirm_payment(payment.provider_reference, "success")

        keys = set(NotificationEvent.objects.values_list("idempotency_key", flat=True))
        assert f"payment:{payment.id}:confirmed:buyer" in keys
        assert f"payment:{payment.id}:confirmed:seller" in keys

    def test_second_success_is_noop(self, payment):
        PaymentService.confirm_payment(payment.provider_reference, "success")
        PaymentService.confirm_payment(payment.provider_reference, "success")

        assert PaymentHold.objects.filter(order=payment.order).count() == 1
        assert ledger.balance(payment.order.seller_id, "NGN").pending == 500_000

    def test_success_after_failure_is_ignored(self, payment):
        PaymentService.confirm_payment(payment.provider_reference, "failed")

        result = PaymentService.confirm_payment(payment.provider_reference, "success")

        assert result.status == PaymentStatus.FAILED
        assert not PaymentHold.objects.exists()


class TestConfirmFailure:
    def test_marks_failed_with_reason(self, payment, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            result = PaymentService.confirm_payment(
                payment.provider_reference,
                "failed",
                payload={"reason": "insufficient funds"},
            )

        assert result.status == PaymentStatus.FAILED
        assert result.failure_reason == "insufficient funds"
        assert NotificationEvent.objects.filter(idempotency_key=f"payment:{payment.id}:failed").exists()

    def test_message_used_when_reason_missing(self, payment):
        result = PaymentService.confirm_payment(
            payment.provider_reference, "failed", payload={"message": "card declined"}
        )

        assert result.failure_reason == "card declined"


class TestConfirmPending:
    def test_records_payload_only(self, payment):
        result = PaymentService.confirm_payment(
            payment.provider_reference, "pending", payload={"step": "3ds"}
        )

        assert result.status == PaymentStatus.PENDING
        assert _reload(payment).provider_payload == {"step": "3ds"}
        assert not PaymentHold.objects.exists()


class TestConfirmRefunded:
    def test_refunds_hold_and_cancels_order(self, payment):
        PaymentService.confirm_payment(payment.provider_reference, "success")

        PaymentService.confirm_payment(payment.provider_reference, "refunded")

        order = Order.objects.get(pk=payment.order_id)
        assert order.order_status == OrderStatus.CANCELED
        assert order.payout_status == OrderPayoutStatus.REFUNDED
        assert PaymentHold.objects.get(order=order).hold_status == HoldStatus.REFUNDED
        assert ledger.balance(order.seller_id, "NGN").total == 0

        transition = OrderTransition.objects.get(order=order)
        assert transition.to_status == OrderStatus.CANCELED
        assert payment.provider_reference in transition.reason

    def test_cancellation_notifies_both_parties(self, payment, django_capture_on_commit_callbacks):
        PaymentService.confirm_payment(payment.provider_reference, "success")

        with django_capture_on_commit_callbacks(execute=True):
            PaymentService.confirm_payment(payment.provider_reference, "refunded")

        keys = set(
            NotificationEvent.objects.filter(notification_type="order_canceled").values_list(
                "idempotency_key", flat=True
            )
        )
        assert keys == {
            f"order:{payment.order_id}:canceled:buyer",
            f"order:{payment.order_id}:canceled:seller",
        }

    def test_refund_without_hold_marks_refunded(self, payment):
        PaymentService.confirm_payment(payment.provider_reference, "refunded")

        order = Order.objects.get(pk=payment.order_id)
        assert order.order_status == OrderStatus.CANCELED
        assert order.payout_status == OrderPayoutStatus.REFUNDED
        assert not PaymentHold.objects.filter(order=order).exists()

    def test_delivered_order_is_not_canceled(self, db, buyer, seller):
        order = OrderFactory(buyer=buyer, seller=seller, order_status=OrderStatus.DELIVERED)
        payment = PaymentFactory(order=order)
        PaymentService.confirm_payment(payment.provider_reference, "success")

        PaymentService.confirm_payment(payment.provider_reference, "refunded")

        order = Order.objects.get(pk=order.pk)
        assert order.order_status == OrderStatus.DELIVERED
        assert order.payout_status == OrderPayoutStatus.REFUNDED
        assert not OrderTransition.objects.filter(order=order).exists()

    def test_repeated_refund_is_noop(self, payment):
        PaymentService.confirm_payment(payment.provider_reference, "success")
        PaymentService.confirm_payment(payment.provider_reference, "refunded")

        PaymentService.confirm_payment(payment.provider_reference, "refunded")

        assert OrderTransition.objects.filter(order_id=payment.order_id).count() == 1


class TestValidation:
    def test_unknown_status(self, payment):
        with pytest.raises(EscrowValidationError):
            PaymentService.confirm_payment(payment.provider_reference, "chargeback")

    def test_unknown_reference(self, db):
        with pytest.raises(EscrowNotFoundError) as exc_info:
            PaymentService.confirm_payment("txn_missing", "success")

        assert exc_info.value.error_code == "PAYMENT_NOT_FOUND"

    @pytest.mark.parametrize(
        "amount_cents,currency",
        [(499_999, "NGN"), (500_000, "USD")],
    )
    def test_mismatch_is_rejected_and_logged_critical(self, payment, caplog, amount_cents, currency):
        with caplog.at_level(logging.CRITICAL, logger="escrow.services.payment_service"):
            with pytest.raises(PreconditionFailedError):
                PaymentService.confirm_payment(
                    payment.provider_reference,
                    "success",
                    amount_cents=amount_cents,
                    currency=currency,
                )

        assert _reload(payment).status == PaymentStatus.PENDING
        assert not PaymentHold.objects.exists()
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

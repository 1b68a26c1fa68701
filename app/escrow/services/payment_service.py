"""
Payment confirmation.

PaymentService.confirm_payment applies a provider-reported payment status
to the matching Payment. It is called by the webhook handlers and is safe
to call repeatedly with the same status.

A confirmation whose amount or currency differs from what was recorded is
treated as a fraud signal: logged at CRITICAL and never applied.

Usage:
    from escrow.services import PaymentService

    PaymentService.confirm_payment(
        provider_reference="txn_abc",
        status="success",
        amount_cents=500000,
        currency="NGN",
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

from core.exceptions import PreconditionFailedError
from core.services import BaseService
from notifications.models import NotificationAudience, NotificationSeverity
from notifications.services import NotificationService

from escrow.exceptions import EscrowNotFoundError, EscrowValidationError
from escrow.ledger import Money
from escrow.models import Order, Payment
from escrow.services.hold_service import HoldService
from escrow.services.order_service import OrderService
from escrow.state_machines import OrderPayoutStatus, OrderStatus, PaymentStatus

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)


class ConfirmationStatus:
    """Provider payment statuses accepted by confirm_payment."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"
    REFUNDED = "refunded"

    ALL = (SUCCESS, FAILED, PENDING, REFUNDED)


class PaymentService(BaseService):
    """
    Service applying provider payment confirmations.

    Methods:
        confirm_payment: Apply success / failed / pending / refunded
    """

    @classmethod
    def confirm_payment(
        cls,
        provider_reference: str,
        status: str,
        amount_cents: int | None = None,
        currency: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Payment:
        """
        Apply a provider-reported status to a payment.

        success: payment -> completed and the escrow hold is created
        failed: payment -> failed, buyer notified
        pending: payload recorded only
        refunded: active hold refunded in full, order canceled if it still can be

        Re-applying a status the payment already has is a no-op.

        Raises:
            EscrowNotFoundError: Unknown provider_reference
            PreconditionFailedError: Amount or currency differs from the record
            EscrowValidationError: Unknown status
        """
        if status not in ConfirmationStatus.ALL:
            raise EscrowValidationError(
                f"Unknown payment status: {status}",
                details={"status": status, "allowed": list(ConfirmationStatus.ALL)},
            )

        with transaction.atomic():
            try:
                payment = (
                    Payment.objects.select_for_update()
                    .select_related("order")
                    .get(provider_reference=provider_reference)
                )
            except Payment.DoesNotExist:
                raise EscrowNotFoundError.for_entity("payment", provider_reference) from None

            cls._verify_amount(payment, amount_cents, currency)

            if payload:
                payment.provider_payload = payload

            if status == ConfirmationStatus.SUCCESS:
                cls._apply_success(payment)
            elif status == ConfirmationStatus.FAILED:
                cls._apply_failure(payment, payload or {})
            elif status == ConfirmationStatus.REFUNDED:
                cls._apply_refund(payment)

            payment.save()

        logger.info(
            f"Payment {provider_reference} confirmed as {status}",
            extra={
                "payment_id": str(payment.id),
                "order_id": str(payment.order_id),
                "payment_status": payment.status,
            },
        )
        return payment

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _verify_amount(payment: Payment, amount_cents: int | None, currency: str | None) -> None:
        mismatches = {}
        if amount_cents is not None and amount_cents != payment.amount_cents:
            mismatches["amount_cents"] = {"expected": payment.amount_cents, "received": amount_cents}
        if currency is not None and currency.upper() != payment.currency:
            mismatches["currency"] = {"expected": payment.currency, "received": currency.upper()}

        if mismatches:
            logger.critical(
                f"Payment confirmation mismatch for {payment.provider_reference}",
                extra={
                    "payment_id": str(payment.id),
                    "order_id": str(payment.order_id),
                    "mismatches": mismatches,
                },
            )
            raise PreconditionFailedError(
                f"Confirmation for payment {payment.provider_reference} does not match "
                f"the recorded amount {Money(payment.amount_cents, payment.currency)}",
                details={"provider_reference": payment.provider_reference, **mismatches},
            )

    @classmethod
    def _apply_success(cls, payment: Payment) -> None:
        if payment.status == PaymentStatus.COMPLETED:
            logger.info(f"Payment {payment.provider_reference} already completed")
            return
        if payment.status != PaymentStatus.PENDING:
            logger.warning(
                f"Ignoring success for payment {payment.provider_reference} in {payment.status}",
                extra={"payment_id": str(payment.id)},
            )
            return

        payment.complete()
        order = payment.order
        hold = HoldService.create_hold(
            payment_id=payment.id,
            order_id=order.id,
            seller_id=order.seller_id,
            amount_cents=payment.amount_cents,
            currency=payment.currency,
        )

        amount = Money(payment.amount_cents, payment.currency)
        NotificationService.notify_on_commit(
            audience=NotificationAudience.BUYER,
            recipient=order.buyer,
            notification_type="payment_confirmed",
            related_entity_type="order",
            related_entity_id=order.id,
            title="Payment confirmed",
            message=f"Your payment of {amount} is held in escrow until delivery.",
            idempotency_key=f"payment:{payment.id}:confirmed:buyer",
        )
        NotificationService.notify_on_commit(
            audience=NotificationAudience.SELLER,
            recipient=order.seller,
            notification_type="new_paid_order",
            related_entity_type="order",
            related_entity_id=order.id,
            title="New paid order",
            message=(
                f"{amount} is held in escrow for your order and will be released "
                f"on delivery or on {hold.releaseable_at:%Y-%m-%d}."
            ),
            idempotency_key=f"payment:{payment.id}:confirmed:seller",
        )

    @classmethod
    def _apply_failure(cls, payment: Payment, payload: dict) -> None:
        if payment.status == PaymentStatus.FAILED:
            return
        if payment.status != PaymentStatus.PENDING:
            logger.warning(
                f"Ignoring failure for payment {payment.provider_reference} in {payment.status}",
                extra={"payment_id": str(payment.id)},
            )
            return

        payment.fail(reason=str(payload.get("reason") or payload.get("message") or ""))
        NotificationService.notify_on_commit(
            audience=NotificationAudience.BUYER,
            recipient=payment.order.buyer,
            notification_type="payment_failed",
            related_entity_type="order",
            related_entity_id=payment.order_id,
            title="Payment failed",
            message="Your payment could not be completed. Please try again.",
            severity=NotificationSeverity.WARNING,
            idempotency_key=f"payment:{payment.id}:failed",
        )

    @classmethod
    def _apply_refund(cls, payment: Payment) -> None:
        order = Order.objects.select_for_update().get(id=payment.order_id)
        hold = HoldService.get_active_hold(order.id)
        if hold is not None:
            HoldService.refund(order.id, hold.amount_cents, reference=f"provider:{payment.id}")
        if hold is not None or order.payout_status in (
            OrderPayoutStatus.IN_ESCROW,
            OrderPayoutStatus.DISPUTED,
        ):
            order.payout_status = OrderPayoutStatus.REFUNDED
            order.save(update_fields=["payout_status", "updated_at"])

        if order.order_status in (OrderStatus.PROCESSING, OrderStatus.SHIPPED):
            OrderService.transition_order(
                order.id,
                OrderStatus.CANCELED,
                reason=f"Payment {payment.provider_reference} refunded by provider",
            )

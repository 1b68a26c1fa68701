"""
Return and refund workflow.

A buyer asks to return a delivered order; the seller (or an admin)
approves or rejects; an approved return is refunded through the same hold
and ledger primitives disputes use. While a return is open the order's
payout_status is DISPUTED so the hold expiry job leaves its funds alone.

State Flow (Refund.refund_status):
    pending -> return_requested -> return_approved -> refunded
    return_requested/return_approved -> return_rejected
    pending/return_requested/return_approved -> canceled (buyer only)

Usage:
    from escrow.services import ReturnService

    refund = ReturnService.initiate_return(
        order.id, buyer.id, reason="Wrong size", item_condition=ItemCondition.UNOPENED
    )
    ReturnService.approve_return(refund.id, operator=seller, role="seller")
    ReturnService.process_refund(refund.id)
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction

from core.exceptions import ConflictError, PermissionDeniedError
from core.services import BaseService
from notifications.models import NotificationAudience, NotificationSeverity
from notifications.services import NotificationService

from escrow.exceptions import EscrowNotFoundError, EscrowValidationError, InvalidTransitionError
from escrow.ledger import AppendEntryParams, EntryStatus, Money, TransactionType, ledger
from escrow.models import Dispute, Order, Refund
from escrow.models.dispute import OPEN_REFUND_STATUSES, UNRESOLVED_DISPUTE_STATUSES
from escrow.services.hold_service import HoldService
from escrow.services.order_service import OrderService
from escrow.state_machines import (
    ItemCondition,
    OrderPayoutStatus,
    OrderStatus,
    RefundStatus,
    RefundType,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


STATUS_DESCRIPTIONS = {
    RefundStatus.PENDING: "Return request is being created",
    RefundStatus.RETURN_REQUESTED: "Waiting for the seller to review the return",
    RefundStatus.RETURN_APPROVED: "Return approved, refund will be processed once the item is received",
    RefundStatus.RETURN_REJECTED: "Return was rejected by the seller",
    RefundStatus.REFUNDED: "Refund completed",
    RefundStatus.CANCELED: "Return was canceled by the buyer",
}

REVIEWER_ROLES = ("seller", "admin")


def generate_rma_number(order_id) -> str:
    """RMA-{epoch millis}-{first 8 chars of the order id, uppercased}."""
    return f"RMA-{int(time.time() * 1000)}-{str(order_id)[:8].upper()}"


class ReturnService(BaseService):
    """
    Service for buyer returns.

    Methods:
        initiate_return: Open a return with an RMA number
        approve_return / reject_return: Seller or admin decision
        cancel_return: Buyer withdraws the request
        process_refund: Refund an approved return
        get_refund_status: Status summary for display
    """

    @classmethod
    def initiate_return(
        cls,
        order_id: uuid.UUID,
        buyer_id,
        reason: str,
        item_condition: str,
        condition_notes: str = "",
        evidence: Iterable[str] = (),
        amount_cents: int | None = None,
    ) -> Refund:
        """
        Open a return request for a delivered order.

        Raises:
            EscrowNotFoundError: Order doesn't exist
            PermissionDeniedError: buyer_id is not the order's buyer
            ConflictError: Order not delivered, or a return is already open
            EscrowValidationError: Bad item condition or amount
        """
        if item_condition not in ItemCondition.values:
            raise EscrowValidationError(
                f"Unknown item condition: {item_condition}",
                details={"item_condition": item_condition, "allowed": ItemCondition.values},
            )

        with transaction.atomic():
            order = cls._lock_order(order_id)

            if str(order.buyer_id) != str(buyer_id):
                raise PermissionDeniedError(
                    "Only the buyer can return this order",
                    details={"order_id": str(order_id)},
                )
            if order.order_status != OrderStatus.DELIVERED:
                raise ConflictError(
                    f"Order must be delivered to be returned (currently {order.order_status})",
                    error_code="ORDER_NOT_RETURNABLE",
                    details={"order_id": str(order_id), "order_status": order.order_status},
                )

            amount = order.amount_cents if amount_cents is None else amount_cents
            if not 0 < amount <= order.amount_cents:
                raise EscrowValidationError(
                    f"Return amount must be between 0.01 and {Money(order.amount_cents, order.currency)}",
                    details={"amount_cents": amount, "order_amount_cents": order.amount_cents},
                )

            if Refund.objects.filter(order=order, refund_status__in=OPEN_REFUND_STATUSES).exists():
                raise cls._already_open(order_id)

            try:
                with transaction.atomic():
                    refund = Refund.objects.create(
                        order=order,
                        buyer_id=order.buyer_id,
                        seller_id=order.seller_id,
                        amount_cents=amount,
                        currency=order.currency,
                        reason=reason,
                        refund_type=(
                            RefundType.FULL if amount == order.amount_cents else RefundType.PARTIAL
                        ),
                        item_condition=item_condition,
                        condition_notes=condition_notes,
                        evidence=list(evidence),
                    )
            except IntegrityError:
                raise cls._already_open(order_id) from None

            refund.request_return(generate_rma_number(order.id))
            refund.save()

            order.payout_status = OrderPayoutStatus.DISPUTED
            order.save(update_fields=["payout_status", "updated_at"])

            NotificationService.notify_on_commit(
                audience=NotificationAudience.BUYER,
                recipient=order.buyer,
                notification_type="return_initiated",
                related_entity_type="refund",
                related_entity_id=refund.id,
                title="Return requested",
                message=f"Your return {refund.rma_number} was sent to the seller for review.",
                idempotency_key=f"refund:{refund.id}:initiated:buyer",
            )
            NotificationService.notify_on_commit(
                audience=NotificationAudience.SELLER,
                recipient=order.seller,
                notification_type="return_request",
                related_entity_type="refund",
                related_entity_id=refund.id,
                title="Return request received",
                message=f"The buyer requested a return ({refund.rma_number}): {reason}",
                severity=NotificationSeverity.WARNING,
                idempotency_key=f"refund:{refund.id}:initiated:seller",
            )

        logger.info(
            f"Return {refund.rma_number} opened for order {order_id}",
            extra={"refund_id": str(refund.id), "order_id": str(order_id), "amount_cents": amount},
        )
        return refund

    @classmethod
    def approve_return(cls, refund_id: uuid.UUID, operator, role: str) -> Refund:
        """
        Approve a requested return.

        Raises:
            PermissionDeniedError: Operator is neither the order's seller nor an admin
            InvalidTransitionError: Return is not in return_requested
        """
        with transaction.atomic():
            refund = cls._lock_refund(refund_id)
            cls._check_reviewer(refund, operator, role)
            cls._require_status(refund, RefundStatus.RETURN_APPROVED, (RefundStatus.RETURN_REQUESTED,))

            refund.approve()
            refund.save()

            ledger.append(
                AppendEntryParams(
                    seller_id=refund.seller_id,
                    order_id=refund.order_id,
                    transaction_type=TransactionType.RETURN_APPROVED,
                    amount_cents=0,
                    currency=refund.currency,
                    status=EntryStatus.PENDING,
                    description=f"Return {refund.rma_number} approved by {role}",
                    idempotency_key=f"refund:{refund.id}:approved",
                    created_by=role,
                )
            )

            NotificationService.notify_on_commit(
                audience=NotificationAudience.BUYER,
                recipient=refund.buyer,
                notification_type="return_approved",
                related_entity_type="refund",
                related_entity_id=refund.id,
                title="Return approved",
                message=f"Your return {refund.rma_number} was approved.",
                idempotency_key=f"refund:{refund.id}:approved",
            )

        logger.info(
            f"Return {refund.rma_number} approved",
            extra={"refund_id": str(refund.id), "role": role},
        )
        return refund

    @classmethod
    def reject_return(cls, refund_id: uuid.UUID, operator, role: str, seller_note: str = "") -> Refund:
        with transaction.atomic():
            refund = cls._lock_refund(refund_id)
            cls._check_reviewer(refund, operator, role)
            cls._require_status(
                refund,
                RefundStatus.RETURN_REJECTED,
                (RefundStatus.RETURN_REQUESTED, RefundStatus.RETURN_APPROVED),
            )

            refund.reject(seller_note=seller_note)
            refund.save()

            order = cls._lock_order(refund.order_id)
            cls._restore_payout_status(order)

            NotificationService.notify_on_commit(
                audience=NotificationAudience.BUYER,
                recipient=refund.buyer,
                notification_type="return_rejected",
                related_entity_type="refund",
                related_entity_id=refund.id,
                title="Return rejected",
                message=f"Your return {refund.rma_number} was rejected. {seller_note}".strip(),
                severity=NotificationSeverity.WARNING,
                idempotency_key=f"refund:{refund.id}:rejected",
            )

        logger.info(
            f"Return {refund.rma_number} rejected",
            extra={"refund_id": str(refund.id), "role": role},
        )
        return refund

    @classmethod
    def cancel_return(cls, refund_id: uuid.UUID, buyer_id) -> Refund:
        """
        Withdraw a return request.

        Raises:
            PermissionDeniedError: Caller is not the buyer who opened it
            InvalidTransitionError: Return already decided or order no longer editable
        """
        with transaction.atomic():
            refund = cls._lock_refund(refund_id)
            if str(refund.buyer_id) != str(buyer_id):
                raise PermissionDeniedError(
                    "Only the buyer who opened the return can cancel it",
                    details={"refund_id": str(refund_id)},
                )

            order = cls._lock_order(refund.order_id)
            if not order.is_editable:
                raise InvalidTransitionError(
                    refund.refund_status, RefundStatus.CANCELED, [], entity="refund"
                )
            cls._require_status(refund, RefundStatus.CANCELED, OPEN_REFUND_STATUSES)

            refund.cancel()
            refund.save()
            cls._restore_payout_status(order)

        logger.info(f"Return {refund.rma_number} canceled by buyer", extra={"refund_id": str(refund.id)})
        return refund

    @classmethod
    def process_refund(
        cls,
        refund_id: uuid.UUID,
        amount_cents: int | None = None,
        refund_type: str | None = None,
    ) -> Refund:
        """
        Refund an approved return.

        While the order's hold is active the refund comes out of the hold;
        otherwise it is debited from the seller's available balance. A full
        refund moves the order to RETURNED.

        Raises:
            InvalidTransitionError: Return is not approved
            EscrowValidationError: Amount out of range
        """
        with transaction.atomic():
            refund = cls._lock_refund(refund_id)
            cls._require_status(refund, RefundStatus.REFUNDED, (RefundStatus.RETURN_APPROVED,))

            order = cls._lock_order(refund.order_id)
            amount = refund.amount_cents if amount_cents is None else amount_cents
            if not 0 < amount <= order.amount_cents:
                raise EscrowValidationError(
                    f"Refund amount must be between 0.01 and {Money(order.amount_cents, order.currency)}",
                    details={"amount_cents": amount, "order_amount_cents": order.amount_cents},
                )

            reference = f"return:{refund.id}"
            hold = HoldService.get_active_hold(order.id)
            if hold is not None:
                if amount > hold.amount_cents:
                    raise EscrowValidationError(
                        f"Refund amount exceeds the {Money(hold.amount_cents, hold.currency)} still held",
                        details={"amount_cents": amount, "held_cents": hold.amount_cents},
                    )
                HoldService.refund(order.id, amount, reference=reference)
            else:
                HoldService.debit_released_refund(order, amount, reference=reference)

            is_full = amount == order.amount_cents
            refund.amount_cents = amount
            refund.refund_type = refund_type or (RefundType.FULL if is_full else RefundType.PARTIAL)
            refund.complete()
            refund.save()

            if is_full:
                OrderService.transition_order(
                    order.id,
                    OrderStatus.RETURNED,
                    reason=f"Return {refund.rma_number} refunded",
                )
            else:
                cls._restore_payout_status(order)

            NotificationService.notify_on_commit(
                audience=NotificationAudience.SELLER,
                recipient=refund.seller,
                notification_type="return_refunded",
                related_entity_type="refund",
                related_entity_id=refund.id,
                title="Return refunded",
                message=f"{Money(amount, refund.currency)} was refunded to the buyer for return {refund.rma_number}.",
                idempotency_key=f"refund:{refund.id}:refunded",
            )

        logger.info(
            f"Return {refund.rma_number} refunded: {Money(amount, refund.currency)}",
            extra={"refund_id": str(refund.id), "order_id": str(refund.order_id), "amount_cents": amount},
        )
        return refund

    @classmethod
    def get_refund_status(cls, refund_id: uuid.UUID) -> dict:
        refund = Refund.objects.filter(id=refund_id).first()
        if refund is None:
            raise EscrowNotFoundError.for_entity("refund", refund_id)
        return {
            "refund_id": str(refund.id),
            "status": refund.refund_status,
            "description": STATUS_DESCRIPTIONS[refund.refund_status],
            "rma_number": refund.rma_number,
            "amount": str(Money(refund.amount_cents, refund.currency)),
            "refund_type": refund.refund_type,
            "created_at": refund.created_at,
            "processed_at": refund.processed_at,
            "refunded_at": refund.refunded_at,
            "canceled_at": refund.canceled_at,
        }

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _lock_order(order_id) -> Order:
        try:
            return Order.objects.select_for_update().get(id=order_id)
        except Order.DoesNotExist:
            raise EscrowNotFoundError.for_entity("order", order_id) from None

    @staticmethod
    def _lock_refund(refund_id) -> Refund:
        try:
            return Refund.objects.select_for_update().get(id=refund_id)
        except Refund.DoesNotExist:
            raise EscrowNotFoundError.for_entity("refund", refund_id) from None

    @staticmethod
    def _already_open(order_id) -> ConflictError:
        return ConflictError(
            "Order already has an open return",
            error_code="RETURN_ALREADY_OPEN",
            details={"order_id": str(order_id)},
        )

    @staticmethod
    def _check_reviewer(refund: Refund, operator, role: str) -> None:
        if role not in REVIEWER_ROLES:
            raise PermissionDeniedError(
                f"Role '{role}' cannot review returns",
                details={"role": role, "allowed": list(REVIEWER_ROLES)},
            )
        if role == "seller" and str(getattr(operator, "pk", operator)) != str(refund.seller_id):
            raise PermissionDeniedError(
                "Only the order's seller can review this return",
                details={"refund_id": str(refund.id)},
            )
        if role == "admin" and not getattr(operator, "is_staff", False):
            raise PermissionDeniedError(
                "Admin role requires a staff operator",
                details={"refund_id": str(refund.id)},
            )

    @staticmethod
    def _require_status(refund: Refund, target: str, sources: tuple) -> None:
        if refund.refund_status not in sources:
            raise InvalidTransitionError(
                refund.refund_status,
                target,
                {t.target for t in refund.get_available_refund_status_transitions()},
                entity="refund",
            )

    @staticmethod
    def _restore_payout_status(order: Order) -> None:
        """Unfreeze the order's funds unless a dispute still holds them."""
        if Dispute.objects.filter(order=order, status__in=UNRESOLVED_DISPUTE_STATUSES).exists():
            return
        if HoldService.get_active_hold(order.id) is not None:
            order.payout_status = OrderPayoutStatus.IN_ESCROW
        else:
            order.payout_status = OrderPayoutStatus.PROCESSING
        order.save(update_fields=["payout_status", "updated_at"])

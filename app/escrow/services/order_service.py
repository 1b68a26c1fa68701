"""
Order lifecycle controller.

Every order status change goes through OrderService.transition_order. The
transition, its audit row and its money side effects (hold release or
refund) commit together or not at all; notifications go out only after
the commit.

Allowed transitions:
    processing -> shipped | canceled
    shipped    -> delivered | canceled
    delivered  -> returned
    canceled, returned: terminal

Usage:
    from escrow.services import OrderService

    order = OrderService.transition_order(
        order.id, OrderStatus.DELIVERED, reason="carrier confirmed delivery"
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

from core.services import BaseService
from notifications.models import NotificationAudience
from notifications.services import NotificationService

from escrow.exceptions import EscrowNotFoundError, InvalidTransitionError
from escrow.models import Dispute, Order, OrderTransition
from escrow.models.dispute import UNRESOLVED_DISPUTE_STATUSES
from escrow.services.hold_service import HoldService
from escrow.state_machines import DisputeResolution, OrderPayoutStatus, OrderStatus

if TYPE_CHECKING:
    import uuid

logger = logging.getLogger(__name__)


# Target status -> FSM transition method on Order
TRANSITION_METHODS = {
    OrderStatus.SHIPPED: "ship",
    OrderStatus.DELIVERED: "deliver",
    OrderStatus.CANCELED: "cancel",
    OrderStatus.RETURNED: "mark_returned",
}

# (title, buyer message, seller message)
TRANSITION_MESSAGES = {
    OrderStatus.SHIPPED: (
        "Order shipped",
        "Your order is on its way.",
        "You marked the order as shipped.",
    ),
    OrderStatus.DELIVERED: (
        "Order delivered",
        "Your order was delivered.",
        "Your order was delivered and the funds were released to your balance.",
    ),
    OrderStatus.CANCELED: (
        "Order canceled",
        "Your order was canceled. Any payment held in escrow is refunded.",
        "The order was canceled and the escrowed payment returned to the buyer.",
    ),
    OrderStatus.RETURNED: (
        "Order returned",
        "Your return is complete.",
        "The order was returned and refunded to the buyer.",
    ),
}


class OrderService(BaseService):
    """
    Service for order status transitions.

    Methods:
        transition_order: Validate and apply one status change
        get_allowed_transitions: Statuses reachable from the current one
    """

    @classmethod
    def get_allowed_transitions(cls, order: Order) -> set[str]:
        return {t.target for t in order.get_available_order_status_transitions()}

    @classmethod
    def transition_order(
        cls,
        order_id: uuid.UUID,
        new_status: str,
        reason: str = "",
        actor=None,
    ) -> Order:
        """
        Move an order to new_status.

        Implementation:
            1. Lock the order row
            2. Check new_status against the allowed table
            3. Apply the FSM transition and write the OrderTransition row
            4. Run side effects (hold release on delivery, hold refund on
               cancel, payout_status updates)
            5. Notify buyer and seller after commit

        Raises:
            EscrowNotFoundError: Order doesn't exist
            InvalidTransitionError: new_status not reachable from the current status
        """
        with transaction.atomic():
            try:
                order = Order.objects.select_for_update().get(id=order_id)
            except Order.DoesNotExist:
                raise EscrowNotFoundError.for_entity("order", order_id) from None

            current = order.order_status
            allowed = cls.get_allowed_transitions(order)
            if new_status not in allowed:
                logger.warning(
                    f"Rejected order transition {current} -> {new_status}",
                    extra={"order_id": str(order_id), "allowed": sorted(allowed)},
                )
                raise InvalidTransitionError(current, new_status, allowed)

            getattr(order, TRANSITION_METHODS[new_status])()
            cls._apply_side_effects(order, new_status, reason)
            order.save()

            OrderTransition.objects.create(
                order=order,
                from_status=current,
                to_status=new_status,
                reason=reason,
                actor=actor,
            )

            cls._notify_parties(order, new_status)

        logger.info(
            f"Order {order_id} transitioned {current} -> {new_status}",
            extra={
                "order_id": str(order_id),
                "from_status": current,
                "to_status": new_status,
                "payout_status": order.payout_status,
                "actor_id": getattr(actor, "pk", None),
            },
        )
        return order

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _apply_side_effects(cls, order: Order, new_status: str, reason: str) -> None:
        if new_status == OrderStatus.DELIVERED:
            if order.payout_status == OrderPayoutStatus.DISPUTED:
                # Funds stay frozen until the dispute or return is settled
                logger.info(
                    f"Order {order.id} delivered while disputed, hold not released",
                    extra={"order_id": str(order.id)},
                )
                return
            HoldService.release(order.id)
            order.payout_status = OrderPayoutStatus.PROCESSING

        elif new_status == OrderStatus.CANCELED:
            hold = HoldService.get_active_hold(order.id)
            refunded = None
            if hold is not None:
                refunded = hold.amount_cents
                HoldService.refund(order.id, hold.amount_cents, reference="order_canceled")
                order.payout_status = OrderPayoutStatus.REFUNDED
            cls._close_disputes(order, refunded, reason or "Order canceled")

        elif new_status == OrderStatus.RETURNED:
            order.payout_status = OrderPayoutStatus.REFUNDED

    @staticmethod
    def _close_disputes(order: Order, refunded: int | None, note: str) -> None:
        # A canceled order has nothing left to dispute
        disputes = Dispute.objects.select_for_update().filter(
            order=order,
            status__in=UNRESOLVED_DISPUTE_STATUSES,
        )
        for dispute in disputes:
            dispute.resolve(DisputeResolution.BUYER_REFUND, refund_amount_cents=refunded)
            dispute.resolution_note = note
            dispute.save()
            logger.info(
                f"Dispute {dispute.id} closed by order cancellation",
                extra={"dispute_id": str(dispute.id), "order_id": str(order.id)},
            )

    @classmethod
    def _notify_parties(cls, order: Order, new_status: str) -> None:
        title, buyer_message, seller_message = TRANSITION_MESSAGES[new_status]
        notification_type = f"order_{new_status}"
        for audience, recipient, message in (
            (NotificationAudience.BUYER, order.buyer, buyer_message),
            (NotificationAudience.SELLER, order.seller, seller_message),
        ):
            NotificationService.notify_on_commit(
                audience=audience,
                recipient=recipient,
                notification_type=notification_type,
                related_entity_type="order",
                related_entity_id=order.id,
                title=title,
                message=message,
                idempotency_key=f"order:{order.id}:{new_status}:{audience}",
            )

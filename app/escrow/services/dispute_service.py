"""
Dispute resolver.

A buyer dispute freezes the order's escrowed funds (payout_status DISPUTED,
which the hold expiry job skips) until an operator resolves it in favour of
the buyer, the seller, or with a partial refund. Unresolved disputes are
escalated by a scheduler job as they age past the SLA thresholds.

Resolution money movements:
    buyer_refund: active hold refunded in full; if already released, the
        order amount is debited from the seller's available balance
    seller_keep: hold released to the seller
    partial_refund: exactly the given amount refunded, the rest stays held

Usage:
    from escrow.services import DisputeService

    dispute = DisputeService.initiate_dispute(order.id, buyer.id, reason="Item not as described")
    DisputeService.resolve_dispute(dispute.id, DisputeResolution.PARTIAL_REFUND, amount_cents=150000)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from core.exceptions import ConflictError, PermissionDeniedError, PreconditionFailedError
from core.services import BaseService
from notifications.models import NotificationAudience, NotificationSeverity
from notifications.services import NotificationService

from escrow.exceptions import EscrowNotFoundError, EscrowValidationError, InvalidTransitionError
from escrow.ledger import AppendEntryParams, EntryStatus, Money, TransactionType, ledger
from escrow.models import Dispute, Order
from escrow.models.dispute import UNRESOLVED_DISPUTE_STATUSES
from escrow.services.hold_service import HoldService
from escrow.state_machines import (
    DisputeResolution,
    DisputeStatus,
    OrderPayoutStatus,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import datetime

logger = logging.getLogger(__name__)


DEFAULT_ESCALATION_THRESHOLDS_HOURS = (24, 72, 168)


def _escalation_thresholds() -> list[int]:
    return sorted(
        getattr(
            settings,
            "DISPUTE_ESCALATION_THRESHOLDS_HOURS",
            DEFAULT_ESCALATION_THRESHOLDS_HOURS,
        )
    )


class DisputeService(BaseService):
    """
    Service for buyer disputes.

    Methods:
        initiate_dispute: Open a dispute and freeze the order's funds
        start_review: open -> under_review
        resolve_dispute: Apply the resolution's money movement
        escalate_stale_disputes: Scheduler job raising escalation levels
    """

    @classmethod
    def initiate_dispute(
        cls,
        order_id: uuid.UUID,
        buyer_id,
        reason: str,
        description: str = "",
        evidence: Iterable[str] = (),
    ) -> Dispute:
        """
        Open a dispute on an order.

        Raises:
            EscrowNotFoundError: Order doesn't exist
            PermissionDeniedError: buyer_id is not the order's buyer
            PreconditionFailedError: The order was already paid out
            ConflictError: The order already has an unresolved dispute
        """
        with transaction.atomic():
            order = cls._lock_order(order_id)

            if str(order.buyer_id) != str(buyer_id):
                raise PermissionDeniedError(
                    "Only the buyer can dispute this order",
                    details={"order_id": str(order_id)},
                )
            if order.payout_status == OrderPayoutStatus.PAID:
                raise PreconditionFailedError(
                    "Order has already been paid out to the seller",
                    error_code="ORDER_ALREADY_PAID",
                    details={"order_id": str(order_id)},
                )
            if Dispute.objects.filter(order=order, status__in=UNRESOLVED_DISPUTE_STATUSES).exists():
                raise ConflictError(
                    "Order already has an open dispute",
                    error_code="DISPUTE_ALREADY_OPEN",
                    details={"order_id": str(order_id)},
                )

            try:
                with transaction.atomic():
                    dispute = Dispute.objects.create(
                        order=order,
                        buyer_id=order.buyer_id,
                        seller_id=order.seller_id,
                        reason=reason,
                        description=description,
                        evidence=list(evidence),
                    )
            except IntegrityError:
                raise ConflictError(
                    "Order already has an open dispute",
                    error_code="DISPUTE_ALREADY_OPEN",
                    details={"order_id": str(order_id)},
                ) from None

            ledger.append(
                AppendEntryParams(
                    seller_id=order.seller_id,
                    order_id=order.id,
                    transaction_type=TransactionType.REFUND_INITIATED,
                    amount_cents=0,
                    currency=order.currency,
                    status=EntryStatus.PENDING,
                    description=f"Dispute opened: {reason}",
                    idempotency_key=f"dispute:{dispute.id}:initiated",
                    created_by="dispute_service",
                )
            )

            order.payout_status = OrderPayoutStatus.DISPUTED
            order.save(update_fields=["payout_status", "updated_at"])

            NotificationService.notify_on_commit(
                audience=NotificationAudience.SELLER,
                recipient=order.seller,
                notification_type="dispute_opened",
                related_entity_type="dispute",
                related_entity_id=dispute.id,
                title="Dispute opened",
                message=f"The buyer opened a dispute: {reason}. Funds are on hold until it is resolved.",
                severity=NotificationSeverity.WARNING,
                idempotency_key=f"dispute:{dispute.id}:opened",
            )

        logger.info(
            f"Dispute opened on order {order_id}",
            extra={"dispute_id": str(dispute.id), "order_id": str(order_id)},
        )
        return dispute

    @classmethod
    def start_review(cls, dispute_id: uuid.UUID) -> Dispute:
        with transaction.atomic():
            dispute = cls._lock_dispute(dispute_id)
            if dispute.status != DisputeStatus.OPEN:
                raise InvalidTransitionError(
                    dispute.status,
                    DisputeStatus.UNDER_REVIEW,
                    {t.target for t in dispute.get_available_status_transitions()},
                    entity="dispute",
                )
            dispute.start_review()
            dispute.save()
        return dispute

    @classmethod
    def resolve_dispute(
        cls,
        dispute_id: uuid.UUID,
        resolution: str,
        amount_cents: int | None = None,
        resolved_by=None,
        note: str = "",
    ) -> Dispute:
        """
        Resolve a dispute and move the money accordingly.

        Raises:
            EscrowNotFoundError: Dispute doesn't exist
            InvalidTransitionError: Dispute already resolved
            EscrowValidationError: Unknown resolution, or partial amount out of range
        """
        if resolution not in DisputeResolution.values:
            raise EscrowValidationError(
                f"Unknown dispute resolution: {resolution}",
                details={"resolution": resolution, "allowed": DisputeResolution.values},
            )

        with transaction.atomic():
            dispute = cls._lock_dispute(dispute_id)
            if dispute.is_resolved:
                raise InvalidTransitionError(
                    dispute.status, DisputeStatus.RESOLVED, [], entity="dispute"
                )

            order = cls._lock_order(dispute.order_id)
            reference = f"dispute:{dispute.id}"

            if resolution == DisputeResolution.BUYER_REFUND:
                refunded = cls._refund_buyer_in_full(order, reference)
            elif resolution == DisputeResolution.SELLER_KEEP:
                refunded = 0
                cls._keep_for_seller(order, dispute)
            else:
                refunded = cls._refund_partially(order, amount_cents, reference)

            dispute.resolve(resolution, refund_amount_cents=refunded)
            dispute.resolved_by = resolved_by
            dispute.resolution_note = note
            dispute.save()

            order.save(update_fields=["payout_status", "updated_at"])
            cls._notify_resolution(dispute, order, refunded)

        logger.info(
            f"Dispute {dispute_id} resolved: {resolution}",
            extra={
                "dispute_id": str(dispute_id),
                "order_id": str(order.id),
                "refund_amount_cents": refunded,
                "payout_status": order.payout_status,
            },
        )
        return dispute

    @classmethod
    def escalate_stale_disputes(cls, now: datetime | None = None) -> dict:
        """
        Raise the escalation level of unresolved disputes past each SLA threshold.

        Level n is reached once the dispute is older than the n-th threshold.
        The last level moves the dispute to ESCALATED. Every level raises an
        admin alert, rate-limited through the shared notification cooldown.
        Escalation never resolves a dispute.

        Returns:
            Dict with scanned / escalated / failed counts
        """
        now = now or timezone.now()
        thresholds = _escalation_thresholds()
        cooldown = timedelta(hours=getattr(settings, "DISPUTE_ESCALATION_ALERT_COOLDOWN_HOURS", 24))

        candidate_ids = list(
            Dispute.objects.filter(
                status__in=UNRESOLVED_DISPUTE_STATUSES,
                escalation_level__lt=len(thresholds),
                created_at__lte=now - timedelta(hours=thresholds[0]),
            ).values_list("id", flat=True)
        )

        counts = {"scanned": len(candidate_ids), "escalated": 0, "failed": 0}
        for dispute_id in candidate_ids:
            try:
                level = cls._escalate_one(dispute_id, thresholds, now)
            except Exception as e:
                counts["failed"] += 1
                logger.error(
                    f"Failed to escalate dispute {dispute_id}: {e}",
                    extra={"dispute_id": str(dispute_id)},
                    exc_info=True,
                )
                continue

            if level is None:
                continue
            counts["escalated"] += 1
            severity = (
                NotificationSeverity.CRITICAL
                if level >= len(thresholds)
                else NotificationSeverity.WARNING
            )
            NotificationService.notify_with_cooldown(
                cooldown_key=f"dispute_escalation:{dispute_id}:{level}",
                cooldown=cooldown,
                now=now,
                audience=NotificationAudience.ADMIN,
                notification_type="dispute_escalated",
                related_entity_type="dispute",
                related_entity_id=dispute_id,
                title=f"Dispute escalated to level {level}",
                message=(
                    f"Dispute {dispute_id} has been unresolved for more than "
                    f"{thresholds[level - 1]} hours."
                ),
                severity=severity,
            )

        if counts["escalated"]:
            logger.info(f"Escalated {counts['escalated']} stale disputes", extra=counts)
        return counts

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
    def _lock_dispute(dispute_id) -> Dispute:
        try:
            return Dispute.objects.select_for_update().get(id=dispute_id)
        except Dispute.DoesNotExist:
            raise EscrowNotFoundError.for_entity("dispute", dispute_id) from None

    @classmethod
    def _escalate_one(cls, dispute_id, thresholds: list[int], now: datetime) -> int | None:
        with transaction.atomic():
            dispute = cls._lock_dispute(dispute_id)
            if dispute.is_resolved:
                return None

            age = now - dispute.created_at
            level = sum(1 for hours in thresholds if age >= timedelta(hours=hours))
            if level <= dispute.escalation_level:
                return None

            dispute.escalation_level = level
            dispute.escalated_at = now
            if level >= len(thresholds) and dispute.status != DisputeStatus.ESCALATED:
                dispute.escalate()
            dispute.save()

        logger.warning(
            f"Dispute {dispute_id} escalated to level {level}",
            extra={"dispute_id": str(dispute_id), "escalation_level": level},
        )
        return level

    @staticmethod
    def _refund_buyer_in_full(order: Order, reference: str) -> int:
        hold = HoldService.get_active_hold(order.id)
        if hold is not None:
            refunded = hold.amount_cents
            HoldService.refund(order.id, refunded, reference=reference)
        else:
            refunded = order.amount_cents
            HoldService.debit_released_refund(order, refunded, reference=reference)
            NotificationService.notify_on_commit(
                audience=NotificationAudience.SELLER,
                recipient=order.seller,
                notification_type="refund_repayment_required",
                related_entity_type="order",
                related_entity_id=order.id,
                title="Refund repayment required",
                message=(
                    f"{Money(refunded, order.currency)} was refunded to the buyer after "
                    f"release and has been debited from your balance."
                ),
                severity=NotificationSeverity.WARNING,
                idempotency_key=f"{reference}:repayment",
            )
        order.payout_status = OrderPayoutStatus.REFUNDED
        return refunded

    @staticmethod
    def _keep_for_seller(order: Order, dispute: Dispute) -> None:
        HoldService.release(order.id)
        ledger.append(
            AppendEntryParams(
                seller_id=order.seller_id,
                order_id=order.id,
                transaction_type=TransactionType.SALE,
                amount_cents=0,
                currency=order.currency,
                status=EntryStatus.COMPLETED,
                description="Dispute resolved in seller's favour",
                idempotency_key=f"dispute:{dispute.id}:seller_keep",
                created_by="dispute_service",
            )
        )
        order.payout_status = OrderPayoutStatus.PROCESSING

    @staticmethod
    def _refund_partially(order: Order, amount_cents: int | None, reference: str) -> int:
        hold = HoldService.get_active_hold(order.id)
        limit = hold.amount_cents if hold is not None else order.amount_cents

        if amount_cents is None or not 0 < amount_cents <= limit:
            raise EscrowValidationError(
                f"Partial refund amount must be between 0.01 and {Money(limit, order.currency)}",
                details={"amount_cents": amount_cents, "limit_cents": limit},
            )

        if hold is None:
            HoldService.debit_released_refund(order, amount_cents, reference=reference)
            order.payout_status = OrderPayoutStatus.PROCESSING
            return amount_cents

        hold = HoldService.refund(order.id, amount_cents, reference=reference)
        if not hold.is_active:
            order.payout_status = OrderPayoutStatus.REFUNDED
        else:
            # Remainder stays held until delivery or expiry releases it
            order.payout_status = OrderPayoutStatus.IN_ESCROW
        return amount_cents

    @staticmethod
    def _notify_resolution(dispute: Dispute, order: Order, refunded: int) -> None:
        outcome = DisputeResolution(dispute.resolution).label
        refund_text = f" Refund: {Money(refunded, order.currency)}." if refunded else ""
        for audience, recipient in (
            (NotificationAudience.BUYER, order.buyer),
            (NotificationAudience.SELLER, order.seller),
        ):
            NotificationService.notify_on_commit(
                audience=audience,
                recipient=recipient,
                notification_type="dispute_resolved",
                related_entity_type="dispute",
                related_entity_id=dispute.id,
                title="Dispute resolved",
                message=f"Outcome: {outcome}.{refund_text}",
                idempotency_key=f"dispute:{dispute.id}:resolved:{audience}",
            )

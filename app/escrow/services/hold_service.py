"""
Escrow hold manager.

HoldService owns every PaymentHold mutation and writes the matching ledger
entries in the same transaction, so the hold table and the ledger can never
disagree about how much is in escrow.

Ledger effects:
    create_hold: sale +amount (pending)
    release / expire: sale -remaining (pending, reverses the creation entry)
                      + sale +remaining (completed)
    refund: refund_completed -amount (pending, reduces the escrowed part)
    debit_released_refund: refund_completed -amount (completed, after release)

Usage:
    from escrow.services import HoldService

    hold = HoldService.create_hold(
        payment_id=payment.id,
        order_id=order.id,
        seller_id=order.seller_id,
        amount_cents=payment.amount_cents,
        currency=payment.currency,
    )
    HoldService.release(order.id)
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, Sum
from django.utils import timezone

from core.services import BaseService
from notifications.models import NotificationAudience
from notifications.services import NotificationService

from escrow.exceptions import EscrowNotFoundError, EscrowValidationError
from escrow.ledger import AppendEntryParams, EntryStatus, Money, TransactionType, ledger
from escrow.ledger.models import FinancialLedgerEntry
from escrow.models import Order, PaymentHold
from escrow.models.dispute import UNRESOLVED_DISPUTE_STATUSES
from escrow.state_machines import OrderPayoutStatus

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

logger = logging.getLogger(__name__)


# Maximum holds expired per scheduler run
EXPIRY_BATCH_SIZE = 500


class HoldService(BaseService):
    """
    Service for escrow hold operations.

    Methods:
        create_hold: Hold a completed payment against its order
        release: Credit the remaining hold to the seller (delivery)
        refund: Return part or all of the hold to the buyer
        expire: Auto-release a hold past releaseable_at
        release_expired_holds: Scheduler job expiring every due hold
        debit_released_refund: Refund money already credited to the seller
        get_active_hold / get_hold_summary: Read helpers
    """

    @classmethod
    def create_hold(
        cls,
        payment_id: uuid.UUID,
        order_id: uuid.UUID,
        seller_id,
        amount_cents: int,
        currency: str,
        duration_days: int | None = None,
    ) -> PaymentHold:
        """
        Hold funds for an order.

        Idempotent: if the order already has an active hold it is returned
        unchanged. The one-active-hold-per-order unique index is the real
        guard; a concurrent creator that loses the race re-fetches the
        winner's hold.

        Raises:
            EscrowValidationError: Non-positive amount or duration out of range
        """
        if duration_days is None:
            duration_days = getattr(settings, "ESCROW_DEFAULT_HOLD_DURATION_DAYS", 30)
        max_days = getattr(settings, "ESCROW_MAX_HOLD_DURATION_DAYS", 90)

        if not 1 <= duration_days <= max_days:
            raise EscrowValidationError(
                f"Hold duration must be between 1 and {max_days} days",
                details={"duration_days": duration_days, "max_days": max_days},
            )
        if amount_cents <= 0:
            raise EscrowValidationError(
                "Hold amount must be positive",
                details={"amount_cents": amount_cents},
            )

        currency = currency.upper()

        with transaction.atomic():
            existing = PaymentHold.objects.active().filter(order_id=order_id).first()
            if existing is not None:
                logger.info(
                    f"Active hold already exists for order {order_id}",
                    extra={"order_id": str(order_id), "hold_id": str(existing.id)},
                )
                return existing

            try:
                with transaction.atomic():
                    entry = ledger.append(
                        AppendEntryParams(
                            seller_id=seller_id,
                            order_id=order_id,
                            transaction_type=TransactionType.SALE,
                            amount_cents=amount_cents,
                            currency=currency,
                            status=EntryStatus.PENDING,
                            description=f"Escrowed sale proceeds for order {order_id}",
                            idempotency_key=f"hold:{payment_id}:create",
                            created_by="hold_service",
                        )
                    )
                    hold = PaymentHold.objects.create(
                        order_id=order_id,
                        payment_id=payment_id,
                        seller_id=seller_id,
                        sale_entry=entry,
                        amount_cents=amount_cents,
                        original_amount_cents=amount_cents,
                        currency=currency,
                        releaseable_at=timezone.now() + timedelta(days=duration_days),
                    )
            except IntegrityError:
                winner = PaymentHold.objects.active().filter(order_id=order_id).first()
                if winner is None:
                    raise
                logger.info(
                    f"Concurrent hold creation for order {order_id}, using existing hold",
                    extra={"order_id": str(order_id), "hold_id": str(winner.id)},
                )
                return winner

        logger.info(
            f"Hold created for order {order_id}: {Money(amount_cents, currency)}",
            extra={
                "hold_id": str(hold.id),
                "order_id": str(order_id),
                "payment_id": str(payment_id),
                "amount_cents": amount_cents,
                "releaseable_at": hold.releaseable_at.isoformat(),
            },
        )
        return hold

    @classmethod
    def release(cls, order_id: uuid.UUID) -> PaymentHold | None:
        """
        Release the order's active hold to the seller.

        Returns None (no-op) if there is no active hold.
        """
        with transaction.atomic():
            hold = (
                PaymentHold.objects.select_for_update()
                .active()
                .filter(order_id=order_id)
                .first()
            )
            if hold is None:
                logger.info(
                    f"No active hold to release for order {order_id}",
                    extra={"order_id": str(order_id)},
                )
                return None

            cls._credit_seller(hold, action="release")
            hold.release()
            hold.save()

        logger.info(
            f"Hold released for order {order_id}: {Money(hold.amount_cents, hold.currency)}",
            extra={"hold_id": str(hold.id), "order_id": str(order_id)},
        )
        return hold

    @classmethod
    def refund(
        cls,
        order_id: uuid.UUID,
        amount_cents: int,
        reference: str,
    ) -> PaymentHold | None:
        """
        Refund part or all of the active hold to the buyer.

        The hold's remaining amount drops by amount_cents; at zero the hold
        becomes REFUNDED. Re-invoking with the same reference is a no-op.

        Returns:
            The hold, or None if the order has no active hold

        Raises:
            EscrowValidationError: amount not in (0, remaining]
        """
        with transaction.atomic():
            hold = (
                PaymentHold.objects.select_for_update()
                .active()
                .filter(order_id=order_id)
                .first()
            )
            if hold is None:
                return None

            key = f"hold:{hold.id}:refund:{reference}"
            if FinancialLedgerEntry.objects.filter(idempotency_key=key).exists():
                logger.info(
                    f"Hold refund {reference} already applied",
                    extra={"hold_id": str(hold.id), "reference": reference},
                )
                return hold

            if not 0 < amount_cents <= hold.amount_cents:
                raise EscrowValidationError(
                    f"Refund amount must be between 0.01 and "
                    f"{Money(hold.amount_cents, hold.currency)}",
                    details={
                        "amount_cents": amount_cents,
                        "remaining_cents": hold.amount_cents,
                        "hold_id": str(hold.id),
                    },
                )

            ledger.append(
                AppendEntryParams(
                    seller_id=hold.seller_id,
                    order_id=hold.order_id,
                    transaction_type=TransactionType.REFUND_COMPLETED,
                    amount_cents=-amount_cents,
                    currency=hold.currency,
                    status=EntryStatus.PENDING,
                    description=f"Refund of escrowed funds ({reference})",
                    idempotency_key=key,
                    created_by="hold_service",
                )
            )

            hold.amount_cents -= amount_cents
            if hold.amount_cents == 0:
                hold.refund()
            hold.save()

        logger.info(
            f"Hold refunded {Money(amount_cents, hold.currency)} for order {order_id}",
            extra={
                "hold_id": str(hold.id),
                "order_id": str(order_id),
                "remaining_cents": hold.amount_cents,
                "hold_status": hold.hold_status,
            },
        )
        return hold

    @classmethod
    def expire(cls, hold_id: uuid.UUID) -> PaymentHold | None:
        """
        Auto-release a hold whose releaseable_at has passed.

        No-op (returns None) if the hold is no longer active or its order
        became disputed after the scheduler selected it.
        """
        with transaction.atomic():
            try:
                hold = PaymentHold.objects.select_for_update().get(id=hold_id)
            except PaymentHold.DoesNotExist:
                raise EscrowNotFoundError.for_entity("hold", hold_id) from None

            if not hold.is_active:
                return None

            order = Order.objects.select_for_update().get(id=hold.order_id)
            if order.payout_status == OrderPayoutStatus.DISPUTED:
                logger.info(
                    f"Skipping expiry of hold {hold_id}: order is disputed",
                    extra={"hold_id": str(hold_id), "order_id": str(order.id)},
                )
                return None

            cls._credit_seller(hold, action="expire")
            hold.expire()
            hold.save()

            if order.payout_status == OrderPayoutStatus.IN_ESCROW:
                order.payout_status = OrderPayoutStatus.PROCESSING
                order.save(update_fields=["payout_status", "updated_at"])

            NotificationService.notify_on_commit(
                audience=NotificationAudience.SELLER,
                recipient=order.seller,
                notification_type="escrow_auto_released",
                related_entity_type="order",
                related_entity_id=order.id,
                title="Escrow released",
                message=(
                    f"{Money(hold.amount_cents, hold.currency)} held for your order "
                    f"was released to your balance."
                ),
                idempotency_key=f"hold:{hold.id}:expired",
            )

        logger.info(
            f"Hold {hold_id} expired and auto-released",
            extra={
                "hold_id": str(hold_id),
                "order_id": str(hold.order_id),
                "amount_cents": hold.amount_cents,
            },
        )
        return hold

    @classmethod
    def release_expired_holds(cls, now: datetime | None = None) -> dict:
        """
        Expire every active hold past releaseable_at.

        Holds on disputed orders are skipped. Each hold is expired in its
        own transaction so one failure doesn't block the rest.

        Returns:
            Dict with scanned / expired / skipped / failed counts
        """
        now = now or timezone.now()
        hold_ids = list(
            PaymentHold.objects.due_for_release(now)
            .exclude(order__payout_status=OrderPayoutStatus.DISPUTED)
            .exclude(order__disputes__status__in=UNRESOLVED_DISPUTE_STATUSES)
            .order_by("releaseable_at")
            .values_list("id", flat=True)[:EXPIRY_BATCH_SIZE]
        )

        counts = {"scanned": len(hold_ids), "expired": 0, "skipped": 0, "failed": 0}
        for hold_id in hold_ids:
            try:
                if cls.expire(hold_id) is None:
                    counts["skipped"] += 1
                else:
                    counts["expired"] += 1
            except Exception as e:
                counts["failed"] += 1
                logger.error(
                    f"Failed to expire hold {hold_id}: {e}",
                    extra={"hold_id": str(hold_id), "error": str(e)},
                    exc_info=True,
                )

        logger.info(
            f"Expired hold scan complete: {counts['expired']} released",
            extra=counts,
        )
        return counts

    @classmethod
    def debit_released_refund(
        cls,
        order: Order,
        amount_cents: int,
        reference: str,
    ) -> FinancialLedgerEntry:
        """
        Refund money that was already released to the seller.

        Writes a completed refund_completed debit, which reduces the seller's
        available balance (and may take it negative until repaid).
        """
        return ledger.append(
            AppendEntryParams(
                seller_id=order.seller_id,
                order_id=order.id,
                transaction_type=TransactionType.REFUND_COMPLETED,
                amount_cents=-amount_cents,
                currency=order.currency,
                status=EntryStatus.COMPLETED,
                description=f"Refund after release ({reference})",
                idempotency_key=f"refund:{order.id}:{reference}",
                created_by="hold_service",
            )
        )

    @classmethod
    def get_active_hold(cls, order_id: uuid.UUID) -> PaymentHold | None:
        return PaymentHold.objects.active().filter(order_id=order_id).first()

    @classmethod
    def get_hold_summary(cls, seller_id, currency: str) -> dict:
        """Active-hold total and count for a seller in one currency."""
        currency = currency.upper()
        result = PaymentHold.objects.active().filter(
            seller_id=seller_id,
            currency=currency,
        ).aggregate(total=Sum("amount_cents"), count=Count("id"))
        total = result["total"] or 0
        return {
            "currency": currency,
            "active_count": result["count"],
            "active_amount_cents": total,
            "active_amount": str(Money(total, currency)),
        }

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _credit_seller(hold: PaymentHold, action: str) -> None:
        """Move the hold's remaining amount from pending to available."""
        remaining = hold.amount_cents
        if remaining <= 0:
            return
        ledger.append_many(
            [
                AppendEntryParams(
                    seller_id=hold.seller_id,
                    order_id=hold.order_id,
                    reverses_id=hold.sale_entry_id,
                    transaction_type=TransactionType.SALE,
                    amount_cents=-remaining,
                    currency=hold.currency,
                    status=EntryStatus.PENDING,
                    description=f"Escrow {action}: clear pending sale",
                    idempotency_key=f"hold:{hold.id}:{action}:clear",
                    created_by="hold_service",
                ),
                AppendEntryParams(
                    seller_id=hold.seller_id,
                    order_id=hold.order_id,
                    transaction_type=TransactionType.SALE,
                    amount_cents=remaining,
                    currency=hold.currency,
                    status=EntryStatus.COMPLETED,
                    description=f"Escrow {action}: sale proceeds available",
                    idempotency_key=f"hold:{hold.id}:{action}",
                    created_by="hold_service",
                ),
            ]
        )

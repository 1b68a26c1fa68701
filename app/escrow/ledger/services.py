"""
Ledger service layer.

All ledger writes go through LedgerService.append()/append_many(). Rows are
never updated; a mistake is corrected with compensate(), which appends an
entry with the inverted sign that points back at the original.

Usage:
    from escrow.ledger import ledger, AppendEntryParams, EntryStatus, TransactionType

    entry = ledger.append(AppendEntryParams(
        seller_id=seller.id,
        order_id=order.id,
        transaction_type=TransactionType.SALE,
        amount_cents=500000,
        currency="NGN",
        status=EntryStatus.PENDING,
        idempotency_key=f"hold:{payment.id}:create",
    ))

    balance = ledger.balance(seller.id, "NGN")
    balance.available, balance.pending, balance.total
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from django.db import IntegrityError, models, transaction
from django.db.models import Case, Q, Sum, Value, When
from django.db.models.functions import Coalesce

from .exceptions import LedgerIntegrityError
from .models import (
    AVAILABLE_STATUSES,
    PENDING_STATUSES,
    FinancialLedgerEntry,
    TransactionType,
)
from .types import AppendEntryParams, Balance

if TYPE_CHECKING:
    from collections.abc import Iterable

    from django.db.models import QuerySet

logger = logging.getLogger(__name__)


def _bucket(condition: Q):
    return Coalesce(
        Sum(
            Case(
                When(condition, then="amount_cents"),
                default=Value(0),
                output_field=models.BigIntegerField(),
            )
        ),
        Value(0),
        output_field=models.BigIntegerField(),
    )


class LedgerService:
    """
    Service class for ledger operations.

    Key features:
    - Append-only writes
    - Idempotency via unique keys (safe to retry from webhooks and jobs)
    - Balances computed from entries, never stored

    All methods are static - no instance state is maintained.
    """

    @staticmethod
    def append(params: AppendEntryParams) -> FinancialLedgerEntry:
        """
        Append a single ledger entry.

        Idempotent - if an entry with the same idempotency_key exists,
        that entry is returned and nothing is written.

        Raises:
            LedgerIntegrityError: If the key exists with a different
                seller, amount, or transaction type
        """
        return LedgerService.append_many([params])[0]

    @staticmethod
    def append_many(entries: Iterable[AppendEntryParams]) -> list[FinancialLedgerEntry]:
        """
        Append several entries atomically.

        All entries are written or none are. Entries whose key already
        exists are returned as-is.
        """
        entries = list(entries)
        if not entries:
            return []

        results: list[FinancialLedgerEntry] = []
        with transaction.atomic():
            for params in entries:
                if params.idempotency_key:
                    existing = FinancialLedgerEntry.objects.filter(
                        idempotency_key=params.idempotency_key
                    ).first()
                    if existing is not None:
                        LedgerService._check_matches(existing, params)
                        results.append(existing)
                        continue

                try:
                    # Savepoint so a lost race doesn't poison the outer transaction
                    with transaction.atomic():
                        entry = FinancialLedgerEntry.objects.create(
                            seller_id=params.seller_id,
                            order_id=params.order_id,
                            scheduled_payout_id=params.scheduled_payout_id,
                            reverses_id=params.reverses_id,
                            transaction_type=params.transaction_type,
                            amount_cents=params.amount_cents,
                            currency=params.currency,
                            status=params.status,
                            description=params.description,
                            metadata=params.metadata or {},
                            created_by=params.created_by,
                            idempotency_key=params.idempotency_key,
                        )
                except IntegrityError:
                    if not params.idempotency_key:
                        raise
                    entry = FinancialLedgerEntry.objects.get(
                        idempotency_key=params.idempotency_key
                    )
                    LedgerService._check_matches(entry, params)

                logger.info(
                    f"Ledger entry {entry.transaction_type} {entry.amount_cents} "
                    f"{entry.currency} ({entry.status})",
                    extra={
                        "entry_id": str(entry.id),
                        "seller_id": str(entry.seller_id),
                        "order_id": str(entry.order_id) if entry.order_id else None,
                        "idempotency_key": entry.idempotency_key,
                    },
                )
                results.append(entry)

        return results

    @staticmethod
    def compensate(
        entry: FinancialLedgerEntry,
        description: str,
        idempotency_key: str,
        created_by: str = "",
    ) -> FinancialLedgerEntry:
        """
        Append an entry cancelling `entry` out.

        The compensation has the inverted amount and the same status, so
        it nets to zero in the same balance bucket.
        """
        return LedgerService.append(
            AppendEntryParams(
                seller_id=entry.seller_id,
                order_id=entry.order_id,
                scheduled_payout_id=entry.scheduled_payout_id,
                reverses_id=entry.id,
                transaction_type=entry.transaction_type,
                amount_cents=-entry.amount_cents,
                currency=entry.currency,
                status=entry.status,
                description=f"{description} (reverses entry {entry.id})",
                idempotency_key=idempotency_key,
                created_by=created_by,
            )
        )

    @staticmethod
    def balance(seller_id, currency: str) -> Balance:
        """
        Compute a seller's balance buckets for one currency.

        available = sum of completed/paid entries
        pending = sum of pending/processing entries
        failed entries count toward neither.
        """
        currency = currency.upper()
        result = FinancialLedgerEntry.objects.filter(
            seller_id=seller_id,
            currency=currency,
        ).aggregate(
            available=_bucket(Q(status__in=AVAILABLE_STATUSES)),
            pending=_bucket(Q(status__in=PENDING_STATUSES)),
            in_flight_payouts=_bucket(
                Q(status__in=PENDING_STATUSES, transaction_type=TransactionType.PAYOUT)
            ),
        )
        return Balance(
            currency=currency,
            available=result["available"],
            pending=result["pending"],
            in_flight_payouts=result["in_flight_payouts"],
        )

    @staticmethod
    def entries_for_order(order_id: uuid.UUID) -> QuerySet[FinancialLedgerEntry]:
        return FinancialLedgerEntry.objects.filter(order_id=order_id).order_by(
            "created_at"
        )

    @staticmethod
    def entries_for_seller(
        seller_id,
        currency: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> QuerySet[FinancialLedgerEntry]:
        """Most recent entries first."""
        qs = FinancialLedgerEntry.objects.filter(seller_id=seller_id)
        if currency:
            qs = qs.filter(currency=currency.upper())
        return qs.order_by("-created_at")[offset : offset + limit]

    @staticmethod
    def _check_matches(existing: FinancialLedgerEntry, params: AppendEntryParams) -> None:
        if (
            existing.seller_id != params.seller_id
            or existing.amount_cents != params.amount_cents
            or existing.transaction_type != params.transaction_type
        ):
            logger.error(
                f"Idempotency key reused with different entry data: {params.idempotency_key}",
                extra={
                    "existing_entry_id": str(existing.id),
                    "existing_amount_cents": existing.amount_cents,
                    "requested_amount_cents": params.amount_cents,
                },
            )
            raise LedgerIntegrityError(
                f"Idempotency key {params.idempotency_key} already used for a different entry",
                details={
                    "idempotency_key": params.idempotency_key,
                    "existing_entry_id": str(existing.id),
                },
            )


ledger = LedgerService()

"""
Payout orchestration.

PayoutService moves a seller's spendable balance to one of their payout
methods through the configured providers.

Execution follows a claim / call / record pattern:
1. Claim: in one transaction, compare-and-set the ScheduledPayout to
   PROCESSING, check the amount against the spendable balance and append a
   processing reservation entry so concurrent payouts see the money as gone
2. Call: try each provider supporting the method, outside any transaction.
   Retryable failures fall through to the next provider
3. Record: in one transaction, release the reservation and append one
   payout ledger entry per provider attempted, with the attempt's outcome

If the worker dies between 1 and 3 the payout stays PROCESSING with its
reservation; recover_stuck_payouts() fails it and releases the reservation.

A one-off payout whose last provider failed transiently gets retry_at set
from PAYOUT_RETRY_BACKOFF_MINUTES; retry_failed_payouts() runs it again once
that passes. Recurring payouts are retried by their own schedule.

Usage:
    from escrow.services import PayoutService

    payout = PayoutService.request_manual_payout(
        seller_id=seller.id,
        method_id=method.id,
        amount_cents=250000,
        currency="NGN",
    )

    PayoutService.create_scheduled_payout(
        seller_id=seller.id,
        method_id=method.id,
        schedule=PayoutSchedule.WEEKLY,
        currency="NGN",
    )
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.services import BaseService
from notifications.models import NotificationAudience, NotificationSeverity
from notifications.services import NotificationService

from escrow.exceptions import (
    EscrowNotFoundError,
    EscrowValidationError,
    InsufficientAmountError,
    PayoutMethodValidationError,
)
from escrow.ledger import (
    AppendEntryParams,
    Balance,
    EntryStatus,
    FinancialLedgerEntry,
    InsufficientBalance,
    Money,
    TransactionType,
    ledger,
)
from escrow.models import PayoutMethod, ScheduledPayout
from escrow.models.payout import SCHEDULE_INTERVALS, next_run_after
from escrow.payouts.providers import PayoutRequest, PayoutResponse, get_provider_registry
from escrow.state_machines import PayoutSchedule, ScheduledPayoutStatus

if TYPE_CHECKING:
    from datetime import datetime

    from escrow.payouts.methods import PayoutMethodDescriptor

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MIN_AMOUNT_CENTS = 10_000
DEFAULT_MAX_AMOUNT_CENTS = 500_000_000
DEFAULT_SCHEDULE_LIMITS = {
    PayoutSchedule.DAILY: 100_000_000,
    PayoutSchedule.WEEKLY: 500_000_000,
    PayoutSchedule.BI_WEEKLY: 500_000_000,
    PayoutSchedule.MONTHLY: 1_000_000_000,
}

SCHEDULED_BATCH_SIZE = 200
DEFAULT_RETRY_BACKOFF_MINUTES = (5, 15, 60, 240)

RECURRING_SCHEDULES = tuple(SCHEDULE_INTERVALS)

# Provider status -> ledger entry status for a successful attempt
PROVIDER_ENTRY_STATUS = {
    "completed": EntryStatus.PAID,
    "processing": EntryStatus.PROCESSING,
}


class PayoutOutcome:
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class PayoutExecutionResult:
    """
    Result of one execute_payout() call.

    Attributes:
        payout: The ScheduledPayout after the run
        outcome: completed, failed or skipped (not claimed / nothing to pay)
        amount_cents: Amount attempted, if one was determined
        response: Final provider response, if any provider was called
        attempts: Provider names in the order they were tried
        error: Failure or skip reason
    """

    payout: ScheduledPayout
    outcome: str
    amount_cents: int | None = None
    response: PayoutResponse | None = None
    attempts: list[str] = field(default_factory=list)
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.outcome == PayoutOutcome.COMPLETED


@dataclass
class _Claim:
    payout: ScheduledPayout
    attempt: int
    amount_cents: int
    method: PayoutMethodDescriptor
    reservation: FinancialLedgerEntry
    reference: str


# =============================================================================
# Payout Service
# =============================================================================


class PayoutService(BaseService):
    """
    Service for seller payouts.

    Methods:
        get_available_balance: Ledger balance for a seller and currency
        request_manual_payout: Validate, create and enqueue an immediate payout
        execute_immediate_payout: Validate, create and execute synchronously
        create_scheduled_payout: Create a recurring instruction
        execute_scheduled_payouts: Scheduler job for due recurring payouts
        retry_failed_payouts: Scheduler job for transiently failed one-off payouts
        execute_payout: Run one payout (claim / call / record)
        settle_provider_payout: Apply a provider's final word on a processing payout
        recover_stuck_payouts: Fail payouts whose worker never recorded a result
    """

    # =========================================================================
    # Queries
    # =========================================================================

    @classmethod
    def get_available_balance(cls, seller_id, currency: str | None = None) -> Balance:
        return ledger.balance(seller_id, currency or settings.ESCROW_DEFAULT_CURRENCY)

    # =========================================================================
    # Creation
    # =========================================================================

    @classmethod
    def request_manual_payout(
        cls,
        seller_id,
        method_id: uuid.UUID,
        amount_cents: int,
        currency: str,
    ) -> ScheduledPayout:
        """
        Create an immediate payout and hand it to a Celery worker.

        The task is enqueued after commit, so the worker always finds the row.

        Raises:
            EscrowNotFoundError: Method doesn't exist, isn't active or isn't the seller's
            PayoutMethodValidationError: Method can't be used for immediate payouts
            InsufficientAmountError: Below PAYOUT_MIN_AMOUNT_CENTS
            EscrowValidationError: Above the payout limits
            InsufficientBalance: More than the spendable balance
        """
        from escrow.tasks import execute_payout as execute_payout_task

        with transaction.atomic():
            payout = cls._create_immediate(seller_id, method_id, amount_cents, currency)
            payout_id = str(payout.id)
            transaction.on_commit(lambda: execute_payout_task.delay(payout_id))

        logger.info(
            f"Manual payout {payout_id} requested for {Money(amount_cents, payout.currency)}",
            extra={"payout_id": payout_id, "seller_id": str(seller_id)},
        )
        return payout

    @classmethod
    def execute_immediate_payout(
        cls,
        seller_id,
        method_id: uuid.UUID,
        amount_cents: int,
        currency: str,
    ) -> PayoutExecutionResult:
        """Same validation as request_manual_payout, executed in-process."""
        payout = cls._create_immediate(seller_id, method_id, amount_cents, currency)
        return cls.execute_payout(payout.id)

    @classmethod
    def create_scheduled_payout(
        cls,
        seller_id,
        method_id: uuid.UUID,
        schedule: str,
        currency: str,
        amount_cents: int | None = None,
        start_at: datetime | None = None,
    ) -> ScheduledPayout:
        """
        Create a recurring payout instruction.

        amount_cents=None pays out the whole spendable balance on each run.
        The first run is due at start_at (default: now); the balance is only
        checked when a run executes.
        """
        if schedule not in RECURRING_SCHEDULES:
            raise EscrowValidationError(
                f"'{schedule}' is not a recurring schedule",
                details={"schedule": schedule},
            )
        currency = currency.upper()
        method = cls._get_method(seller_id, method_id)
        cls._check_method(method, schedule)
        if amount_cents is not None:
            cls._check_limits(amount_cents, currency, schedule)

        payout = ScheduledPayout.objects.create(
            seller_id=seller_id,
            payout_method=method,
            amount_cents=amount_cents,
            currency=currency,
            schedule=schedule,
            next_scheduled_at=start_at or timezone.now(),
        )
        logger.info(
            f"Scheduled {schedule} payout {payout.id} created",
            extra={
                "payout_id": str(payout.id),
                "seller_id": str(seller_id),
                "amount_cents": amount_cents,
            },
        )
        return payout

    # =========================================================================
    # Execution
    # =========================================================================

    @classmethod
    def execute_scheduled_payouts(cls, now: datetime | None = None) -> dict[str, int]:
        """
        Run every due recurring payout.

        One payout failing (or raising) never stops the batch.
        """
        now = now or timezone.now()
        due_ids = list(
            ScheduledPayout.objects.due(now)
            .order_by("next_scheduled_at")
            .values_list("id", flat=True)[:SCHEDULED_BATCH_SIZE]
        )
        counts = {"due": len(due_ids), "completed": 0, "failed": 0, "skipped": 0}

        for payout_id in due_ids:
            try:
                result = cls.execute_payout(payout_id, now=now)
            except Exception as e:
                counts["failed"] += 1
                logger.exception(
                    f"Scheduled payout {payout_id} raised: {e}",
                    extra={"payout_id": str(payout_id)},
                )
                continue
            counts[result.outcome] += 1

        if due_ids:
            logger.info("Scheduled payouts executed", extra=counts)
        return counts

    @classmethod
    def retry_failed_payouts(cls, now: datetime | None = None) -> dict[str, int]:
        """
        Run again every one-off payout whose retry_at has passed.

        A retry that fails transiently again backs off further until
        PAYOUT_RETRY_BACKOFF_MINUTES runs out.
        """
        now = now or timezone.now()
        due_ids = list(
            ScheduledPayout.objects.retry_due(now)
            .order_by("retry_at")
            .values_list("id", flat=True)[:SCHEDULED_BATCH_SIZE]
        )
        counts = {"due": len(due_ids), "completed": 0, "failed": 0, "skipped": 0}

        for payout_id in due_ids:
            try:
                result = cls.execute_payout(payout_id, now=now)
            except Exception as e:
                counts["failed"] += 1
                logger.exception(
                    f"Payout retry {payout_id} raised: {e}",
                    extra={"payout_id": str(payout_id)},
                )
                continue
            counts[result.outcome] += 1

        if due_ids:
            logger.info("Failed payouts retried", extra=counts)
        return counts

    @classmethod
    def execute_payout(
        cls,
        payout_id: uuid.UUID,
        now: datetime | None = None,
    ) -> PayoutExecutionResult:
        """
        Execute one payout.

        A payout that is inactive or already PROCESSING is not claimed and
        the result is SKIPPED. Validation and provider failures are recorded
        on the payout and returned as FAILED; they don't raise.

        Raises:
            EscrowNotFoundError: Payout doesn't exist
        """
        now = now or timezone.now()

        claim = cls._claim(payout_id, now)
        if isinstance(claim, PayoutExecutionResult):
            return claim

        response, attempts = cls._call_providers(claim)
        return cls._record(claim, response, attempts, now)

    @classmethod
    def settle_provider_payout(
        cls,
        transaction_ref: str,
        succeeded: bool,
        reason: str = "",
    ) -> FinancialLedgerEntry | None:
        """
        Apply the provider's final result to a payout that answered "processing".

        succeeded: the processing entry is compensated and a paid entry appended
        failed: the processing entry is compensated, so the money is spendable again

        Returns the entry written (paid entry or compensation), or None if the
        payout was already settled.

        Raises:
            EscrowNotFoundError: No payout entry carries transaction_ref
        """
        if not transaction_ref:
            raise EscrowValidationError("transaction_ref is required")

        with transaction.atomic():
            entries = FinancialLedgerEntry.objects.select_for_update(of=("self",)).filter(
                transaction_type=TransactionType.PAYOUT,
                metadata__transaction_ref=transaction_ref,
                reverses__isnull=True,
            )
            if not entries.exists():
                raise EscrowNotFoundError.for_entity("payout", transaction_ref)

            entry = entries.filter(
                status=EntryStatus.PROCESSING,
                compensations__isnull=True,
            ).first()
            if entry is None:
                logger.info(
                    f"Payout {transaction_ref} already settled",
                    extra={"transaction_ref": transaction_ref},
                )
                return None

            outcome = "paid" if succeeded else "failed"
            compensation = ledger.compensate(
                entry,
                description=f"Provider reported payout {transaction_ref} {outcome}",
                idempotency_key=f"{entry.idempotency_key}:settle",
                created_by="payout_settlement",
            )
            written = compensation
            if succeeded:
                written = ledger.append(
                    AppendEntryParams(
                        seller_id=entry.seller_id,
                        scheduled_payout_id=entry.scheduled_payout_id,
                        transaction_type=TransactionType.PAYOUT,
                        amount_cents=entry.amount_cents,
                        currency=entry.currency,
                        status=EntryStatus.PAID,
                        description=f"Payout {transaction_ref} confirmed by provider",
                        metadata=entry.metadata,
                        idempotency_key=f"{entry.idempotency_key}:paid",
                        created_by="payout_settlement",
                    )
                )
            else:
                cls._mark_settlement_failed(entry, transaction_ref, reason)

            cls._notify_settlement(entry, transaction_ref, succeeded, reason)

        log = logger.info if succeeded else logger.error
        log(
            f"Payout {transaction_ref} settled as {outcome}",
            extra={
                "transaction_ref": transaction_ref,
                "seller_id": str(entry.seller_id),
                "amount_cents": -entry.amount_cents,
                "reason": reason,
            },
        )
        return written

    @classmethod
    def recover_stuck_payouts(cls, now: datetime | None = None) -> dict[str, int]:
        """
        Fail payouts left PROCESSING longer than PAYOUT_STUCK_THRESHOLD_MINUTES.

        Their reservation is released and admins are alerted: a stuck payout
        may or may not have reached the provider and needs reconciliation.
        """
        now = now or timezone.now()
        threshold = timedelta(
            minutes=getattr(settings, "PAYOUT_STUCK_THRESHOLD_MINUTES", 30)
        )
        stuck_ids = list(
            ScheduledPayout.objects.filter(
                status=ScheduledPayoutStatus.PROCESSING,
                last_attempted_at__lt=now - threshold,
            ).values_list("id", flat=True)
        )

        recovered = 0
        for payout_id in stuck_ids:
            with transaction.atomic():
                updated = ScheduledPayout.objects.filter(
                    id=payout_id,
                    status=ScheduledPayoutStatus.PROCESSING,
                ).update(
                    status=ScheduledPayoutStatus.FAILED,
                    last_error="Stuck in processing; no result was recorded",
                    updated_at=now,
                )
                if not updated:
                    continue
                for reservation in cls._open_reservations(payout_id):
                    ledger.compensate(
                        reservation,
                        description="Stuck payout reservation released",
                        idempotency_key=f"{reservation.idempotency_key}:release",
                        created_by="payout_recovery",
                    )
                payout = ScheduledPayout.objects.get(id=payout_id)
                cls._alert_failure(
                    payout,
                    f"Payout {payout_id} was stuck in processing and has been marked "
                    f"failed. Reconcile it with the provider before retrying.",
                    now,
                )
            recovered += 1
            logger.error(
                f"Recovered stuck payout {payout_id}",
                extra={"payout_id": str(payout_id)},
            )

        return {"stuck": len(stuck_ids), "recovered": recovered}

    # =========================================================================
    # Validation
    # =========================================================================

    @classmethod
    def _create_immediate(cls, seller_id, method_id, amount_cents: int, currency: str) -> ScheduledPayout:
        currency = currency.upper()
        method = cls._get_method(seller_id, method_id)
        cls._check_method(method, PayoutSchedule.IMMEDIATE)
        cls._check_amount(
            seller_id,
            amount_cents,
            currency,
            PayoutSchedule.IMMEDIATE,
            ledger.balance(seller_id, currency).spendable,
        )
        return ScheduledPayout.objects.create(
            seller_id=seller_id,
            payout_method=method,
            amount_cents=amount_cents,
            currency=currency,
            schedule=PayoutSchedule.IMMEDIATE,
        )

    @staticmethod
    def _get_method(seller_id, method_id) -> PayoutMethod:
        try:
            return PayoutMethod.objects.get(id=method_id, seller_id=seller_id, is_active=True)
        except PayoutMethod.DoesNotExist:
            raise EscrowNotFoundError.for_entity("payout_method", method_id) from None

    @staticmethod
    def _check_method(method: PayoutMethod, schedule: str) -> PayoutMethodDescriptor:
        descriptor = method.to_descriptor()
        if not descriptor.supports_schedule(schedule):
            raise PayoutMethodValidationError(
                f"{method.get_method_type_display()} can only be used for recurring payouts",
                method_type=method.method_type,
                field_errors={"schedule": [f"'{schedule}' is not allowed for this method"]},
            )
        return descriptor

    @staticmethod
    def _check_limits(amount_cents: int, currency: str, schedule: str) -> None:
        minimum = getattr(settings, "PAYOUT_MIN_AMOUNT_CENTS", DEFAULT_MIN_AMOUNT_CENTS)
        if amount_cents < minimum:
            raise InsufficientAmountError(amount_cents, minimum, currency)

        maximum = getattr(settings, "PAYOUT_MAX_AMOUNT_CENTS", DEFAULT_MAX_AMOUNT_CENTS)
        limits = getattr(settings, "PAYOUT_SCHEDULE_LIMITS", DEFAULT_SCHEDULE_LIMITS)
        limit = min(maximum, limits.get(schedule, maximum))
        if amount_cents > limit:
            raise EscrowValidationError(
                f"Payout amount {Money(amount_cents, currency)} exceeds the "
                f"{schedule} limit of {Money(limit, currency)}",
                error_code="PAYOUT_LIMIT_EXCEEDED",
                details={"amount_cents": amount_cents, "limit_cents": limit, "schedule": schedule},
            )

    @classmethod
    def _check_amount(cls, seller_id, amount_cents: int, currency: str, schedule: str, spendable: int) -> None:
        cls._check_limits(amount_cents, currency, schedule)
        if amount_cents > spendable:
            raise InsufficientBalance(seller_id, currency, required=amount_cents, available=spendable)

    # =========================================================================
    # Claim / call / record
    # =========================================================================

    @classmethod
    def _claim(cls, payout_id, now: datetime) -> _Claim | PayoutExecutionResult:
        with transaction.atomic():
            try:
                payout = ScheduledPayout.objects.select_related("payout_method").get(id=payout_id)
            except ScheduledPayout.DoesNotExist:
                raise EscrowNotFoundError.for_entity("payout", payout_id) from None

            # Serializes payouts of the same seller so balance checks can't interleave
            get_user_model().objects.select_for_update().filter(pk=payout.seller_id).first()

            claimed = (
                ScheduledPayout.objects.filter(id=payout_id, is_active=True)
                .exclude(status=ScheduledPayoutStatus.PROCESSING)
                .update(
                    status=ScheduledPayoutStatus.PROCESSING,
                    attempt_count=F("attempt_count") + 1,
                    last_attempted_at=now,
                    retry_at=None,
                    updated_at=now,
                )
            )
            if not claimed:
                logger.info(
                    f"Payout {payout_id} not claimed (inactive or already processing)",
                    extra={"payout_id": str(payout_id), "status": payout.status},
                )
                return PayoutExecutionResult(
                    payout=payout,
                    outcome=PayoutOutcome.SKIPPED,
                    error="Payout is inactive or already processing",
                )

            payout = ScheduledPayout.objects.select_related("payout_method").get(id=payout_id)
            spendable = ledger.balance(payout.seller_id, payout.currency).spendable
            sweep = payout.amount_cents is None
            amount_cents = spendable if sweep else payout.amount_cents

            if sweep and amount_cents < getattr(
                settings, "PAYOUT_MIN_AMOUNT_CENTS", DEFAULT_MIN_AMOUNT_CENTS
            ):
                return cls._skip_sweep(payout, amount_cents, now)

            try:
                if not payout.payout_method.is_active:
                    raise EscrowNotFoundError.for_entity("payout_method", payout.payout_method_id)
                method = cls._check_method(payout.payout_method, payout.schedule)
                cls._check_amount(
                    payout.seller_id, amount_cents, payout.currency, payout.schedule, spendable
                )
            except (EscrowValidationError, EscrowNotFoundError, InsufficientBalance) as e:
                return cls._fail_before_call(payout, amount_cents, e.message, now)

            attempt = payout.attempt_count
            reservation = ledger.append(
                AppendEntryParams(
                    seller_id=payout.seller_id,
                    scheduled_payout_id=payout.id,
                    transaction_type=TransactionType.PAYOUT,
                    amount_cents=-amount_cents,
                    currency=payout.currency,
                    status=EntryStatus.PROCESSING,
                    description=f"Reserved for payout attempt {attempt}",
                    idempotency_key=f"payout:{payout.id}:{attempt}:reserve",
                    created_by="payout_service",
                )
            )

        return _Claim(
            payout=payout,
            attempt=attempt,
            amount_cents=amount_cents,
            method=method,
            reservation=reservation,
            reference=payout.reference(now),
        )

    @classmethod
    def _call_providers(cls, claim: _Claim) -> tuple[PayoutResponse | None, list[PayoutResponse]]:
        payout = claim.payout
        providers = get_provider_registry().route(claim.method.kind, payout.schedule)
        request = PayoutRequest(
            amount_cents=claim.amount_cents,
            currency=payout.currency,
            method=claim.method,
            schedule_type=payout.schedule,
            reference=claim.reference,
        )

        attempts: list[PayoutResponse] = []
        for provider in providers:
            try:
                response = provider.execute(request)
            except Exception as e:
                # Outcome unknown, so no further provider is tried
                logger.exception(
                    f"Payout provider {provider.name} raised: {e}",
                    extra={"payout_id": str(payout.id), "provider": provider.name},
                )
                response = PayoutResponse.failed(provider.name, str(e), retryable=False)
            attempts.append(response)
            if response.success or not response.retryable:
                break

        if not providers:
            logger.error(
                f"No payout provider supports {claim.method.kind}",
                extra={"payout_id": str(payout.id), "schedule": payout.schedule},
            )
        return (attempts[-1] if attempts else None), attempts

    @classmethod
    def _record(
        cls,
        claim: _Claim,
        response: PayoutResponse | None,
        attempts: list[PayoutResponse],
        now: datetime,
    ) -> PayoutExecutionResult:
        succeeded = response is not None and response.success
        error = ""
        if not succeeded:
            error = response.error if response else f"No payout provider supports {claim.method.kind}"

        with transaction.atomic():
            payout = ScheduledPayout.objects.select_for_update().get(id=claim.payout.id)

            ledger.compensate(
                claim.reservation,
                description=f"Reservation for payout attempt {claim.attempt} settled",
                idempotency_key=f"{claim.reservation.idempotency_key}:release",
                created_by="payout_service",
            )
            ledger.append_many(
                AppendEntryParams(
                    seller_id=payout.seller_id,
                    scheduled_payout_id=payout.id,
                    transaction_type=TransactionType.PAYOUT,
                    amount_cents=-claim.amount_cents,
                    currency=payout.currency,
                    status=(
                        PROVIDER_ENTRY_STATUS[attempt.status]
                        if attempt.success
                        else EntryStatus.FAILED
                    ),
                    description=f"Payout via {attempt.provider}",
                    metadata={
                        "provider": attempt.provider,
                        "reference": claim.reference,
                        "transaction_ref": attempt.transaction_ref,
                        "error": attempt.error,
                    },
                    idempotency_key=f"payout:{payout.id}:{claim.attempt}:{attempt.provider}",
                    created_by="payout_service",
                )
                for attempt in attempts
            )

            payout.last_amount_cents = claim.amount_cents
            if succeeded:
                payout.status = ScheduledPayoutStatus.COMPLETED
                payout.last_error = ""
                payout.last_provider = response.provider
                payout.last_transaction_ref = response.transaction_ref
                if payout.is_recurring:
                    payout.next_scheduled_at = cls._next_run(payout, now)
                else:
                    payout.is_active = False
                cls._notify_sent(payout, claim, response)
            else:
                payout.status = ScheduledPayoutStatus.FAILED
                payout.last_error = error
                payout.last_provider = response.provider if response else ""
                retry_in = None
                if not payout.is_recurring and response is not None and response.retryable:
                    retry_in = cls._retry_delay(payout.attempt_count)
                payout.retry_at = now + retry_in if retry_in is not None else None
                if payout.retry_at is None:
                    cls._alert_failure(payout, error, now)
            payout.save()

        extra = {
            "payout_id": str(payout.id),
            "seller_id": str(payout.seller_id),
            "amount_cents": claim.amount_cents,
            "attempt": claim.attempt,
            "providers_tried": [a.provider for a in attempts],
        }
        if succeeded:
            logger.info(
                f"Payout {payout.id} sent via {response.provider} ({response.status})",
                extra={**extra, "transaction_ref": response.transaction_ref},
            )
        else:
            logger.error(
                f"Payout {payout.id} failed: {error}",
                extra={**extra, "retry_at": payout.retry_at.isoformat() if payout.retry_at else None},
            )

        return PayoutExecutionResult(
            payout=payout,
            outcome=PayoutOutcome.COMPLETED if succeeded else PayoutOutcome.FAILED,
            amount_cents=claim.amount_cents,
            response=response,
            attempts=[a.provider for a in attempts],
            error=error,
        )

    @classmethod
    def _fail_before_call(
        cls,
        payout: ScheduledPayout,
        amount_cents: int,
        error: str,
        now: datetime,
    ) -> PayoutExecutionResult:
        payout.status = ScheduledPayoutStatus.FAILED
        payout.last_error = error
        payout.last_amount_cents = amount_cents
        payout.save(update_fields=["status", "last_error", "last_amount_cents", "updated_at"])
        cls._alert_failure(payout, error, now)
        logger.error(
            f"Payout {payout.id} failed validation: {error}",
            extra={"payout_id": str(payout.id), "amount_cents": amount_cents},
        )
        return PayoutExecutionResult(
            payout=payout,
            outcome=PayoutOutcome.FAILED,
            amount_cents=amount_cents,
            error=error,
        )

    @classmethod
    def _skip_sweep(cls, payout: ScheduledPayout, spendable: int, now: datetime) -> PayoutExecutionResult:
        # Nothing worth paying this period; wait for the next one
        payout.status = ScheduledPayoutStatus.PENDING
        payout.next_scheduled_at = cls._next_run(payout, now)
        payout.save(update_fields=["status", "next_scheduled_at", "updated_at"])
        logger.info(
            f"Payout {payout.id} skipped, spendable balance below minimum",
            extra={"payout_id": str(payout.id), "spendable_cents": spendable},
        )
        return PayoutExecutionResult(
            payout=payout,
            outcome=PayoutOutcome.SKIPPED,
            amount_cents=spendable,
            error="Spendable balance below the minimum payout",
        )

    @staticmethod
    def _next_run(payout: ScheduledPayout, now: datetime) -> datetime | None:
        next_run = next_run_after(payout.schedule, payout.next_scheduled_at or now)
        if next_run is not None and next_run <= now:
            # Missed periods are not paid out retroactively
            next_run = next_run_after(payout.schedule, now)
        return next_run

    @staticmethod
    def _retry_delay(attempt: int) -> timedelta | None:
        """Wait before retrying after the given attempt; None once retries are used up."""
        backoff = getattr(settings, "PAYOUT_RETRY_BACKOFF_MINUTES", DEFAULT_RETRY_BACKOFF_MINUTES)
        if attempt < 1 or attempt > len(backoff):
            return None
        return timedelta(minutes=backoff[attempt - 1])

    @staticmethod
    def _open_reservations(payout_id):
        return FinancialLedgerEntry.objects.filter(
            scheduled_payout_id=payout_id,
            transaction_type=TransactionType.PAYOUT,
            status=EntryStatus.PROCESSING,
            idempotency_key__endswith=":reserve",
            compensations__isnull=True,
        )

    @staticmethod
    def _mark_settlement_failed(entry: FinancialLedgerEntry, transaction_ref: str, reason: str) -> None:
        if entry.scheduled_payout_id is None:
            return
        ScheduledPayout.objects.filter(
            id=entry.scheduled_payout_id,
            last_transaction_ref=transaction_ref,
        ).update(
            status=ScheduledPayoutStatus.FAILED,
            last_error=reason or "Provider reported the payout failed",
            updated_at=timezone.now(),
        )

    # =========================================================================
    # Notifications
    # =========================================================================

    @staticmethod
    def _notify_sent(payout: ScheduledPayout, claim: _Claim, response: PayoutResponse) -> None:
        amount = Money(claim.amount_cents, payout.currency)
        message = (
            f"{amount} has been sent to your payout method."
            if response.status == "completed"
            else f"{amount} is on its way to your payout method."
        )
        NotificationService.notify_on_commit(
            audience=NotificationAudience.SELLER,
            recipient=payout.seller,
            notification_type="payout_sent",
            related_entity_type="scheduled_payout",
            related_entity_id=payout.id,
            title="Payout sent",
            message=message,
            idempotency_key=f"payout:{payout.id}:{claim.attempt}:sent",
        )

    @staticmethod
    def _notify_settlement(entry: FinancialLedgerEntry, transaction_ref: str, succeeded: bool, reason: str) -> None:
        amount = Money(-entry.amount_cents, entry.currency)
        if succeeded:
            title, message, severity = (
                "Payout completed",
                f"Your payout of {amount} has arrived.",
                NotificationSeverity.INFO,
            )
        else:
            title, message, severity = (
                "Payout failed",
                f"Your payout of {amount} failed and the funds are back in your balance.",
                NotificationSeverity.WARNING,
            )
        NotificationService.notify_on_commit(
            audience=NotificationAudience.SELLER,
            recipient=entry.seller,
            notification_type="payout_settled" if succeeded else "payout_failed",
            related_entity_type="scheduled_payout",
            related_entity_id=entry.scheduled_payout_id or "",
            title=title,
            message=message,
            severity=severity,
            idempotency_key=f"payout_settlement:{transaction_ref}",
        )
        if not succeeded:
            NotificationService.notify_on_commit(
                audience=NotificationAudience.ADMIN,
                notification_type="payout_failed",
                related_entity_type="scheduled_payout",
                related_entity_id=entry.scheduled_payout_id or "",
                title="Provider reported payout failure",
                message=f"Payout {transaction_ref} for {amount} failed: {reason or 'no reason given'}",
                severity=NotificationSeverity.CRITICAL,
                idempotency_key=f"payout_settlement:{transaction_ref}:admin",
            )

    @staticmethod
    def _alert_failure(payout: ScheduledPayout, error: str, now: datetime) -> None:
        hours = getattr(settings, "PAYOUT_FAILURE_ALERT_COOLDOWN_HOURS", 6)
        transaction.on_commit(
            lambda: NotificationService.notify_with_cooldown(
                cooldown_key=f"payout_failure:{payout.id}",
                cooldown=timedelta(hours=hours),
                now=now,
                audience=NotificationAudience.ADMIN,
                notification_type="payout_failed",
                related_entity_type="scheduled_payout",
                related_entity_id=payout.id,
                title="Payout failed",
                message=f"Payout {payout.id} ({payout.schedule}) failed: {error}",
                severity=NotificationSeverity.CRITICAL,
            )
        )

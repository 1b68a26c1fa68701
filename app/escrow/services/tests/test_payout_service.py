"""
Tests for PayoutService.

Tests cover:
- Manual payout validation (limits, balance, method)
- Claim / call / record execution and the ledger entries it writes
- Provider fallback on retryable failures
- Recurring payouts: due selection, balance sweeps, schedule advancement
- Backoff retries of one-off payouts that failed transiently
- Provider settlement of processing payouts
- Recovery of payouts stuck in processing
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone

from escrow.exceptions import (
    EscrowNotFoundError,
    EscrowValidationError,
    InsufficientAmountError,
    PayoutMethodValidationError,
)
from escrow.ledger import (
    EntryStatus,
    FinancialLedgerEntry,
    InsufficientBalance,
    TransactionType,
    ledger,
)
from escrow.models import PayoutMethodType, ScheduledPayout
from escrow.services import PayoutService
from escrow.services.payout_service import PayoutOutcome
from escrow.state_machines import PayoutSchedule, ScheduledPayoutStatus
from escrow.tests.factories import PayoutMethodFactory, ScheduledPayoutFactory
from notifications.models import NotificationAudience, NotificationCooldown, NotificationEvent


def _payout(payout_id) -> ScheduledPayout:
    return ScheduledPayout.objects.get(pk=payout_id)


def _entries(payout_id):
    return FinancialLedgerEntry.objects.filter(scheduled_payout_id=payout_id).order_by("created_at")


@pytest.fixture
def funded_seller(seller, credit_seller):
    """Seller with 5,000.00 NGN spendable."""
    credit_seller(seller, 500_000)
    return seller


class TestGetAvailableBalance:
    def test_defaults_to_platform_currency(self, funded_seller):
        balance = PayoutService.get_available_balance(funded_seller.pk)

        assert balance.currency == "NGN"
        assert balance.spendable == 500_000


class TestManualPayoutValidation:
    def test_below_minimum(self, funded_seller, bank_method):
        with pytest.raises(InsufficientAmountError) as exc_info:
            PayoutService.request_manual_payout(funded_seller.pk, bank_method.id, 9_999, "NGN")

        assert "100.00 NGN" in exc_info.value.message
        assert not ScheduledPayout.objects.exists()
        assert not FinancialLedgerEntry.objects.filter(
            transaction_type=TransactionType.PAYOUT
        ).exists()

    def test_above_limit(self, funded_seller, bank_method):
        with pytest.raises(EscrowValidationError) as exc_info:
            PayoutService.request_manual_payout(
                funded_seller.pk, bank_method.id, 500_000_001, "NGN"
            )

        assert exc_info.value.error_code == "PAYOUT_LIMIT_EXCEEDED"

    def test_more_than_spendable(self, funded_seller, bank_method):
        with pytest.raises(InsufficientBalance):
            PayoutService.request_manual_payout(funded_seller.pk, bank_method.id, 500_001, "NGN")

    def test_escrow_provider_method_is_recurring_only(self, funded_seller, escrow_method):
        with pytest.raises(PayoutMethodValidationError):
            PayoutService.request_manual_payout(funded_seller.pk, escrow_method.id, 100_000, "NGN")

    def test_other_sellers_method(self, funded_seller):
        foreign_method = PayoutMethodFactory()

        with pytest.raises(EscrowNotFoundError):
            PayoutService.request_manual_payout(funded_seller.pk, foreign_method.id, 100_000, "NGN")

    def test_inactive_method(self, funded_seller, bank_method):
        bank_method.is_active = False
        bank_method.save()

        with pytest.raises(EscrowNotFoundError):
            PayoutService.request_manual_payout(funded_seller.pk, bank_method.id, 100_000, "NGN")


class TestRequestManualPayout:
    def test_enqueues_execution_after_commit(
        self, funded_seller, bank_method, fake_providers, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            payout = PayoutService.request_manual_payout(
                funded_seller.pk, bank_method.id, 100_000, "ngn"
            )

        payout = _payout(payout.id)
        assert payout.schedule == PayoutSchedule.IMMEDIATE
        assert payout.currency == "NGN"
        assert payout.status == ScheduledPayoutStatus.COMPLETED
        assert payout.is_active is False
        assert fake_providers["paystack"].call_count == 1

    def test_nothing_runs_before_commit(self, funded_seller, bank_method, fake_providers):
        payout = PayoutService.request_manual_payout(funded_seller.pk, bank_method.id, 100_000, "NGN")

        assert _payout(payout.id).status == ScheduledPayoutStatus.PENDING
        assert fake_providers["paystack"].call_count == 0


class TestExecutePayoutSuccess:
    def test_pays_through_first_non_escrow_provider(self, funded_seller, bank_method, fake_providers):
        fake_providers["paystack"].succeed(transaction_ref="ps_001")

        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        assert result.succeeded
        assert result.attempts == ["paystack"]
        assert fake_providers["tsara"].call_count == 0

        payout = _payout(result.payout.id)
        assert payout.status == ScheduledPayoutStatus.COMPLETED
        assert payout.last_provider == "paystack"
        assert payout.last_transaction_ref == "ps_001"
        assert payout.last_amount_cents == 100_000
        assert payout.attempt_count == 1

        balance = ledger.balance(funded_seller.pk, "NGN")
        assert balance.available == 400_000
        assert balance.in_flight_payouts == 0

    def test_request_sent_to_provider(self, funded_seller, bank_method, fake_providers):
        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        request = fake_providers["paystack"].requests[0]
        assert request.amount_cents == 100_000
        assert request.currency == "NGN"
        assert request.schedule_type == PayoutSchedule.IMMEDIATE
        assert request.reference.startswith(f"payout_{str(result.payout.id)[:8]}_")
        assert request.method.to_payload()["account_number"] == "0123456789"

    def test_ledger_trail(self, funded_seller, bank_method, fake_providers):
        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )
        payout_id = result.payout.id

        entries = {e.idempotency_key: e for e in _entries(payout_id)}
        assert set(entries) == {
            f"payout:{payout_id}:1:reserve",
            f"payout:{payout_id}:1:reserve:release",
            f"payout:{payout_id}:1:paystack",
        }
        paid = entries[f"payout:{payout_id}:1:paystack"]
        assert paid.status == EntryStatus.PAID
        assert paid.amount_cents == -100_000
        assert paid.metadata["provider"] == "paystack"
        assert paid.metadata["transaction_ref"] == "paystack_tx_1"

    def test_seller_notified(
        self, funded_seller, bank_method, fake_providers, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = PayoutService.execute_immediate_payout(
                funded_seller.pk, bank_method.id, 100_000, "NGN"
            )

        assert NotificationEvent.objects.filter(
            idempotency_key=f"payout:{result.payout.id}:1:sent",
            recipient_id=funded_seller.pk,
        ).exists()


class TestExecutePayoutFailures:
    def test_retryable_failure_falls_back(self, funded_seller, bank_method, fake_providers):
        fake_providers["paystack"].fail("gateway timeout", retryable=True)

        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        assert result.succeeded
        assert result.attempts == ["paystack", "wise"]
        failed = FinancialLedgerEntry.objects.get(
            idempotency_key=f"payout:{result.payout.id}:1:paystack"
        )
        assert failed.status == EntryStatus.FAILED
        assert failed.metadata["error"] == "gateway timeout"
        assert ledger.balance(funded_seller.pk, "NGN").available == 400_000

    def test_permanent_failure_stops_chain(
        self, funded_seller, bank_method, fake_providers, django_capture_on_commit_callbacks
    ):
        fake_providers["paystack"].fail("account closed", retryable=False)

        with django_capture_on_commit_callbacks(execute=True):
            result = PayoutService.execute_immediate_payout(
                funded_seller.pk, bank_method.id, 100_000, "NGN"
            )

        assert result.outcome == PayoutOutcome.FAILED
        assert result.error == "account closed"
        assert fake_providers["wise"].call_count == 0

        payout = _payout(result.payout.id)
        assert payout.status == ScheduledPayoutStatus.FAILED
        assert payout.last_error == "account closed"
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 500_000

        assert NotificationEvent.objects.filter(
            audience=NotificationAudience.ADMIN, notification_type="payout_failed"
        ).exists()
        assert NotificationCooldown.objects.filter(key=f"payout_failure:{payout.id}").exists()

    def test_all_providers_fail(self, funded_seller, bank_method, fake_providers):
        fake_providers["paystack"].fail("down", retryable=True)
        fake_providers["wise"].fail("down too", retryable=True)

        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        assert result.outcome == PayoutOutcome.FAILED
        assert result.attempts == ["paystack", "wise"]
        assert result.error == "down too"
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 500_000

    def test_provider_exception_stops_chain(self, funded_seller, bank_method, fake_providers):
        fake_providers["paystack"].respond(RuntimeError("socket closed"))

        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        assert result.outcome == PayoutOutcome.FAILED
        assert fake_providers["wise"].call_count == 0
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 500_000

    def test_no_provider_for_method(self, funded_seller, fake_providers):
        method = PayoutMethodFactory(
            seller=funded_seller,
            method_type=PayoutMethodType.CRYPTO,
            details={"wallet_address": "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"},
        )

        result = PayoutService.execute_immediate_payout(funded_seller.pk, method.id, 100_000, "NGN")

        assert result.outcome == PayoutOutcome.FAILED
        assert "No payout provider supports crypto" in result.error
        assert result.attempts == []

    def test_balance_spent_before_run_fails_without_reservation(self, seller, bank_method, fake_providers):
        payout = ScheduledPayoutFactory(payout_method=bank_method, amount_cents=100_000)

        result = PayoutService.execute_payout(payout.id)

        assert result.outcome == PayoutOutcome.FAILED
        assert "available for payout" in result.error
        assert not _entries(payout.id).exists()
        assert fake_providers["paystack"].call_count == 0


class TestExecutePayoutClaim:
    def test_unknown_payout(self, db):
        with pytest.raises(EscrowNotFoundError):
            PayoutService.execute_payout(uuid.uuid4())

    def test_processing_payout_is_skipped(self, funded_seller, bank_method, fake_providers):
        payout = ScheduledPayoutFactory(
            payout_method=bank_method, status=ScheduledPayoutStatus.PROCESSING
        )

        result = PayoutService.execute_payout(payout.id)

        assert result.outcome == PayoutOutcome.SKIPPED
        assert fake_providers["paystack"].call_count == 0

    def test_completed_immediate_payout_runs_once(self, funded_seller, bank_method, fake_providers):
        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        again = PayoutService.execute_payout(result.payout.id)

        assert again.outcome == PayoutOutcome.SKIPPED
        assert fake_providers["paystack"].call_count == 1
        assert ledger.balance(funded_seller.pk, "NGN").available == 400_000


class TestCreateScheduledPayout:
    def test_creates_recurring_instruction(self, seller, escrow_method):
        start = timezone.now() + timedelta(days=1)

        payout = PayoutService.create_scheduled_payout(
            seller.pk, escrow_method.id, PayoutSchedule.WEEKLY, "ngn", start_at=start
        )

        assert payout.is_recurring
        assert payout.amount_cents is None
        assert payout.next_scheduled_at == start

    def test_immediate_is_not_a_schedule(self, seller, bank_method):
        with pytest.raises(EscrowValidationError):
            PayoutService.create_scheduled_payout(
                seller.pk, bank_method.id, PayoutSchedule.IMMEDIATE, "NGN"
            )

    def test_fixed_amount_checked_against_schedule_limit(self, seller, bank_method):
        with pytest.raises(EscrowValidationError) as exc_info:
            PayoutService.create_scheduled_payout(
                seller.pk,
                bank_method.id,
                PayoutSchedule.DAILY,
                "NGN",
                amount_cents=100_000_001,
            )

        assert exc_info.value.error_code == "PAYOUT_LIMIT_EXCEEDED"


class TestExecuteScheduledPayouts:
    def test_sweeps_spendable_balance_and_advances(self, funded_seller, escrow_method, fake_providers):
        now = timezone.now()
        start = now - timedelta(hours=1)
        payout = PayoutService.create_scheduled_payout(
            funded_seller.pk, escrow_method.id, PayoutSchedule.WEEKLY, "NGN", start_at=start
        )

        counts = PayoutService.execute_scheduled_payouts(now=now)

        assert counts == {"due": 1, "completed": 1, "failed": 0, "skipped": 0}
        payout = _payout(payout.id)
        assert payout.status == ScheduledPayoutStatus.COMPLETED
        assert payout.is_active is True
        assert payout.last_amount_cents == 500_000
        assert payout.last_provider == "tsara"
        assert payout.next_scheduled_at == start + timedelta(weeks=1)
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 0

    def test_escrow_capable_provider_allowed_for_recurring_bank_payouts(
        self, funded_seller, bank_method, fake_providers
    ):
        PayoutService.create_scheduled_payout(
            funded_seller.pk,
            bank_method.id,
            PayoutSchedule.DAILY,
            "NGN",
            amount_cents=100_000,
            start_at=timezone.now() - timedelta(minutes=1),
        )

        PayoutService.execute_scheduled_payouts()

        assert fake_providers["tsara"].call_count == 1
        assert fake_providers["paystack"].call_count == 0

    def test_sweep_below_minimum_is_skipped(self, seller, credit_seller, escrow_method, fake_providers):
        credit_seller(seller, 5_000)
        now = timezone.now()
        payout = PayoutService.create_scheduled_payout(
            seller.pk, escrow_method.id, PayoutSchedule.WEEKLY, "NGN", start_at=now
        )

        counts = PayoutService.execute_scheduled_payouts(now=now)

        assert counts["skipped"] == 1
        payout = _payout(payout.id)
        assert payout.status == ScheduledPayoutStatus.PENDING
        assert payout.next_scheduled_at == now + timedelta(weeks=1)
        assert fake_providers["tsara"].call_count == 0

    def test_future_payouts_not_due(self, funded_seller, escrow_method, fake_providers):
        PayoutService.create_scheduled_payout(
            funded_seller.pk,
            escrow_method.id,
            PayoutSchedule.WEEKLY,
            "NGN",
            start_at=timezone.now() + timedelta(days=2),
        )

        assert PayoutService.execute_scheduled_payouts()["due"] == 0

    def test_missed_periods_are_not_paid_retroactively(self, funded_seller, escrow_method, fake_providers):
        now = timezone.now()
        payout = PayoutService.create_scheduled_payout(
            funded_seller.pk,
            escrow_method.id,
            PayoutSchedule.WEEKLY,
            "NGN",
            amount_cents=100_000,
            start_at=now - timedelta(weeks=3),
        )

        PayoutService.execute_scheduled_payouts(now=now)

        assert fake_providers["tsara"].call_count == 1
        assert _payout(payout.id).next_scheduled_at == now + timedelta(weeks=1)

    def test_failure_does_not_advance_schedule(self, funded_seller, escrow_method, fake_providers):
        fake_providers["tsara"].fail("wallet frozen")
        now = timezone.now()
        payout = PayoutService.create_scheduled_payout(
            funded_seller.pk, escrow_method.id, PayoutSchedule.WEEKLY, "NGN", start_at=now
        )

        counts = PayoutService.execute_scheduled_payouts(now=now)

        assert counts["failed"] == 1
        payout = _payout(payout.id)
        assert payout.status == ScheduledPayoutStatus.FAILED
        assert payout.next_scheduled_at == now

    def test_failed_payout_is_retried_next_pass(self, funded_seller, escrow_method, fake_providers):
        fake_providers["tsara"].fail("wallet frozen")
        now = timezone.now()
        payout = PayoutService.create_scheduled_payout(
            funded_seller.pk, escrow_method.id, PayoutSchedule.WEEKLY, "NGN", start_at=now
        )
        PayoutService.execute_scheduled_payouts(now=now)

        counts = PayoutService.execute_scheduled_payouts(now=now + timedelta(hours=4))

        assert counts["completed"] == 1
        assert fake_providers["tsara"].call_count == 2
        assert _payout(payout.id).status == ScheduledPayoutStatus.COMPLETED

    def test_one_raising_payout_does_not_stop_the_batch(self, funded_seller, escrow_method, fake_providers):
        now = timezone.now()
        first = PayoutService.create_scheduled_payout(
            funded_seller.pk,
            escrow_method.id,
            PayoutSchedule.WEEKLY,
            "NGN",
            amount_cents=100_000,
            start_at=now - timedelta(minutes=2),
        )
        PayoutService.create_scheduled_payout(
            funded_seller.pk,
            escrow_method.id,
            PayoutSchedule.WEEKLY,
            "NGN",
            amount_cents=100_000,
            start_at=now - timedelta(minutes=1),
        )
        original = PayoutService.execute_payout.__func__

        def flaky(cls, payout_id, now=None):
            if payout_id == first.id:
                raise RuntimeError("boom")
            return original(cls, payout_id, now=now)

        with patch.object(PayoutService, "execute_payout", classmethod(flaky)):
            counts = PayoutService.execute_scheduled_payouts(now=now)

        assert counts == {"due": 2, "completed": 1, "failed": 1, "skipped": 0}


class TestRetryFailedPayouts:
    @pytest.fixture
    def providers_down(self, fake_providers):
        fake_providers["paystack"].fail("gateway timeout", retryable=True)
        fake_providers["wise"].fail("gateway timeout", retryable=True)
        return fake_providers

    def test_transient_failure_schedules_retry(
        self, funded_seller, bank_method, providers_down, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            result = PayoutService.execute_immediate_payout(
                funded_seller.pk, bank_method.id, 100_000, "NGN"
            )

        payout = _payout(result.payout.id)
        assert payout.status == ScheduledPayoutStatus.FAILED
        assert payout.retry_at == payout.last_attempted_at + timedelta(minutes=5)
        assert not NotificationEvent.objects.filter(
            audience=NotificationAudience.ADMIN, notification_type="payout_failed"
        ).exists()

    def test_retried_once_backoff_passes(self, funded_seller, bank_method, providers_down):
        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )
        retry_at = _payout(result.payout.id).retry_at

        early = PayoutService.retry_failed_payouts(now=retry_at - timedelta(minutes=1))
        counts = PayoutService.retry_failed_payouts(now=retry_at + timedelta(seconds=1))

        assert early["due"] == 0
        assert counts == {"due": 1, "completed": 1, "failed": 0, "skipped": 0}
        payout = _payout(result.payout.id)
        assert payout.status == ScheduledPayoutStatus.COMPLETED
        assert payout.attempt_count == 2
        assert payout.retry_at is None
        assert payout.is_active is False
        assert ledger.balance(funded_seller.pk, "NGN").available == 400_000

    def test_permanent_failure_is_not_retried(self, funded_seller, bank_method, fake_providers):
        fake_providers["paystack"].fail("account closed", retryable=False)
        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

        counts = PayoutService.retry_failed_payouts(now=timezone.now() + timedelta(days=2))

        assert _payout(result.payout.id).retry_at is None
        assert counts["due"] == 0
        assert fake_providers["paystack"].call_count == 1

    def test_gives_up_when_backoff_runs_out(
        self,
        settings,
        funded_seller,
        bank_method,
        providers_down,
        django_capture_on_commit_callbacks,
    ):
        settings.PAYOUT_RETRY_BACKOFF_MINUTES = [5]
        providers_down["paystack"].fail("gateway timeout", retryable=True)
        providers_down["wise"].fail("gateway timeout", retryable=True)
        result = PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )
        retry_at = _payout(result.payout.id).retry_at

        with django_capture_on_commit_callbacks(execute=True):
            counts = PayoutService.retry_failed_payouts(now=retry_at + timedelta(seconds=1))

        assert counts["failed"] == 1
        payout = _payout(result.payout.id)
        assert payout.attempt_count == 2
        assert payout.retry_at is None
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 500_000
        assert NotificationEvent.objects.filter(
            audience=NotificationAudience.ADMIN, notification_type="payout_failed"
        ).exists()
        assert PayoutService.retry_failed_payouts(now=retry_at + timedelta(days=1))["due"] == 0

    def test_recurring_failure_waits_for_its_schedule(self, funded_seller, escrow_method, fake_providers):
        fake_providers["tsara"].fail("gateway timeout", retryable=True)
        payout = PayoutService.create_scheduled_payout(
            funded_seller.pk, escrow_method.id, PayoutSchedule.WEEKLY, "NGN"
        )
        PayoutService.execute_scheduled_payouts()

        assert _payout(payout.id).retry_at is None


class TestSettleProviderPayout:
    @pytest.fixture
    def processing_payout(self, funded_seller, bank_method, fake_providers):
        fake_providers["paystack"].succeed(status="processing", transaction_ref="ps_900")
        return PayoutService.execute_immediate_payout(
            funded_seller.pk, bank_method.id, 100_000, "NGN"
        )

    def test_processing_answer_keeps_money_in_flight(self, processing_payout, funded_seller):
        assert processing_payout.succeeded
        balance = ledger.balance(funded_seller.pk, "NGN")

        assert balance.available == 500_000
        assert balance.in_flight_payouts == -100_000
        assert balance.spendable == 400_000

    def test_success_marks_paid(self, processing_payout, funded_seller):
        entry = PayoutService.settle_provider_payout("ps_900", succeeded=True)

        assert entry.status == EntryStatus.PAID
        balance = ledger.balance(funded_seller.pk, "NGN")
        assert balance.available == 400_000
        assert balance.in_flight_payouts == 0

    def test_failure_returns_money(self, processing_payout, funded_seller):
        PayoutService.settle_provider_payout("ps_900", succeeded=False, reason="beneficiary bank rejected")

        assert ledger.balance(funded_seller.pk, "NGN").spendable == 500_000
        payout = _payout(processing_payout.payout.id)
        assert payout.status == ScheduledPayoutStatus.FAILED
        assert payout.last_error == "beneficiary bank rejected"

    def test_second_settlement_is_noop(self, processing_payout, funded_seller):
        PayoutService.settle_provider_payout("ps_900", succeeded=True)

        assert PayoutService.settle_provider_payout("ps_900", succeeded=False) is None
        assert ledger.balance(funded_seller.pk, "NGN").available == 400_000

    def test_unknown_reference(self, db):
        with pytest.raises(EscrowNotFoundError):
            PayoutService.settle_provider_payout("ps_missing", succeeded=True)

    def test_empty_reference(self, db):
        with pytest.raises(EscrowValidationError):
            PayoutService.settle_provider_payout("", succeeded=True)


class TestRecoverStuckPayouts:
    @pytest.fixture
    def stuck_payout(self, funded_seller, bank_method, fake_providers):
        payout = ScheduledPayoutFactory(payout_method=bank_method, amount_cents=100_000)
        with patch.object(PayoutService, "_record", side_effect=RuntimeError("worker died")):
            with pytest.raises(RuntimeError):
                PayoutService.execute_payout(payout.id)
        return _payout(payout.id)

    def test_stuck_payout_holds_reservation(self, stuck_payout, funded_seller):
        assert stuck_payout.status == ScheduledPayoutStatus.PROCESSING
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 400_000

    def test_recent_processing_payout_left_alone(self, stuck_payout):
        counts = PayoutService.recover_stuck_payouts(now=timezone.now() + timedelta(minutes=10))

        assert counts == {"stuck": 0, "recovered": 0}

    def test_fails_payout_and_releases_reservation(
        self, stuck_payout, funded_seller, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks(execute=True):
            counts = PayoutService.recover_stuck_payouts(now=timezone.now() + timedelta(minutes=31))

        assert counts == {"stuck": 1, "recovered": 1}
        payout = _payout(stuck_payout.id)
        assert payout.status == ScheduledPayoutStatus.FAILED
        assert "Stuck" in payout.last_error
        assert ledger.balance(funded_seller.pk, "NGN").spendable == 500_000
        assert NotificationEvent.objects.filter(
            audience=NotificationAudience.ADMIN, notification_type="payout_failed"
        ).exists()


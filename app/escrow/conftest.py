"""
Pytest fixtures shared by every escrow test package.

Provides users, orders in various money states, ledger seeding helpers and
a fake payout provider registry.

Usage:
    def test_release(funded_order):
        HoldService.release(funded_order.id)
"""

import pytest

from core.tests.factories import UserFactory
from escrow.ledger import AppendEntryParams, EntryStatus, TransactionType, ledger
from escrow.models import Order, PayoutMethodType
from escrow.payouts.providers import ProviderRegistry, set_provider_registry
from escrow.services import HoldService
from escrow.state_machines import PaymentStatus
from escrow.tests.factories import OrderFactory, PaymentFactory, PayoutMethodFactory
from escrow.tests.fakes import FakePayoutProvider


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def buyer(db):
    return UserFactory()


@pytest.fixture
def seller(db):
    return UserFactory()


@pytest.fixture
def staff_user(db):
    return UserFactory(is_staff=True)


# =============================================================================
# Orders
# =============================================================================


@pytest.fixture
def order(db, buyer, seller):
    """A PROCESSING order with no payment yet."""
    return OrderFactory(buyer=buyer, seller=seller)


@pytest.fixture
def fund_order(db):
    """
    Pay an order and hold the funds in escrow.

    Returns the order re-read from the database.
    """

    def _fund(order, duration_days=None):
        payment = PaymentFactory(order=order, status=PaymentStatus.COMPLETED)
        HoldService.create_hold(
            payment_id=payment.id,
            order_id=order.id,
            seller_id=order.seller_id,
            amount_cents=payment.amount_cents,
            currency=payment.currency,
            duration_days=duration_days,
        )
        return Order.objects.get(pk=order.pk)

    return _fund


@pytest.fixture
def funded_order(order, fund_order):
    """A PROCESSING order whose 5,000.00 NGN is held in escrow."""
    return fund_order(order)


# =============================================================================
# Ledger
# =============================================================================


@pytest.fixture
def credit_seller(db):
    """Append a completed sale entry so the seller has spendable money."""
    counter = {"n": 0}

    def _credit(seller, amount_cents, currency="NGN"):
        counter["n"] += 1
        return ledger.append(
            AppendEntryParams(
                seller_id=seller.pk,
                transaction_type=TransactionType.SALE,
                amount_cents=amount_cents,
                currency=currency,
                status=EntryStatus.COMPLETED,
                description="Test credit",
                idempotency_key=f"test:credit:{seller.pk}:{counter['n']}",
            )
        )

    return _credit


# =============================================================================
# Payouts
# =============================================================================


@pytest.fixture
def bank_method(db, seller):
    return PayoutMethodFactory(seller=seller, is_default=True)


@pytest.fixture
def escrow_method(db, seller):
    return PayoutMethodFactory(
        seller=seller,
        method_type=PayoutMethodType.ESCROW_PROVIDER,
        details={"account_id": "tsara_acct_42"},
    )


@pytest.fixture
def fake_providers():
    """
    Install a registry of fake providers for the duration of a test.

    Routing order for bank transfers: tsara (escrow-capable), paystack, wise.
    """
    providers = {
        "tsara": FakePayoutProvider(
            "tsara",
            [PayoutMethodType.ESCROW_PROVIDER, PayoutMethodType.BANK_TRANSFER],
            escrow_capable=True,
        ),
        "paystack": FakePayoutProvider("paystack", [PayoutMethodType.BANK_TRANSFER]),
        "wise": FakePayoutProvider(
            "wise", [PayoutMethodType.WISE, PayoutMethodType.BANK_TRANSFER]
        ),
        "paypal": FakePayoutProvider("paypal", [PayoutMethodType.PAYPAL]),
    }
    set_provider_registry(ProviderRegistry(providers.values()))
    yield providers
    set_provider_registry(None)

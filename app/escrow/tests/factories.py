"""
Factory Boy factories for escrow test data.

Usage:
    from escrow.tests.factories import OrderFactory, PaymentFactory

    order = OrderFactory()
    payment = PaymentFactory(order=order)

    # FSM fields may be set at creation time only
    delivered = OrderFactory(order_status=OrderStatus.DELIVERED)
"""

import uuid

import factory

from core.tests.factories import UserFactory
from escrow.models import (
    Dispute,
    Order,
    Payment,
    PayoutMethod,
    PayoutMethodType,
    ScheduledPayout,
    WebhookEvent,
)
from escrow.state_machines import PaymentStatus, PayoutSchedule


class OrderFactory(factory.django.DjangoModelFactory):
    """
    Factory for Order.

    Default creates a PROCESSING order of 5,000.00 NGN.
    """

    class Meta:
        model = Order

    buyer = factory.SubFactory(UserFactory)
    seller = factory.SubFactory(UserFactory)
    listing_id = factory.Sequence(lambda n: f"lst_{n}")
    amount_cents = 500_000
    currency = "NGN"
    metadata = factory.LazyFunction(dict)


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Factory for Payment.

    Amount and currency follow the order. Default status is PENDING.

    Example:
        payment = PaymentFactory(order=order, status=PaymentStatus.COMPLETED)
    """

    class Meta:
        model = Payment

    order = factory.SubFactory(OrderFactory)
    provider = "tsara"
    provider_reference = factory.LazyFunction(lambda: f"txn_{uuid.uuid4().hex[:12]}")
    amount_cents = factory.LazyAttribute(lambda o: o.order.amount_cents)
    currency = factory.LazyAttribute(lambda o: o.order.currency)
    status = PaymentStatus.PENDING


class PayoutMethodFactory(factory.django.DjangoModelFactory):
    """Factory for a seller's bank transfer payout method."""

    class Meta:
        model = PayoutMethod

    seller = factory.SubFactory(UserFactory)
    method_type = PayoutMethodType.BANK_TRANSFER
    details = factory.LazyFunction(
        lambda: {
            "account_number": "0123456789",
            "account_name": "Ada Obi",
            "bank_code": "058",
        }
    )
    is_default = False
    is_active = True


class ScheduledPayoutFactory(factory.django.DjangoModelFactory):
    """
    Factory for ScheduledPayout.

    Default creates an immediate 1,000.00 NGN payout on the seller's method.
    """

    class Meta:
        model = ScheduledPayout

    payout_method = factory.SubFactory(PayoutMethodFactory)
    seller = factory.LazyAttribute(lambda o: o.payout_method.seller)
    amount_cents = 100_000
    currency = "NGN"
    schedule = PayoutSchedule.IMMEDIATE


class DisputeFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Dispute

    order = factory.SubFactory(OrderFactory)
    buyer = factory.LazyAttribute(lambda o: o.order.buyer)
    seller = factory.LazyAttribute(lambda o: o.order.seller)
    reason = "Item not as described"
    evidence = factory.LazyFunction(list)


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """Factory for a pending payment.success WebhookEvent."""

    class Meta:
        model = WebhookEvent

    event_id = factory.Sequence(lambda n: f"evt_{n}")
    event_type = "payment.success"
    provider = "tsara"
    payload = factory.LazyFunction(
        lambda: {
            "provider_reference": f"txn_{uuid.uuid4().hex[:12]}",
            "amount_cents": 500_000,
            "currency": "NGN",
            "status": "success",
            "metadata": {},
        }
    )

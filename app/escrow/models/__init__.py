"""
Escrow domain models.

- Order / OrderTransition / Payment: checkout record, audit trail, payment attempts
- PaymentHold: escrowed funds per order
- FinancialLedgerEntry: append-only seller ledger (defined in escrow.ledger)
- Dispute / Refund: buyer disputes and returns
- PayoutMethod / ScheduledPayout: seller payout destinations and instructions
- WebhookEvent / WebhookLog: inbound provider events and retry log
- PeriodicTaskRun: scheduler claim state
"""

from escrow.ledger.models import FinancialLedgerEntry
from escrow.models.dispute import Dispute, Refund
from escrow.models.hold import PaymentHold
from escrow.models.order import Order, OrderTransition, Payment
from escrow.models.payout import PayoutMethod, PayoutMethodType, ScheduledPayout
from escrow.models.scheduler import PeriodicTaskRun
from escrow.models.webhook_event import WebhookEvent, WebhookLog

__all__ = [
    "Dispute",
    "FinancialLedgerEntry",
    "Order",
    "OrderTransition",
    "Payment",
    "PaymentHold",
    "PayoutMethod",
    "PayoutMethodType",
    "PeriodicTaskRun",
    "Refund",
    "ScheduledPayout",
    "WebhookEvent",
    "WebhookLog",
]

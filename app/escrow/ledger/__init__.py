"""
Ledger - append-only record of seller earnings.

Every monetary event touching a seller is a signed FinancialLedgerEntry;
balances are computed from entries and never stored.

Public API:
    Models:
        FinancialLedgerEntry - One immutable monetary event
        TransactionType - Entry categories
        EntryStatus - Balance buckets

    Service:
        ledger - Singleton instance of LedgerService
        LedgerService - append / append_many / compensate / balance

    Types:
        Money, AppendEntryParams, Balance

    Exceptions:
        LedgerError, InsufficientBalance, LedgerIntegrityError

Usage:
    from escrow.ledger import ledger

    balance = ledger.balance(seller_id, "NGN")
    print(balance.as_money()["available"])  # "5,000.00 NGN"
"""

from .exceptions import InsufficientBalance, LedgerError, LedgerIntegrityError
from .models import EntryStatus, FinancialLedgerEntry, TransactionType
from .services import LedgerService, ledger
from .types import AppendEntryParams, Balance, Money

__all__ = [
    "FinancialLedgerEntry",
    "TransactionType",
    "EntryStatus",
    "ledger",
    "LedgerService",
    "AppendEntryParams",
    "Balance",
    "Money",
    "LedgerError",
    "InsufficientBalance",
    "LedgerIntegrityError",
]

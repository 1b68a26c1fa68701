"""
Escrow app: holds buyer funds in trust and moves them to sellers.

This app provides:
- Order lifecycle with escrow holds released on delivery or timeout
- Append-only seller ledger (escrow.ledger)
- Disputes, returns and refunds
- Payout orchestration across pluggable payout providers
- Exactly-once ingestion of payment-provider webhooks
- Periodic jobs run by a database-backed scheduler

Usage:
    from escrow.services import OrderService, PayoutService

    OrderService.transition_order(order.id, "delivered", reason="carrier confirmed")
    PayoutService.request_manual_payout(seller.id, method.id, 500000, "NGN")
"""

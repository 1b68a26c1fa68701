"""
State enums for escrow models.

These are Django TextChoices for database storage and admin integration.
The FSM-driven fields (order_status, payment status, hold_status,
refund_status, dispute status) use django-fsm transitions declared on the
models; the remaining enums are plain status columns.

State Machines Overview:

Order (order_status):
    processing → shipped → delivered → returned
    processing/shipped → canceled

Payment:
    pending → completed
    pending → failed

PaymentHold:
    active → released | refunded | expired

Refund (return):
    pending → return_requested → return_approved → refunded
    return_requested/return_approved → return_rejected
    pending/return_requested/return_approved → canceled

Dispute:
    open → under_review → resolved
    open/under_review → escalated → resolved
"""

from django.db import models


class OrderStatus(models.TextChoices):
    """
    Fulfilment state of an order.

    Terminal states: CANCELED, RETURNED
    """

    PROCESSING = "processing", "Processing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELED = "canceled", "Canceled"
    RETURNED = "returned", "Returned"


class DeliveryStatus(models.TextChoices):
    NOT_SHIPPED = "not_shipped", "Not Shipped"
    IN_TRANSIT = "in_transit", "In Transit"
    DELIVERED = "delivered", "Delivered"


class OrderPayoutStatus(models.TextChoices):
    """
    Where the order's money currently sits.

    IN_ESCROW: held against the order
    PROCESSING: released to the seller's balance, awaiting payout
    PAID: paid out to the seller
    REFUNDED: returned to the buyer
    DISPUTED: frozen by an open dispute or return
    """

    IN_ESCROW = "in_escrow", "In Escrow"
    PROCESSING = "processing", "Processing"
    PAID = "paid", "Paid"
    REFUNDED = "refunded", "Refunded"
    DISPUTED = "disputed", "Disputed"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class HoldStatus(models.TextChoices):
    """
    States for PaymentHold.

    ACTIVE: funds reserved against the order
    RELEASED: funds credited to the seller on delivery or dispute outcome
    REFUNDED: funds fully returned to the buyer
    EXPIRED: auto-released by the scheduler after releaseable_at
    """

    ACTIVE = "active", "Active"
    RELEASED = "released", "Released"
    REFUNDED = "refunded", "Refunded"
    EXPIRED = "expired", "Expired"


class RefundStatus(models.TextChoices):
    """
    States for the Refund (return) record.

    Terminal states: REFUNDED, RETURN_REJECTED, CANCELED
    """

    PENDING = "pending", "Pending"
    RETURN_REQUESTED = "return_requested", "Return Requested"
    RETURN_APPROVED = "return_approved", "Return Approved"
    RETURN_REJECTED = "return_rejected", "Return Rejected"
    REFUNDED = "refunded", "Refunded"
    CANCELED = "canceled", "Canceled"


class RefundType(models.TextChoices):
    FULL = "full", "Full Refund"
    PARTIAL = "partial", "Partial Refund"
    STORE_CREDIT = "store_credit", "Store Credit"


class ItemCondition(models.TextChoices):
    UNOPENED = "unopened", "Unopened"
    LIKE_NEW = "like_new", "Like New"
    USED = "used", "Used"
    DAMAGED = "damaged", "Damaged"
    DEFECTIVE = "defective", "Defective"


class DisputeStatus(models.TextChoices):
    """
    States for Dispute.

    ESCALATED raises visibility only; it never resolves anything.
    """

    OPEN = "open", "Open"
    UNDER_REVIEW = "under_review", "Under Review"
    ESCALATED = "escalated", "Escalated"
    RESOLVED = "resolved", "Resolved"


class DisputeResolution(models.TextChoices):
    BUYER_REFUND = "buyer_refund", "Refund Buyer"
    SELLER_KEEP = "seller_keep", "Seller Keeps Funds"
    PARTIAL_REFUND = "partial_refund", "Partial Refund"


class PayoutSchedule(models.TextChoices):
    IMMEDIATE = "immediate", "Immediate"
    DAILY = "daily", "Daily"
    WEEKLY = "weekly", "Weekly"
    BI_WEEKLY = "bi_weekly", "Bi-Weekly"
    MONTHLY = "monthly", "Monthly"


class ScheduledPayoutStatus(models.TextChoices):
    """
    Execution state of a ScheduledPayout.

    Recurring payouts cycle: COMPLETED/FAILED → PROCESSING on the next due run.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class WebhookEventStatus(models.TextChoices):
    """
    States for WebhookEvent processing.

    PROCESSING is the claim marker while a handler runs; a row stuck there
    is reset by the cleanup job.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"

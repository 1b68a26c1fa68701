"""
Webhook event handlers for payment-provider events.

This module provides a handler registry and the handlers for payment and
payout events. Handlers receive the stored WebhookEvent and return a
ServiceResult; domain exceptions are converted at this boundary so the
gateway can decide whether the event is retried.

Payload keys (normalized by the receiver):
    provider_reference, amount_cents, currency, status, metadata

Usage:
    from escrow.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from escrow.models import WebhookEvent
from escrow.services import ConfirmationStatus, PaymentService, PayoutService

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("payment.success")
        def handle_payment_success(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Unknown event types are logged and reported as success, so they are
    marked processed instead of being retried forever.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_id": webhook_event.event_id},
    )
    return handler(webhook_event)


# =============================================================================
# Payment Handlers
# =============================================================================


def _confirm_payment(webhook_event: WebhookEvent, status: str) -> ServiceResult:
    payload = webhook_event.payload or {}
    provider_reference = payload.get("provider_reference")
    if not provider_reference:
        logger.error(
            f"{webhook_event.event_type}: missing provider reference",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.failure(
            "Webhook payload has no provider reference",
            error_code="INVALID_WEBHOOK_PAYLOAD",
            retryable=False,
        )

    try:
        payment = PaymentService.confirm_payment(
            provider_reference=provider_reference,
            status=status,
            amount_cents=payload.get("amount_cents"),
            currency=payload.get("currency") or None,
            payload=payload.get("metadata") or None,
        )
    except BaseApplicationError as e:
        return ServiceResult.from_exception(e)

    return ServiceResult.success({"payment_id": str(payment.id), "status": payment.status})


@register_handler("payment.success")
def handle_payment_success(webhook_event: WebhookEvent) -> ServiceResult:
    return _confirm_payment(webhook_event, ConfirmationStatus.SUCCESS)


@register_handler("payment.failed")
def handle_payment_failed(webhook_event: WebhookEvent) -> ServiceResult:
    return _confirm_payment(webhook_event, ConfirmationStatus.FAILED)


@register_handler("payment.pending")
def handle_payment_pending(webhook_event: WebhookEvent) -> ServiceResult:
    return _confirm_payment(webhook_event, ConfirmationStatus.PENDING)


@register_handler("payment.refunded")
def handle_payment_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    return _confirm_payment(webhook_event, ConfirmationStatus.REFUNDED)


# =============================================================================
# Payout Handlers
# =============================================================================


def _settle_payout(webhook_event: WebhookEvent, succeeded: bool) -> ServiceResult:
    payload = webhook_event.payload or {}
    transaction_ref = payload.get("provider_reference")
    if not transaction_ref:
        return ServiceResult.failure(
            "Webhook payload has no transaction reference",
            error_code="INVALID_WEBHOOK_PAYLOAD",
            retryable=False,
        )

    metadata = payload.get("metadata") or {}
    try:
        entry = PayoutService.settle_provider_payout(
            transaction_ref,
            succeeded=succeeded,
            reason=str(metadata.get("reason") or ""),
        )
    except BaseApplicationError as e:
        return ServiceResult.from_exception(e)

    return ServiceResult.success(
        {"entry_id": str(entry.id) if entry else None, "already_settled": entry is None}
    )


@register_handler("payout.success")
def handle_payout_success(webhook_event: WebhookEvent) -> ServiceResult:
    return _settle_payout(webhook_event, succeeded=True)


@register_handler("payout.failed")
def handle_payout_failed(webhook_event: WebhookEvent) -> ServiceResult:
    return _settle_payout(webhook_event, succeeded=False)

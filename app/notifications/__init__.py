"""
Notifications app: outbound notification events for the escrow core.

This app provides:
- NotificationEvent model, a persisted outbox of structured events
- NotificationCooldown model, the shared rate-limit marker for alerts
- NotificationService for event creation and cooldown claims
- Celery task that hands events to the external dispatcher

Usage:
    from notifications.services import NotificationService

    event = NotificationService.emit_safely(
        audience="seller",
        recipient=seller,
        notification_type="payout_completed",
        related_entity_type="scheduled_payout",
        related_entity_id=payout.id,
        title="Payout sent",
        message="5,000.00 NGN is on its way to your bank account.",
    )
"""

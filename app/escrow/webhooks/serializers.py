"""
DRF serializers for inbound escrow webhooks.

The wire format is camelCase; validated_data is snake_case and is what the
gateway stores as the event payload.

Usage:
    serializer = EscrowWebhookSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    serializer.validated_data["event_id"]
"""

from __future__ import annotations

from rest_framework import serializers


class EscrowWebhookSerializer(serializers.Serializer):
    """
    Inbound provider event.

    Fields:
        eventId: Provider event id, unique per event (required)
        eventType: e.g. payment.success; derived as payment.{status} if omitted
        providerReference: Payment reference, or transaction ref for payout events
        amount: Amount in minor units
        currency: ISO 4217 code
        status: Provider status
        metadata: Free-form provider data
        provider: Provider name
    """

    eventId = serializers.CharField(source="event_id", max_length=255)
    eventType = serializers.CharField(
        source="event_type",
        max_length=100,
        required=False,
        allow_blank=True,
        default="",
    )
    providerReference = serializers.CharField(
        source="provider_reference",
        max_length=255,
        help_text="Payment reference or payout transaction reference",
    )
    amount = serializers.IntegerField(
        source="amount_cents",
        min_value=0,
        required=False,
        allow_null=True,
        default=None,
        help_text="Amount in minor units",
    )
    currency = serializers.CharField(
        min_length=3,
        max_length=3,
        required=False,
        allow_blank=True,
        default="",
    )
    status = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    metadata = serializers.DictField(required=False, default=dict)
    provider = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")

    def validate_currency(self, value: str) -> str:
        return value.upper()

    def validate(self, attrs):
        if not attrs.get("event_type"):
            status = attrs.get("status")
            if not status:
                raise serializers.ValidationError(
                    {"eventType": "eventType or status is required."}
                )
            attrs["event_type"] = f"payment.{status.lower()}"
        return attrs

    def to_payload(self) -> dict:
        """Event payload as stored on WebhookEvent."""
        data = self.validated_data
        return {
            "provider_reference": data["provider_reference"],
            "amount_cents": data.get("amount_cents"),
            "currency": data.get("currency", ""),
            "status": data.get("status", ""),
            "metadata": data.get("metadata") or {},
        }

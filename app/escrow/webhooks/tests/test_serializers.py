"""
Tests for EscrowWebhookSerializer.
"""

import pytest

from escrow.webhooks.serializers import EscrowWebhookSerializer


def _data(**overrides):
    data = {
        "eventId": "evt_1",
        "eventType": "payment.success",
        "providerReference": "txn_abc",
        "amount": 500000,
        "currency": "ngn",
        "status": "success",
        "metadata": {"channel": "card"},
        "provider": "paystack",
    }
    data.update(overrides)
    return data


class TestEscrowWebhookSerializer:
    def test_maps_camel_case_to_snake_case(self):
        serializer = EscrowWebhookSerializer(data=_data())

        assert serializer.is_valid(), serializer.errors
        assert serializer.validated_data["event_id"] == "evt_1"
        assert serializer.validated_data["provider"] == "paystack"
        assert serializer.to_payload() == {
            "provider_reference": "txn_abc",
            "amount_cents": 500000,
            "currency": "NGN",
            "status": "success",
            "metadata": {"channel": "card"},
        }

    def test_event_type_derived_from_status(self):
        serializer = EscrowWebhookSerializer(data=_data(eventType="", status="FAILED"))

        assert serializer.is_valid(), serializer.errors
        assert serializer.validated_data["event_type"] == "payment.failed"

    def test_needs_event_type_or_status(self):
        data = _data(status="")
        del data["eventType"]
        serializer = EscrowWebhookSerializer(data=data)

        assert not serializer.is_valid()
        assert "eventType" in serializer.errors

    def test_optional_fields_default(self):
        serializer = EscrowWebhookSerializer(
            data={"eventId": "evt_2", "eventType": "payout.success", "providerReference": "ps_1"}
        )

        assert serializer.is_valid(), serializer.errors
        assert serializer.to_payload() == {
            "provider_reference": "ps_1",
            "amount_cents": None,
            "currency": "",
            "status": "",
            "metadata": {},
        }

    @pytest.mark.parametrize(
        "field,value",
        [
            ("eventId", ""),
            ("providerReference", ""),
            ("amount", -1),
            ("currency", "NAIRA"),
            ("metadata", "not-a-dict"),
        ],
    )
    def test_invalid_fields(self, field, value):
        serializer = EscrowWebhookSerializer(data=_data(**{field: value}))

        assert not serializer.is_valid()
        assert field in serializer.errors

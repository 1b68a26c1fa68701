"""
Webhook endpoint for payment-provider events.

The view:
1. Verifies the HMAC signature over the raw body
2. Validates and normalizes the payload
3. Hands the event to WebhookGateway.ingest(), which stores it once and
   runs its handler

Usage:
    # In urls.py
    from escrow.webhooks.views import EscrowWebhookView

    urlpatterns = [
        path("webhooks/escrow/", EscrowWebhookView.as_view(), name="escrow_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.conf import settings
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from escrow.webhooks.gateway import IngestOutcome, WebhookGateway
from escrow.webhooks.serializers import EscrowWebhookSerializer
from escrow.webhooks.signing import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)


def _error(code: str, message: str, http_status: int, details=None) -> Response:
    return Response(
        {"error": {"code": code, "message": message, "details": details or {}}},
        status=http_status,
    )


class EscrowWebhookView(APIView):
    """
    Receive provider webhook events.

    POST /api/v1/webhooks/escrow/

    Returns:
        200: Event accepted (new or duplicate)
        400: Invalid payload
        401: Missing or invalid signature
    """

    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="receive_escrow_webhook",
        summary="Receive payment provider webhook",
        description=(
            "Entry point for payment and payout events. The raw body must be "
            "signed with HMAC-SHA256 using the shared webhook secret. Each "
            "eventId is processed at most once; redeliveries return 200."
        ),
        parameters=[
            OpenApiParameter(
                name=SIGNATURE_HEADER,
                location=OpenApiParameter.HEADER,
                required=True,
                description="Hex HMAC-SHA256 of the raw request body",
            ),
        ],
        request=EscrowWebhookSerializer,
        responses={
            200: OpenApiResponse(description="Event accepted or already received"),
            400: OpenApiResponse(description="Invalid payload"),
            401: OpenApiResponse(description="Invalid signature"),
        },
        tags=["Escrow - Webhooks"],
    )
    def post(self, request):
        # Raw body must be read before request.data parses it
        body = request.body
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not verify_signature(body, signature, settings.ESCROW_WEBHOOK_SECRET):
            logger.warning(
                "Webhook signature verification failed",
                extra={"has_signature": bool(signature)},
            )
            return _error("INVALID_SIGNATURE", "Invalid webhook signature", status.HTTP_401_UNAUTHORIZED)

        serializer = EscrowWebhookSerializer(data=request.data)
        if not serializer.is_valid():
            logger.warning(
                "Webhook payload failed validation",
                extra={"errors": serializer.errors},
            )
            return _error(
                "VALIDATION_ERROR",
                "Invalid webhook payload",
                status.HTTP_400_BAD_REQUEST,
                details=serializer.errors,
            )

        data = serializer.validated_data
        result = WebhookGateway.ingest(
            event_id=data["event_id"],
            event_type=data["event_type"],
            payload=serializer.to_payload(),
            provider=data.get("provider", ""),
        )

        if result.outcome == IngestOutcome.REJECTED:
            return _error("WEBHOOK_REJECTED", result.error, status.HTTP_400_BAD_REQUEST)

        return Response(
            {"status": result.outcome.value, "eventId": data["event_id"]},
            status=status.HTTP_200_OK,
        )

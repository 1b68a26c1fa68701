"""
URL configuration for the escrow app.
"""

from django.urls import path

from escrow.webhooks.views import EscrowWebhookView

app_name = "escrow"

urlpatterns = [
    path("webhooks/escrow/", EscrowWebhookView.as_view(), name="escrow_webhook"),
]

"""Django app configuration for escrow."""

from django.apps import AppConfig


class EscrowConfig(AppConfig):
    """Configuration for the escrow app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "escrow"
    verbose_name = "Escrow"

    def ready(self):
        # Register periodic jobs and webhook event handlers
        from escrow import workers  # noqa: F401
        from escrow.webhooks import handlers  # noqa: F401

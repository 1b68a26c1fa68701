"""
Test configuration and fixtures for notification tests.
"""

import pytest

from core.tests.factories import UserFactory


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def dispatch_url(settings):
    """Point delivery at a fake dispatcher."""
    settings.NOTIFICATION_DISPATCH_URL = "https://dispatch.example.com/events"
    settings.NOTIFICATION_DISPATCH_TIMEOUT_SECONDS = 5
    return settings.NOTIFICATION_DISPATCH_URL

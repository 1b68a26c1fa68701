"""
Tests for the health check endpoint.
"""

from unittest.mock import patch

import pytest
from django.db import OperationalError
from django.urls import reverse


@pytest.mark.django_db
class TestHealthCheck:
    def test_healthy(self, client):
        response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "database": "connected",
            "cache": "connected",
        }

    def test_cache_outage_degrades_only(self, client):
        with patch("core.views.cache.set", side_effect=ConnectionError("redis down")):
            response = client.get(reverse("health_check"))

        assert response.status_code == 200
        assert response.json()["cache"] == "disconnected"

    def test_database_outage_fails(self, client):
        with patch("core.views.connection.cursor", side_effect=OperationalError("gone")):
            response = client.get(reverse("health_check"))

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"

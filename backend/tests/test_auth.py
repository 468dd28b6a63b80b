"""
Integration Tests for Authentication

Verifies that the main application correctly integrates:
- JWT verification dependency
- Protected route denial (401)
- Protected route access with a valid token
"""

from unittest.mock import AsyncMock

from app.api.dependencies import get_subscription_provisioner
from app.domain.billing import SubscribeResult, SubscriptionStatus
from app.infrastructure.db.repositories import get_user_access_repository


class TestAuthIntegration:

    def test_protected_route_no_auth(self, client):
        """Accessing a protected route without auth should return 401."""
        response = client.post("/api/billing/subscribe", json={})
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing authorization token"

    def test_protected_route_invalid_token(self, client):
        """Accessing with invalid token should return 401."""
        response = client.post(
            "/api/billing/subscribe",
            json={},
            headers={"Authorization": "Bearer invalid.token.here"},
        )
        assert response.status_code == 401

    def test_admin_route_no_auth(self, client):
        response = client.get("/api/admin/billing/overview")
        assert response.status_code == 401

    def test_protected_route_valid_auth(
        self, client, app, auth_headers, mock_access_repo, sample_subscribe_payload
    ):
        """A valid token should reach the route logic (mocked services)."""
        provisioner = AsyncMock()
        provisioner.subscribe.return_value = SubscribeResult(
            subscription_id=9001, status=SubscriptionStatus.ACTIVE, stage="define-payment"
        )

        # Override the dependency FUNCTION, not the type alias
        app.dependency_overrides[get_user_access_repository] = lambda: mock_access_repo
        app.dependency_overrides[get_subscription_provisioner] = lambda: provisioner

        response = client.post("/api/billing/subscribe", json=sample_subscribe_payload, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["status"] == "active"
        assert "charge_id" not in response.json()

"""Tests for settings API endpoints."""

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from linescout.services.settings_service import SettingsService


class TestGetSettings:
    def test_defaults(self, client: TestClient, admin_headers: dict) -> None:
        response = client.get("/api/v1/settings", headers=admin_headers)
        assert response.status_code == 200
        assert response.json() == {"agent_percent": 5.0, "min_agent_payout_minor": 10000}

    def test_admin_only(self, client: TestClient, agent_headers: dict) -> None:
        assert client.get("/api/v1/settings", headers=agent_headers).status_code == 403


class TestUpdateSettings:
    def test_patch_keeps_absent_fields(self, client: TestClient, admin_headers: dict) -> None:
        response = client.patch(
            "/api/v1/settings", json={"agent_percent": 7.5}, headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json() == {"agent_percent": 7.5, "min_agent_payout_minor": 10000}

        again = client.get("/api/v1/settings", headers=admin_headers).json()
        assert again["agent_percent"] == 7.5

    def test_out_of_range(self, client: TestClient, admin_headers: dict) -> None:
        response = client.patch(
            "/api/v1/settings", json={"agent_percent": 120}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "agent_percent must be between 0 and 100"

    def test_patch_is_committed(
        self, client: TestClient, test_db: Session, admin_headers: dict
    ) -> None:
        client.patch(
            "/api/v1/settings", json={"min_agent_payout_minor": 2500}, headers=admin_headers
        )
        test_db.expire_all()
        assert SettingsService(test_db).load().min_agent_payout_minor == 2500

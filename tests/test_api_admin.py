"""Tests for payment methods, closings and gateway settings endpoints."""

from __future__ import annotations

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from helpers import mock_txn

from yardly.api.auth import CurrentUser, get_current_user
from yardly.api.factory import create_app
from yardly.infra.gateway_settings import AsaasConfig

NOW = datetime(2024, 3, 31, 15, 0, tzinfo=timezone.utc)


def _client(role: str = "admin") -> TestClient:
    app = create_app()
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        id=f"user-{role}", full_name=None, role=role
    )
    return TestClient(app, raise_server_exceptions=False)


def _method(name="PIX", active=True):
    return {"id": "pm-1", "name": name, "active": active, "created_at": NOW.isoformat()}


class TestPaymentMethods:
    ROUTES = "yardly.api.routes.payment_methods"

    def test_list(self):
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.list_payment_methods", return_value=[_method()]) as mock_list:
            resp = _client("operator").get("/payment-methods?active_only=true")

        assert resp.status_code == 200
        assert resp.json() == [_method()]
        assert mock_list.call_args.kwargs == {"active_only": True}

    def test_create(self):
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.insert_payment_method", return_value=_method("Vale")) as mock_insert:
            resp = _client().post("/payment-methods", json={"name": "  Vale "})

        assert resp.status_code == 200
        assert mock_insert.call_args.kwargs == {"name": "Vale"}

    def test_create_duplicate(self):
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.insert_payment_method", return_value=None):
            resp = _client().post("/payment-methods", json={"name": "PIX"})
        assert resp.status_code == 409

    def test_create_blank_name(self):
        resp = _client().post("/payment-methods", json={"name": "   "})
        assert resp.status_code == 422

    def test_create_requires_admin(self):
        resp = _client("operator").post("/payment-methods", json={"name": "Vale"})
        assert resp.status_code == 403

    def test_toggle(self):
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.toggle_payment_method", return_value=_method(active=False)):
            resp = _client().post("/payment-methods/pm-1/toggle")
        assert resp.status_code == 200
        assert resp.json()["active"] is False

    def test_toggle_missing(self):
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.toggle_payment_method", return_value=None):
            resp = _client().post("/payment-methods/pm-x/toggle")
        assert resp.status_code == 404


class TestClosings:
    ROUTES = "yardly.api.routes.closings"

    def test_default_range_is_last_30_days(self):
        report = {"start": "2024-03-01", "end": "2024-03-31", "count": 0, "total": "0.00", "items": []}
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.utc_now", return_value=NOW), \
             patch(f"{self.ROUTES}.closings_report", return_value=report) as mock_report:
            resp = _client("operator").get("/closings")

        assert resp.status_code == 200
        assert mock_report.call_args.kwargs == {"start": date(2024, 3, 1), "end": date(2024, 3, 31)}

    def test_explicit_range(self):
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{self.ROUTES}.closings_report", return_value={}) as mock_report:
            _client().get("/closings?start=2024-01-01&end=2024-01-31")

        assert mock_report.call_args.kwargs == {"start": date(2024, 1, 1), "end": date(2024, 1, 31)}

    def test_inverted_range(self):
        cur = MagicMock()
        cur.fetchall.return_value = []
        with patch(f"{self.ROUTES}.txn", return_value=mock_txn(cur)):
            resp = _client().get("/closings?start=2024-02-01&end=2024-01-01")
        assert resp.status_code == 422


class TestGatewaySettings:
    ROUTES = "yardly.api.routes.settings"

    def test_token_is_masked(self):
        config = AsaasConfig(api_key="$aact_secret_1234", environment="production")
        with patch(f"{self.ROUTES}.get_asaas_config", return_value=config):
            resp = _client().get("/settings/gateway")

        assert resp.status_code == 200
        assert resp.json() == {"configured": True, "api_key": "****1234", "environment": "production"}

    def test_not_configured(self):
        with patch(f"{self.ROUTES}.get_asaas_config", return_value=AsaasConfig()):
            resp = _client().get("/settings/gateway")
        assert resp.json() == {"configured": False, "api_key": None, "environment": "sandbox"}

    def test_update_keeps_omitted_fields(self):
        with patch(f"{self.ROUTES}.update_asaas_config") as mock_update, \
             patch(f"{self.ROUTES}.get_asaas_config", return_value=AsaasConfig(api_key="k-9999")):
            resp = _client().put("/settings/gateway", json={"environment": "sandbox"})

        assert resp.status_code == 200
        mock_update.assert_called_once_with({"environment": "sandbox"})

    def test_invalid_environment(self):
        resp = _client().put("/settings/gateway", json={"environment": "staging"})
        assert resp.status_code == 422

    def test_operator_forbidden(self):
        assert _client("operator").get("/settings/gateway").status_code == 403

"""Tests for invoice management endpoints (gateway mocked)."""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from helpers import mock_txn

from yardly.api.auth import CurrentUser, get_current_user
from yardly.api.factory import create_app
from yardly.asaas.client import GatewayError

ROUTES = "yardly.api.routes.invoices"


def _client(role: str = "admin") -> TestClient:
    app = create_app()
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        id=f"user-{role}", full_name=None, role=role
    )
    return TestClient(app, raise_server_exceptions=False)


def _charge(charge_id="pay_1", customer="cus_1", status="PENDING"):
    return {
        "id": charge_id,
        "customer": customer,
        "description": "Diárias de pátio - Veículo Placa ABC1D23",
        "billingType": "PIX",
        "value": 100.0,
        "status": status,
        "dueDate": "2024-01-03",
        "invoiceUrl": f"https://sandbox.asaas.com/i/{charge_id}",
        "bankSlipUrl": None,
    }


class TestListInvoices:
    def test_lists_with_customer_names_and_plate(self):
        gateway = MagicMock()
        gateway.list_charges.return_value = {
            "data": [_charge("pay_1"), _charge("pay_2", status="RECEIVED")],
            "totalCount": 2,
            "hasMore": False,
        }
        gateway.get_customer.return_value = {"id": "cus_1", "name": "Maria Souza"}

        with patch(f"{ROUTES}._get_gateway", return_value=gateway):
            resp = _client("operator").get("/invoices?status=PENDING&limit=10")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert body["has_more"] is False
        first = body["items"][0]
        assert first["customer_name"] == "Maria Souza"
        assert first["plate"] == "ABC1D23"
        assert first["value"] == "100.00"
        assert body["items"][1]["status"] == "RECEIVED"
        gateway.list_charges.assert_called_once_with(status="PENDING", offset=0, limit=10)
        # One lookup per distinct customer
        gateway.get_customer.assert_called_once_with("cus_1")

    def test_unknown_customer(self):
        gateway = MagicMock()
        gateway.list_charges.return_value = {"data": [_charge()], "totalCount": 1}
        gateway.get_customer.side_effect = GatewayError("not found", status_code=404)

        with patch(f"{ROUTES}._get_gateway", return_value=gateway):
            resp = _client().get("/invoices")

        assert resp.json()["items"][0]["customer_name"] == "Desconhecido"

    def test_gateway_down(self):
        gateway = MagicMock()
        gateway.list_charges.side_effect = GatewayError("Asaas API unreachable: timeout")
        with patch(f"{ROUTES}._get_gateway", return_value=gateway):
            resp = _client().get("/invoices")
        assert resp.status_code == 502

    def test_not_configured(self):
        with patch(f"{ROUTES}._get_gateway", side_effect=GatewayError("Asaas access token not configured")):
            resp = _client().get("/invoices")
        assert resp.status_code == 502
        assert resp.json()["detail"] == "Asaas access token not configured"

    def test_driver_forbidden(self):
        assert _client("driver").get("/invoices").status_code == 403


class TestInvoiceActions:
    def test_confirm_cash(self):
        gateway = MagicMock()
        gateway.confirm_cash_receipt.return_value = {"id": "pay_1", "status": "RECEIVED_IN_CASH"}
        with patch(f"{ROUTES}._get_gateway", return_value=gateway):
            resp = _client().post("/invoices/pay_1/confirm-cash", json={"value": "75.5"})

        assert resp.status_code == 200
        assert resp.json() == {"id": "pay_1", "status": "RECEIVED_IN_CASH"}
        gateway.confirm_cash_receipt.assert_called_once_with("pay_1", Decimal("75.50"))

    def test_confirm_cash_operator_forbidden(self):
        resp = _client("operator").post("/invoices/pay_1/confirm-cash", json={"value": "10"})
        assert resp.status_code == 403

    def test_refund_records_outflow(self):
        gateway = MagicMock()
        gateway.refund_charge.return_value = {
            "id": "pay_1",
            "status": "REFUNDED",
            "value": 100.0,
            "description": "Diárias de pátio - Veículo Placa ABC1D23",
        }
        cur = MagicMock()
        with patch(f"{ROUTES}._get_gateway", return_value=gateway), \
             patch(f"{ROUTES}.txn", return_value=mock_txn(cur)), \
             patch(f"{ROUTES}.insert_ledger_entry") as mock_ledger:
            resp = _client().post("/invoices/pay_1/refund")

        assert resp.status_code == 200
        assert resp.json()["status"] == "REFUNDED"
        kwargs = mock_ledger.call_args.kwargs
        assert kwargs["kind"] == "outflow"
        assert kwargs["amount"] == Decimal("100.00")
        assert kwargs["gateway_charge_id"] == "pay_1"
        assert kwargs["description"].startswith("Estorno - ")

    def test_refund_ledger_failure_asks_for_reconciliation(self):
        gateway = MagicMock()
        gateway.refund_charge.return_value = {"id": "pay_1", "status": "REFUNDED", "value": 100.0}
        with patch(f"{ROUTES}._get_gateway", return_value=gateway), \
             patch(f"{ROUTES}.txn", return_value=mock_txn()), \
             patch(f"{ROUTES}.insert_ledger_entry", side_effect=RuntimeError("db down")), \
             patch(f"{ROUTES}.logger") as mock_logger:
            resp = _client().post("/invoices/pay_1/refund")

        assert resp.status_code == 500
        assert "pay_1" in resp.json()["detail"]
        assert "reconcile" in resp.json()["detail"]
        gateway.refund_charge.assert_called_once_with("pay_1")
        mock_logger.error.assert_called_once()
        fields = mock_logger.error.call_args.kwargs["extra"]["extra_fields"]
        assert fields["charge_id"] == "pay_1"

    def test_refund_failure_records_nothing(self):
        gateway = MagicMock()
        gateway.refund_charge.side_effect = GatewayError("Cobrança não pode ser estornada", 400)
        with patch(f"{ROUTES}._get_gateway", return_value=gateway), \
             patch(f"{ROUTES}.insert_ledger_entry") as mock_ledger:
            resp = _client().post("/invoices/pay_1/refund")

        assert resp.status_code == 502
        assert resp.json()["detail"] == "Cobrança não pode ser estornada"
        mock_ledger.assert_not_called()

    def test_cancel(self):
        gateway = MagicMock()
        gateway.cancel_charge.return_value = {"deleted": True}
        with patch(f"{ROUTES}._get_gateway", return_value=gateway):
            resp = _client().post("/invoices/pay_1/cancel")

        assert resp.status_code == 200
        assert resp.json() == {"id": "pay_1", "status": "CANCELLED"}

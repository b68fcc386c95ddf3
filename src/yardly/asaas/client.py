"""Thin wrapper around the Asaas v3 REST API.

Purpose:
- Encapsulate gateway calls so domain code never builds Asaas URLs/bodies.
- Configuration (credential, environment) is injected at construction.
- Never log full gateway payloads (only IDs, statuses, correlation metadata).
"""

from __future__ import annotations

import os
import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from urllib.parse import quote, urlencode

import requests

from yardly.asaas.models import BillingType, ChargeStatus, ExternalCharge, PixQrCode
from yardly.infra.gateway_settings import AsaasConfig
from yardly.infra.time import utc_now
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

logger = get_logger(__name__)

PRODUCTION_BASE_URL = "https://www.asaas.com/api/v3"
SANDBOX_BASE_URL = "https://sandbox.asaas.com/api/v3"

HTTP_TIMEOUT = int(os.environ.get("ASAAS_HTTP_TIMEOUT", "30"))

# The gateway rejects empty tax id / phone; these keep the payer valid
PLACEHOLDER_DOCUMENT = "00000000000"

_NON_DIGITS = re.compile(r"\D")


class GatewayError(Exception):
    """Any failure talking to the payment gateway.

    The message is human readable (gateway-supplied when available).
    """

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _digits(value: str | None) -> str:
    return _NON_DIGITS.sub("", value or "")


def _money(value: Decimal) -> float:
    # Asaas takes JSON numbers; amounts are already 2-place Decimals
    return float(value)


class AsaasClient:
    """Request wrapper for the Asaas billing API.

    Usage:
        client = AsaasClient(get_asaas_config())
        customer_id = client.get_or_create_customer("Maria", "123.456.789-09", "")
        charge = client.create_charge(
            customer_id=customer_id,
            amount=Decimal("100.00"),
            billing_type=BillingType.PIX,
            description="Diárias de pátio - Placa ABC1D23",
        )
        qr = client.get_pix_qr_code(charge.id)
    """

    def __init__(
        self,
        config: AsaasConfig,
        *,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the client.

        Raises:
            GatewayError: If the config carries no API key.
        """
        if not config.api_key:
            raise GatewayError("Asaas access token not configured")
        self._config = config
        self._session = session or requests.Session()

    @property
    def base_url(self) -> str:
        if self._config.environment == "production":
            return PRODUCTION_BASE_URL
        return SANDBOX_BASE_URL

    def _build_url(self, endpoint: str, params: dict[str, Any] | None) -> str:
        url = f"{self.base_url}{endpoint}"
        if params:
            query = urlencode({k: v for k, v in params.items() if v is not None})
            if query:
                url = f"{url}?{query}"
        if self._config.relay_url:
            # The relay expects the complete, encoded target URL
            return f"{self._config.relay_url}{quote(url, safe='')}"
        return url

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = self._build_url(endpoint, params)
        headers = {
            "access_token": self._config.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            response = self._session.request(
                method,
                url,
                headers=headers,
                json=body,
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error(
                "asaas request failed",
                extra={
                    "extra_fields": safe_log_context(
                        method=method, endpoint=endpoint, error=type(exc).__name__
                    )
                },
            )
            raise GatewayError(f"Asaas API unreachable: {exc}") from exc

        if not response.ok:
            message = _error_message(response)
            logger.warning(
                "asaas request rejected",
                extra={
                    "extra_fields": safe_log_context(
                        method=method,
                        endpoint=endpoint,
                        status_code=response.status_code,
                    )
                },
            )
            raise GatewayError(message, status_code=response.status_code)

        # DELETE sometimes answers 200 with an empty body
        if method == "DELETE":
            return {"deleted": True}

        return response.json()

    # ── Customers ────────────────────────────────────────

    def get_customer(self, customer_id: str) -> dict[str, Any]:
        return self._request("GET", f"/customers/{customer_id}")

    def find_customer(self, tax_id: str | None) -> str | None:
        """Return the id of an existing customer with this CPF/CNPJ, if any."""
        document = _digits(tax_id)
        if not document:
            return None
        result = self._request("GET", "/customers", params={"cpfCnpj": document})
        customers = result.get("data") or []
        return customers[0]["id"] if customers else None

    def create_customer(
        self,
        name: str,
        tax_id: str | None,
        mobile_phone: str | None,
    ) -> str:
        """Create a payer; missing documents are replaced by placeholders."""
        result = self._request(
            "POST",
            "/customers",
            body={
                "name": name or "Proprietário não informado",
                "cpfCnpj": _digits(tax_id) or PLACEHOLDER_DOCUMENT,
                "mobilePhone": _digits(mobile_phone) or PLACEHOLDER_DOCUMENT,
            },
        )
        logger.info(
            "asaas customer created",
            extra={"extra_fields": safe_log_context(customer_id=result["id"])},
        )
        return result["id"]

    def get_or_create_customer(
        self,
        name: str,
        tax_id: str | None,
        mobile_phone: str | None,
    ) -> str:
        """Idempotent payer registration keyed by the owner's tax id."""
        existing = self.find_customer(tax_id)
        if existing:
            logger.info(
                "asaas customer reused",
                extra={"extra_fields": safe_log_context(customer_id=existing)},
            )
            return existing
        return self.create_customer(name, tax_id, mobile_phone)

    # ── Charges ──────────────────────────────────────────

    def create_charge(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        billing_type: BillingType,
        description: str,
        external_reference: str | None = None,
        due_date: date | None = None,
    ) -> ExternalCharge:
        """Create a PIX or boleto charge, due tomorrow unless told otherwise."""
        body: dict[str, Any] = {
            "customer": customer_id,
            "billingType": billing_type.value,
            "value": _money(amount),
            "dueDate": (due_date or utc_now().date() + timedelta(days=1)).isoformat(),
            "description": description,
        }
        if external_reference:
            body["externalReference"] = external_reference

        charge = ExternalCharge.from_api(self._request("POST", "/payments", body=body))

        logger.info(
            "asaas charge created",
            extra={
                "extra_fields": safe_log_context(
                    charge_id=charge.id,
                    billing_type=billing_type.value,
                    status=charge.status.value,
                )
            },
        )
        return charge

    def find_charge_by_reference(self, external_reference: str) -> ExternalCharge | None:
        result = self._request(
            "GET", "/payments", params={"externalReference": external_reference}
        )
        charges = result.get("data") or []
        if not charges:
            return None
        return ExternalCharge.from_api(charges[0])

    def get_charge(self, charge_id: str) -> ExternalCharge:
        return ExternalCharge.from_api(self._request("GET", f"/payments/{charge_id}"))

    def get_pix_qr_code(self, charge_id: str) -> PixQrCode:
        return PixQrCode.from_api(self._request("GET", f"/payments/{charge_id}/pixQrCode"))

    def get_charge_status(self, charge_id: str) -> ChargeStatus:
        result = self._request("GET", f"/payments/{charge_id}")
        return ChargeStatus(result.get("status"))

    # ── Administrative (invoice management) ──────────────

    def list_charges(
        self,
        *,
        status: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> dict[str, Any]:
        return self._request(
            "GET",
            "/payments",
            params={"status": status or None, "offset": offset, "limit": limit},
        )

    def confirm_cash_receipt(self, charge_id: str, amount: Decimal) -> dict[str, Any]:
        return self._request(
            "POST",
            f"/payments/{charge_id}/receiveInCash",
            body={"paymentDate": utc_now().date().isoformat(), "value": _money(amount)},
        )

    def refund_charge(self, charge_id: str) -> dict[str, Any]:
        return self._request("POST", f"/payments/{charge_id}/refund")

    def cancel_charge(self, charge_id: str) -> dict[str, Any]:
        return self._request("DELETE", f"/payments/{charge_id}")


def _error_message(response: requests.Response) -> str:
    """First gateway-supplied error description, or a generic HTTP message."""
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    errors = payload.get("errors") if isinstance(payload, dict) else None
    if errors and isinstance(errors, list) and errors[0].get("description"):
        return errors[0]["description"]
    return f"Asaas API error ({response.status_code})"

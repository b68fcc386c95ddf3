"""Invoice management endpoints - administrative gateway operations.

Lists charges straight from the gateway and exposes the manual actions
(cash receipt, refund, cancel). Refunds are mirrored as ledger outflows.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from yardly.api.auth import CurrentUser
from yardly.api.rbac import require_role
from yardly.asaas.client import AsaasClient, GatewayError
from yardly.asaas.models import ChargeStatus
from yardly.domain.billing import to_money
from yardly.infra.db import txn
from yardly.infra.gateway_settings import get_asaas_config
from yardly.infra.repositories.ledger_repository import insert_ledger_entry
from yardly.infra.time import utc_now
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

router = APIRouter(prefix="/invoices", tags=["invoices"])

logger = get_logger(__name__)

_PLATE_PATTERN = re.compile(r"Placa\s+([A-Z0-9-]{7,8})", re.IGNORECASE)

_UNKNOWN_CUSTOMER = "Desconhecido"


def _get_gateway() -> AsaasClient:
    """Get gateway client (allows override in tests)."""
    return AsaasClient(get_asaas_config())


class CashReceiptRequest(BaseModel):
    value: Decimal = Field(..., gt=0)


def _plate_from_description(description: str | None) -> str | None:
    match = _PLATE_PATTERN.search(description or "")
    return match.group(1).upper() if match else None


def _customer_names(gateway: AsaasClient, customer_ids: set[str]) -> dict[str, str]:
    names: dict[str, str] = {}
    for customer_id in customer_ids:
        try:
            names[customer_id] = gateway.get_customer(customer_id).get("name") or _UNKNOWN_CUSTOMER
        except GatewayError:
            names[customer_id] = _UNKNOWN_CUSTOMER
    return names


def _invoice_view(charge: dict[str, Any], names: dict[str, str]) -> dict[str, Any]:
    return {
        "id": charge["id"],
        "customer_id": charge.get("customer"),
        "customer_name": names.get(charge.get("customer") or "", _UNKNOWN_CUSTOMER),
        "description": charge.get("description"),
        "plate": _plate_from_description(charge.get("description")),
        "billing_type": charge.get("billingType"),
        "value": str(to_money(charge.get("value") or 0)),
        "status": ChargeStatus(charge.get("status")).value,
        "due_date": charge.get("dueDate"),
        "invoice_url": charge.get("invoiceUrl"),
        "bank_slip_url": charge.get("bankSlipUrl"),
    }


@router.get("")
def list_invoices(
    status: str | None = Query(None, description="Gateway status filter"),
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    gateway = _get_gateway_or_502()
    try:
        page = gateway.list_charges(status=status, offset=offset, limit=limit)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    charges = page.get("data") or []
    names = _customer_names(
        gateway, {c["customer"] for c in charges if c.get("customer")}
    )

    return {
        "total": page.get("totalCount", len(charges)),
        "has_more": bool(page.get("hasMore")),
        "items": [_invoice_view(c, names) for c in charges],
    }


@router.post("/{charge_id}/confirm-cash")
def confirm_cash(
    body: CashReceiptRequest,
    charge_id: str = Path(..., description="Gateway charge id"),
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    """Mark a charge as received in cash at the gateway."""
    gateway = _get_gateway_or_502()
    try:
        result = gateway.confirm_cash_receipt(charge_id, to_money(body.value))
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    _log_action("confirm_cash", charge_id, user)
    return {"id": charge_id, "status": ChargeStatus(result.get("status")).value}


@router.post("/{charge_id}/refund")
def refund(
    charge_id: str = Path(..., description="Gateway charge id"),
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    """Refund a paid charge and record the outflow."""
    gateway = _get_gateway_or_502()
    try:
        result = gateway.refund_charge(charge_id)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    amount = to_money(result.get("value") or 0)
    if amount > 0:
        # The gateway already paid out: a failed write needs manual reconciliation
        try:
            with txn() as cur:
                insert_ledger_entry(
                    cur,
                    kind="outflow",
                    amount=amount,
                    description=f"Estorno - {result.get('description') or charge_id}",
                    occurred_at=utc_now(),
                    gateway_charge_id=charge_id,
                )
        except Exception as exc:
            logger.error(
                "refund applied but ledger outflow not recorded",
                extra={
                    "extra_fields": safe_log_context(
                        charge_id=charge_id,
                        amount=amount,
                        user_id=user.id,
                        error=type(exc).__name__,
                    )
                },
            )
            raise HTTPException(
                status_code=500,
                detail=(
                    f"Refund of {charge_id} was applied at the gateway but the "
                    "ledger outflow was not recorded; reconcile manually"
                ),
            )

    _log_action("refund", charge_id, user)
    return {"id": charge_id, "status": ChargeStatus(result.get("status")).value}


@router.post("/{charge_id}/cancel")
def cancel(
    charge_id: str = Path(..., description="Gateway charge id"),
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    """Delete (cancel) an open charge at the gateway."""
    gateway = _get_gateway_or_502()
    try:
        gateway.cancel_charge(charge_id)
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    _log_action("cancel", charge_id, user)
    return {"id": charge_id, "status": ChargeStatus.CANCELLED.value}


def _get_gateway_or_502() -> AsaasClient:
    try:
        return _get_gateway()
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


def _log_action(action: str, charge_id: str, user: CurrentUser) -> None:
    logger.info(
        "invoice action applied",
        extra={
            "extra_fields": safe_log_context(
                action=action,
                charge_id=charge_id,
                user_id=user.id,
            )
        },
    )

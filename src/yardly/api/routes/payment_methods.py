"""Payment method endpoints - list, create, toggle."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from yardly.api.auth import CurrentUser
from yardly.api.rbac import require_role
from yardly.infra.db import txn
from yardly.infra.repositories.payment_methods_repository import (
    insert_payment_method,
    list_payment_methods,
    toggle_payment_method,
)
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

router = APIRouter(prefix="/payment-methods", tags=["payment-methods"])

logger = get_logger(__name__)


class PaymentMethodCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)


@router.get("")
def list_methods(
    active_only: bool = Query(False, description="Only methods offered at checkout"),
    user: CurrentUser = Depends(require_role("operator")),
) -> list[dict]:
    with txn() as cur:
        return list_payment_methods(cur, active_only=active_only)


@router.post("")
def create_method(
    body: PaymentMethodCreate,
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name is required")

    with txn() as cur:
        method = insert_payment_method(cur, name=name)
    if method is None:
        raise HTTPException(status_code=409, detail="Payment method already exists")

    logger.info(
        "payment method created",
        extra={"extra_fields": safe_log_context(method_id=method["id"], user_id=user.id)},
    )
    return method


@router.post("/{method_id}/toggle")
def toggle_method(
    method_id: str = Path(..., description="Payment method UUID"),
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    with txn() as cur:
        method = toggle_payment_method(cur, method_id=method_id)
    if method is None:
        raise HTTPException(status_code=404, detail="Payment method not found")
    return method

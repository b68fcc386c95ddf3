"""Yard check-in / checkout endpoints.

Manual methods are finalized in the request. Automated methods (pix,
boleto) open a PaymentConfirmation session that the dashboard polls through
GET /checkout/payments/{session_id}.
"""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Path
from pydantic import BaseModel, Field

from yardly.api.auth import CurrentUser
from yardly.api.rbac import require_role
from yardly.asaas.client import AsaasClient, GatewayError
from yardly.domain.checkin import (
    InvalidDailyRateError,
    StayAlreadyOpenError,
    VehicleNotFoundError,
    check_in_vehicle,
)
from yardly.domain.checkout import (
    CheckoutValidationError,
    CommitError,
    StayAlreadyClosedError,
    StayNotFoundError,
    finalize,
    is_automated_method,
    load_open_stay,
    quote,
)
from yardly.domain.payment_confirmation import (
    ConfirmationRegistry,
    ConfirmationState,
    InvalidTransitionError,
    PaymentConfirmation,
)
from yardly.infra.db import txn
from yardly.infra.gateway_settings import get_asaas_config
from yardly.infra.repositories.payment_methods_repository import get_active_payment_method
from yardly.infra.time import utc_now
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

router = APIRouter(tags=["checkout"])

logger = get_logger(__name__)

# Live confirmation sessions (singleton, per process)
_registry = ConfirmationRegistry()


def _get_registry() -> ConfirmationRegistry:
    """Get session registry (allows override in tests)."""
    return _registry


def _get_gateway() -> AsaasClient:
    """Gateway client with config loaded once for the session."""
    return AsaasClient(get_asaas_config())


# ── Request schemas ──────────────────────────────────────


class CheckInRequest(BaseModel):
    daily_rate: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)


class CheckoutRequest(BaseModel):
    payment_method: str = Field(..., min_length=1)


# ── Helpers ──────────────────────────────────────────────


def _resolve_method(cur, name: str) -> str:
    method = get_active_payment_method(cur, name)
    if method is None:
        raise HTTPException(status_code=422, detail="Payment method not available")
    return method["name"]


def _get_session(session_id: str) -> PaymentConfirmation:
    registry = _get_registry()
    session = registry.get(session_id)
    if session is None:
        if registry.snapshot(session_id) is not None:
            raise HTTPException(status_code=409, detail="Payment already committed")
        raise HTTPException(status_code=404, detail="Payment session not found")
    return session


def _release_stale_session(stay_id: str) -> None:
    """Drop an idle or failed session of the stay; refuse while a payment is live."""
    registry = _get_registry()
    existing = registry.active_for_stay(stay_id)
    if existing is None:
        return
    in_progress = HTTPException(
        status_code=409,
        detail=f"A payment is already in progress for this stay ({existing.id})",
    )
    if existing.state not in (ConfirmationState.IDLE, ConfirmationState.FAILED):
        raise in_progress
    try:
        registry.discard(existing.id)
    except InvalidTransitionError:
        raise in_progress


# ── Check-in ─────────────────────────────────────────────


@router.post("/vehicles/{vehicle_id}/check-in")
def check_in(
    body: CheckInRequest,
    vehicle_id: str = Path(..., description="Vehicle UUID"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Open a stay for a vehicle arriving at the yard."""
    with txn() as cur:
        try:
            stay = check_in_vehicle(
                cur, vehicle_id=vehicle_id, daily_rate=body.daily_rate, now=utc_now()
            )
        except VehicleNotFoundError:
            raise HTTPException(status_code=404, detail="Vehicle not found")
        except StayAlreadyOpenError:
            raise HTTPException(status_code=409, detail="Vehicle is already in the yard")
        except InvalidDailyRateError as exc:
            raise HTTPException(status_code=422, detail=str(exc))

    logger.info(
        "vehicle checked in",
        extra={
            "extra_fields": safe_log_context(
                vehicle_id=vehicle_id,
                stay_id=stay["id"],
                user_id=user.id,
            )
        },
    )

    return {
        "id": stay["id"],
        "vehicle_id": stay["vehicle_id"],
        "entry_at": stay["entry_at"].isoformat(),
        "daily_rate": str(stay["daily_rate"]),
    }


# ── Checkout ─────────────────────────────────────────────


@router.get("/vehicles/{vehicle_id}/checkout/quote")
def get_checkout_quote(
    vehicle_id: str = Path(..., description="Vehicle UUID"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Amount due if the vehicle left now (recomputed on every call)."""
    with txn() as cur:
        try:
            stay = load_open_stay(cur, vehicle_id)
        except StayNotFoundError:
            raise HTTPException(
                status_code=404, detail="No open stay found for this vehicle"
            )

    return {"stay": stay.to_dict(), "quote": quote(stay, utc_now()).to_dict()}


@router.post("/vehicles/{vehicle_id}/checkout")
def checkout_manual(
    body: CheckoutRequest,
    vehicle_id: str = Path(..., description="Vehicle UUID"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Finalize a checkout settled outside the gateway (cash, card, ...)."""
    if is_automated_method(body.payment_method):
        raise HTTPException(
            status_code=409,
            detail="Automated payment methods must go through the payment flow",
        )

    now = utc_now()
    with txn() as cur:
        try:
            stay = load_open_stay(cur, vehicle_id)
            _release_stale_session(stay.id)
            method = _resolve_method(cur, body.payment_method)
            due = quote(stay, now)
            result = finalize(
                cur,
                stay=stay,
                amount_due=due.amount_due,
                payment_method=method,
                now=now,
            )
        except StayNotFoundError:
            raise HTTPException(
                status_code=404, detail="No open stay found for this vehicle"
            )
        except CheckoutValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc))
        except StayAlreadyClosedError:
            raise HTTPException(status_code=409, detail="Stay already checked out")
        except CommitError as exc:
            raise HTTPException(status_code=500, detail=str(exc))

    logger.info(
        "checkout finalized",
        extra={
            "extra_fields": safe_log_context(
                vehicle_id=vehicle_id,
                stay_id=result.stay.id,
                amount=result.stay.total_paid,
                payment_method=method,
                user_id=user.id,
            )
        },
    )

    return {
        "stay": result.stay.to_dict(),
        "ledger_entry_id": result.ledger_entry["id"],
        "billable_days": due.billable_days,
    }


# ── Automated payment (pix / boleto) ─────────────────────


@router.post("/vehicles/{vehicle_id}/checkout/payments")
def start_payment(
    body: CheckoutRequest,
    vehicle_id: str = Path(..., description="Vehicle UUID"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Create a gateway charge for the amount due and start confirming it."""
    if not is_automated_method(body.payment_method):
        raise HTTPException(
            status_code=422,
            detail="Payment method is not settled through the gateway",
        )

    with txn() as cur:
        try:
            stay = load_open_stay(cur, vehicle_id)
        except StayNotFoundError:
            raise HTTPException(
                status_code=404, detail="No open stay found for this vehicle"
            )
        method = _resolve_method(cur, body.payment_method)

    due = quote(stay, utc_now())
    registry = _get_registry()
    _release_stale_session(stay.id)

    try:
        session = PaymentConfirmation(
            stay=stay,
            amount_due=due.amount_due,
            payment_method=method,
            gateway=_get_gateway(),
        )
        registry.add(session)
    except CheckoutValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    try:
        session.start()
    except GatewayError as exc:
        # Session stays registered as FAILED; the client retries through it
        raise HTTPException(
            status_code=502, detail={"message": str(exc), "session_id": session.id}
        )

    logger.info(
        "payment session started",
        extra={
            "extra_fields": safe_log_context(
                session_id=session.id,
                stay_id=stay.id,
                payment_method=method,
                user_id=user.id,
            )
        },
    )

    return session.to_dict()


@router.get("/checkout/payments/{session_id}")
def get_payment(
    session_id: str = Path(..., description="Payment session id"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Current state of a payment session (polled by the dashboard)."""
    snapshot = _get_registry().snapshot(session_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Payment session not found")
    return snapshot


@router.post("/checkout/payments/{session_id}/retry")
def retry_payment(
    session_id: str = Path(..., description="Payment session id"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Retry charge creation after a gateway failure (same external reference)."""
    session = _get_session(session_id)
    try:
        session.start()
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except GatewayError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return session.to_dict()


@router.post("/checkout/payments/{session_id}/cancel")
def cancel_payment(
    session_id: str = Path(..., description="Payment session id"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Stop waiting for the payment. The charge stays open at the gateway."""
    session = _get_session(session_id)
    try:
        session.cancel()
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return session.to_dict()


@router.post("/checkout/payments/{session_id}/commit")
def commit_payment(
    session_id: str = Path(..., description="Payment session id"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    """Retry the checkout commit of a confirmed payment (never re-charges)."""
    session = _get_session(session_id)
    try:
        session.commit()
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except (CommitError, CheckoutValidationError) as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return session.to_dict()

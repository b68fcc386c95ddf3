"""Checkout workflow - from an open stay to a paid, closed one.

Rules:
- Amounts are Decimal with 2 places; the quote is recomputed on every call.
- finalize() is the single commit point: stay closed, ledger inflow
  appended and vehicle finalized in one transaction.
- Automated methods (pix, boleto) never reach finalize() directly; they go
  through PaymentConfirmation first.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from yardly.domain.billing import billable_days, compute_amount_due, to_money
from yardly.infra.db import txn
from yardly.infra.repositories.ledger_repository import insert_ledger_entry
from yardly.infra.repositories.stays_repository import close_stay, get_open_stay
from yardly.infra.repositories.vehicles_repository import update_vehicle_status
from yardly.infra.time import utc_now
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

logger = get_logger(__name__)

AUTOMATED_METHODS = frozenset({"pix", "boleto"})


# ── Exceptions ───────────────────────────────────────────


class StayNotFoundError(Exception):
    """No open stay exists for the vehicle."""


class CheckoutValidationError(Exception):
    """Amount or payment method is missing/invalid."""


class CommitError(Exception):
    """The final checkout write failed (payment may already be confirmed)."""


class StayAlreadyClosedError(CommitError):
    """The stay was closed by another checkout before this one committed."""


# ── Types ────────────────────────────────────────────────


@dataclass(frozen=True)
class Stay:
    id: str
    vehicle_id: str
    entry_at: datetime
    daily_rate: Decimal
    plate: str | None = None
    exit_at: datetime | None = None
    total_paid: Decimal | None = None
    payment_method: str | None = None
    owner_name: str | None = None
    owner_phone: str | None = None
    owner_tax_id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Stay:
        return cls(
            id=row["id"],
            vehicle_id=row["vehicle_id"],
            entry_at=row["entry_at"],
            daily_rate=to_money(row["daily_rate"]),
            plate=row.get("plate"),
            exit_at=row.get("exit_at"),
            total_paid=row.get("total_paid"),
            payment_method=row.get("payment_method"),
            owner_name=row.get("owner_name"),
            owner_phone=row.get("owner_phone"),
            owner_tax_id=row.get("owner_tax_id"),
        )

    @property
    def is_open(self) -> bool:
        return self.exit_at is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "vehicle_id": self.vehicle_id,
            "plate": self.plate,
            "entry_at": self.entry_at.isoformat(),
            "exit_at": self.exit_at.isoformat() if self.exit_at else None,
            "daily_rate": str(self.daily_rate),
            "total_paid": str(self.total_paid) if self.total_paid is not None else None,
            "payment_method": self.payment_method,
        }


@dataclass(frozen=True)
class Quote:
    amount_due: Decimal
    billable_days: int
    daily_rate: Decimal
    entry_at: datetime
    quoted_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "amount_due": str(self.amount_due),
            "billable_days": self.billable_days,
            "daily_rate": str(self.daily_rate),
            "entry_at": self.entry_at.isoformat(),
            "quoted_at": self.quoted_at.isoformat(),
        }


@dataclass(frozen=True)
class CheckoutResult:
    stay: Stay
    ledger_entry: dict[str, Any]


# ── Service functions ────────────────────────────────────


def is_automated_method(name: str | None) -> bool:
    """True for payment methods settled through the gateway (pix, boleto)."""
    return bool(name) and name.strip().lower() in AUTOMATED_METHODS


def load_open_stay(cur: PgCursor, vehicle_id: str) -> Stay:
    """Load the open stay of a vehicle.

    Raises:
        StayNotFoundError: Vehicle has no open stay.
    """
    row = get_open_stay(cur, vehicle_id)
    if row is None:
        raise StayNotFoundError(f"No open stay for vehicle {vehicle_id}")
    return Stay.from_row(row)


def quote(stay: Stay, now: datetime) -> Quote:
    """Amount due if the vehicle left the yard at *now*."""
    return Quote(
        amount_due=compute_amount_due(stay.entry_at, now, stay.daily_rate),
        billable_days=billable_days(stay.entry_at, now),
        daily_rate=stay.daily_rate,
        entry_at=stay.entry_at,
        quoted_at=now,
    )


def ledger_description(stay: Stay) -> str:
    return f"Recebimento diárias - Veículo Placa {stay.plate or 'N/A'}"


def finalize(
    cur: PgCursor,
    *,
    stay: Stay,
    amount_due: Decimal,
    payment_method: str,
    now: datetime,
    gateway_charge_id: str | None = None,
) -> CheckoutResult:
    """Close the stay, append the ledger inflow and finalize the vehicle.

    Args:
        cur: Database cursor (caller manages transaction).
        stay: The open stay being checked out.
        amount_due: Amount paid (as quoted / as charged at the gateway).
        payment_method: Payment method name, persisted on the stay.
        now: Checkout instant (becomes exit_at and the ledger timestamp).
        gateway_charge_id: Gateway charge that settled the stay, if any.

    Raises:
        CheckoutValidationError: amount_due <= 0 or empty payment_method.
        StayAlreadyClosedError: The stay is no longer open.
        CommitError: The vehicle row is missing.
    """
    if amount_due is None or to_money(amount_due) <= 0:
        raise CheckoutValidationError("Amount due must be greater than zero")
    if not payment_method or not payment_method.strip():
        raise CheckoutValidationError("Payment method is required")

    amount = to_money(amount_due)
    method = payment_method.strip()

    # 1. Close the stay, only if still open
    closed = close_stay(
        cur,
        stay_id=stay.id,
        exit_at=now,
        total_paid=amount,
        payment_method=method,
    )
    if closed is None:
        raise StayAlreadyClosedError(f"Stay {stay.id} is already closed")

    # 2. Ledger inflow
    entry = insert_ledger_entry(
        cur,
        kind="inflow",
        amount=amount,
        description=ledger_description(stay),
        occurred_at=now,
        stay_id=stay.id,
        gateway_charge_id=gateway_charge_id,
    )

    # 3. Vehicle leaves the yard
    if not update_vehicle_status(cur, vehicle_id=stay.vehicle_id, status="finalized"):
        raise CommitError(f"Vehicle {stay.vehicle_id} not found")

    updated = Stay(
        id=stay.id,
        vehicle_id=stay.vehicle_id,
        entry_at=stay.entry_at,
        daily_rate=stay.daily_rate,
        plate=stay.plate,
        exit_at=closed["exit_at"],
        total_paid=to_money(closed["total_paid"]),
        payment_method=closed["payment_method"],
        owner_name=stay.owner_name,
        owner_phone=stay.owner_phone,
        owner_tax_id=stay.owner_tax_id,
    )
    return CheckoutResult(stay=updated, ledger_entry=entry)


def commit_checkout(
    stay: Stay,
    amount_due: Decimal,
    payment_method: str,
    now: datetime | None = None,
    *,
    gateway_charge_id: str | None = None,
    conn: PgConnection | None = None,
) -> CheckoutResult:
    """Run finalize() in its own transaction.

    Validation errors propagate unchanged; any other failure is rolled back
    and re-raised as CommitError so callers can keep the payment context
    and retry.
    """
    now = now or utc_now()
    try:
        with txn(conn) as cur:
            result = finalize(
                cur,
                stay=stay,
                amount_due=amount_due,
                payment_method=payment_method,
                now=now,
                gateway_charge_id=gateway_charge_id,
            )
    except (CheckoutValidationError, CommitError):
        raise
    except Exception as exc:
        logger.error(
            "checkout commit failed",
            extra={
                "extra_fields": safe_log_context(
                    stay_id=stay.id,
                    gateway_charge_id=gateway_charge_id,
                    error=type(exc).__name__,
                )
            },
        )
        raise CommitError("Failed to record checkout, please retry") from exc

    logger.info(
        "checkout finalized",
        extra={
            "extra_fields": safe_log_context(
                stay_id=stay.id,
                ledger_entry_id=result.ledger_entry["id"],
                amount=result.stay.total_paid,
                payment_method=result.stay.payment_method,
                gateway_charge_id=gateway_charge_id,
            )
        },
    )
    return result

"""Shared test helper functions for Yardly tests.

Plain functions and fakes (not fixtures), importable from any test module.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import jwt

from yardly.asaas.client import GatewayError
from yardly.asaas.models import BillingType, ChargeStatus, ExternalCharge, PixQrCode
from yardly.domain.checkout import CheckoutResult, Stay

TEST_JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!!"


def _create_token(
    sub: str = "user-123",
    secret: str = TEST_JWT_SECRET,
    aud: str = "authenticated",
    exp: int | None = None,
) -> str:
    """Create an HS256 access token like the ones the backend issues."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
        "role": "authenticated",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@contextmanager
def mock_txn(cursor=None):
    """Stand-in for infra.db.txn that yields a MagicMock cursor."""
    yield cursor if cursor is not None else MagicMock()


def make_stay(
    *,
    stay_id: str = "stay-1",
    vehicle_id: str = "veh-1",
    entry_at: datetime | None = None,
    daily_rate: str = "50.00",
    plate: str = "ABC1D23",
) -> Stay:
    return Stay(
        id=stay_id,
        vehicle_id=vehicle_id,
        entry_at=entry_at or datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
        daily_rate=Decimal(daily_rate),
        plate=plate,
        owner_name="Maria Souza",
        owner_phone="(11) 98888-7777",
        owner_tax_id="123.456.789-09",
    )


def make_result(stay: Stay, ledger_id: str = "ledger-1") -> CheckoutResult:
    return CheckoutResult(stay=stay, ledger_entry={"id": ledger_id, "kind": "inflow"})


class FakeGateway:
    """In-memory AsaasClient double.

    statuses: sequence of ChargeStatus (or GatewayError instances to raise)
    returned by successive get_charge_status calls; the last one repeats.
    """

    def __init__(self, statuses=None, create_error: GatewayError | None = None):
        self.statuses = list(statuses or [ChargeStatus.PENDING])
        self.create_error = create_error
        self.customers: list[tuple] = []
        self.charges: dict[str, ExternalCharge] = {}
        self.by_reference: dict[str, ExternalCharge] = {}
        self.status_calls: list[str] = []
        self.create_calls = 0
        self._lock = threading.Lock()

    def get_or_create_customer(self, name, tax_id, mobile_phone):
        self.customers.append((name, tax_id, mobile_phone))
        return "cus_000001"

    def find_charge_by_reference(self, external_reference):
        return self.by_reference.get(external_reference)

    def create_charge(self, *, customer_id, amount, billing_type, description, external_reference=None):
        with self._lock:
            self.create_calls += 1
            charge_id = f"pay_{self.create_calls:06d}"
        charge = ExternalCharge(
            id=charge_id,
            amount=amount,
            billing_type=billing_type,
            status=ChargeStatus.PENDING,
            customer_id=customer_id,
            description=description,
            bank_slip_url=(
                f"https://sandbox.asaas.com/b/pdf/{charge_id}"
                if billing_type is BillingType.BOLETO
                else None
            ),
            external_reference=external_reference,
        )
        self.charges[charge_id] = charge
        if external_reference:
            self.by_reference[external_reference] = charge
        if self.create_error is not None:
            # The charge exists at the gateway but the response was lost
            raise self.create_error
        return charge

    def get_pix_qr_code(self, charge_id):
        return PixQrCode(payload=f"00020126-{charge_id}", encoded_image=f"img-{charge_id}")

    def get_charge_status(self, charge_id):
        with self._lock:
            self.status_calls.append(charge_id)
            index = min(len(self.status_calls), len(self.statuses)) - 1
            outcome = self.statuses[index]
        if isinstance(outcome, GatewayError):
            raise outcome
        return outcome

"""Check-in - opens the stay that checkout later bills."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from yardly.domain.billing import to_money
from yardly.infra.repositories.stays_repository import get_open_stay, insert_stay
from yardly.infra.repositories.vehicles_repository import (
    get_vehicle_for_update,
    update_vehicle_status,
)


class VehicleNotFoundError(Exception):
    pass


class InvalidDailyRateError(Exception):
    pass


class StayAlreadyOpenError(Exception):
    """The vehicle already has an open stay (at most one is allowed)."""

    def __init__(self, stay_id: str):
        self.stay_id = stay_id
        super().__init__(f"Vehicle already has open stay {stay_id}")


def check_in_vehicle(
    cur: PgCursor,
    *,
    vehicle_id: str,
    daily_rate: Decimal,
    now: datetime,
) -> dict[str, Any]:
    """Open a stay for a vehicle and move it to the yard.

    The vehicle row is locked first so two concurrent check-ins serialize
    and the second one sees the first one's open stay.

    Raises:
        InvalidDailyRateError: daily_rate <= 0.
        VehicleNotFoundError: Unknown vehicle.
        StayAlreadyOpenError: Vehicle already has an open stay.
    """
    rate = to_money(daily_rate)
    if rate <= 0:
        raise InvalidDailyRateError("Daily rate must be greater than zero")

    if get_vehicle_for_update(cur, vehicle_id) is None:
        raise VehicleNotFoundError(f"Vehicle not found: {vehicle_id}")

    existing = get_open_stay(cur, vehicle_id)
    if existing is not None:
        raise StayAlreadyOpenError(existing["id"])

    stay = insert_stay(cur, vehicle_id=vehicle_id, daily_rate=rate, entry_at=now)
    update_vehicle_status(cur, vehicle_id=vehicle_id, status="in_yard")
    return stay

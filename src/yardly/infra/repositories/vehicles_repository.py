"""Vehicles repository - status transitions only (intake lives elsewhere)."""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor

VEHICLE_STATUSES = {"awaiting_pickup", "in_transit", "in_yard", "finalized"}


def get_vehicle_for_update(cur: PgCursor, vehicle_id: str) -> dict[str, Any] | None:
    """Fetch a vehicle and lock its row until the transaction ends."""
    cur.execute(
        """
        SELECT id, plate, status
        FROM vehicles
        WHERE id = %s
        FOR UPDATE
        """,
        (vehicle_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"id": str(row[0]), "plate": row[1], "status": row[2]}


def update_vehicle_status(cur: PgCursor, *, vehicle_id: str, status: str) -> bool:
    """Set the vehicle status. Returns False if the vehicle does not exist.

    Raises:
        ValueError: If status is not in VEHICLE_STATUSES.
    """
    if status not in VEHICLE_STATUSES:
        raise ValueError(f"Invalid vehicle status: {status}")

    cur.execute(
        """
        UPDATE vehicles
        SET status = %s, updated_at = now()
        WHERE id = %s
        """,
        (status, vehicle_id),
    )
    return cur.rowcount > 0

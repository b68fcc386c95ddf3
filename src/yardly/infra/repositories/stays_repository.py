"""Stays repository - persistence for yard occupancy records.

Uses raw SQL with psycopg2 (no ORM).
A stay is open while exit_at IS NULL; a partial unique index keeps at most
one open stay per vehicle.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_STAY_COLUMNS = """
    s.id, s.vehicle_id, s.entry_at, s.exit_at, s.daily_rate,
    s.total_paid, s.payment_method, s.created_at,
    v.plate, v.owner_name, v.owner_phone, v.owner_tax_id
"""


def _row_to_stay(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "vehicle_id": str(row[1]),
        "entry_at": row[2],
        "exit_at": row[3],
        "daily_rate": row[4],
        "total_paid": row[5],
        "payment_method": row[6],
        "created_at": row[7],
        "plate": row[8],
        "owner_name": row[9],
        "owner_phone": row[10],
        "owner_tax_id": row[11],
    }


def get_open_stay(cur: PgCursor, vehicle_id: str) -> dict[str, Any] | None:
    """Get the open stay for a vehicle, joined with vehicle/owner data.

    Newest first with LIMIT 1 so that duplicated open stays (legacy data)
    still resolve to a single row.
    """
    cur.execute(
        f"""
        SELECT {_STAY_COLUMNS}
        FROM stays s
        JOIN vehicles v ON v.id = s.vehicle_id
        WHERE s.vehicle_id = %s AND s.exit_at IS NULL
        ORDER BY s.created_at DESC
        LIMIT 1
        """,
        (vehicle_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_stay(row)


def insert_stay(
    cur: PgCursor,
    *,
    vehicle_id: str,
    daily_rate: Decimal,
    entry_at: datetime,
) -> dict[str, Any]:
    """Open a stay. Returns id, vehicle_id, entry_at, daily_rate."""
    cur.execute(
        """
        INSERT INTO stays (vehicle_id, daily_rate, entry_at)
        VALUES (%s, %s, %s)
        RETURNING id, vehicle_id, entry_at, daily_rate
        """,
        (vehicle_id, daily_rate, entry_at),
    )
    row = cur.fetchone()
    return {
        "id": str(row[0]),
        "vehicle_id": str(row[1]),
        "entry_at": row[2],
        "daily_rate": row[3],
    }


def close_stay(
    cur: PgCursor,
    *,
    stay_id: str,
    exit_at: datetime,
    total_paid: Decimal,
    payment_method: str,
) -> dict[str, Any] | None:
    """Close an open stay.

    Conditional on the stay still being open, so two concurrent checkouts
    of the same stay cannot both commit.

    Returns:
        Dict with the closed stay fields, or None if the stay was not open.
    """
    cur.execute(
        """
        UPDATE stays
        SET exit_at = %s, total_paid = %s, payment_method = %s, updated_at = now()
        WHERE id = %s AND exit_at IS NULL
        RETURNING id, vehicle_id, entry_at, exit_at, daily_rate,
                  total_paid, payment_method
        """,
        (exit_at, total_paid, payment_method, stay_id),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "vehicle_id": str(row[1]),
        "entry_at": row[2],
        "exit_at": row[3],
        "daily_rate": row[4],
        "total_paid": row[5],
        "payment_method": row[6],
    }


def list_closed_stays(
    cur: PgCursor,
    *,
    exit_from: datetime,
    exit_until: datetime,
) -> list[dict[str, Any]]:
    """Closed and paid stays with exit_at in [exit_from, exit_until)."""
    cur.execute(
        """
        SELECT s.id, v.plate, s.entry_at, s.exit_at, s.total_paid, s.payment_method
        FROM stays s
        JOIN vehicles v ON v.id = s.vehicle_id
        WHERE s.exit_at IS NOT NULL
          AND s.total_paid IS NOT NULL
          AND s.exit_at >= %s
          AND s.exit_at < %s
        ORDER BY s.exit_at DESC
        """,
        (exit_from, exit_until),
    )
    return [
        {
            "id": str(r[0]),
            "plate": r[1],
            "entry_at": r[2],
            "exit_at": r[3],
            "total_paid": r[4],
            "payment_method": r[5],
        }
        for r in cur.fetchall()
    ]

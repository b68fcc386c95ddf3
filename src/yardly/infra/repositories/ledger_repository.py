"""Ledger repository - append-only financial entries.

Uses raw SQL with psycopg2 (no ORM). There is no update/delete here on
purpose: corrections are new entries (an outflow for a refund).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

VALID_KINDS = {"inflow", "outflow"}


def insert_ledger_entry(
    cur: PgCursor,
    *,
    kind: str,
    amount: Decimal,
    description: str,
    occurred_at: datetime,
    stay_id: str | None = None,
    gateway_charge_id: str | None = None,
) -> dict[str, Any]:
    """Append a ledger entry.

    Raises:
        ValueError: If kind is not in VALID_KINDS.
    """
    if kind not in VALID_KINDS:
        raise ValueError(f"Invalid ledger kind: {kind}. Must be one of {VALID_KINDS}")

    cur.execute(
        """
        INSERT INTO ledger_entries (
            kind, amount, description, occurred_at, stay_id, gateway_charge_id
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id, kind, amount, description, occurred_at,
                  stay_id, gateway_charge_id
        """,
        (kind, amount, description, occurred_at, stay_id, gateway_charge_id),
    )
    row = cur.fetchone()
    return {
        "id": str(row[0]),
        "kind": row[1],
        "amount": row[2],
        "description": row[3],
        "occurred_at": row[4],
        "stay_id": str(row[5]) if row[5] else None,
        "gateway_charge_id": row[6],
    }

"""Closings report - stays closed (and paid) within a date range."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from yardly.domain.billing import to_money
from yardly.infra.repositories.stays_repository import list_closed_stays


def closings_report(cur: PgCursor, *, start: date, end: date) -> dict[str, Any]:
    """Closed stays with exit date in [start, end] (UTC days, inclusive).

    Returns:
        Dict with the range, items (newest exit first) and total invoiced.

    Raises:
        ValueError: start is after end.
    """
    if start > end:
        raise ValueError("start must not be after end")

    exit_from = datetime.combine(start, time.min, tzinfo=timezone.utc)
    exit_until = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)

    rows = list_closed_stays(cur, exit_from=exit_from, exit_until=exit_until)

    total = sum((to_money(r["total_paid"]) for r in rows), Decimal("0.00"))
    items = [
        {
            "stay_id": r["id"],
            "plate": r["plate"] or "N/A",
            "entry_at": r["entry_at"].isoformat() if r["entry_at"] else None,
            "exit_at": r["exit_at"].isoformat(),
            "total_paid": str(to_money(r["total_paid"])),
            "payment_method": r["payment_method"],
        }
        for r in rows
    ]

    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "count": len(items),
        "total": str(total),
        "items": items,
    }

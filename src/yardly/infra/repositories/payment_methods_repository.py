"""Payment methods repository - named, toggleable payment options.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

from typing import Any

from psycopg2.extensions import cursor as PgCursor


def _row_to_method(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "name": row[1],
        "active": row[2],
        "created_at": row[3].isoformat() if hasattr(row[3], "isoformat") else str(row[3]),
    }


def list_payment_methods(cur: PgCursor, *, active_only: bool = False) -> list[dict[str, Any]]:
    """List payment methods ordered by name."""
    where = "WHERE active" if active_only else ""
    cur.execute(
        f"""
        SELECT id, name, active, created_at
        FROM payment_methods
        {where}
        ORDER BY name
        """
    )
    return [_row_to_method(r) for r in cur.fetchall()]


def get_active_payment_method(cur: PgCursor, name: str) -> dict[str, Any] | None:
    """Find an active method by name (case-insensitive)."""
    cur.execute(
        """
        SELECT id, name, active, created_at
        FROM payment_methods
        WHERE lower(name) = lower(%s) AND active
        """,
        (name.strip(),),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_method(row)


def insert_payment_method(cur: PgCursor, *, name: str) -> dict[str, Any] | None:
    """Create an (active) payment method. Returns None if the name exists."""
    cur.execute(
        """
        INSERT INTO payment_methods (name)
        VALUES (%s)
        ON CONFLICT DO NOTHING
        RETURNING id, name, active, created_at
        """,
        (name.strip(),),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_method(row)


def toggle_payment_method(cur: PgCursor, *, method_id: str) -> dict[str, Any] | None:
    """Flip the active flag. Returns None if the method does not exist."""
    cur.execute(
        """
        UPDATE payment_methods
        SET active = NOT active
        WHERE id = %s
        RETURNING id, name, active, created_at
        """,
        (method_id,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return _row_to_method(row)

"""Daily-rate billing for yard stays.

Rules:
- Past each full 24h period there is a 60 minute grace period; beyond it
  a full extra day is charged.
- The first day is always charged, however short the stay.
- A stay with no positive duration costs nothing.
- Absolute instants only, never wall-clock/local time.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from yardly.infra.time import as_utc

MS_PER_MINUTE = 60_000
MS_PER_DAY = 86_400_000
GRACE_PERIOD_MINUTES = 60

_CENTS = Decimal("0.01")


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Coerce *value* into a 2-place Decimal (floats go through str)."""
    if isinstance(value, float):
        value = str(value)
    return Decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP)


def elapsed_ms(entry_at: datetime, exit_at: datetime) -> int:
    """Milliseconds between two instants (floored)."""
    return (as_utc(exit_at) - as_utc(entry_at)) // timedelta(milliseconds=1)


def billable_days(entry_at: datetime | None, exit_at: datetime | None) -> int:
    """Number of daily rates owed for a stay from entry_at to exit_at.

    Returns 0 when a timestamp is missing or exit_at is not after entry_at.
    """
    if entry_at is None or exit_at is None:
        return 0

    diff = elapsed_ms(entry_at, exit_at)
    if diff <= 0:
        return 0

    full_days = diff // MS_PER_DAY
    remainder_minutes = (diff % MS_PER_DAY) / MS_PER_MINUTE

    days = full_days
    if remainder_minutes > GRACE_PERIOD_MINUTES:
        days += 1
    elif remainder_minutes > 0 and full_days == 0:
        days = 1

    # Any positive duration costs at least one day
    if days == 0 and diff > 0:
        days = 1

    return days


def compute_amount_due(
    entry_at: datetime | None,
    exit_at: datetime | None,
    daily_rate: Decimal | int | float | None,
) -> Decimal:
    """Total amount owed for a stay.

    Args:
        entry_at: Instant the vehicle entered the yard.
        exit_at: Instant of checkout.
        daily_rate: Price of one day (must be > 0).

    Returns:
        billable_days * daily_rate, or Decimal("0.00") when any input is
        missing/invalid or exit_at <= entry_at.
    """
    if daily_rate is None:
        return to_money(0)

    rate = to_money(daily_rate)
    if rate <= 0:
        return to_money(0)

    return to_money(billable_days(entry_at, exit_at) * rate)


def format_brl(amount: Decimal | int | float) -> str:
    """Display helper: Decimal("1234.5") -> "R$ 1.234,50"."""
    value = to_money(amount)
    sign = "-" if value < 0 else ""
    integer, _, cents = f"{abs(value):,.2f}".partition(".")
    return f"{sign}R$ {integer.replace(',', '.')},{cents}"

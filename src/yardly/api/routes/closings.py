"""Closings report endpoint."""

from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from yardly.api.auth import CurrentUser
from yardly.api.rbac import require_role
from yardly.domain.closings import closings_report
from yardly.infra.db import txn
from yardly.infra.time import utc_now

router = APIRouter(prefix="/closings", tags=["closings"])

_DEFAULT_RANGE_DAYS = 30


@router.get("")
def get_closings(
    start: date | None = Query(None, description="First exit date (default: 30 days ago)"),
    end: date | None = Query(None, description="Last exit date, inclusive (default: today)"),
    user: CurrentUser = Depends(require_role("operator")),
) -> dict:
    today = utc_now().date()
    end = end or today
    start = start or end - timedelta(days=_DEFAULT_RANGE_DAYS)

    with txn() as cur:
        try:
            return closings_report(cur, start=start, end=end)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc))

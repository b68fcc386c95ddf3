"""Unauthenticated liveness/readiness probes."""

from fastapi import APIRouter, HTTPException

from yardly.infra.db import fetchone, txn
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

router = APIRouter(tags=["health"])

logger = get_logger(__name__)


@router.get("/health")
def health() -> dict:
    """Process is up (no dependencies checked)."""
    return {"status": "ok"}


@router.get("/health/ready")
def ready() -> dict:
    """Database reachable and migrated (the settings table exists)."""
    try:
        with txn() as cur:
            row = fetchone(cur, "SELECT to_regclass('public.settings')")
    except Exception as exc:
        logger.warning(
            "readiness check failed",
            extra={"extra_fields": safe_log_context(error=type(exc).__name__)},
        )
        raise HTTPException(status_code=503, detail="Database unavailable")
    if row is None or row[0] is None:
        raise HTTPException(status_code=503, detail="Database not migrated")
    return {"status": "ready"}

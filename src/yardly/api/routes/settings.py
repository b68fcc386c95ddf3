"""Gateway settings endpoints (admin only)."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from yardly.api.auth import CurrentUser
from yardly.api.rbac import require_role
from yardly.infra.gateway_settings import get_asaas_config, update_asaas_config
from yardly.observability.logging import get_logger
from yardly.observability.redaction import safe_log_context

router = APIRouter(prefix="/settings", tags=["settings"])

logger = get_logger(__name__)


class GatewaySettingsRequest(BaseModel):
    api_key: str | None = Field(None, min_length=1)
    environment: Literal["sandbox", "production"] | None = None


def _mask(api_key: str | None) -> str | None:
    if not api_key:
        return None
    return f"****{api_key[-4:]}"


@router.get("/gateway")
def get_gateway_settings(
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    """Current gateway config; the access token is never returned in full."""
    config = get_asaas_config()
    return {
        "configured": bool(config.api_key),
        "api_key": _mask(config.api_key),
        "environment": config.environment,
    }


@router.put("/gateway")
def put_gateway_settings(
    body: GatewaySettingsRequest,
    user: CurrentUser = Depends(require_role("admin")),
) -> dict:
    """Store the gateway credential/environment (omitted fields are kept)."""
    changes = body.model_dump(exclude_none=True)
    if changes:
        update_asaas_config(changes)

    logger.info(
        "gateway settings updated",
        extra={
            "extra_fields": safe_log_context(
                fields=sorted(changes),
                user_id=user.id,
            )
        },
    )
    return get_gateway_settings(user)

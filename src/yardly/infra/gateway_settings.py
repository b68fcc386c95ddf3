"""Payment gateway (Asaas) configuration.

The credential and environment are edited from the settings screen and
stored in the ``settings`` table under the ``asaas_config`` key; environment
variables act as fallbacks for local/dev setups.

Loaded once per checkout session and injected into AsaasClient, never
re-read per gateway call.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Literal

from .db import fetchone, txn

SETTINGS_KEY = "asaas_config"

AsaasEnvironment = Literal["sandbox", "production"]


@dataclass(frozen=True)
class AsaasConfig:
    """Asaas API configuration.

    Attributes:
        api_key: Access token sent in the ``access_token`` header.
        environment: "production" or "sandbox" (default, safest).
        relay_url: Optional request relay prefix; the encoded target URL is
                   appended to it.
    """

    api_key: str | None = None
    environment: AsaasEnvironment = "sandbox"
    relay_url: str | None = None


def get_asaas_config() -> AsaasConfig:
    """Load gateway configuration.

    Priority:
    1. Database config (settings.value for key 'asaas_config')
    2. Environment variable fallbacks
    """
    return _merge_with_env(_load_from_db())


def update_asaas_config(config: dict[str, Any]) -> None:
    """Merge *config* into the stored gateway configuration (upsert)."""
    with txn() as cur:
        cur.execute(
            """
            INSERT INTO settings (key, value)
            VALUES (%s, %s::jsonb)
            ON CONFLICT (key) DO UPDATE
            SET value = settings.value || EXCLUDED.value, updated_at = now()
            """,
            (SETTINGS_KEY, json.dumps(config)),
        )


def _load_from_db() -> dict[str, Any]:
    with txn() as cur:
        row = fetchone(
            cur,
            "SELECT value FROM settings WHERE key = %s",
            (SETTINGS_KEY,),
        )
        if row and row[0]:
            return row[0] if isinstance(row[0], dict) else {}
        return {}


def _merge_with_env(db_config: dict[str, Any]) -> AsaasConfig:
    environment = db_config.get("environment") or os.environ.get(
        "ASAAS_ENVIRONMENT", "sandbox"
    )
    if environment not in ("sandbox", "production"):
        environment = "sandbox"

    return AsaasConfig(
        api_key=db_config.get("api_key") or os.environ.get("ASAAS_API_KEY"),
        environment=environment,  # type: ignore[arg-type]
        relay_url=db_config.get("relay_url") or os.environ.get("ASAAS_RELAY_URL") or None,
    )

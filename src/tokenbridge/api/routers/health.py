"""
tokenbridge.api.routers.health

Health and readiness endpoints.

Responsibilities:
- Provide liveness probe (`/healthz`).
- Provide readiness probe (`/readyz`) that checks the signing key is reachable.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tokenbridge.api.deps import bridge_from_app
from tokenbridge.services.registry import Bridge

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(bridge: Bridge = Depends(bridge_from_app)) -> dict[str, str]:
    # SigningUnavailable maps to 500 through the app's error handler.
    key = await bridge.signer.public_key()
    return {"status": "ready", "kid": key.key_id}


# --- Module Notes -----------------------------------------------------------
# Readiness covers the signing key only. Upstream issuer reachability is per provider
# and surfaces on the exchange route as trust_anchor_unavailable.

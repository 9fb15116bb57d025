"""
tokenbridge.api.routers.discovery

Discovery endpoints for relying parties.

Responsibilities:
- Serve the bridge's public key set (`/.well-known/jwks.json`).
- Serve a minimal OIDC discovery document pointing at that key set.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Response

from tokenbridge.api.deps import bridge_from_app, public_issuer, settings_from_app
from tokenbridge.api.routers.exchange import TOKEN_EXCHANGE_GRANT
from tokenbridge.services.registry import Bridge
from tokenbridge.settings import Settings

router = APIRouter(prefix="/.well-known", tags=["discovery"])


@router.get("/jwks.json")
async def jwks(
    response: Response,
    bridge: Bridge = Depends(bridge_from_app),
    settings: Settings = Depends(settings_from_app),
) -> dict[str, Any]:
    document = await bridge.publisher.publish()
    # Let relying parties cache for no longer than we do.
    response.headers["Cache-Control"] = f"public, max-age={int(settings.jwks_ttl_seconds)}"
    return document


@router.get("/openid-configuration")
async def openid_configuration(
    bridge: Bridge = Depends(bridge_from_app),
    issuer: str = Depends(public_issuer),
) -> dict[str, Any]:
    return {
        "issuer": issuer,
        "jwks_uri": f"{issuer}/.well-known/jwks.json",
        "id_token_signing_alg_values_supported": await bridge.publisher.algorithms(),
        "response_types_supported": ["id_token"],
        "subject_types_supported": ["public"],
        "grant_types_supported": [TOKEN_EXCHANGE_GRANT],
        "claims_supported": ["iss", "sub", "aud", "iat", "nbf", "exp", "jti"],
    }

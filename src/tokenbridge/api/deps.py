"""
tokenbridge.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings and the bridge components.
- Derive this service's own issuer URL for a request.
"""

from __future__ import annotations

from fastapi import Depends, Request

from tokenbridge.services.registry import Bridge
from tokenbridge.settings import Settings


def settings_from_app(request: Request) -> Settings:
    # Settings and bridge are attached in `tokenbridge.api.app.create_app`.
    return request.app.state.settings  # type: ignore[attr-defined]


def bridge_from_app(request: Request) -> Bridge:
    return request.app.state.bridge  # type: ignore[attr-defined]


def public_issuer(request: Request, settings: Settings = Depends(settings_from_app)) -> str:
    if settings.public_url:
        return settings.public_url.rstrip("/")
    return str(request.base_url).rstrip("/")


# --- Module Notes -----------------------------------------------------------
# Behind a proxy, either set TOKENBRIDGE_PUBLIC_URL or run uvicorn with
# --proxy-headers so `request.base_url` reflects the external scheme and host.

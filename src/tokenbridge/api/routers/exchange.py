"""
tokenbridge.api.routers.exchange

Token exchange endpoint.

Responsibilities:
- Accept an identity token as JSON (`id_token`) or as an RFC 8693 form
  (`subject_token`), with optional custom claims.
- Run the provider's exchange orchestrator and return the issued token.
"""

from __future__ import annotations

import json
import math
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field
from starlette.status import HTTP_404_NOT_FOUND

from tokenbridge.api.deps import bridge_from_app, public_issuer
from tokenbridge.errors import MalformedInput
from tokenbridge.orchestrator.state import ExchangeRequest
from tokenbridge.services.registry import Bridge

router = APIRouter(tags=["exchange"])

TOKEN_EXCHANGE_GRANT = "urn:ietf:params:oauth:grant-type:token-exchange"
JWT_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:jwt"
ID_TOKEN_TYPE = "urn:ietf:params:oauth:token-type:id_token"

# Upper bound for the request body; identity tokens are a few KB at most.
MAX_BODY_BYTES = 64 * 1024


class ExchangeBody(BaseModel):
    id_token: str = Field(min_length=1)
    custom_claims: dict[str, Any] | None = None


class TokenExchangeForm(BaseModel):
    grant_type: str | None = None
    subject_token: str = Field(min_length=1)
    subject_token_type: str | None = None
    custom_claims: dict[str, Any] | None = None


class TokenExchangeResponse(BaseModel):
    access_token: str
    issued_token_type: str = JWT_TOKEN_TYPE
    token_type: str = "Bearer"
    expires_in: int


def _reject_non_finite(literal: str) -> float:
    raise ValueError(f"non-finite number {literal!r} is not valid JSON")


def _parse_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        _reject_non_finite(literal)
    return value


def _loads(text: str | bytes) -> Any:
    # RFC 8259 JSON only: NaN, Infinity and overflowing numbers are refused.
    return json.loads(text, parse_constant=_reject_non_finite, parse_float=_parse_float)


def _parse_json(raw: bytes) -> tuple[str, dict[str, Any]]:
    try:
        body = ExchangeBody.model_validate(_loads(raw))
    except ValueError as e:
        raise MalformedInput("failed to decode JSON payload", reason=str(e)) from e
    return body.id_token, body.custom_claims or {}


def _parse_form(raw: bytes) -> tuple[str, dict[str, Any]]:
    try:
        fields: dict[str, Any] = dict(parse_qsl(raw.decode("utf-8"), strict_parsing=False))
        if "custom_claims" in fields:
            fields["custom_claims"] = _loads(fields["custom_claims"])
        form = TokenExchangeForm.model_validate(fields)
    except (UnicodeDecodeError, ValueError) as e:
        # pydantic's ValidationError and json's JSONDecodeError are both ValueErrors.
        raise MalformedInput("failed to parse form payload", reason=str(e)) from e

    if form.grant_type is not None and form.grant_type != TOKEN_EXCHANGE_GRANT:
        raise MalformedInput(f"unsupported grant_type {form.grant_type!r}")
    if form.subject_token_type not in (None, JWT_TOKEN_TYPE, ID_TOKEN_TYPE):
        raise MalformedInput(f"unsupported subject_token_type {form.subject_token_type!r}")
    return form.subject_token, form.custom_claims or {}


async def _read_limited_body(request: Request) -> bytes:
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise MalformedInput("request body is too large")

    body = bytearray()
    async for chunk in request.stream():
        body += chunk
        if len(body) > MAX_BODY_BYTES:
            raise MalformedInput("request body is too large")
    return bytes(body)


async def _read_exchange_body(request: Request) -> tuple[str, dict[str, Any]]:
    raw = await _read_limited_body(request)
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "application/x-www-form-urlencoded":
        return _parse_form(raw)
    return _parse_json(raw)


@router.post("/{provider}/exchange", response_model=TokenExchangeResponse)
async def exchange_token(
    provider: str,
    request: Request,
    response: Response,
    bridge: Bridge = Depends(bridge_from_app),
    issuer: str = Depends(public_issuer),
) -> TokenExchangeResponse:
    orchestrator = bridge.orchestrator(provider)
    if orchestrator is None:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Unknown provider")

    subject_token, custom_claims = await _read_exchange_body(request)
    issued = await orchestrator.exchange(
        ExchangeRequest(subject_token=subject_token, issuer=issuer, custom_claims=custom_claims)
    )

    # Issued tokens are credentials; intermediaries must not cache them.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return TokenExchangeResponse(access_token=issued.token, expires_in=issued.expires_in)

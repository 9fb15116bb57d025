"""
tokenbridge.issuance.tokens

Outbound token serialization and signing.

Responsibilities:
- Build the JWS header from the signer's current key (alg/kid/typ).
- Sign `b64url(header) "." b64url(payload)` through the signer.
- Assemble the compact serialization; issuance is stateless.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from jwt.utils import base64url_encode

from tokenbridge.errors import MalformedInput
from tokenbridge.observability.logging import get_logger
from tokenbridge.signing.signer import Signer

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    key_id: str
    algorithm: str
    issued_at: int
    expires_at: int

    @property
    def expires_in(self) -> int:
        return max(0, self.expires_at - self.issued_at)


def _segment(obj: dict[str, Any]) -> bytes:
    return base64url_encode(json.dumps(obj, separators=(",", ":"), allow_nan=False).encode())


class TokenIssuer:
    def __init__(self, *, signer: Signer) -> None:
        self._signer = signer

    async def issue(self, claims: dict[str, Any]) -> IssuedToken:
        # SigningUnavailable from the signer propagates unchanged; no retries here.
        key = await self._signer.public_key()
        header = {"alg": key.algorithm, "kid": key.key_id, "typ": "JWT"}

        try:
            payload = _segment(claims)
        except (TypeError, ValueError) as e:
            # NaN/Infinity or non-JSON values; never signed.
            raise MalformedInput("claims are not valid JSON", reason=str(e)) from e
        signing_input = _segment(header) + b"." + payload
        signature = await self._signer.sign(signing_input)
        token = (signing_input + b"." + base64url_encode(signature)).decode("ascii")

        log.info("token_issued", kid=key.key_id, sub=claims.get("sub"), jti=claims.get("jti"))
        return IssuedToken(
            token=token,
            key_id=key.key_id,
            algorithm=key.algorithm,
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
        )

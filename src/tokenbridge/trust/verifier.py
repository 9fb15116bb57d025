"""
tokenbridge.trust.verifier

Inbound identity token verification.

Responsibilities:
- Accept only asymmetric algorithms that match the issuer's published key types.
- Verify the signature with the trust anchor key selected by `kid`.
- Enforce issuer, audience, expiry and issued-at/not-before rules.
"""

from __future__ import annotations

import time
from collections.abc import Collection, Sequence
from typing import Any

import jwt

from tokenbridge.errors import (
    ClaimValidationFailed,
    InvalidSignature,
    MalformedInput,
    UnknownSigningKey,
    UnsupportedAlgorithm,
)
from tokenbridge.observability.logging import get_logger
from tokenbridge.settings import ProviderSettings
from tokenbridge.trust.anchors import TrustAnchor, TrustAnchorResolver, VerificationKey

log = get_logger(__name__)

KEY_TYPE_FOR_ALGORITHM: dict[str, str] = {
    "RS256": "RSA",
    "RS384": "RSA",
    "RS512": "RSA",
    "PS256": "RSA",
    "PS384": "RSA",
    "PS512": "RSA",
    "ES256": "EC",
    "ES384": "EC",
    "ES512": "EC",
    "EdDSA": "OKP",
}

REQUIRED_CLAIMS = ("exp", "iss", "aud", "sub")


def read_header(token: str) -> dict[str, Any]:
    try:
        return jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as e:
        # DecodeError, and header members of the wrong type (e.g. a numeric kid).
        raise MalformedInput("identity token is malformed", reason=str(e)) from e


def _check_algorithm(
    alg: Any, key: VerificationKey, allowed: Collection[str], anchor: TrustAnchor
) -> str:
    if not isinstance(alg, str) or alg not in allowed or alg not in KEY_TYPE_FOR_ALGORITHM:
        raise UnsupportedAlgorithm(f"algorithm {alg!r} is not accepted")
    if anchor.algorithms is not None and alg not in anchor.algorithms:
        raise UnsupportedAlgorithm(
            f"algorithm {alg!r} is not accepted",
            reason=f"{anchor.issuer} does not advertise {alg}",
        )
    if KEY_TYPE_FOR_ALGORITHM[alg] != key.kty or (key.alg is not None and key.alg != alg):
        raise UnsupportedAlgorithm(
            f"algorithm {alg!r} is not accepted",
            reason=f"key {key.kid} ({key.kty}/{key.alg}) cannot verify {alg}",
        )
    return alg


def verify_with_anchor(
    token: str,
    anchor: TrustAnchor,
    *,
    issuer: str,
    audiences: Sequence[str],
    allowed_algorithms: Collection[str] = tuple(KEY_TYPE_FOR_ALGORITHM),
    leeway: int = 60,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Verify `token` against `anchor` and return its full claim set.

    Pure with respect to its arguments: no fetching, no caching. The clock-skew
    `leeway` applies to `iat`/`nbf` only; `exp` must be strictly in the future.
    """

    header = read_header(token)

    kid = header.get("kid")
    if not isinstance(kid, str) or not kid:
        raise UnknownSigningKey("token header has no key id")
    key = anchor.key(kid)
    if key is None:
        raise UnknownSigningKey(
            "token is signed with an unknown key", reason=f"kid {kid!r} not published by {anchor.issuer}"
        )

    alg = _check_algorithm(header.get("alg"), key, allowed_algorithms, anchor)

    try:
        claims = jwt.decode(
            token,
            key.jwk.key,
            algorithms=[alg],
            issuer=issuer,
            audience=list(audiences),
            leeway=leeway,
            options={"require": list(REQUIRED_CLAIMS), "verify_exp": False},
        )
    except jwt.InvalidSignatureError as e:
        raise InvalidSignature("token signature is invalid", reason=f"kid {kid!r}: {e}") from e
    except jwt.DecodeError as e:
        raise MalformedInput("identity token is malformed", reason=str(e)) from e
    except jwt.InvalidTokenError as e:
        # Issuer, audience, iat/nbf and missing-claim failures.
        raise ClaimValidationFailed("token claims are invalid", reason=str(e)) from e

    exp = claims["exp"]
    if isinstance(exp, bool) or not isinstance(exp, int | float):
        raise ClaimValidationFailed("token claims are invalid", reason="exp is not numeric")
    if exp <= (time.time() if now is None else now):
        raise ClaimValidationFailed("token claims are invalid", reason="token is expired")
    return claims


class TokenVerifier:
    """
    Verifies identity tokens for configured providers using cached trust anchors.
    """

    def __init__(self, *, resolver: TrustAnchorResolver, leeway: int = 60) -> None:
        self._resolver = resolver
        self._leeway = leeway

    async def verify(self, token: str, provider: ProviderSettings) -> dict[str, Any]:
        header = read_header(token)
        anchor = await self._resolver.resolve(provider)

        kid = header.get("kid")
        if isinstance(kid, str) and kid and anchor.key(kid) is None:
            # Provider may have rotated keys since the anchor was cached.
            log.info("verifier_kid_miss", issuer=provider.issuer_url, kid=kid)
            anchor = await self._resolver.refresh(provider)

        claims = verify_with_anchor(
            token,
            anchor,
            issuer=provider.issuer_url,
            audiences=provider.audiences,
            allowed_algorithms=provider.algorithms,
            leeway=self._leeway,
        )
        log.info("token_verified", issuer=provider.issuer_url, sub=claims.get("sub"))
        return claims

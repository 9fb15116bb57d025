"""
tokenbridge.signing.base

Signing backend capability and public key helpers.

Responsibilities:
- Define the `SigningBackend` protocol implemented by local and remote backends.
- Describe a signing key's public half (`PublicKeyInfo`).
- Convert public keys to JWK form and compute RFC 7638 thumbprints.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Protocol

import jwt
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes
from jwt.utils import base64url_encode

# JWK members that enter the RFC 7638 thumbprint, per key type.
_THUMBPRINT_MEMBERS: dict[str, tuple[str, ...]] = {
    "RSA": ("e", "kty", "n"),
    "EC": ("crv", "kty", "x", "y"),
    "OKP": ("crv", "kty", "x"),
}


class SigningBackendError(Exception):
    """Backend refused the operation (key disabled, access denied, wrong key usage)."""


class TransientBackendError(SigningBackendError):
    """Backend failure worth a bounded retry (throttling, internal error, network)."""


@dataclass(frozen=True, slots=True)
class PublicKeyInfo:
    key_id: str
    algorithm: str
    public_key: PublicKeyTypes


class SigningBackend(Protocol):
    @property
    def key_id(self) -> str: ...

    async def sign(self, data: bytes) -> bytes:
        """Return the JWS signature over `data` (raw r||s for ECDSA)."""
        ...

    async def describe_key(self) -> PublicKeyInfo: ...


def public_jwk(public_key: PublicKeyTypes, algorithm: str) -> dict[str, Any]:
    """JWK members of `public_key` for the algorithm family of `algorithm`."""

    algo = jwt.get_algorithm_by_name(algorithm)
    jwk = dict(algo.to_jwk(public_key, as_dict=True))
    # "use" is set by the publisher; RFC 7517 advises against sending both.
    jwk.pop("key_ops", None)
    return jwk


def jwk_thumbprint(jwk: dict[str, Any]) -> str:
    members = _THUMBPRINT_MEMBERS[jwk["kty"]]
    canonical = json.dumps(
        {m: jwk[m] for m in members}, separators=(",", ":"), sort_keys=True
    ).encode()
    return base64url_encode(hashlib.sha256(canonical).digest()).decode()

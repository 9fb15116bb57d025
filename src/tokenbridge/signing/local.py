"""
tokenbridge.signing.local

In-process signing backend for local development and tests.

The private key lives in this process, so production deployments use a remote
backend (`tokenbridge.signing.kms`) instead; settings refuse a generated key in prod.
"""

from __future__ import annotations

from pathlib import Path

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from tokenbridge.signing.base import PublicKeyInfo, SigningBackendError, jwk_thumbprint, public_jwk

_EC_CURVES: dict[str, type[ec.EllipticCurve]] = {
    "ES256": ec.SECP256R1,
    "ES384": ec.SECP384R1,
    "ES512": ec.SECP521R1,
}


def generate_private_key(algorithm: str) -> PrivateKeyTypes:
    if algorithm.startswith(("RS", "PS")):
        return rsa.generate_private_key(public_exponent=65537, key_size=2048)
    if algorithm in _EC_CURVES:
        return ec.generate_private_key(_EC_CURVES[algorithm]())
    if algorithm == "EdDSA":
        return ed25519.Ed25519PrivateKey.generate()
    raise ValueError(f"unsupported signing algorithm: {algorithm}")


def _check_key_type(key: PrivateKeyTypes, algorithm: str) -> None:
    if algorithm.startswith(("RS", "PS")):
        ok = isinstance(key, rsa.RSAPrivateKey)
    elif algorithm in _EC_CURVES:
        ok = isinstance(key, ec.EllipticCurvePrivateKey) and isinstance(
            key.curve, _EC_CURVES[algorithm]
        )
    elif algorithm == "EdDSA":
        ok = isinstance(key, ed25519.Ed25519PrivateKey)
    else:
        ok = False
    if not ok:
        raise ValueError(f"private key cannot sign {algorithm}")


class LocalKeyBackend:
    def __init__(
        self,
        private_key: PrivateKeyTypes,
        *,
        algorithm: str = "RS256",
        key_id: str | None = None,
    ) -> None:
        _check_key_type(private_key, algorithm)
        self._private_key = private_key
        self._algorithm = algorithm
        self._algo = jwt.get_algorithm_by_name(algorithm)
        # Default kid is the RFC 7638 thumbprint, stable across restarts for a file key.
        self._key_id = key_id or jwk_thumbprint(public_jwk(private_key.public_key(), algorithm))

    @classmethod
    def from_pem_file(
        cls, path: str | Path, *, algorithm: str = "RS256", key_id: str | None = None
    ) -> LocalKeyBackend:
        private_key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
        return cls(private_key, algorithm=algorithm, key_id=key_id)

    @classmethod
    def generate(cls, *, algorithm: str = "RS256", key_id: str | None = None) -> LocalKeyBackend:
        return cls(generate_private_key(algorithm), algorithm=algorithm, key_id=key_id)

    @property
    def key_id(self) -> str:
        return self._key_id

    async def sign(self, data: bytes) -> bytes:
        try:
            return self._algo.sign(data, self._private_key)
        except (ValueError, TypeError) as e:
            raise SigningBackendError(str(e)) from e

    async def describe_key(self) -> PublicKeyInfo:
        return PublicKeyInfo(
            key_id=self._key_id,
            algorithm=self._algorithm,
            public_key=self._private_key.public_key(),
        )

"""
tokenbridge.signing.kms

Remote signing backend for an AWS KMS style asymmetric key.

Responsibilities:
- Map KMS signing algorithm specs to JWS algorithms.
- Call `Sign` / `GetPublicKey` off the event loop (the client is synchronous).
- Convert ECDSA DER signatures to the raw r||s form JWS requires.
- Classify client errors as transient (retried) or terminal.

The client is duck-typed (`sign(**kw)`, `get_public_key(**kw)`), so any object with
the boto3 KMS client surface works; boto3 itself is only imported by
`build_kms_client`.
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Any

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jwt.utils import der_to_raw_signature

from tokenbridge.signing.base import PublicKeyInfo, SigningBackendError, TransientBackendError

KMS_ALGORITHMS: dict[str, str] = {
    "RSASSA_PKCS1_V1_5_SHA_256": "RS256",
    "RSASSA_PKCS1_V1_5_SHA_384": "RS384",
    "RSASSA_PKCS1_V1_5_SHA_512": "RS512",
    "RSASSA_PSS_SHA_256": "PS256",
    "RSASSA_PSS_SHA_384": "PS384",
    "RSASSA_PSS_SHA_512": "PS512",
    "ECDSA_SHA_256": "ES256",
    "ECDSA_SHA_384": "ES384",
    "ECDSA_SHA_512": "ES512",
}

_EC_CURVES = {"ES256": ec.SECP256R1, "ES384": ec.SECP384R1, "ES512": ec.SECP521R1}

# KMS accepts at most 4096 bytes of RAW message; larger input is pre-hashed.
_MAX_RAW_MESSAGE = 4096

_TERMINAL_ERROR_CODES = frozenset(
    {
        "AccessDeniedException",
        "DisabledException",
        "InvalidKeyUsageException",
        "KMSInvalidStateException",
        "NotFoundException",
        "ValidationException",
    }
)


def _error_code(exc: Exception) -> str | None:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        return response.get("Error", {}).get("Code")
    return None


def classify_error(exc: Exception) -> SigningBackendError:
    code = _error_code(exc)
    if code in _TERMINAL_ERROR_CODES:
        return SigningBackendError(f"kms {code}")
    return TransientBackendError(f"kms {code or type(exc).__name__}")


class KmsBackend:
    def __init__(self, client: Any, key_id: str, *, signing_algorithm: str) -> None:
        if signing_algorithm not in KMS_ALGORITHMS:
            raise ValueError(f"unsupported KMS signing algorithm: {signing_algorithm}")
        self._client = client
        self._key_id = key_id
        self._spec = signing_algorithm
        self._algorithm = KMS_ALGORITHMS[signing_algorithm]

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def _message(self, data: bytes) -> tuple[bytes, str]:
        if len(data) <= _MAX_RAW_MESSAGE:
            return data, "RAW"
        digest = {"256": hashlib.sha256, "384": hashlib.sha384, "512": hashlib.sha512}[
            self._algorithm[-3:]
        ]
        return digest(data).digest(), "DIGEST"

    async def sign(self, data: bytes) -> bytes:
        message, message_type = self._message(data)
        try:
            resp = await asyncio.to_thread(
                self._client.sign,
                KeyId=self._key_id,
                Message=message,
                MessageType=message_type,
                SigningAlgorithm=self._spec,
            )
        except Exception as e:  # botocore ClientError / BotoCoreError
            raise classify_error(e) from e

        signature: bytes = resp["Signature"]
        if self._algorithm in _EC_CURVES:
            return der_to_raw_signature(signature, _EC_CURVES[self._algorithm]())
        return signature

    async def describe_key(self) -> PublicKeyInfo:
        try:
            resp = await asyncio.to_thread(self._client.get_public_key, KeyId=self._key_id)
        except Exception as e:  # botocore ClientError / BotoCoreError
            raise classify_error(e) from e

        if resp.get("KeyUsage", "SIGN_VERIFY") != "SIGN_VERIFY":
            raise SigningBackendError(f"key {self._key_id} is not a signing key")
        supported = resp.get("SigningAlgorithms")
        if supported is not None and self._spec not in supported:
            raise SigningBackendError(f"key {self._key_id} does not support {self._spec}")

        return PublicKeyInfo(
            key_id=self._key_id,
            algorithm=self._algorithm,
            public_key=serialization.load_der_public_key(resp["PublicKey"]),
        )


def build_kms_client(region: str | None = None) -> Any:
    try:
        import boto3  # type: ignore[import-not-found]
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "boto3 is not available. Install the 'kms' extra (pip install tokenbridge[kms])."
        ) from e
    return boto3.client("kms", region_name=region)

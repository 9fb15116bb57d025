"""
tests.fakes

In-memory collaborators for the engine tests.

Responsibilities:
- A fake upstream OIDC issuer (discovery + JWKS) served through httpx.MockTransport.
- A signing backend wrapper that counts calls and injects failures.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from tokenbridge.signing.base import PublicKeyInfo, TransientBackendError

ISSUER = "https://issuer.example"
AUDIENCE = "bridge"
SUBJECT = "repo:org/name:ref:main"


class FakeSSLObject:
    def __init__(self, der: bytes) -> None:
        self._der = der

    def getpeercert(self, binary_form: bool = False) -> bytes:
        return self._der


class FakeNetworkStream:
    def __init__(self, der: bytes) -> None:
        self._ssl = FakeSSLObject(der)

    def get_extra_info(self, name: str) -> Any:
        return self._ssl if name == "ssl_object" else None


@dataclass
class FakeIssuer:
    issuer: str = ISSUER
    keys: dict[str, rsa.RSAPrivateKey] = field(default_factory=dict)
    # Only these kids are published; lets tests model key rotation.
    published: list[str] = field(default_factory=list)
    certificate: bytes | None = None
    status: int = 200
    latency: float = 0.0
    discovery_calls: int = 0
    jwks_calls: int = 0

    def add_key(self, kid: str, *, publish: bool = True) -> rsa.RSAPrivateKey:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.keys[kid] = key
        if publish:
            self.published.append(kid)
        return key

    def jwks(self) -> dict[str, Any]:
        keys = []
        for kid in self.published:
            jwk = RSAAlgorithm.to_jwk(self.keys[kid].public_key(), as_dict=True)
            jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
            keys.append(jwk)
        return {"keys": keys}

    def mint(self, *, kid: str = "k1", alg: str = "RS256", **overrides: Any) -> str:
        now = int(time.time())
        claims: dict[str, Any] = {
            "iss": self.issuer,
            "sub": SUBJECT,
            "aud": [AUDIENCE],
            "iat": now,
            "exp": now + 300,
            "repository": "org/name",
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, self.keys[kid], algorithm=alg, headers={"kid": kid})

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.latency:
            await asyncio.sleep(self.latency)
        extensions = (
            {"network_stream": FakeNetworkStream(self.certificate)} if self.certificate else {}
        )
        if request.url.path == "/.well-known/openid-configuration":
            self.discovery_calls += 1
            body: Any = {
                "issuer": self.issuer,
                "jwks_uri": f"{self.issuer}/.well-known/jwks",
                "id_token_signing_alg_values_supported": ["RS256"],
            }
        elif request.url.path == "/.well-known/jwks":
            self.jwks_calls += 1
            body = self.jwks()
        else:
            return httpx.Response(404, extensions=extensions)
        return httpx.Response(self.status, json=body, extensions=extensions)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class CountingBackend:
    """Wraps a real backend; counts calls and can fail the next N calls."""

    def __init__(self, inner: Any, *, latency: float = 0.0) -> None:
        self._inner = inner
        self.latency = latency
        self.sign_calls = 0
        self.describe_calls = 0
        self.fail_sign = 0
        self.fail_describe = 0

    @property
    def key_id(self) -> str:
        return self._inner.key_id

    async def sign(self, data: bytes) -> bytes:
        self.sign_calls += 1
        if self.fail_sign:
            self.fail_sign -= 1
            raise TransientBackendError("ThrottlingException")
        return await self._inner.sign(data)

    async def describe_key(self) -> PublicKeyInfo:
        self.describe_calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        if self.fail_describe:
            self.fail_describe -= 1
            raise TransientBackendError("KMSInternalException")
        return await self._inner.describe_key()

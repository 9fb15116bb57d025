"""
tokenbridge.issuance.jwks

Publication of the bridge's own public key set.

Responsibilities:
- Render the signer's public key as a JWK Set document.
- Cache the document with its own TTL; expired entries are re-derived, never served.
"""

from __future__ import annotations

from typing import Any

from tokenbridge.cache import CacheLoadTimeout, SingleFlightCache
from tokenbridge.errors import KeySetUnavailable, SigningUnavailable
from tokenbridge.signing.base import public_jwk
from tokenbridge.signing.signer import Signer

_CACHE_KEY = "jwks"


class KeySetPublisher:
    def __init__(self, *, signer: Signer, cache: SingleFlightCache[str, dict[str, Any]]) -> None:
        self._signer = signer
        self._cache = cache

    async def publish(self) -> dict[str, Any]:
        try:
            return await self._cache.get(_CACHE_KEY, self._render)
        except (SigningUnavailable, CacheLoadTimeout) as e:
            reason = e.reason if isinstance(e, SigningUnavailable) else str(e)
            raise KeySetUnavailable("key set is unavailable", reason=reason) from e

    async def algorithms(self) -> list[str]:
        document = await self.publish()
        return sorted({k["alg"] for k in document["keys"]})

    async def _render(self) -> dict[str, Any]:
        info = await self._signer.public_key()
        jwk = public_jwk(info.public_key, info.algorithm)
        jwk.update({"kid": info.key_id, "alg": info.algorithm, "use": "sig"})
        return {"keys": [jwk]}

"""
tokenbridge.signing.signer

The engine-facing `Signer`.

Responsibilities:
- Delegate signing to a backend that keeps the private key in its custody.
- Bound every backend call with a timeout and a small retry budget.
- Serve the public key from a single-flight TTL cache keyed by key id.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from tokenbridge.cache import CacheLoadTimeout, SingleFlightCache
from tokenbridge.errors import SigningUnavailable
from tokenbridge.observability.logging import get_logger
from tokenbridge.retry import RetryPolicy, call_with_retry
from tokenbridge.signing.base import (
    PublicKeyInfo,
    SigningBackend,
    SigningBackendError,
    TransientBackendError,
)

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SignerOptions:
    """
    Every option the signer recognizes. The cache is passed in so its lifetime
    follows the composition root, not the signer.
    """

    cache: SingleFlightCache[str, PublicKeyInfo]
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout: float = 5.0


class Signer:
    def __init__(self, backend: SigningBackend, options: SignerOptions) -> None:
        self._backend = backend
        self._options = options

    @property
    def key_id(self) -> str:
        return self._backend.key_id

    async def sign(self, data: bytes) -> bytes:
        async def attempt() -> bytes:
            return await asyncio.wait_for(self._backend.sign(data), timeout=self._options.timeout)

        try:
            return await call_with_retry(
                attempt,
                policy=self._options.retry,
                retry_on=(TransientBackendError, TimeoutError),
                operation="sign",
            )
        except (SigningBackendError, TimeoutError) as e:
            # Only the error type and message; never the signing input.
            raise SigningUnavailable(
                "signing backend is unavailable",
                reason=f"sign with key {self.key_id}: {type(e).__name__}: {e}",
            ) from e

    async def public_key(self) -> PublicKeyInfo:
        try:
            return await self._options.cache.get(self.key_id, self._describe)
        except CacheLoadTimeout as e:
            raise SigningUnavailable(
                "signing backend is unavailable", reason=f"describe key {self.key_id}: {e}"
            ) from e

    async def _describe(self) -> PublicKeyInfo:
        async def attempt() -> PublicKeyInfo:
            return await asyncio.wait_for(
                self._backend.describe_key(), timeout=self._options.timeout
            )

        try:
            info = await call_with_retry(
                attempt,
                policy=self._options.retry,
                retry_on=(TransientBackendError, TimeoutError),
                operation="describe_key",
            )
        except (SigningBackendError, TimeoutError) as e:
            raise SigningUnavailable(
                "signing backend is unavailable",
                reason=f"describe key {self.key_id}: {type(e).__name__}: {e}",
            ) from e
        log.info("signer_public_key_loaded", kid=info.key_id, alg=info.algorithm)
        return info

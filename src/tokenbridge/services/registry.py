"""
tokenbridge.services.registry

Composition root for the exchange engine.

Responsibilities:
- Build the shared caches, the HTTP client, the signer and the publisher once.
- Build one exchange orchestrator per configured provider.
- Own the lifecycle of shared resources (closing the HTTP client).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from tokenbridge.cache import SingleFlightCache
from tokenbridge.issuance.claims import ClaimsComposer
from tokenbridge.issuance.jwks import KeySetPublisher
from tokenbridge.issuance.tokens import TokenIssuer
from tokenbridge.observability.logging import get_logger
from tokenbridge.orchestrator.engine import ExchangeOrchestrator
from tokenbridge.retry import RetryPolicy
from tokenbridge.settings import Settings
from tokenbridge.signing.base import PublicKeyInfo, SigningBackend
from tokenbridge.signing.kms import KmsBackend, build_kms_client
from tokenbridge.signing.local import LocalKeyBackend
from tokenbridge.signing.signer import Signer, SignerOptions
from tokenbridge.trust.anchors import AnchorKey, TrustAnchor, TrustAnchorResolver
from tokenbridge.trust.verifier import TokenVerifier

log = get_logger(__name__)


@dataclass(slots=True)
class Bridge:
    signer: Signer
    publisher: KeySetPublisher
    http: httpx.AsyncClient
    orchestrators: dict[str, ExchangeOrchestrator] = field(default_factory=dict)

    def orchestrator(self, provider: str) -> ExchangeOrchestrator | None:
        return self.orchestrators.get(provider)

    async def aclose(self) -> None:
        await self.http.aclose()


def build_signing_backend(settings: Settings, *, kms_client: Any | None = None) -> SigningBackend:
    if settings.signer_backend == "kms":
        if not settings.kms_key_id:
            raise ValueError("kms_key_id is required when signer_backend=kms")
        return KmsBackend(
            kms_client if kms_client is not None else build_kms_client(settings.kms_region),
            settings.kms_key_id,
            signing_algorithm=settings.kms_signing_algorithm,
        )

    if settings.local_private_key_path:
        return LocalKeyBackend.from_pem_file(
            settings.local_private_key_path,
            algorithm=settings.local_signing_algorithm,
            key_id=settings.local_key_id,
        )
    # Dev/test only: tokens signed with this key die with the process.
    log.warning("signer_ephemeral_key", env=settings.env)
    return LocalKeyBackend.generate(
        algorithm=settings.local_signing_algorithm, key_id=settings.local_key_id
    )


def _load_timeout(settings: Settings) -> float:
    # Upper bound for one cache load: every attempt may time out, plus the backoff sleeps.
    attempts = settings.retry_max_attempts
    return (
        settings.remote_timeout_seconds * attempts
        + settings.retry_max_delay_seconds * (attempts - 1)
    )


def build_bridge(
    settings: Settings,
    *,
    http: httpx.AsyncClient | None = None,
    backend: SigningBackend | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> Bridge:
    retry = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay=settings.retry_base_delay_seconds,
        max_delay=settings.retry_max_delay_seconds,
    )
    load_timeout = _load_timeout(settings)

    http = http or httpx.AsyncClient(
        timeout=settings.remote_timeout_seconds,
        follow_redirects=False,
        headers={"User-Agent": f"{settings.service_name}/oidc"},
    )

    signer = Signer(
        backend or build_signing_backend(settings),
        SignerOptions(
            cache=SingleFlightCache[str, PublicKeyInfo](
                name="signer_public_key",
                ttl=settings.public_key_ttl_seconds,
                timeout=load_timeout,
                clock=clock,
            ),
            retry=retry,
            timeout=settings.remote_timeout_seconds,
        ),
    )
    publisher = KeySetPublisher(
        signer=signer,
        cache=SingleFlightCache[str, dict[str, Any]](
            name="jwks",
            ttl=settings.jwks_ttl_seconds,
            timeout=load_timeout,
            clock=clock,
        ),
    )

    resolver = TrustAnchorResolver(
        http=http,
        cache=SingleFlightCache[AnchorKey, TrustAnchor](
            name="trust_anchor",
            ttl=settings.trust_anchor_ttl_seconds,
            timeout=load_timeout * 2,  # discovery + key set
            clock=clock,
        ),
        retry=retry,
        min_refresh_interval=settings.trust_anchor_min_refresh_seconds,
    )
    verifier = TokenVerifier(resolver=resolver, leeway=settings.clock_skew_seconds)
    issuer = TokenIssuer(signer=signer)

    bridge = Bridge(signer=signer, publisher=publisher, http=http)
    for provider in settings.providers:
        bridge.orchestrators[provider.name] = ExchangeOrchestrator(
            provider=provider,
            verifier=verifier,
            composer=ClaimsComposer(
                lifetime_seconds=provider.token_lifetime_seconds,
                audience=provider.token_audience,
                forwarded_claims=provider.forwarded_claims,
            ),
            issuer=issuer,
        )
        log.info("provider_registered", provider=provider.name, issuer=provider.issuer_url)
    return bridge


# --- Module Notes -----------------------------------------------------------
# One resolver (and so one trust anchor cache) is shared by all providers; anchors
# are keyed by issuer URL and pin set, so two routes trusting the same issuer with
# the same pins share a fetch.

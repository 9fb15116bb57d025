"""
tokenbridge.trust.anchors

Trust anchor resolution for upstream OIDC issuers.

Responsibilities:
- Fetch an issuer's discovery document and its signing key set over TLS.
- Optionally pin the issuer's certificate chain to configured fingerprints.
- Cache anchors per issuer URL and pin set; re-fetch on TTL expiry or on an unknown key id.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx
import jwt

from tokenbridge.cache import CacheLoadTimeout, SingleFlightCache
from tokenbridge.errors import TrustAnchorUnavailable, UntrustedIssuer
from tokenbridge.observability.logging import get_logger
from tokenbridge.retry import RetryPolicy, call_with_retry
from tokenbridge.settings import ProviderSettings

log = get_logger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"

# kty values that can carry an asymmetric signature key.
_SIGNATURE_KEY_TYPES = frozenset({"RSA", "EC", "OKP"})


@dataclass(frozen=True, slots=True)
class VerificationKey:
    kid: str
    kty: str
    # Only set when the JWK pins an algorithm.
    alg: str | None
    jwk: jwt.PyJWK


@dataclass(frozen=True, slots=True)
class TrustAnchor:
    issuer: str
    jwks_uri: str
    keys: Mapping[str, VerificationKey]
    # Algorithms advertised by the issuer; None when the discovery document is silent.
    algorithms: frozenset[str] | None
    fingerprints: tuple[str, ...] = ()

    def key(self, kid: str) -> VerificationKey | None:
        return self.keys.get(kid)


class _UpstreamServerError(Exception):
    pass


AnchorKey = tuple[str, tuple[str, ...]]


def anchor_key(provider: ProviderSettings) -> AnchorKey:
    # Pinned and unpinned routes to one issuer never share key material.
    return provider.issuer_url, tuple(sorted(provider.fingerprints))


def certificate_fingerprint(der: bytes, *, length: int) -> str:
    digest = hashlib.sha1(der) if length == 40 else hashlib.sha256(der)
    return digest.hexdigest().upper()


def peer_certificates(response: httpx.Response) -> list[bytes]:
    """
    DER certificates presented on the connection that served `response`.

    Uses the full verified chain where the interpreter exposes it and falls back to
    the leaf certificate otherwise. Returns an empty list for plaintext connections.
    """

    stream = response.extensions.get("network_stream")
    if stream is None:
        return []
    ssl_object = stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return []
    get_chain = getattr(ssl_object, "get_verified_chain", None)
    if get_chain is not None:
        chain = get_chain()
        if chain:
            return [bytes(cert) for cert in chain]
    leaf = ssl_object.getpeercert(binary_form=True)
    return [leaf] if leaf else []


def check_pinned_certificate(
    response: httpx.Response, fingerprints: Sequence[str], *, url: str
) -> None:
    certs = peer_certificates(response)
    if not certs:
        raise UntrustedIssuer(
            "issuer certificate could not be inspected",
            reason=f"no TLS certificate available for {url}",
        )
    pinned = set(fingerprints)
    lengths = {len(fp) for fp in pinned}
    for der in certs:
        if any(certificate_fingerprint(der, length=n) in pinned for n in lengths):
            return
    raise UntrustedIssuer(
        "issuer certificate does not match pinned fingerprints",
        reason=f"none of {len(certs)} certificate(s) presented by {url} matched",
    )


def parse_key_set(document: Any, *, issuer: str) -> dict[str, VerificationKey]:
    if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
        raise TrustAnchorUnavailable(
            "issuer key set is malformed", reason=f"{issuer}: missing 'keys' array"
        )

    keys: dict[str, VerificationKey] = {}
    for raw in document["keys"]:
        if not isinstance(raw, dict):
            continue
        kid = raw.get("kid")
        kty = raw.get("kty")
        if not isinstance(kid, str) or not kid:
            log.warning("jwk_skipped", issuer=issuer, why="missing kid")
            continue
        if raw.get("use", "sig") != "sig" or kty not in _SIGNATURE_KEY_TYPES:
            log.warning("jwk_skipped", issuer=issuer, kid=kid, why="not an asymmetric signature key")
            continue
        try:
            jwk = jwt.PyJWK(raw)
        except (jwt.PyJWKError, jwt.InvalidKeyError) as e:
            log.warning("jwk_skipped", issuer=issuer, kid=kid, why=str(e))
            continue
        alg = raw.get("alg") if isinstance(raw.get("alg"), str) else None
        keys[kid] = VerificationKey(kid=kid, kty=kty, alg=alg, jwk=jwk)

    if not keys:
        raise TrustAnchorUnavailable(
            "issuer key set has no usable signing keys", reason=f"{issuer}: 0 usable keys"
        )
    return keys


class TrustAnchorResolver:
    """
    Resolves and caches trust anchors keyed by issuer URL and pinned fingerprints.

    All fetches for a provider with pinned fingerprints are checked against the pins,
    including the key set fetch.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        cache: SingleFlightCache[AnchorKey, TrustAnchor],
        retry: RetryPolicy,
        min_refresh_interval: float = 10.0,
    ) -> None:
        self._http = http
        self._cache = cache
        self._retry = retry
        self._min_refresh_interval = min_refresh_interval

    async def resolve(self, provider: ProviderSettings) -> TrustAnchor:
        try:
            return await self._cache.get(anchor_key(provider), lambda: self._fetch(provider))
        except CacheLoadTimeout as e:
            raise TrustAnchorUnavailable(
                "issuer did not respond in time", reason=str(e)
            ) from e

    async def refresh(self, provider: ProviderSettings) -> TrustAnchor:
        """
        Re-fetch after a key id miss. Skipped when the cached anchor is fresher than
        the minimum refresh interval, so a stream of unknown kids costs one fetch.
        """

        try:
            return await self._cache.refresh(
                anchor_key(provider),
                lambda: self._fetch(provider),
                min_age=self._min_refresh_interval,
            )
        except CacheLoadTimeout as e:
            raise TrustAnchorUnavailable(
                "issuer did not respond in time", reason=str(e)
            ) from e

    async def _fetch(self, provider: ProviderSettings) -> TrustAnchor:
        issuer = provider.issuer_url
        discovery = await self._get_json(issuer.rstrip("/") + DISCOVERY_PATH, provider)
        if not isinstance(discovery, dict):
            raise TrustAnchorUnavailable(
                "issuer metadata is malformed", reason=f"{issuer}: discovery is not an object"
            )
        if discovery.get("issuer") != issuer:
            raise TrustAnchorUnavailable(
                "issuer metadata is malformed",
                reason=f"{issuer}: discovery names issuer {discovery.get('issuer')!r}",
            )
        jwks_uri = discovery.get("jwks_uri")
        if not isinstance(jwks_uri, str) or not jwks_uri.startswith("https://"):
            raise TrustAnchorUnavailable(
                "issuer metadata is malformed", reason=f"{issuer}: invalid jwks_uri"
            )

        keys = parse_key_set(await self._get_json(jwks_uri, provider), issuer=issuer)

        advertised = discovery.get("id_token_signing_alg_values_supported")
        algorithms = (
            frozenset(a for a in advertised if isinstance(a, str))
            if isinstance(advertised, list)
            else None
        )

        log.info("trust_anchor_loaded", issuer=issuer, kids=sorted(keys))
        return TrustAnchor(
            issuer=issuer,
            jwks_uri=jwks_uri,
            keys=keys,
            algorithms=algorithms,
            fingerprints=tuple(provider.fingerprints),
        )

    async def _get_json(self, url: str, provider: ProviderSettings) -> Any:
        async def attempt() -> httpx.Response:
            async with self._http.stream(
                "GET", url, headers={"Accept": "application/json"}
            ) as response:
                # Pin before reading the body: an untrusted peer's content is never parsed.
                if provider.fingerprints:
                    check_pinned_certificate(response, provider.fingerprints, url=url)
                if response.status_code >= 500:
                    raise _UpstreamServerError(f"{url} returned {response.status_code}")
                await response.aread()
            return response

        try:
            response = await call_with_retry(
                attempt,
                policy=self._retry,
                retry_on=(httpx.TransportError, _UpstreamServerError),
                operation="trust_anchor_fetch",
            )
        except (httpx.TransportError, _UpstreamServerError) as e:
            raise TrustAnchorUnavailable(
                "issuer is unreachable", reason=f"{url}: {e!r}"
            ) from e

        if response.status_code != 200:
            raise TrustAnchorUnavailable(
                "issuer is unreachable", reason=f"{url} returned {response.status_code}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise TrustAnchorUnavailable(
                "issuer metadata is malformed", reason=f"{url}: body is not JSON"
            ) from e


# --- Module Notes -----------------------------------------------------------
# Pinning guards against a compromised or substituted CA for one known issuer; it
# runs in addition to normal certificate validation, never instead of it.

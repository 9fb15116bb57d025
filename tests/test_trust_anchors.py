"""
tests.test_trust_anchors

Trust anchor resolution: discovery, key set parsing, pinning and caching.
"""

from __future__ import annotations

import asyncio
import hashlib

import httpx
import pytest
from fakes import AUDIENCE, ISSUER, FakeIssuer

from tokenbridge.cache import SingleFlightCache
from tokenbridge.errors import TrustAnchorUnavailable, UntrustedIssuer
from tokenbridge.retry import RetryPolicy
from tokenbridge.settings import ProviderSettings
from tokenbridge.trust.anchors import TrustAnchorResolver, parse_key_set

FAKE_CERT = b"0\x82\x01\nfake-der-certificate"


def _resolver(http: httpx.AsyncClient, *, min_refresh: float = 0.0) -> TrustAnchorResolver:
    return TrustAnchorResolver(
        http=http,
        cache=SingleFlightCache(name="trust_anchor", ttl=3600, timeout=5),
        retry=RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False),
        min_refresh_interval=min_refresh,
    )


def _provider(**kw) -> ProviderSettings:
    return ProviderSettings(name="ci", issuer_url=ISSUER, audiences=[AUDIENCE], **kw)


@pytest.mark.asyncio
async def test_resolve_loads_discovery_and_keys(fake_issuer: FakeIssuer) -> None:
    async with fake_issuer.client() as http:
        anchor = await _resolver(http).resolve(_provider())

    assert anchor.issuer == ISSUER
    assert anchor.jwks_uri == f"{ISSUER}/.well-known/jwks"
    assert set(anchor.keys) == {"k1"}
    assert anchor.keys["k1"].kty == "RSA"
    assert anchor.algorithms == frozenset({"RS256"})


@pytest.mark.asyncio
async def test_concurrent_resolves_fetch_once(fake_issuer: FakeIssuer) -> None:
    fake_issuer.latency = 0.05
    async with fake_issuer.client() as http:
        resolver = _resolver(http)
        anchors = await asyncio.gather(*(resolver.resolve(_provider()) for _ in range(10)))

    assert all(a is anchors[0] for a in anchors)
    assert fake_issuer.discovery_calls == 1
    assert fake_issuer.jwks_calls == 1


@pytest.mark.asyncio
async def test_discovery_issuer_mismatch_is_unavailable(fake_issuer: FakeIssuer) -> None:
    fake_issuer.issuer = "https://evil.example"
    async with fake_issuer.client() as http:
        with pytest.raises(TrustAnchorUnavailable):
            await _resolver(http).resolve(_provider())


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_surfaced(fake_issuer: FakeIssuer) -> None:
    fake_issuer.status = 503
    async with fake_issuer.client() as http:
        with pytest.raises(TrustAnchorUnavailable):
            await _resolver(http).resolve(_provider())

    assert fake_issuer.discovery_calls == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(fake_issuer: FakeIssuer) -> None:
    fake_issuer.status = 404
    async with fake_issuer.client() as http:
        with pytest.raises(TrustAnchorUnavailable):
            await _resolver(http).resolve(_provider())

    assert fake_issuer.discovery_calls == 1


@pytest.mark.asyncio
async def test_unreachable_issuer_is_unavailable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http:
        with pytest.raises(TrustAnchorUnavailable):
            await _resolver(http).resolve(_provider())


@pytest.mark.asyncio
async def test_pinned_fingerprint_match(fake_issuer: FakeIssuer) -> None:
    fake_issuer.certificate = FAKE_CERT
    sha1 = hashlib.sha1(FAKE_CERT).hexdigest()
    pinned = ":".join(sha1[i : i + 2] for i in range(0, len(sha1), 2))

    async with fake_issuer.client() as http:
        anchor = await _resolver(http).resolve(_provider(fingerprints=[pinned]))

    assert anchor.fingerprints == (sha1.upper(),)


@pytest.mark.asyncio
async def test_pinned_sha256_fingerprint_match(fake_issuer: FakeIssuer) -> None:
    fake_issuer.certificate = FAKE_CERT
    pinned = hashlib.sha256(FAKE_CERT).hexdigest()

    async with fake_issuer.client() as http:
        anchor = await _resolver(http).resolve(_provider(fingerprints=[pinned]))

    assert set(anchor.keys) == {"k1"}


@pytest.mark.asyncio
async def test_unpinned_anchor_is_not_reused_for_pinned_provider(fake_issuer: FakeIssuer) -> None:
    fake_issuer.certificate = FAKE_CERT
    async with fake_issuer.client() as http:
        resolver = _resolver(http)
        await resolver.resolve(_provider())

        with pytest.raises(UntrustedIssuer):
            await resolver.resolve(_provider(fingerprints=["00" * 20]))
        with pytest.raises(UntrustedIssuer):
            await resolver.refresh(_provider(fingerprints=["00" * 20]))

        pinned = await resolver.resolve(_provider(fingerprints=[hashlib.sha256(FAKE_CERT).hexdigest()]))

    assert pinned.fingerprints == (hashlib.sha256(FAKE_CERT).hexdigest().upper(),)
    assert fake_issuer.discovery_calls == 4


@pytest.mark.asyncio
async def test_pinned_fingerprint_mismatch_is_untrusted(fake_issuer: FakeIssuer) -> None:
    fake_issuer.certificate = FAKE_CERT
    async with fake_issuer.client() as http:
        with pytest.raises(UntrustedIssuer):
            await _resolver(http).resolve(_provider(fingerprints=["00" * 20]))

    # The key set is never fetched from an untrusted peer.
    assert fake_issuer.jwks_calls == 0


@pytest.mark.asyncio
async def test_pinning_without_tls_certificate_is_untrusted(fake_issuer: FakeIssuer) -> None:
    async with fake_issuer.client() as http:
        with pytest.raises(UntrustedIssuer):
            await _resolver(http).resolve(_provider(fingerprints=["AB" * 20]))


@pytest.mark.asyncio
async def test_refresh_picks_up_rotated_keys(fake_issuer: FakeIssuer) -> None:
    async with fake_issuer.client() as http:
        resolver = _resolver(http)
        await resolver.resolve(_provider())
        fake_issuer.add_key("k2")
        anchor = await resolver.refresh(_provider())

    assert set(anchor.keys) == {"k1", "k2"}
    assert fake_issuer.jwks_calls == 2


@pytest.mark.asyncio
async def test_refresh_is_skipped_for_fresh_anchor(fake_issuer: FakeIssuer) -> None:
    async with fake_issuer.client() as http:
        resolver = _resolver(http, min_refresh=60.0)
        await resolver.resolve(_provider())
        await resolver.refresh(_provider())
        await resolver.refresh(_provider())

    assert fake_issuer.jwks_calls == 1


def test_parse_key_set_skips_unusable_keys(fake_issuer: FakeIssuer) -> None:
    document = fake_issuer.jwks()
    document["keys"] += [
        {"kty": "oct", "kid": "hmac", "k": "c2VjcmV0"},
        {**document["keys"][0], "kid": "enc", "use": "enc"},
        {**document["keys"][0], "kid": None},
        "not-a-key",
    ]

    keys = parse_key_set(document, issuer=ISSUER)

    assert set(keys) == {"k1"}


def test_parse_key_set_without_usable_keys_is_unavailable() -> None:
    with pytest.raises(TrustAnchorUnavailable):
        parse_key_set({"keys": [{"kty": "oct", "kid": "hmac", "k": "c2VjcmV0"}]}, issuer=ISSUER)
    with pytest.raises(TrustAnchorUnavailable):
        parse_key_set({"nope": []}, issuer=ISSUER)

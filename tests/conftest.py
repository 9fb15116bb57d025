"""
tests.conftest

Shared fixtures for the engine and API tests.

Responsibilities:
- Provide a fake upstream issuer with one published key (`k1`).
- Provide a provider and settings tuned for fast tests (no backoff, no refresh floor).
- Provide a call-counting signing backend over a session-wide RSA key.
"""

from __future__ import annotations

import pytest
from fakes import AUDIENCE, ISSUER, CountingBackend, FakeIssuer

from tokenbridge.settings import ProviderSettings, Settings
from tokenbridge.signing.local import LocalKeyBackend


@pytest.fixture
def fake_issuer() -> FakeIssuer:
    issuer = FakeIssuer()
    issuer.add_key("k1")
    return issuer


@pytest.fixture
def provider() -> ProviderSettings:
    return ProviderSettings(
        name="ci",
        issuer_url=ISSUER,
        audiences=[AUDIENCE],
        forwarded_claims=["repository"],
    )


@pytest.fixture
def settings(provider: ProviderSettings) -> Settings:
    return Settings(
        env="test",
        providers=[provider],
        public_url="https://bridge.example",
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        trust_anchor_min_refresh_seconds=0.0,
        remote_timeout_seconds=1.0,
    )


@pytest.fixture(scope="session")
def local_backend() -> LocalKeyBackend:
    # RSA key generation is slow enough to share one key across the session.
    return LocalKeyBackend.generate(algorithm="RS256", key_id="bridge-key-1")


@pytest.fixture
def backend(local_backend: LocalKeyBackend) -> CountingBackend:
    return CountingBackend(local_backend)


# --- Module Notes -----------------------------------------------------------
# `fakes` is importable because pytest puts `tests/` on sys.path (see pyproject).

"""
tests.test_claims

Outbound claim composition and the reserved-claim policy.
"""

from __future__ import annotations

import pytest

from tokenbridge.errors import ClaimValidationFailed, ReservedClaimOverwrite
from tokenbridge.issuance.claims import RESERVED_CLAIMS, ClaimsComposer

BRIDGE = "https://bridge.example"
VERIFIED = {
    "iss": "https://token.actions.githubusercontent.com",
    "sub": "repo:org/name:ref:refs/heads/main",
    "aud": ["bridge"],
    "exp": 2_000_000_300,
    "iat": 2_000_000_000,
    "repository": "org/name",
    "actor": "someone",
}


def _composer(**kw) -> ClaimsComposer:
    kw.setdefault("lifetime_seconds", 900)
    return ClaimsComposer(clock=lambda: 1_700_000_000.4, token_id=lambda: "jti-1", **kw)


def test_reserved_claims_come_from_verified_token_and_bridge() -> None:
    claims = _composer().compose(VERIFIED, {}, issuer=BRIDGE)

    assert claims == {
        "iss": BRIDGE,
        "sub": VERIFIED["sub"],
        "aud": ["bridge"],
        "iat": 1_700_000_000,
        "nbf": 1_700_000_000,
        "exp": 1_700_000_900,
        "jti": "jti-1",
    }


def test_disjoint_custom_claims_are_merged_verbatim() -> None:
    custom = {"environment": "staging", "team": {"name": "infra", "ids": [1, 2]}}

    claims = _composer().compose(VERIFIED, custom, issuer=BRIDGE)

    assert set(claims) == RESERVED_CLAIMS | set(custom)
    assert claims["team"] == {"name": "infra", "ids": [1, 2]}


@pytest.mark.parametrize("name", sorted(RESERVED_CLAIMS))
def test_every_reserved_name_is_refused(name: str) -> None:
    with pytest.raises(ReservedClaimOverwrite) as exc:
        _composer().compose(VERIFIED, {"ok": 1, name: "x"}, issuer=BRIDGE)

    assert exc.value.name == name
    assert exc.value.status_code == 401


def test_reserved_issuer_overwrite_message() -> None:
    with pytest.raises(ReservedClaimOverwrite) as exc:
        _composer().compose(VERIFIED, {"iss": "https://evil.example"}, issuer=BRIDGE)

    assert str(exc.value) == "custom claim 'iss' cannot overwrite reserved claims"


def test_forwarded_claims_are_copied_and_reserved() -> None:
    composer = _composer(forwarded_claims=["repository", "missing"])

    claims = composer.compose(VERIFIED, None, issuer=BRIDGE)
    assert claims["repository"] == "org/name"
    assert "missing" not in claims
    assert "actor" not in claims

    with pytest.raises(ReservedClaimOverwrite):
        composer.compose(VERIFIED, {"repository": "org/other"}, issuer=BRIDGE)


def test_empty_claim_names_are_ignored() -> None:
    claims = _composer().compose(VERIFIED, {"": "dropped", "x": 1}, issuer=BRIDGE)

    assert "" not in claims
    assert claims["x"] == 1


def test_configured_audience_replaces_inbound_audience() -> None:
    claims = _composer(audience=["sts.amazonaws.com"]).compose(VERIFIED, {}, issuer=BRIDGE)
    assert claims["aud"] == ["sts.amazonaws.com"]


def test_missing_subject_is_rejected() -> None:
    verified = {k: v for k, v in VERIFIED.items() if k != "sub"}

    with pytest.raises(ClaimValidationFailed):
        _composer().compose(verified, {}, issuer=BRIDGE)


def test_composition_does_not_mutate_inputs() -> None:
    custom = {"environment": "prod"}
    verified = dict(VERIFIED)

    _composer().compose(verified, custom, issuer=BRIDGE)

    assert custom == {"environment": "prod"}
    assert verified == VERIFIED

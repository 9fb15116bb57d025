"""
tokenbridge.issuance.claims

Outbound claim composition under the reserved-claim policy.

Responsibilities:
- Derive the reserved claims (iss/sub/aud/iat/nbf/exp/jti) from the verified token
  and the bridge's own identity.
- Merge caller-supplied custom claims, rejecting any that collide with a reserved
  name. A collision fails the whole composition.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from tokenbridge.errors import ClaimValidationFailed, ReservedClaimOverwrite
from tokenbridge.observability.logging import get_logger

log = get_logger(__name__)

RESERVED_CLAIMS: frozenset[str] = frozenset({"iss", "sub", "aud", "iat", "nbf", "exp", "jti"})


class ClaimsComposer:
    """
    Pure function object configured per provider: `(verified, custom) -> claims`.
    """

    def __init__(
        self,
        *,
        lifetime_seconds: int,
        audience: Sequence[str] | None = None,
        forwarded_claims: Sequence[str] = (),
        clock: Callable[[], float] = time.time,
        token_id: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._lifetime = lifetime_seconds
        self._audience = list(audience) if audience else None
        self._forwarded = tuple(c for c in forwarded_claims if c not in RESERVED_CLAIMS)
        self._clock = clock
        self._token_id = token_id

    @property
    def reserved_names(self) -> frozenset[str]:
        # Forwarded provider claims are as authoritative as the base set.
        return RESERVED_CLAIMS | frozenset(self._forwarded)

    def compose(
        self,
        verified: Mapping[str, Any],
        custom: Mapping[str, Any] | None,
        *,
        issuer: str,
    ) -> dict[str, Any]:
        subject = verified.get("sub")
        if not isinstance(subject, str) or not subject:
            raise ClaimValidationFailed("token claims are invalid", reason="sub is missing")

        now = int(self._clock())
        claims: dict[str, Any] = {
            "iss": issuer,
            "sub": subject,
            "aud": self._audience if self._audience is not None else verified.get("aud"),
            "iat": now,
            "nbf": now,
            "exp": now + self._lifetime,
            "jti": self._token_id(),
        }
        for name in self._forwarded:
            if name in verified:
                claims[name] = verified[name]

        reserved = self.reserved_names
        merged = dict(claims)
        for name, value in (custom or {}).items():
            if not name:
                continue
            if name in reserved:
                log.warning("reserved_claim_overwrite", claim=name)
                raise ReservedClaimOverwrite(name)
            merged[name] = value
        return merged

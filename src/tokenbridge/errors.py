"""
tokenbridge.errors

Error kinds raised by the exchange engine.

Responsibilities:
- Give every failure a stable machine-readable code and an HTTP status class.
- Record the responsible component and the specific reason for logging.

Policy failures (untrusted issuer through reserved-claim overwrite) are terminal and
never retried. Unavailability failures may be retried at the remote call site only.
"""

from __future__ import annotations


class TokenBridgeError(Exception):
    """
    Base class for all exchange failures.

    `message` is safe to return to the caller; `reason` carries extra detail that is
    only logged. Neither may contain key material or raw signing input.
    """

    code: str = "server_error"
    status_code: int = 500
    component: str = "engine"

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or message

    def log_fields(self) -> dict[str, str]:
        return {"error_code": self.code, "component": self.component, "reason": self.reason}


class MalformedInput(TokenBridgeError):
    code = "invalid_request"
    status_code = 400
    component = "api"


# --- Verification / policy failures (401, never retried) -------------------


class UntrustedIssuer(TokenBridgeError):
    code = "untrusted_issuer"
    status_code = 401
    component = "trust_anchor_resolver"


class UnsupportedAlgorithm(TokenBridgeError):
    code = "unsupported_algorithm"
    status_code = 401
    component = "token_verifier"


class UnknownSigningKey(TokenBridgeError):
    code = "unknown_signing_key"
    status_code = 401
    component = "token_verifier"


class InvalidSignature(TokenBridgeError):
    code = "invalid_signature"
    status_code = 401
    component = "token_verifier"


class ClaimValidationFailed(TokenBridgeError):
    code = "invalid_claims"
    status_code = 401
    component = "token_verifier"


class ReservedClaimOverwrite(TokenBridgeError):
    code = "reserved_claim_overwrite"
    status_code = 401
    component = "claims_composer"

    def __init__(self, name: str) -> None:
        super().__init__(f"custom claim '{name}' cannot overwrite reserved claims")
        self.name = name


# --- Transient infrastructure failures (500) -------------------------------


class TrustAnchorUnavailable(TokenBridgeError):
    code = "trust_anchor_unavailable"
    status_code = 500
    component = "trust_anchor_resolver"


class SigningUnavailable(TokenBridgeError):
    code = "signing_unavailable"
    status_code = 500
    component = "signer"


class KeySetUnavailable(TokenBridgeError):
    code = "key_set_unavailable"
    status_code = 500
    component = "key_set_publisher"


# --- Module Notes -----------------------------------------------------------
# The API layer maps these to responses in a single exception handler
# (see `tokenbridge.api.app`), so routers never build error bodies themselves.

"""
tokenbridge.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Describe the trusted OIDC providers (issuer, audiences, pinned certificates).
- Hide signing backend identifiers from repr/logging.
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GITHUB_ACTIONS_ISSUER = "https://token.actions.githubusercontent.com"
GITHUB_ACTIONS_FINGERPRINT = "D89E3BD43D5D909B47A18977AA9D5CE36CEE184C"

ASYMMETRIC_ALGORITHMS: tuple[str, ...] = (
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "EdDSA",
)


class ProviderSettings(BaseModel):
    """
    One trusted upstream OIDC issuer and the policy for tokens bridged from it.
    """

    name: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9][a-z0-9_-]*$")
    issuer_url: str
    audiences: list[str] = Field(min_length=1)

    # Hex SHA-1 or SHA-256 fingerprints of a certificate in the issuer's TLS chain.
    fingerprints: list[str] = Field(default_factory=list)
    algorithms: list[str] = Field(default_factory=lambda: list(ASYMMETRIC_ALGORITHMS))

    # Outbound token policy.
    token_audience: list[str] | None = None
    forwarded_claims: list[str] = Field(default_factory=list)
    token_lifetime_seconds: int = Field(default=3600, ge=60, le=24 * 3600)

    @field_validator("issuer_url")
    @classmethod
    def _https_issuer(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError("issuer_url must use https")
        return v

    @field_validator("fingerprints")
    @classmethod
    def _normalize_fingerprints(cls, v: list[str]) -> list[str]:
        out = []
        for fp in v:
            norm = fp.replace(":", "").strip().upper()
            if len(norm) not in (40, 64) or any(c not in "0123456789ABCDEF" for c in norm):
                raise ValueError(f"invalid certificate fingerprint: {fp!r}")
            out.append(norm)
        return out

    @field_validator("algorithms")
    @classmethod
    def _asymmetric_only(cls, v: list[str]) -> list[str]:
        bad = [a for a in v if a not in ASYMMETRIC_ALGORITHMS]
        if bad:
            raise ValueError(f"unsupported verification algorithms: {bad}")
        return v


def _default_providers() -> list[ProviderSettings]:
    return [
        ProviderSettings(
            name="github",
            issuer_url=GITHUB_ACTIONS_ISSUER,
            audiences=["tokenbridge"],
            fingerprints=[GITHUB_ACTIONS_FINGERPRINT],
        )
    ]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TOKENBRIDGE_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "tokenbridge"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Own issuer URL; derived from the request base URL when unset.
    public_url: str | None = None

    providers: list[ProviderSettings] = Field(default_factory=_default_providers)

    # Signing backend
    signer_backend: Literal["local", "kms"] = "local"
    kms_key_id: str | None = Field(default=None, repr=False)
    kms_signing_algorithm: str = "RSASSA_PKCS1_V1_5_SHA_256"
    kms_region: str | None = None
    local_private_key_path: str | None = Field(default=None, repr=False)
    local_signing_algorithm: str = "RS256"
    local_key_id: str | None = None

    # Caches
    trust_anchor_ttl_seconds: float = 3600.0
    trust_anchor_min_refresh_seconds: float = 10.0
    public_key_ttl_seconds: float = 3600.0
    jwks_ttl_seconds: float = 300.0

    # Remote calls
    remote_timeout_seconds: float = 5.0
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = 0.1
    retry_max_delay_seconds: float = 2.0

    clock_skew_seconds: int = 60

    @model_validator(mode="after")
    def _check_backend(self) -> Settings:
        if self.signer_backend == "kms" and not self.kms_key_id:
            raise ValueError("kms_key_id is required when signer_backend=kms")
        if self.env == "prod" and self.signer_backend == "local" and not self.local_private_key_path:
            raise ValueError("prod requires a persistent signing key")
        if self.local_signing_algorithm not in ASYMMETRIC_ALGORITHMS:
            raise ValueError(f"unsupported local_signing_algorithm: {self.local_signing_algorithm}")
        names = [p.name for p in self.providers]
        if len(names) != len(set(names)):
            raise ValueError("provider names must be unique")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Providers are supplied as JSON, e.g.
#   TOKENBRIDGE_PROVIDERS='[{"name": "k8s", "issuer_url": "https://...", "audiences": ["bridge"]}]'

"""
tokenbridge.orchestrator.engine

Exchange orchestrator: Verifier -> Composer -> Issuer for one provider.

Responsibilities:
- Drive one request through RECEIVED -> VERIFIED -> COMPOSED -> ISSUED -> COMPLETED.
- Stop at the first failure (REJECTED) and re-raise it unchanged.
- Hold no per-request state between calls; only collaborator references.
"""

from __future__ import annotations

from tokenbridge.errors import TokenBridgeError
from tokenbridge.issuance.claims import ClaimsComposer
from tokenbridge.issuance.tokens import IssuedToken, TokenIssuer
from tokenbridge.observability.logging import get_logger
from tokenbridge.orchestrator.state import ExchangeRequest, ExchangeState, advance
from tokenbridge.settings import ProviderSettings
from tokenbridge.trust.verifier import TokenVerifier

log = get_logger(__name__)


class ExchangeOrchestrator:
    def __init__(
        self,
        *,
        provider: ProviderSettings,
        verifier: TokenVerifier,
        composer: ClaimsComposer,
        issuer: TokenIssuer,
    ) -> None:
        self._provider = provider
        self._verifier = verifier
        self._composer = composer
        self._issuer = issuer

    @property
    def provider(self) -> ProviderSettings:
        return self._provider

    def _advance(self, current: ExchangeState, nxt: ExchangeState) -> ExchangeState:
        state = advance(current, nxt)
        log.debug("exchange_transition", provider=self._provider.name, state=str(state))
        return state

    async def exchange(self, request: ExchangeRequest) -> IssuedToken:
        state = ExchangeState.received
        log.debug("exchange_transition", provider=self._provider.name, state=str(state))
        try:
            verified = await self._verifier.verify(request.subject_token, self._provider)
            state = self._advance(state, ExchangeState.verified)

            claims = self._composer.compose(verified, request.custom_claims, issuer=request.issuer)
            state = self._advance(state, ExchangeState.composed)

            issued = await self._issuer.issue(claims)
            state = self._advance(state, ExchangeState.issued)
        except TokenBridgeError as e:
            log.warning(
                "exchange_rejected",
                provider=self._provider.name,
                state=str(state),
                **e.log_fields(),
            )
            self._advance(state, ExchangeState.rejected)
            raise

        self._advance(state, ExchangeState.completed)
        log.info("exchange_completed", provider=self._provider.name, kid=issued.key_id)
        return issued

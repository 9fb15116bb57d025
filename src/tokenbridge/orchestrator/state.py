"""
tokenbridge.orchestrator.state

Per-request exchange state machine.

Responsibilities:
- Name the exchange states and the legal transitions between them.
- Carry the inputs of one exchange request.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class ExchangeState(enum.StrEnum):
    received = "RECEIVED"
    verified = "VERIFIED"
    composed = "COMPOSED"
    issued = "ISSUED"
    completed = "COMPLETED"
    rejected = "REJECTED"


# Linear happy path; rejection is reachable from every non-terminal state.
TRANSITIONS: dict[ExchangeState, frozenset[ExchangeState]] = {
    ExchangeState.received: frozenset({ExchangeState.verified, ExchangeState.rejected}),
    ExchangeState.verified: frozenset({ExchangeState.composed, ExchangeState.rejected}),
    ExchangeState.composed: frozenset({ExchangeState.issued, ExchangeState.rejected}),
    ExchangeState.issued: frozenset({ExchangeState.completed, ExchangeState.rejected}),
    ExchangeState.completed: frozenset(),
    ExchangeState.rejected: frozenset(),
}


def advance(current: ExchangeState, nxt: ExchangeState) -> ExchangeState:
    if nxt not in TRANSITIONS[current]:
        raise RuntimeError(f"illegal exchange transition {current} -> {nxt}")
    return nxt


@dataclass(frozen=True, slots=True)
class ExchangeRequest:
    subject_token: str
    # This bridge's own issuer URL for the outbound token.
    issuer: str
    custom_claims: dict[str, Any] = field(default_factory=dict)

"""Authorization flow models.

Contains the flow states, the per-attempt session values, and the outcome
returned to the caller after each call to authenticate.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from verity.models.tokens import FlowResult

# Session keys
NONCE_KEY = "openid_connect_nonce"
STATE_KEY = "openid_connect_state"
CODE_VERIFIER_KEY = "openid_connect_code_verifier"


class FlowState(str, Enum):
    IDLE = "idle"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    CODE_RECEIVED = "code_received"
    IMPLICIT_RECEIVED = "implicit_received"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthSessionState:
    """Values stored in the session for one authorization attempt.

    Read once when the callback arrives and erased from the session in the
    same step, whatever the outcome of validation.
    """

    nonce: str | None = None
    state: str | None = None
    code_verifier: str | None = None


@dataclass(frozen=True)
class FlowOutcome:
    """What a call to authenticate produced.

    Either a redirect the caller must render (not yet authenticated) or a
    verified result.
    """

    state: FlowState
    redirect_url: str | None = None
    result: FlowResult | None = None

    @property
    def authenticated(self) -> bool:
        return self.state is FlowState.AUTHENTICATED and self.result is not None

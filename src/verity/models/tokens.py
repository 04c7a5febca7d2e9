"""Token response and token state models.

Contains the token endpoint response, the mutable token state kept by the
client, and the verified result of an authentication flow.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict

from verity.primitives.jwt import CompactToken


class TokenResponse(BaseModel):
    """Token endpoint response (RFC 6749 Section 5, OIDC Core 3.1.3.3).

    Represents both successful responses and error responses. Unknown
    members are preserved.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class FlowResult:
    """Verified outcome of an interactive authentication."""

    id_token: CompactToken
    access_token: str | None
    verified_claims: dict[str, Any]
    refresh_token: str | None = None
    token_response: dict[str, Any] | None = None


@dataclass
class TokenState:
    """Mutable token state held by the client between calls.

    Mutable to allow refresh without recreating the client.
    """

    id_token: CompactToken | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_response: dict[str, Any] | None = None
    verified_claims: dict[str, Any] = field(default_factory=dict)

    def update_from_result(self, result: FlowResult) -> None:
        self.id_token = result.id_token
        self.access_token = result.access_token
        self.verified_claims = result.verified_claims
        if result.token_response is not None:
            self.token_response = result.token_response
        if result.refresh_token:
            self.refresh_token = result.refresh_token

    def update_from_refresh(self, response: dict[str, Any]) -> None:
        """Apply a refresh-token grant response."""
        if response.get("access_token"):
            self.access_token = response["access_token"]
        if response.get("refresh_token"):
            self.refresh_token = response["refresh_token"]

    def clear(self) -> None:
        self.id_token = None
        self.access_token = None
        self.refresh_token = None
        self.token_response = None
        self.verified_claims = {}

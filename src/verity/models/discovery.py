"""Discovery-related models for OpenID Provider metadata.

Contains the immutable snapshot of the provider's
``/.well-known/openid-configuration`` document.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

WELL_KNOWN_SUFFIX = "/.well-known/openid-configuration"


class ProviderMetadata(BaseModel):
    """OpenID Provider Metadata (OpenID Connect Discovery 1.0 Section 3).

    Immutable: a refetch replaces the whole snapshot. Members beyond the
    typed ones are kept as extra fields so any advertised value can be read
    with :meth:`value`.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    issuer: str | None = None

    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    jwks_uri: str | None = None
    end_session_endpoint: str | None = None
    registration_endpoint: str | None = None
    introspection_endpoint: str | None = None
    revocation_endpoint: str | None = None
    pushed_authorization_request_endpoint: str | None = None

    token_endpoint_auth_methods_supported: list[str] | None = None
    introspection_endpoint_auth_methods_supported: list[str] | None = None
    revocation_endpoint_auth_methods_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None

    def value(self, name: str) -> Any:
        """Return an advertised member, typed or extra, or None."""
        if name in type(self).model_fields:
            return getattr(self, name)
        return (self.model_extra or {}).get(name)

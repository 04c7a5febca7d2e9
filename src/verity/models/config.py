"""Relying-party configuration model.

Validated once when the client is constructed so that invalid settings fail
before any request is sent.
"""

from __future__ import annotations

from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CACHE_TTL = 86400  # one day

SUPPORTED_AUTH_METHODS = ("client_secret_basic", "client_secret_post", "client_secret_jwt")


class ClientConfig(BaseModel):
    """Settings for one relying party talking to one provider."""

    provider_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    issuer: str | None = None  # defaults to provider_url
    client_name: str | None = None
    redirect_uri: str | None = None

    scopes: list[str] = Field(default_factory=list)
    response_types: list[str] = Field(default_factory=list)
    auth_params: dict[str, Any] = Field(default_factory=dict)
    registration_params: dict[str, Any] = Field(default_factory=dict)

    code_challenge_method: Literal["S256", "plain"] | None = None
    authentication_method: str | None = None
    allow_implicit_flow: bool = False

    # Seconds; bounds outbound fetches and client_secret_jwt lifetime
    timeout: int = 60
    well_known_cache_ttl: int = Field(default=DEFAULT_CACHE_TTL, ge=0)
    key_cache_ttl: int = Field(default=DEFAULT_CACHE_TTL, ge=0)

    well_known_params: dict[str, str] = Field(default_factory=dict)
    provider_config: dict[str, Any] = Field(default_factory=dict)
    additional_jwks: list[dict[str, Any]] = Field(default_factory=list)

    http_proxy: str | None = None
    cert_path: str | None = None
    verify_peer: bool = True
    verify_host: bool = True
    url_encoding: Literal["rfc1738", "rfc3986"] = "rfc1738"

    @field_validator("redirect_uri")
    @classmethod
    def validate_redirect_uri(cls, v: str | None) -> str | None:
        if v is not None and not urlparse(v).hostname:
            raise ValueError(f"Invalid redirect URL provided: {v}")
        return v

    @field_validator("authentication_method")
    @classmethod
    def validate_authentication_method(cls, v: str | None) -> str | None:
        if v == "private_key_jwt":
            raise ValueError("Authentication method `private_key_jwt` is not supported")
        if v is not None and v not in SUPPORTED_AUTH_METHODS:
            raise ValueError(f"Unknown authentication method `{v}` provided.")
        return v

    @model_validator(mode="after")
    def default_issuer(self) -> ClientConfig:
        if self.issuer is None:
            self.issuer = self.provider_url
        return self

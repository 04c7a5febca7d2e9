"""OpenID Connect relying-party client.

Wires discovery, key resolution, signature verification, claim validation,
client authentication and the authorization flow into one object that a web
application drives with its request and session.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from pydantic import ValidationError

from verity.models.config import ClientConfig
from verity.models.errors import ConfigurationError
from verity.models.flow import FlowOutcome, FlowState
from verity.models.registration import ClientCredentials
from verity.models.tokens import TokenState
from verity.primitives.cache import Cache, NullCache
from verity.primitives.http import Fetcher, HttpFetcher
from verity.primitives.jwt import CompactToken
from verity.primitives.session import RequestContext, SessionStore
from verity.services.claims import ClaimsValidator, DefaultIssuerValidator, IssuerValidator
from verity.services.client_auth import ClientAuthenticator
from verity.services.discovery import MetadataCache
from verity.services.flow import FlowEngine, RedirectHandler
from verity.services.keys import KeyResolver
from verity.services.registration import ClientRegistrar
from verity.services.signature import SignatureVerifier
from verity.services.tokens import TokenEndpoint
from verity.services.userinfo import UserInfoClient

logger = logging.getLogger(__name__)


def build_config(config: ClientConfig | None = None, **settings: Any) -> ClientConfig:
    """Validate settings into a ClientConfig.

    Raises:
        ConfigurationError: If any setting is invalid
    """
    try:
        if config is None:
            return ClientConfig(**settings)
        if settings:
            return ClientConfig.model_validate({**config.model_dump(), **settings})
        return config
    except ValidationError as e:
        raise ConfigurationError(f"Invalid client configuration: {e}") from e


class OpenIDConnectClient:
    """Relying party for a single OpenID Provider.

    Settings are validated at construction. Capabilities (fetch, cache,
    issuer acceptance, redirect, clock) can be injected; defaults are an
    httpx-backed fetcher, a no-op cache and the configured/discovered issuer.

    Example:
        client = OpenIDConnectClient(
            provider_url="https://id.example.com",
            client_id="app",
            client_secret="secret",
            redirect_uri="https://app.example.com/callback",
        )
        outcome = client.authenticate(RequestContext.from_url(url), session)
        if outcome.authenticated:
            subject = client.get_verified_claims("sub")
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        fetcher: Fetcher | None = None,
        cache: Cache | None = None,
        issuer_validator: IssuerValidator | None = None,
        redirect_handler: RedirectHandler | None = None,
        clock: Callable[[], float] = time.time,
        **settings: Any,
    ):
        """Initialize the client.

        Args:
            config: Validated configuration; keyword settings override it
            fetcher: Fetch capability; defaults to HttpFetcher
            cache: Shared metadata/key cache; defaults to a no-op cache
            issuer_validator: Decides which ``iss`` values are accepted
            redirect_handler: Called with the URL at each redirect point
            clock: Current time in seconds
            **settings: ClientConfig fields

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = build_config(config, **settings)
        self._owns_fetcher = fetcher is None
        self._fetcher = fetcher or HttpFetcher(
            timeout=self.config.timeout,
            proxy=self.config.http_proxy,
            cert_path=self.config.cert_path,
            verify_peer=self.config.verify_peer,
            verify_host=self.config.verify_host,
            url_encoding=self.config.url_encoding,
        )
        self._cache = cache or NullCache()
        self._custom_issuer_validator = issuer_validator
        self._redirect_handler = redirect_handler
        self._clock = clock

        self.metadata = MetadataCache(
            self.config.provider_url,
            self._fetcher,
            cache=self._cache,
            ttl=self.config.well_known_cache_ttl,
            well_known_params=self.config.well_known_params,
            overrides=self.config.provider_config,
        )
        self.keys = KeyResolver(
            self.metadata,
            self._fetcher,
            cache=self._cache,
            ttl=self.config.key_cache_ttl,
            additional_keys=self.config.additional_jwks,
        )
        self.tokens = TokenState()
        self._user_info: dict[str, Any] | None = None
        self._wire_client()

    def _wire_client(self) -> None:
        """(Re)build the services that depend on the client credentials."""
        config = self.config
        self.verifier = SignatureVerifier(self.keys, config.client_secret)
        self.claims = ClaimsValidator(
            config.client_id,
            self._custom_issuer_validator
            or DefaultIssuerValidator(config.issuer, self.metadata),
            clock=self._clock,
        )
        self.authenticator = ClientAuthenticator(
            config.client_id,
            config.client_secret,
            method=config.authentication_method,
            timeout=config.timeout,
            clock=self._clock,
        )
        self.token_endpoint = TokenEndpoint(self.metadata, self._fetcher, self.authenticator)
        self.registrar = ClientRegistrar(self.metadata, self._fetcher)
        self.userinfo = UserInfoClient(self.metadata, self._fetcher, self.verifier)
        self.flow = FlowEngine(
            config,
            self.metadata,
            self.token_endpoint,
            self.verifier,
            self.claims,
            redirect_handler=self._redirect_handler,
        )

    # Interactive flow

    def authenticate(
        self, request: RequestContext | None = None, session: SessionStore | None = None
    ) -> FlowOutcome:
        """Run one step of the interactive flow.

        Returns a redirect outcome on the first call and the verified result
        once the provider calls back. Verified tokens are kept on the client.

        Raises:
            ConfigurationError: If no session store is given
            OIDCError: Any failure of the flow
        """
        if session is None:
            raise ConfigurationError("A session store is required to authenticate")
        outcome = self.flow.authenticate(request or RequestContext(), session)
        if outcome.authenticated:
            self.tokens.update_from_result(outcome.result)
            self._user_info = None
        return outcome

    @property
    def state(self) -> FlowState:
        return self.flow.state

    def redirect_url(self, request: RequestContext | None = None) -> str:
        return self.flow.redirect_uri(request)

    def sign_out(self, id_token: str, post_logout_redirect: str | None = None) -> str:
        """Redirect the user agent to the provider's end-session endpoint.

        Returns:
            The logout URL, also passed to the redirect handler
        """
        url = self.flow.sign_out_url(id_token, post_logout_redirect)
        self.flow.redirect(url)
        return url

    def process_logout_token(self, logout_token: str) -> dict[str, Any]:
        """Verify a back-channel logout token and return its claims.

        Raises:
            SignatureVerificationFailure: If the signature does not verify
            ClaimValidationFailure: If a logout token rule fails
        """
        token = CompactToken(logout_token)
        self.verifier.require_valid(token, "Unable to verify signature of logout token")
        claims = token.payload()
        self.claims.validate_logout_token(claims)
        logger.info(
            f"Accepted logout token for sub={claims.get('sub')} sid={claims.get('sid')}"
        )
        return claims

    # Claims

    def get_verified_claims(self, attribute: str | None = None) -> Any:
        """Verified ID token claims, or one claim (None when absent)."""
        if attribute is None:
            return self.tokens.verified_claims
        return self.tokens.verified_claims.get(attribute)

    def request_user_info(self, attribute: str | None = None) -> Any:
        """Claims from the userinfo endpoint, fetched once per login.

        Raises:
            ConfigurationError: If no access token is held
        """
        if self._user_info is None:
            if not self.tokens.access_token:
                raise ConfigurationError("An access token is required to request user info")
            self._user_info = self.userinfo.fetch(self.tokens.access_token)
        if attribute is None:
            return self._user_info
        return self._user_info.get(attribute)

    # Non-interactive grants

    def request_client_credentials_token(self) -> dict[str, Any]:
        data = self.token_endpoint.client_credentials(self.config.scopes)
        self._store_grant(data)
        return data

    def request_resource_owner_token(
        self, username: str, password: str, client_auth: bool = False
    ) -> dict[str, Any]:
        data = self.token_endpoint.resource_owner(
            username, password, self.config.scopes, client_auth
        )
        self._store_grant(data)
        return data

    def refresh_token(self, refresh_token: str | None = None) -> dict[str, Any]:
        """Exchange a refresh token; defaults to the stored one.

        Stored access and refresh tokens are replaced on success.
        """
        refresh_token = refresh_token or self.tokens.refresh_token
        if not refresh_token:
            raise ConfigurationError("No refresh token available")
        data = self.token_endpoint.refresh(refresh_token, self.config.scopes)
        self.tokens.update_from_refresh(data)
        self.tokens.token_response = data
        logger.info("Refreshed access token")
        return data

    def _store_grant(self, data: dict[str, Any]) -> None:
        self.tokens.token_response = data
        if data.get("access_token"):
            self.tokens.access_token = data["access_token"]
        if data.get("refresh_token"):
            self.tokens.refresh_token = data["refresh_token"]

    def introspect_token(self, token: str, token_type_hint: str | None = None) -> dict[str, Any]:
        return self.token_endpoint.introspect(token, token_type_hint)

    def revoke_token(self, token: str, token_type_hint: str | None = None) -> bool:
        return self.token_endpoint.revoke(token, token_type_hint)

    # Registration

    def register(self, request: RequestContext | None = None) -> ClientCredentials:
        """Register dynamically and adopt the issued credentials."""
        credentials = self.registrar.register(
            self.redirect_url(request),
            self.config.client_name,
            self.config.registration_params,
        )
        self.config = self.config.model_copy(
            update={
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
            }
        )
        self._wire_client()
        return credentials

    # Settings

    def add_scope(self, *scopes: str) -> None:
        for scope in scopes:
            if scope not in self.config.scopes:
                self.config.scopes.append(scope)

    def add_response_type(self, *response_types: str) -> None:
        for response_type in response_types:
            if response_type not in self.config.response_types:
                self.config.response_types.append(response_type)

    def add_auth_param(self, params: dict[str, Any]) -> None:
        self.config.auth_params.update(params)

    def add_registration_param(self, params: dict[str, Any]) -> None:
        self.config.registration_params.update(params)

    def add_additional_jwk(self, jwk: dict[str, Any]) -> None:
        self.keys.add_key(jwk)

    def set_provider_config(self, values: dict[str, Any]) -> None:
        self.metadata.set(values)

    # Token access

    @property
    def access_token(self) -> str | None:
        return self.tokens.access_token

    @property
    def id_token(self) -> CompactToken | None:
        return self.tokens.id_token

    @property
    def token_response(self) -> dict[str, Any] | None:
        return self.tokens.token_response

    def close(self) -> None:
        """Close the default fetcher's connections."""
        if self._owns_fetcher and isinstance(self._fetcher, HttpFetcher):
            self._fetcher.close()

    def __enter__(self) -> OpenIDConnectClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

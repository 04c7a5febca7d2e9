"""Token endpoint and other authenticated provider endpoints.

Implements the direct requests of RFC 6749 (authorization code, client
credentials, resource owner password, refresh), pushed authorization
requests (RFC 9126), introspection (RFC 7662) and revocation (RFC 7009).
Requests are form encoded; responses are JSON.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from pydantic import ValidationError

from verity.models.errors import ProtocolError, TransportError
from verity.models.tokens import TokenResponse
from verity.primitives.http import FetchResponse, Fetcher
from verity.services.client_auth import ClientAuthenticator
from verity.services.discovery import MetadataCache

logger = logging.getLogger(__name__)

AUTHENTICATED_ENDPOINTS = ("token", "introspection", "pushed_authorization_request", "revocation")

DEFAULT_AUTH_METHODS = ["client_secret_basic"]


def decode_json_response(response: FetchResponse, what: str) -> dict[str, Any]:
    """Decode a JSON object body.

    Raises:
        TransportError: If a non-2xx response has no JSON body
        ProtocolError: If a 2xx response is not a JSON object
    """
    try:
        data = json.loads(response.body)
    except ValueError as e:
        if not response.is_success():
            raise TransportError(
                f"{what} failed with HTTP {response.status}: {response.body[:200]}"
            ) from e
        raise ProtocolError(f"Invalid JSON in {what} response") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"{what} response is not a JSON object")
    return data


def raise_for_error(data: dict[str, Any], what: str) -> None:
    """Raise ProtocolError when a response carries an OAuth ``error``."""
    error = data.get("error")
    if error is None:
        return
    description = data.get("error_description")
    logger.warning(f"{what} failed: {error} - {description or 'No description provided'}")
    if description:
        message = f"Error received from IdP: {description}"
    else:
        message = f"Got response: {error}"
    raise ProtocolError(message, error=str(error), description=description)


class TokenEndpoint:
    """Sends direct requests to the provider's authenticated endpoints."""

    def __init__(
        self,
        metadata: MetadataCache,
        fetcher: Fetcher,
        authenticator: ClientAuthenticator,
    ):
        self._metadata = metadata
        self._fetcher = fetcher
        self.authenticator = authenticator

    def endpoint_request_raw(
        self, params: dict[str, Any], endpoint_name: str = "token"
    ) -> FetchResponse:
        """POST ``params`` to a named endpoint with client authentication.

        Args:
            params: Form parameters
            endpoint_name: token, introspection, pushed_authorization_request
                or revocation

        Raises:
            ValueError: For any other endpoint name
            ConfigurationError: If the endpoint or auth method is unavailable
        """
        if endpoint_name not in AUTHENTICATED_ENDPOINTS:
            raise ValueError("Invalid endpoint name provided")

        endpoint = self._metadata.get(f"{endpoint_name}_endpoint")

        # PAR accepts the same client authentication as the token endpoint
        methods_for = "token" if endpoint_name == "pushed_authorization_request" else endpoint_name
        supported: Sequence[str] = self._metadata.get(
            f"{methods_for}_endpoint_auth_methods_supported", DEFAULT_AUTH_METHODS
        )

        token_endpoint = None
        if self.authenticator.method == "client_secret_jwt":
            # The assertion audience is always the token endpoint
            token_endpoint = self._metadata.get("token_endpoint")

        request = self.authenticator.authenticate(params, supported, token_endpoint)
        logger.debug(
            f"Endpoint request: endpoint={endpoint_name}, "
            f"grant_type={request.params.get('grant_type', 'none')}"
        )
        return self._fetcher.fetch(
            endpoint, method="POST", body=request.params, headers=request.headers
        )

    def endpoint_request(
        self, params: dict[str, Any], endpoint_name: str = "token"
    ) -> dict[str, Any]:
        """Authenticated request returning the decoded JSON object."""
        response = self.endpoint_request_raw(params, endpoint_name)
        return decode_json_response(response, endpoint_name)

    def request_tokens(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: str | None = None,
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        A public PKCE client (no secret) posts ``client_id`` and
        ``code_verifier`` without client authentication.

        Returns:
            TokenResponse: Parsed response, possibly an error response
        """
        params: dict[str, Any] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }

        if code_verifier is None:
            data = self.endpoint_request(params)
        elif self.authenticator.client_secret:
            params["code_verifier"] = code_verifier
            data = self.endpoint_request(params)
        else:
            params["client_id"] = self.authenticator.client_id
            params["code_verifier"] = code_verifier
            data = self._unauthenticated_token_request(params)

        try:
            return TokenResponse.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"Invalid token response format: {e}") from e

    def client_credentials(self, scopes: Sequence[str] = ()) -> dict[str, Any]:
        """Client credentials grant (RFC 6749 Section 4.4)."""
        params: dict[str, Any] = {"grant_type": "client_credentials"}
        if scopes:
            params["scope"] = " ".join(scopes)
        data = self.endpoint_request(params)
        raise_for_error(data, "Client credentials grant")
        return data

    def resource_owner(
        self,
        username: str,
        password: str,
        scopes: Sequence[str] = (),
        client_auth: bool = False,
    ) -> dict[str, Any]:
        """Resource owner password credentials grant (RFC 6749 Section 4.3).

        Args:
            username: Resource owner username
            password: Resource owner password
            scopes: Requested scopes
            client_auth: Authenticate the client as well
        """
        params = {
            "grant_type": "password",
            "username": username,
            "password": password,
            "scope": " ".join(scopes),
        }
        if client_auth:
            data = self.endpoint_request(params)
        else:
            data = self._unauthenticated_token_request(params)
        raise_for_error(data, "Resource owner grant")
        return data

    def refresh(self, refresh_token: str, scopes: Sequence[str] = ()) -> dict[str, Any]:
        """Refresh token grant (RFC 6749 Section 6)."""
        params = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": " ".join(scopes),
        }
        data = self.endpoint_request(params)
        raise_for_error(data, "Token refresh")
        return data

    def pushed_authorization_request(self, params: dict[str, Any]) -> dict[str, Any]:
        """Push authorization parameters (RFC 9126)."""
        data = self.endpoint_request(params, "pushed_authorization_request")
        raise_for_error(data, "Pushed authorization request")
        return data

    def introspect(self, token: str, token_type_hint: str | None = None) -> dict[str, Any]:
        """Token introspection (RFC 7662)."""
        params = {"token": token}
        if token_type_hint:
            params["token_type_hint"] = token_type_hint
        data = self.endpoint_request(params, "introspection")
        raise_for_error(data, "Token introspection")
        return data

    def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        """Token revocation (RFC 7009).

        Returns:
            True when the provider answers 200

        Raises:
            ProtocolError: For any other answer
        """
        params = {"token": token}
        if token_type_hint:
            params["token_type_hint"] = token_type_hint
        response = self.endpoint_request_raw(params, "revocation")
        if response.status == 200:
            return True
        data = decode_json_response(response, "revocation")
        raise_for_error(data, "Token revocation")
        raise ProtocolError(f"Token revocation failed with HTTP {response.status}")

    def _unauthenticated_token_request(self, params: dict[str, Any]) -> dict[str, Any]:
        token_endpoint = self._metadata.get("token_endpoint")
        response = self._fetcher.fetch(
            token_endpoint,
            method="POST",
            body=params,
            headers={"Accept": "application/json"},
        )
        return decode_json_response(response, "token")

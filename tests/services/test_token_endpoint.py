"""Tests for token endpoint requests.

Covers the authorization code exchange, the non-interactive grants, the
PAR/introspection/revocation wrappers and provider error handling.
"""

import json
from unittest.mock import MagicMock

import pytest

from tests.helpers import (
    CLIENT_ID,
    CLIENT_SECRET,
    INTROSPECTION_ENDPOINT,
    ISSUER,
    PAR_ENDPOINT,
    REDIRECT_URI,
    REVOCATION_ENDPOINT,
    TOKEN_ENDPOINT,
    WELL_KNOWN_URL,
    FakeFetcher,
    provider_document,
)
from verity.models.errors import ConfigurationError, ProtocolError, TransportError
from verity.primitives.http import FetchResponse
from verity.services.client_auth import ClientAuthenticator
from verity.services.discovery import MetadataCache
from verity.services.tokens import TokenEndpoint


def json_response(data, status: int = 200) -> FetchResponse:
    return FetchResponse(status, json.dumps(data), "application/json")


class TokenEndpointTest:
    def setup_method(self):
        # Arrange
        self.fetcher = MagicMock()
        self.fetcher.fetch.return_value = json_response(
            {"access_token": "at", "token_type": "Bearer", "id_token": "a.b.c"}
        )
        document = provider_document(
            pushed_authorization_request_endpoint=PAR_ENDPOINT,
            introspection_endpoint_auth_methods_supported=["client_secret_post"],
        )
        discovery = FakeFetcher()
        discovery.add(WELL_KNOWN_URL, document)
        self.metadata = MetadataCache(ISSUER, discovery)
        self.endpoint = self.make_endpoint()

    def make_endpoint(self, client_secret=CLIENT_SECRET, method=None) -> TokenEndpoint:
        authenticator = ClientAuthenticator(CLIENT_ID, client_secret, method=method)
        return TokenEndpoint(self.metadata, self.fetcher, authenticator)

    def sent(self):
        call_args = self.fetcher.fetch.call_args
        return call_args[0][0], call_args[1]


class TestAuthorizationCodeExchange(TokenEndpointTest):
    def test_exchange_posts_code_with_basic_auth(self):
        # Act
        response = self.endpoint.request_tokens("code-123", REDIRECT_URI)

        # Assert
        assert response.access_token == "at"
        assert response.id_token == "a.b.c"
        assert not response.is_error()

        url, kwargs = self.sent()
        assert url == TOKEN_ENDPOINT
        assert kwargs["method"] == "POST"
        assert kwargs["body"] == {
            "grant_type": "authorization_code",
            "code": "code-123",
            "redirect_uri": REDIRECT_URI,
        }
        assert kwargs["headers"]["Authorization"].startswith("Basic ")

    def test_confidential_pkce_client_authenticates_and_sends_verifier(self):
        # Act
        self.endpoint.request_tokens("code-123", REDIRECT_URI, code_verifier="v" * 43)

        # Assert
        _, kwargs = self.sent()
        assert kwargs["body"]["code_verifier"] == "v" * 43
        assert "Authorization" in kwargs["headers"]

    def test_public_pkce_client_sends_client_id_without_auth(self):
        # Arrange
        endpoint = self.make_endpoint(client_secret=None)

        # Act
        endpoint.request_tokens("code-123", REDIRECT_URI, code_verifier="v" * 43)

        # Assert
        _, kwargs = self.sent()
        assert kwargs["body"]["client_id"] == CLIENT_ID
        assert kwargs["body"]["code_verifier"] == "v" * 43
        assert "Authorization" not in kwargs["headers"]

    def test_error_response_is_returned_for_caller_to_inspect(self):
        # Arrange
        self.fetcher.fetch.return_value = json_response(
            {"error": "invalid_grant", "error_description": "Code expired"}, status=400
        )

        # Act
        response = self.endpoint.request_tokens("code-123", REDIRECT_URI)

        # Assert
        assert response.is_error()
        assert response.error == "invalid_grant"

    def test_non_json_error_raises_transport_error(self):
        # Arrange
        self.fetcher.fetch.return_value = FetchResponse(502, "Bad Gateway", "text/html")

        # Act / Assert
        with pytest.raises(TransportError):
            self.endpoint.request_tokens("code-123", REDIRECT_URI)

    def test_non_json_success_raises_protocol_error(self):
        # Arrange
        self.fetcher.fetch.return_value = FetchResponse(200, "not json", "text/plain")

        # Act / Assert
        with pytest.raises(ProtocolError):
            self.endpoint.request_tokens("code-123", REDIRECT_URI)


class TestNonInteractiveGrants(TokenEndpointTest):
    def test_client_credentials_grant(self):
        # Act
        data = self.endpoint.client_credentials(["api.read", "api.write"])

        # Assert
        assert data["access_token"] == "at"
        _, kwargs = self.sent()
        assert kwargs["body"] == {"grant_type": "client_credentials", "scope": "api.read api.write"}

    def test_resource_owner_grant_without_client_auth(self):
        # Act
        self.endpoint.resource_owner("alice", "pw", ["openid"])

        # Assert
        url, kwargs = self.sent()
        assert url == TOKEN_ENDPOINT
        assert kwargs["body"] == {
            "grant_type": "password",
            "username": "alice",
            "password": "pw",
            "scope": "openid",
        }
        assert "Authorization" not in kwargs["headers"]

    def test_resource_owner_grant_with_client_auth(self):
        # Act
        self.endpoint.resource_owner("alice", "pw", client_auth=True)

        # Assert
        _, kwargs = self.sent()
        assert "Authorization" in kwargs["headers"]

    def test_refresh_grant(self):
        # Act
        self.endpoint.refresh("refresh-1", ["openid", "offline_access"])

        # Assert
        _, kwargs = self.sent()
        assert kwargs["body"]["grant_type"] == "refresh_token"
        assert kwargs["body"]["refresh_token"] == "refresh-1"
        assert kwargs["body"]["scope"] == "openid offline_access"

    def test_provider_error_raises_with_description(self):
        # Arrange
        self.fetcher.fetch.return_value = json_response(
            {"error": "invalid_client", "error_description": "Unknown client"}, status=401
        )

        # Act / Assert
        with pytest.raises(ProtocolError) as exc_info:
            self.endpoint.client_credentials()
        assert exc_info.value.error == "invalid_client"
        assert exc_info.value.description == "Unknown client"
        assert "Unknown client" in str(exc_info.value)

    def test_provider_error_without_description(self):
        # Arrange
        self.fetcher.fetch.return_value = json_response({"error": "invalid_grant"}, status=400)

        # Act / Assert
        with pytest.raises(ProtocolError, match="invalid_grant"):
            self.endpoint.refresh("refresh-1")


class TestEndpointRouting(TokenEndpointTest):
    def test_unknown_endpoint_is_rejected(self):
        with pytest.raises(ValueError):
            self.endpoint.endpoint_request({}, "userinfo")

    def test_par_uses_token_endpoint_auth_methods(self):
        # Arrange
        self.fetcher.fetch.return_value = json_response({"request_uri": "urn:par:1"}, status=201)

        # Act
        data = self.endpoint.pushed_authorization_request({"client_id": CLIENT_ID})

        # Assert
        url, kwargs = self.sent()
        assert data == {"request_uri": "urn:par:1"}
        assert url == PAR_ENDPOINT
        assert kwargs["headers"]["Authorization"].startswith("Basic ")

    def test_introspection_uses_its_own_auth_methods(self):
        # Arrange
        self.fetcher.fetch.return_value = json_response({"active": True})

        # Act
        data = self.endpoint.introspect("at", "access_token")

        # Assert
        url, kwargs = self.sent()
        assert data == {"active": True}
        assert url == INTROSPECTION_ENDPOINT
        assert kwargs["body"]["token_type_hint"] == "access_token"
        assert kwargs["body"]["client_secret"] == CLIENT_SECRET

    def test_auth_methods_default_to_basic(self):
        # Arrange - the provider advertises no revocation auth methods
        self.fetcher.fetch.return_value = FetchResponse(200, "", None)

        # Act
        revoked = self.endpoint.revoke("rt", "refresh_token")

        # Assert
        url, kwargs = self.sent()
        assert revoked is True
        assert url == REVOCATION_ENDPOINT
        assert kwargs["headers"]["Authorization"].startswith("Basic ")

    def test_revocation_failure_raises(self):
        # Arrange
        self.fetcher.fetch.return_value = json_response(
            {"error": "unsupported_token_type"}, status=400
        )

        # Act / Assert
        with pytest.raises(ProtocolError):
            self.endpoint.revoke("rt")

    def test_client_secret_jwt_targets_token_endpoint(self):
        # Arrange
        self.metadata.set({"token_endpoint_auth_methods_supported": ["client_secret_jwt"]})
        endpoint = self.make_endpoint(method="client_secret_jwt")

        # Act
        endpoint.client_credentials()

        # Assert
        _, kwargs = self.sent()
        assert "client_assertion" in kwargs["body"]

    def test_unadvertised_method_fails_before_sending(self):
        # Arrange
        endpoint = self.make_endpoint(method="client_secret_jwt")

        # Act / Assert
        with pytest.raises(ConfigurationError):
            endpoint.client_credentials()
        self.fetcher.fetch.assert_not_called()

"""OpenID Connect authentication flow orchestration service.

Drives one authentication attempt from the authorization redirect through
the callback: state check, code exchange, signature verification and claim
validation.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from verity.models.config import ClientConfig
from verity.models.errors import (
    ConfigurationError,
    OIDCError,
    PKCEError,
    ProtocolError,
    StateMismatch,
)
from verity.models.flow import (
    CODE_VERIFIER_KEY,
    NONCE_KEY,
    STATE_KEY,
    AuthSessionState,
    FlowOutcome,
    FlowState,
)
from verity.models.tokens import FlowResult
from verity.primitives import pkce
from verity.primitives.http import encode_form
from verity.primitives.jwt import CompactToken, create_hmac_signed_jwt
from verity.primitives.security import constant_time_equals, generate_random_string
from verity.primitives.session import RequestContext, SessionStore
from verity.services.claims import ClaimsValidator
from verity.services.discovery import MetadataCache
from verity.services.signature import SignatureVerifier
from verity.services.tokens import TokenEndpoint, raise_for_error

logger = logging.getLogger(__name__)

RedirectHandler = Callable[[str], None]


def append_query(url: str, params: dict[str, Any], url_encoding: str = "rfc1738") -> str:
    """Append params, keeping any query the URL already has."""
    separator = "&" if "?" in url else "?"
    return url + separator + encode_form(params, url_encoding)


class FlowEngine:
    """Authorization state machine for one relying party.

    ``state`` reflects the attempt currently or last processed:
    Idle -> AuthorizationRequested, or Idle -> CodeReceived/ImplicitReceived
    -> Authenticated, with Failed reachable from any step.
    """

    def __init__(
        self,
        config: ClientConfig,
        metadata: MetadataCache,
        tokens: TokenEndpoint,
        verifier: SignatureVerifier,
        claims: ClaimsValidator,
        redirect_handler: RedirectHandler | None = None,
    ):
        self.config = config
        self._metadata = metadata
        self._tokens = tokens
        self._verifier = verifier
        self._claims = claims
        self.redirect_handler = redirect_handler
        self.state = FlowState.IDLE

    def authenticate(self, request: RequestContext, session: SessionStore) -> FlowOutcome:
        """Advance the flow for an incoming request.

        Args:
            request: Query/form parameters of the current request
            session: The end user's session

        Returns:
            FlowOutcome: A redirect to render, or the verified result

        Raises:
            ProtocolError: If the callback or token response carries an error
            StateMismatch: If the callback state does not match the session
            SignatureVerificationFailure: If the ID token signature is invalid
            ClaimValidationFailure: If an ID token claim is invalid
        """
        self.state = FlowState.IDLE
        try:
            # The provider may have sent back an error from a previous redirect
            if request.get("error"):
                description = request.get("error_description")
                message = f"Error: {request.get('error')}"
                if description:
                    message += f" Description: {description}"
                raise ProtocolError(message, error=request.get("error"), description=description)

            if request.get("code"):
                return self._handle_code(request, session)

            if self.config.allow_implicit_flow and request.get("id_token"):
                return self._handle_implicit(request, session)

            return self._request_authorization(request, session)
        except OIDCError as e:
            self.state = FlowState.FAILED
            logger.warning(f"Authentication failed: {e}")
            raise

    def redirect_uri(self, request: RequestContext | None = None) -> str:
        """Configured redirect URI, else the URL of the current request."""
        if self.config.redirect_uri:
            return self.config.redirect_uri
        return (request or RequestContext()).current_url()

    def sign_out_url(self, id_token: str, post_logout_redirect: str | None = None) -> str:
        """Build the RP-initiated logout URL for the end-session endpoint."""
        params = {"id_token_hint": id_token}
        if post_logout_redirect is not None:
            params["post_logout_redirect_uri"] = post_logout_redirect
        endpoint = self._metadata.get("end_session_endpoint")
        return append_query(endpoint, params, self.config.url_encoding)

    def redirect(self, url: str) -> None:
        if self.redirect_handler is not None:
            self.redirect_handler(url)

    def _consume_session(self, session: SessionStore) -> AuthSessionState:
        """Read and erase the single-use values of this attempt."""
        stored = AuthSessionState(
            nonce=session.get(NONCE_KEY),
            state=session.get(STATE_KEY),
            code_verifier=session.get(CODE_VERIFIER_KEY),
        )
        for key in (NONCE_KEY, STATE_KEY, CODE_VERIFIER_KEY):
            session.delete(key)
        session.commit()
        return stored

    def _check_state(self, request: RequestContext, stored: AuthSessionState) -> None:
        if not constant_time_equals(stored.state, request.get("state")):
            raise StateMismatch("Unable to determine state")

    def _handle_code(self, request: RequestContext, session: SessionStore) -> FlowOutcome:
        self.state = FlowState.CODE_RECEIVED
        stored = self._consume_session(session)

        # Checked before the code is spent so a mismatched callback never reaches the IdP
        self._check_state(request, stored)

        code_verifier = None
        if self.config.code_challenge_method:
            code_verifier = stored.code_verifier
            if not code_verifier:
                raise PKCEError("Code verifier from session is empty")

        token_response = self._tokens.request_tokens(
            request.get("code"), self.redirect_uri(request), code_verifier
        )
        raise_for_error(token_response.model_dump(exclude_none=True), "Token exchange")

        if not token_response.id_token:
            raise ProtocolError("User did not authorize openid scope.")

        id_token = CompactToken(token_response.id_token)
        self._verifier.require_valid(id_token, "Unable to verify signature of ID token")

        claims = id_token.payload()
        self._claims.validate_id_token(
            claims,
            stored.nonce,
            token_response.access_token,
            id_token.header().get("alg"),
        )

        result = FlowResult(
            id_token=id_token,
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token,
            verified_claims=claims,
            token_response=token_response.model_dump(exclude_none=True),
        )
        return self._authenticated(result)

    def _handle_implicit(self, request: RequestContext, session: SessionStore) -> FlowOutcome:
        self.state = FlowState.IMPLICIT_RECEIVED
        stored = self._consume_session(session)
        self._check_state(request, stored)

        id_token = CompactToken(request.get("id_token"))
        access_token = request.get("access_token")

        self._verifier.require_valid(id_token, "Unable to verify ID token signature")

        claims = id_token.payload()
        self._claims.validate_id_token(
            claims, stored.nonce, access_token, id_token.header().get("alg")
        )

        result = FlowResult(
            id_token=id_token,
            access_token=access_token,
            verified_claims=claims,
        )
        return self._authenticated(result)

    def _authenticated(self, result: FlowResult) -> FlowOutcome:
        self.state = FlowState.AUTHENTICATED
        logger.info(
            f"Authenticated subject {result.verified_claims.get('sub')} "
            f"for client {self.config.client_id}"
        )
        return FlowOutcome(state=self.state, result=result)

    def _request_authorization(
        self, request: RequestContext, session: SessionStore
    ) -> FlowOutcome:
        self.state = FlowState.AUTHORIZATION_REQUESTED

        nonce = generate_random_string()
        state = generate_random_string()

        # Caller params cannot override the protocol parameters
        auth_params: dict[str, Any] = {
            **self.config.auth_params,
            "response_type": "code",
            "redirect_uri": self.redirect_uri(request),
            "client_id": self.config.client_id,
            "nonce": nonce,
            "state": state,
            "scope": "openid",
        }

        if self.config.scopes:
            scopes = list(dict.fromkeys([*self.config.scopes, "openid"]))
            auth_params["scope"] = " ".join(scopes)

        if self.config.response_types:
            auth_params["response_type"] = " ".join(self.config.response_types)

        code_verifier = None
        method = self.config.code_challenge_method
        if method:
            supported = self._metadata.get("code_challenge_methods_supported", [])
            if method not in supported:
                raise PKCEError("Unsupported code challenge method by IdP")
            params = pkce.generate_parameters(method)
            code_verifier = params.code_verifier
            auth_params["code_challenge"] = params.code_challenge
            auth_params["code_challenge_method"] = params.code_challenge_method

        # Pushed authorization request, RFC 9126
        par_endpoint = self._metadata.get("pushed_authorization_request_endpoint", None)
        if par_endpoint:
            auth_params = self._push_authorization(auth_params)

        session.set(NONCE_KEY, nonce)
        session.set(STATE_KEY, state)
        if code_verifier is not None:
            session.set(CODE_VERIFIER_KEY, code_verifier)

        auth_endpoint = self._metadata.get("authorization_endpoint")
        url = append_query(auth_endpoint, auth_params, self.config.url_encoding)

        session.commit()
        logger.info(f"Redirecting to authorization endpoint for client {self.config.client_id}")
        self.redirect(url)
        return FlowOutcome(state=self.state, redirect_url=url)

    def _push_authorization(self, auth_params: dict[str, Any]) -> dict[str, Any]:
        if not self.config.client_id:
            raise ConfigurationError("Pushed authorization requests need a client ID")

        params = auth_params
        if self.config.client_secret:
            params = {
                "request": create_hmac_signed_jwt(
                    auth_params, "HS256", self.config.client_secret
                )
            }

        response = self._tokens.pushed_authorization_request(params)
        if "request_uri" in response:
            return {
                "client_id": self.config.client_id,
                "request_uri": response["request_uri"],
            }
        return auth_params

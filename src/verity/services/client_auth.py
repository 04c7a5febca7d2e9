"""Client authentication for direct requests to the provider.

Implements the shared-secret methods of OpenID Connect Core 1.0 Section 9:
``client_secret_jwt``, ``client_secret_basic`` and ``client_secret_post``.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence
from urllib.parse import quote_plus

from verity.models.errors import ConfigurationError
from verity.primitives.jwt import create_hmac_signed_jwt
from verity.primitives.security import generate_random_string

logger = logging.getLogger(__name__)

CLIENT_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


@dataclass(frozen=True)
class AuthenticatedRequest:
    """Form parameters and headers carrying client credentials."""

    params: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)


class ClientAuthenticator:
    """Chooses and applies a client authentication method.

    An explicitly configured method must be advertised by the provider.
    Otherwise ``client_secret_basic`` is used when advertised, and the
    credentials go in the request body as a last resort.
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        method: str | None = None,
        timeout: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.method = method
        self.timeout = timeout
        self._clock = clock

    def authenticate(
        self,
        params: dict[str, Any],
        supported_methods: Sequence[str],
        token_endpoint: str | None = None,
    ) -> AuthenticatedRequest:
        """Add client credentials to a request.

        Args:
            params: Form parameters of the request
            supported_methods: Methods the provider advertises for the endpoint
            token_endpoint: Audience of a ``client_secret_jwt`` assertion

        Raises:
            ConfigurationError: If the configured method is not advertised
        """
        if self.method and self.method not in supported_methods:
            raise ConfigurationError(
                f"Token authentication method {self.method} is not supported by IdP. "
                f"Supported methods are: {', '.join(supported_methods)}"
            )

        params = dict(params)
        headers = {"Accept": "application/json"}

        if self.method == "client_secret_jwt":
            if not self.client_secret:
                raise ConfigurationError("client_secret_jwt requires a client secret")
            params["client_assertion_type"] = CLIENT_ASSERTION_TYPE
            params["client_assertion"] = self.create_client_assertion(token_endpoint)
            logger.debug("Using client_secret_jwt client authentication")
        elif (
            "client_secret_basic" in supported_methods
            and self.method != "client_secret_post"
        ):
            credentials = (
                f"{quote_plus(self.client_id or '')}:{quote_plus(self.client_secret or '')}"
            )
            encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {encoded}"
            logger.debug("Using client_secret_basic client authentication")
        else:
            params["client_id"] = self.client_id
            params["client_secret"] = self.client_secret
            logger.debug("Using client_secret_post client authentication")

        return AuthenticatedRequest(params=params, headers=headers)

    def create_client_assertion(self, audience: str | None) -> str:
        """Build the HS256 assertion for ``client_secret_jwt``."""
        if not audience:
            raise ConfigurationError("client_secret_jwt requires the token endpoint")
        now = int(self._clock())
        return create_hmac_signed_jwt(
            {
                "iss": self.client_id,
                "sub": self.client_id,
                "aud": audience,
                "jti": generate_random_string(),
                "exp": now + self.timeout,
                "iat": now,
            },
            "HS256",
            self.client_secret or "",
        )

"""UserInfo endpoint service (OpenID Connect Core 1.0 Section 5.3)."""

from __future__ import annotations

import json
import logging
from typing import Any

from verity.models.errors import ProtocolError, TransportError
from verity.primitives.http import Fetcher
from verity.primitives.jwt import CompactToken
from verity.services.discovery import MetadataCache
from verity.services.signature import SignatureVerifier

logger = logging.getLogger(__name__)


class UserInfoClient:
    """Fetches claims about the end user with an access token."""

    def __init__(
        self,
        metadata: MetadataCache,
        fetcher: Fetcher,
        verifier: SignatureVerifier,
    ):
        self._metadata = metadata
        self._fetcher = fetcher
        self._verifier = verifier

    def fetch(self, access_token: str) -> dict[str, Any]:
        """Request user info.

        A signed ``application/jwt`` response is verified and its payload
        returned; anything else is decoded as JSON.

        Raises:
            TransportError: On a non-2xx response
            SignatureVerificationFailure: If a signed response does not verify
        """
        endpoint = self._metadata.get("userinfo_endpoint") + "?schema=openid"
        response = self._fetcher.fetch(
            endpoint,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        if not response.is_success():
            raise TransportError(
                f"Could not fetch {endpoint}, error code {response.status}"
            )

        if response.content_type == "application/jwt":
            token = CompactToken(response.body.strip())
            self._verifier.require_valid(token, "Unable to verify signature")
            return token.payload()

        try:
            data = json.loads(response.body)
        except ValueError as e:
            raise ProtocolError("Invalid JSON in userinfo response") from e
        if not isinstance(data, dict):
            raise ProtocolError("Userinfo response is not a JSON object")
        return data

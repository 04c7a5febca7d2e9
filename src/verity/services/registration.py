"""Dynamic client registration service.

Implements a single request/response of OpenID Connect Dynamic Client
Registration 1.0: the client metadata is posted as JSON and the issued
credentials are returned.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from verity.models.errors import RegistrationError
from verity.models.registration import ClientCredentials
from verity.primitives.http import Fetcher
from verity.services.discovery import MetadataCache

logger = logging.getLogger(__name__)


class ClientRegistrar:
    """Registers the relying party with the provider."""

    def __init__(self, metadata: MetadataCache, fetcher: Fetcher):
        self._metadata = metadata
        self._fetcher = fetcher

    def register(
        self,
        redirect_uri: str,
        client_name: str | None,
        registration_params: Mapping[str, Any] | None = None,
    ) -> ClientCredentials:
        """Register a new client.

        Args:
            redirect_uri: Redirect URI to register
            client_name: Human readable client name
            registration_params: Additional metadata, e.g.
                ``post_logout_redirect_uris``

        Returns:
            Issued client credentials

        Raises:
            RegistrationError: If the provider rejects the request or issues
                no client secret
        """
        registration_endpoint = self._metadata.get("registration_endpoint")
        logger.debug(f"Registering client at {registration_endpoint}")

        send_object = {
            **dict(registration_params or {}),
            "redirect_uris": [redirect_uri],
            "client_name": client_name,
        }
        response = self._fetcher.fetch(
            registration_endpoint,
            method="POST",
            body=json.dumps(send_object),
            headers={"Accept": "application/json"},
        )

        try:
            response_data = json.loads(response.body)
        except ValueError as e:
            raise RegistrationError(
                "Error registering: JSON response received from the server was invalid."
            ) from e
        if not isinstance(response_data, dict):
            raise RegistrationError("Error registering: response is not a JSON object")

        if response_data.get("error_description"):
            logger.error(
                f"Client registration failed with {response.status}: "
                f"{response_data.get('error', 'unknown_error')}"
            )
            raise RegistrationError(
                response_data["error_description"],
                error=response_data.get("error"),
                description=response_data["error_description"],
            )

        # The secret is optional in the protocol, but required by this client
        if not response_data.get("client_secret"):
            raise RegistrationError(
                "Error registering: Please contact the OpenID Connect provider and "
                "obtain a Client ID and Secret directly from them"
            )

        try:
            credentials = ClientCredentials.model_validate(response_data)
        except ValidationError as e:
            raise RegistrationError(f"Invalid registration response format: {e}") from e

        logger.info(
            f"Successfully registered client {credentials.client_id} "
            f"at {registration_endpoint}"
        )
        return credentials

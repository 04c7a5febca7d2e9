"""Client registration models for OpenID Connect Dynamic Client Registration."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict


class ClientCredentials(BaseModel):
    """Client credentials from a registration response."""

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None

    def is_expired(self) -> bool:
        """Check if client credentials have expired."""
        if not self.client_secret_expires_at:
            return False
        return time.time() >= self.client_secret_expires_at

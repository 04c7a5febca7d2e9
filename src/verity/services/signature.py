"""Token signature verification service.

Connects the JWS primitive to the key resolver: the algorithm is always the
one declared in the token header, and the key is the provider key matching
that header (or the client secret for HMAC).
"""

from __future__ import annotations

import logging

from verity.models.errors import (
    MalformedToken,
    SignatureVerificationFailure,
    UnsupportedAlgorithm,
)
from verity.primitives.jws import (
    HMAC_ALGORITHMS,
    SUPPORTED_ALGORITHMS,
    PublicKey,
    verify_signature,
)
from verity.primitives.jwt import CompactToken
from verity.services.keys import KeyResolver

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """Verifies compact token signatures against provider keys."""

    def __init__(self, key_resolver: KeyResolver, client_secret: str | None = None):
        self.key_resolver = key_resolver
        self.client_secret = client_secret

    def verify(
        self,
        alg: str,
        key: PublicKey | str | bytes,
        signing_input: bytes,
        signature: bytes,
    ) -> bool:
        return verify_signature(alg, key, signing_input, signature)

    def verify_token(self, token: CompactToken) -> bool:
        """Check the signature of ``token``.

        Returns:
            True if the signature verifies, False otherwise

        Raises:
            MalformedToken: If the token or its header cannot be decoded
            UnsupportedAlgorithm: If the header alg is not supported
            KeyNotFound: If no provider key matches the header
        """
        signature = token.signature()
        header = token.header()

        alg = header.get("alg")
        if not isinstance(alg, str) or not alg:
            raise MalformedToken("Error missing signature type in token header")
        if alg not in SUPPORTED_ALGORITHMS:
            raise UnsupportedAlgorithm(f"No support for signature type: {alg}")

        if alg in HMAC_ALGORITHMS:
            if not self.client_secret:
                raise UnsupportedAlgorithm(f"{alg} requires a configured client secret")
            key: PublicKey | str = self.client_secret
        else:
            key = self.key_resolver.resolve(header)

        return self.verify(alg, key, token.signing_input, signature)

    def require_valid(self, token: CompactToken, message: str) -> None:
        """Raise unless ``token`` carries a valid signature."""
        if not self.verify_token(token):
            logger.warning(message)
            raise SignatureVerificationFailure(message)

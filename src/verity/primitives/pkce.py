"""PKCE (Proof Key for Code Exchange) primitive.

Implements RFC 7636 code verifier generation and code challenge derivation
to prevent authorization code interception attacks.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field

from verity.models.errors import PKCEError
from verity.primitives.jwt import base64url_encode

# Method name -> hash, None means the challenge is the verifier itself
PKCE_ALGS = {"S256": hashlib.sha256, "plain": None}

VERIFIER_BYTES = 32


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE parameters for one authorization request.

    Immutable parameters generated for each flow (RFC 7636).
    """

    code_verifier: str = field()
    code_challenge: str = field()
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if self.code_challenge_method not in PKCE_ALGS:
            raise ValueError(
                f"Invalid code challenge method {self.code_challenge_method}"
            )


def code_challenge(method: str, code_verifier: str) -> str:
    """Derive the code challenge for ``method``.

    RFC 7636 Section 4.2: for S256 the challenge is
    BASE64URL-ENCODE(SHA256(ASCII(code_verifier))); for plain it is the
    verifier itself.
    """
    if method not in PKCE_ALGS:
        raise PKCEError(f"Invalid code challenge method {method}")
    hash_fn = PKCE_ALGS[method]
    if hash_fn is None:
        return code_verifier
    return base64url_encode(hash_fn(code_verifier.encode("ascii")).digest())


def generate_code_verifier() -> str:
    """Generate a code verifier from 32 random bytes (43 characters)."""
    return base64url_encode(secrets.token_bytes(VERIFIER_BYTES))


def generate_parameters(method: str = "S256") -> PKCEParameters:
    """Generate new PKCE parameters for an authorization request.

    Raises:
        PKCEError: If ``method`` is not S256 or plain
    """
    verifier = generate_code_verifier()
    return PKCEParameters(
        code_verifier=verifier,
        code_challenge=code_challenge(method, verifier),
        code_challenge_method=method,
    )

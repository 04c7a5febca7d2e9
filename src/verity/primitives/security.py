"""Security utilities for OpenID Connect flows.

Cryptographically secure value generation and constant-time comparison for
nonce, state and other single-use values.
"""

from __future__ import annotations

import hmac
import secrets

from verity.primitives.jwt import base64url_encode

RANDOM_BYTES = 16


def generate_random_string(num_bytes: int = RANDOM_BYTES) -> str:
    """Generate a base64url-encoded random value.

    Used for nonce, state and JWT ids.

    Args:
        num_bytes: Entropy in bytes, at least 16

    Returns:
        Unpadded base64url string
    """
    if num_bytes < RANDOM_BYTES:
        raise ValueError(f"Random values need at least {RANDOM_BYTES} bytes")
    return base64url_encode(secrets.token_bytes(num_bytes))


def constant_time_equals(expected: str | None, actual: str | None) -> bool:
    """Compare two strings without leaking timing; None never matches."""
    if expected is None or actual is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))

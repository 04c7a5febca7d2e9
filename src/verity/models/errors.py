"""Exception hierarchy for OpenID Connect relying-party errors.

Provides specific exception types for different failure modes so callers can
tell configuration problems apart from transport, protocol and security
failures.
"""

from __future__ import annotations

from typing import Any


class OIDCError(Exception):
    """Base exception for all OpenID Connect related errors."""

    pass


class ConfigurationError(OIDCError):
    """Raised when a required client or provider value is unavailable."""

    pass


class TransportError(OIDCError):
    """Raised when a fetch fails or returns a non-2xx status where one is required."""

    pass


class ProtocolError(OIDCError):
    """Raised when the provider answers with an error or an unexpected shape.

    Carries the provider-supplied ``error`` code and ``error_description``
    when the response had them.
    """

    def __init__(
        self,
        message: str,
        error: str | None = None,
        description: str | None = None,
    ):
        super().__init__(message)
        self.error = error
        self.description = description


class RegistrationError(ProtocolError):
    """Raised when dynamic client registration fails."""

    pass


class StateMismatch(OIDCError):
    """Raised when the callback state does not match the stored state.

    This indicates either a missing state parameter or a state mismatch,
    which could indicate a CSRF attack or a replayed callback.
    """

    pass


class PKCEError(OIDCError):
    """Raised when PKCE parameters cannot be produced or are missing."""

    pass


class MalformedToken(OIDCError):
    """Raised when a compact token is not three decodable segments."""

    pass


class MalformedKey(OIDCError):
    """Raised when a JSON Web Key lacks the fields its ``kty`` requires."""

    pass


class MalformedSignature(OIDCError):
    """Raised when signature bytes cannot be interpreted for the algorithm."""

    pass


class UnsupportedAlgorithm(OIDCError):
    """Raised for any ``alg`` outside the RS/PS/ES/HS families."""

    pass


class KeyNotFound(OIDCError):
    """Raised when no key in the provider key set matches a token header."""

    pass


class SignatureVerificationFailure(OIDCError):
    """Raised when a token signature does not verify."""

    pass


class ClaimValidationFailure(OIDCError):
    """Raised when a token claim fails validation.

    Keeps the offending claim and the expected/actual values so the failure
    can be diagnosed without re-decoding the token.
    """

    def __init__(
        self,
        message: str,
        claim: str | None = None,
        expected: Any = None,
        actual: Any = None,
    ):
        if expected is not None:
            message += f" (expected: `{expected}`, actual: `{actual}`)"
        super().__init__(message)
        self.claim = claim
        self.expected = expected
        self.actual = actual

"""ID token and logout token claim validation.

Implements OpenID Connect Core 1.0 Section 3.1.3.7 (ID Token Validation)
and Back-Channel Logout 1.0 Section 2.6 (Logout Token Validation). Every
rule is fatal and the rules run in a fixed order.
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
from typing import Any, Callable, Mapping, Protocol

from verity.models.errors import ClaimValidationFailure, UnsupportedAlgorithm
from verity.primitives.jwt import base64url_encode
from verity.primitives.security import constant_time_equals
from verity.services.discovery import MetadataCache

logger = logging.getLogger(__name__)

IAT_SLACK = 600  # seconds

BACKCHANNEL_LOGOUT_EVENT = "http://schemas.openid.net/event/backchannel-logout"

AT_HASH_FUNCTIONS = {
    "256": hashlib.sha256,
    "384": hashlib.sha384,
    "512": hashlib.sha512,
}


class IssuerValidator(Protocol):
    """Decides whether an ``iss`` claim is acceptable."""

    def accepts(self, issuer: str) -> bool: ...


class DefaultIssuerValidator:
    """Accepts the configured issuer or the provider's discovered issuer.

    The discovered issuer is accepted with and without a trailing slash.
    """

    def __init__(self, issuer: str | None, metadata: MetadataCache):
        self.issuer = issuer
        self._metadata = metadata

    def accepts(self, issuer: str) -> bool:
        if self.issuer is not None and issuer == self.issuer:
            return True
        return issuer in (
            self._metadata.well_known_issuer(),
            self._metadata.well_known_issuer(append_slash=True),
        )


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def compute_at_hash(access_token: str, alg: str) -> str:
    """Left-most half of the hash of the access token, base64url encoded.

    The hash size comes from the bit length in the ID token ``alg``.
    """
    bits = alg[2:5]
    hash_fn = AT_HASH_FUNCTIONS.get(bits)
    if hash_fn is None or alg == "none":
        raise UnsupportedAlgorithm(f"Invalid ID token alg {alg}")
    digest = hash_fn(access_token.encode("utf-8")).digest()
    return base64url_encode(digest[: int(bits) // 16])


class ClaimsValidator:
    """Applies the ID token and logout token rule sets."""

    def __init__(
        self,
        client_id: str | None,
        issuer_validator: IssuerValidator,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.issuer_validator = issuer_validator
        self._clock = clock

    def validate_id_token(
        self,
        claims: Mapping[str, Any],
        session_nonce: str | None,
        access_token: str | None = None,
        alg: str | None = None,
    ) -> None:
        """Validate ID token claims.

        Args:
            claims: Decoded ID token payload
            session_nonce: Nonce stored for this authentication attempt
            access_token: Access token returned alongside, for ``at_hash``
            alg: The ID token header alg, for ``at_hash``

        Raises:
            ClaimValidationFailure: On the first rule that fails
        """
        self._validate_issuer(claims)
        self._validate_audience(claims)

        aud = claims["aud"]
        if isinstance(aud, list) and len(aud) > 1 and "azp" not in claims:
            raise ClaimValidationFailure(
                "Multiple audiences provided, but `azp` claim not provided", "azp"
            )

        if "azp" in claims and claims["azp"] != self.client_id:
            raise ClaimValidationFailure(
                "Client ID do not match to `azp` claim",
                "azp",
                self.client_id,
                claims["azp"],
            )

        now = int(self._clock())

        if "exp" not in claims:
            raise ClaimValidationFailure("Required `exp` claim not provided", "exp")
        if not _is_numeric(claims["exp"]):
            raise ClaimValidationFailure(
                "Required `exp` claim provided, but type is incorrect",
                "exp",
                "int",
                type(claims["exp"]).__name__,
            )
        if claims["exp"] < now:
            raise ClaimValidationFailure(
                "Token is already expired", "exp", now, claims["exp"]
            )

        self._validate_iat(claims, now)

        if "nonce" not in claims:
            raise ClaimValidationFailure("Required `nonce` claim not provided", "nonce")
        if session_nonce is None:
            raise ClaimValidationFailure("Session nonce is not set", "nonce")
        if not isinstance(claims["nonce"], str) or not constant_time_equals(
            session_nonce, claims["nonce"]
        ):
            raise ClaimValidationFailure(
                "Nonce do not match", "nonce", session_nonce, claims["nonce"]
            )

        if "at_hash" in claims and access_token is not None:
            if not alg:
                raise UnsupportedAlgorithm("Invalid ID token alg")
            expected = compute_at_hash(access_token, alg)
            actual = claims["at_hash"]
            if not isinstance(actual, str) or not constant_time_equals(expected, actual):
                raise ClaimValidationFailure(
                    "`at_hash` claim do not match", "at_hash", expected, actual
                )

    def validate_logout_token(self, claims: Mapping[str, Any]) -> None:
        """Validate back-channel logout token claims.

        Raises:
            ClaimValidationFailure: On the first rule that fails
        """
        self._validate_issuer(claims)
        self._validate_audience(claims)
        self._validate_iat(claims, int(self._clock()))

        if "sub" not in claims and "sid" not in claims:
            raise ClaimValidationFailure("Required `sub` or `sid` claim not provided", "sub")

        events = claims.get("events")
        if events is None:
            raise ClaimValidationFailure("Required `events` claim not provided", "events")
        if not isinstance(events, dict) or BACKCHANNEL_LOGOUT_EVENT not in events:
            raise ClaimValidationFailure(
                "`events` claim do not contains required member name", "events"
            )

        if "nonce" in claims:
            raise ClaimValidationFailure("Prohibited `nonce` claim provided", "nonce")

    def _validate_issuer(self, claims: Mapping[str, Any]) -> None:
        if "iss" not in claims:
            raise ClaimValidationFailure("Required `iss` claim not provided", "iss")
        iss = claims["iss"]
        if not isinstance(iss, str) or not self.issuer_validator.accepts(iss):
            raise ClaimValidationFailure(
                "It didn't pass issuer validator",
                "iss",
                getattr(self.issuer_validator, "issuer", None),
                iss,
            )

    def _validate_audience(self, claims: Mapping[str, Any]) -> None:
        if "aud" not in claims:
            raise ClaimValidationFailure("Required `aud` claim not provided", "aud")
        aud = claims["aud"]
        audiences = aud if isinstance(aud, list) else [aud]
        if self.client_id is None or self.client_id not in audiences:
            raise ClaimValidationFailure(
                "Client ID do not match to `aud` claim", "aud", self.client_id, aud
            )

    def _validate_iat(self, claims: Mapping[str, Any], now: int) -> None:
        if "iat" not in claims:
            raise ClaimValidationFailure("Required `iat` claim not provided", "iat")
        iat = claims["iat"]
        if not _is_numeric(iat):
            raise ClaimValidationFailure(
                "Required `iat` claim provided, but type is incorrect",
                "iat",
                "int",
                type(iat).__name__,
            )
        if now - IAT_SLACK > iat:
            raise ClaimValidationFailure(
                f"Token was issued more than {IAT_SLACK} seconds ago",
                "iat",
                now - IAT_SLACK,
                iat,
            )
        if now + IAT_SLACK < iat:
            raise ClaimValidationFailure(
                f"Token was issued more than {IAT_SLACK} seconds in future",
                "iat",
                now + IAT_SLACK,
                iat,
            )

"""Compact JWS serialization primitive.

Splits and decodes ``base64url(header).base64url(payload).base64url(signature)``
tokens and produces HMAC-signed tokens for client assertions and request
objects.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
from typing import Any

from verity.models.errors import MalformedToken

HMAC_HASHES = {
    "HS256": hashlib.sha256,
    "HS384": hashlib.sha384,
    "HS512": hashlib.sha512,
}

SEGMENT_PATTERN = re.compile(r"[A-Za-z0-9_=-]*")


def base64url_encode(data: bytes | str) -> str:
    """Encode bytes as unpadded base64url."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def base64url_decode(value: str) -> bytes:
    """Decode base64url with or without padding.

    Raises:
        MalformedToken: If the value is not valid base64url
    """
    translated = value.translate(str.maketrans("-_", "+/"))
    translated += "=" * (-len(translated) % 4)
    try:
        return base64.b64decode(translated.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise MalformedToken(f"Could not decode string as base64: {e}") from e


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant {name}")


def _decode_json_segment(segment: str, name: str) -> dict[str, Any]:
    try:
        value = json.loads(base64url_decode(segment), parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedToken(f"Error decoding token {name}: {e}") from e
    if not isinstance(value, dict):
        raise MalformedToken(f"Token {name} is not a JSON object")
    return value


class CompactToken:
    """A compact serialized JWT.

    Immutable once constructed. Segments are decoded on each access, so
    decoding is lazy and repeatable.
    """

    __slots__ = ("_token", "_parts")

    def __init__(self, token: str):
        parts = token.split(".")
        if len(parts) != 3:
            raise MalformedToken("JWT token is not in valid format AAA.BBB.CCC")
        if not all(SEGMENT_PATTERN.fullmatch(part) for part in parts):
            raise MalformedToken("JWT token segments are not base64url encoded")
        self._token = token
        self._parts = tuple(parts)

    def header(self) -> dict[str, Any]:
        return _decode_json_segment(self._parts[0], "header")

    def payload(self) -> dict[str, Any]:
        return _decode_json_segment(self._parts[1], "payload")

    def signature(self) -> bytes:
        signature = base64url_decode(self._parts[2])
        if not signature:
            raise MalformedToken("Decoded signature is empty")
        return signature

    @property
    def signing_input(self) -> bytes:
        """The undecoded ``header.payload`` bytes the signature covers."""
        return f"{self._parts[0]}.{self._parts[1]}".encode("ascii")

    def __str__(self) -> str:
        return self._token

    def __repr__(self) -> str:
        return f"CompactToken({self._parts[0]!r}...)"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CompactToken):
            return self._token == other._token
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._token)


def parse_token(token: str) -> CompactToken:
    """Parse a compact token, requiring exactly three segments."""
    return CompactToken(token)


def create_hmac_signed_jwt(payload: dict[str, Any], alg: str, secret: str) -> str:
    """Build an HMAC-signed compact JWT.

    Args:
        payload: Claims to sign
        alg: One of HS256, HS384, HS512
        secret: Shared secret

    Returns:
        The compact serialization
    """
    if alg not in HMAC_HASHES:
        raise ValueError(f"Invalid hash algorithm {alg}")

    header = base64url_encode(json.dumps({"alg": alg, "typ": "JWT"}, separators=(",", ":")))
    body = base64url_encode(json.dumps(payload, separators=(",", ":")))
    signing_input = f"{header}.{body}".encode("ascii")
    mac = hmac.new(secret.encode("utf-8"), signing_input, HMAC_HASHES[alg]).digest()
    return f"{header}.{body}.{base64url_encode(mac)}"

"""Keys, signed tokens and a canned-response fetcher shared by the tests."""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass, field
from typing import Any

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from verity.primitives.http import FetchResponse
from verity.primitives.jwt import base64url_encode

ISSUER = "https://id.example.com"
CLIENT_ID = "client-123"
CLIENT_SECRET = "s3cret-value"
REDIRECT_URI = "https://app.example.com/callback"

WELL_KNOWN_URL = ISSUER + "/.well-known/openid-configuration"
AUTHORIZATION_ENDPOINT = ISSUER + "/authorize"
TOKEN_ENDPOINT = ISSUER + "/token"
USERINFO_ENDPOINT = ISSUER + "/userinfo"
JWKS_URI = ISSUER + "/jwks"
END_SESSION_ENDPOINT = ISSUER + "/logout"
REGISTRATION_ENDPOINT = ISSUER + "/register"
INTROSPECTION_ENDPOINT = ISSUER + "/introspect"
REVOCATION_ENDPOINT = ISSUER + "/revoke"
PAR_ENDPOINT = ISSUER + "/par"

# Generated once; RSA key generation is slow
RSA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
OTHER_RSA_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)
EC_KEYS = {
    "P-256": ec.generate_private_key(ec.SECP256R1()),
    "P-384": ec.generate_private_key(ec.SECP384R1()),
    "P-521": ec.generate_private_key(ec.SECP521R1()),
}
EC_ALG_CURVES = {"ES256": "P-256", "ES384": "P-384", "ES512": "P-521"}
EC_COORDINATE_BYTES = {"P-256": 32, "P-384": 48, "P-521": 66}

_HASHES = {"256": hashes.SHA256, "384": hashes.SHA384, "512": hashes.SHA512}


def _int_b64(value: int, length: int | None = None) -> str:
    length = length or (value.bit_length() + 7) // 8
    return base64url_encode(value.to_bytes(length, "big"))


def rsa_jwk(private_key=RSA_KEY, kid: str | None = "rsa-1", **extra) -> dict[str, Any]:
    numbers = private_key.public_key().public_numbers()
    jwk = {"kty": "RSA", "n": _int_b64(numbers.n), "e": _int_b64(numbers.e)}
    if kid is not None:
        jwk["kid"] = kid
    jwk.update(extra)
    return jwk


def ec_jwk(crv: str = "P-256", kid: str | None = "ec-1", private_key=None, **extra) -> dict[str, Any]:
    private_key = private_key or EC_KEYS[crv]
    numbers = private_key.public_key().public_numbers()
    size = EC_COORDINATE_BYTES[crv]
    jwk = {
        "kty": "EC",
        "crv": crv,
        "x": _int_b64(numbers.x, size),
        "y": _int_b64(numbers.y, size),
    }
    if kid is not None:
        jwk["kid"] = kid
    jwk.update(extra)
    return jwk


def sign_bytes(alg: str, key: Any, signing_input: bytes) -> bytes:
    """Produce a raw JWS signature for ``alg``."""
    bits = alg[2:]
    if alg.startswith("HS"):
        secret = key.encode("utf-8") if isinstance(key, str) else key
        return hmac.new(secret, signing_input, getattr(hashlib, f"sha{bits}")).digest()
    if alg.startswith("RS"):
        return key.sign(signing_input, padding.PKCS1v15(), _HASHES[bits]())
    if alg.startswith("PS"):
        hash_alg = _HASHES[bits]()
        pss = padding.PSS(mgf=padding.MGF1(_HASHES[bits]()), salt_length=hash_alg.digest_size)
        return key.sign(signing_input, pss, hash_alg)
    if alg.startswith("ES"):
        der = key.sign(signing_input, ec.ECDSA(_HASHES[bits]()))
        r, s = decode_dss_signature(der)
        size = EC_COORDINATE_BYTES[EC_ALG_CURVES[alg]]
        return r.to_bytes(size, "big") + s.to_bytes(size, "big")
    raise ValueError(f"Cannot sign with {alg}")


def default_signing_key(alg: str) -> Any:
    if alg.startswith("HS"):
        return CLIENT_SECRET
    if alg.startswith("ES"):
        return EC_KEYS[EC_ALG_CURVES[alg]]
    return RSA_KEY


def sign_token(
    claims: dict[str, Any],
    alg: str = "RS256",
    key: Any = None,
    kid: str | None = "rsa-1",
    header: dict[str, Any] | None = None,
) -> str:
    """Build a signed compact token."""
    token_header = {"alg": alg, "typ": "JWT"}
    if kid is not None:
        token_header["kid"] = kid
    token_header.update(header or {})
    encoded_header = base64url_encode(json.dumps(token_header))
    encoded_payload = base64url_encode(json.dumps(claims))
    signing_input = f"{encoded_header}.{encoded_payload}".encode("ascii")
    signature = sign_bytes(alg, key or default_signing_key(alg), signing_input)
    return f"{encoded_header}.{encoded_payload}.{base64url_encode(signature)}"


def id_token_claims(nonce: str | None = "nonce-1", **overrides) -> dict[str, Any]:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "sub": "user-42",
        "aud": CLIENT_ID,
        "exp": now + 300,
        "iat": now,
    }
    if nonce is not None:
        claims["nonce"] = nonce
    claims.update(overrides)
    return claims


def provider_document(**overrides) -> dict[str, Any]:
    document = {
        "issuer": ISSUER,
        "authorization_endpoint": AUTHORIZATION_ENDPOINT,
        "token_endpoint": TOKEN_ENDPOINT,
        "userinfo_endpoint": USERINFO_ENDPOINT,
        "jwks_uri": JWKS_URI,
        "end_session_endpoint": END_SESSION_ENDPOINT,
        "registration_endpoint": REGISTRATION_ENDPOINT,
        "introspection_endpoint": INTROSPECTION_ENDPOINT,
        "revocation_endpoint": REVOCATION_ENDPOINT,
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
        "code_challenge_methods_supported": ["S256", "plain"],
    }
    document.update(overrides)
    return {k: v for k, v in document.items() if v is not None}


@dataclass
class RecordedRequest:
    url: str
    method: str
    body: Any
    headers: dict[str, str] = field(default_factory=dict)


class FakeFetcher:
    """Fetcher answering from canned responses per URL.

    Responses queued for a URL are served in order; the last one repeats.
    """

    def __init__(self):
        self.routes: dict[str, list[FetchResponse]] = {}
        self.requests: list[RecordedRequest] = []

    def add(
        self,
        url: str,
        body: Any,
        status: int = 200,
        content_type: str = "application/json",
    ) -> None:
        if not isinstance(body, str):
            body = json.dumps(body)
        self.routes.setdefault(url, []).append(FetchResponse(status, body, content_type))

    def fetch(self, url, method="GET", body=None, headers=None) -> FetchResponse:
        self.requests.append(RecordedRequest(url, method, body, dict(headers or {})))
        responses = self.routes.get(url)
        if not responses:
            raise AssertionError(f"Unexpected fetch of {url}")
        if len(responses) > 1:
            return responses.pop(0)
        return responses[0]

    def calls_to(self, url: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.url == url]


def default_fetcher() -> FakeFetcher:
    """Fetcher serving the default discovery document and key set."""
    fake = FakeFetcher()
    fake.add(WELL_KNOWN_URL, provider_document())
    fake.add(JWKS_URI, {"keys": [rsa_jwk(), ec_jwk("P-256"), ec_jwk("P-384", kid="ec-384")]})
    return fake

"""JWS signature verification primitive.

Algorithm-dispatched verification for the RS, PS, ES and HS families, plus
conversion of JSON Web Keys into verifiable public keys.
"""

from __future__ import annotations

import hmac
from typing import Any, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from verity.models.errors import (
    MalformedKey,
    MalformedSignature,
    MalformedToken,
    UnsupportedAlgorithm,
)
from verity.primitives.jwt import HMAC_HASHES, base64url_decode

PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey]

HASHES = {
    "256": hashes.SHA256,
    "384": hashes.SHA384,
    "512": hashes.SHA512,
}

RSA_ALGORITHMS = ("RS256", "RS384", "RS512", "PS256", "PS384", "PS512")
EC_ALGORITHMS = ("ES256", "ES384", "ES512")
HMAC_ALGORITHMS = tuple(HMAC_HASHES)
SUPPORTED_ALGORITHMS = RSA_ALGORITHMS + EC_ALGORITHMS + HMAC_ALGORITHMS

CURVES = {
    "P-256": ec.SECP256R1,
    "P-384": ec.SECP384R1,
    "P-521": ec.SECP521R1,
}


def key_family(alg: str) -> str:
    """Key type required by an algorithm: EC for ES*, RSA otherwise."""
    return "EC" if alg.startswith("E") else "RSA"


def _b64_int(value: Any, field: str) -> int:
    if not isinstance(value, str):
        raise MalformedKey(f"Malformed key object, `{field}` must be a string")
    try:
        return int.from_bytes(base64url_decode(value), "big")
    except MalformedToken as e:
        raise MalformedKey(f"Malformed key object, `{field}` is not base64url") from e


def load_public_key(jwk: dict[str, Any]) -> PublicKey:
    """Convert a JSON Web Key into a public key.

    Raises:
        MalformedKey: If required members are missing, the curve is unknown,
            or the EC point is not on the declared curve
    """
    kty = jwk.get("kty")
    if kty is None:
        raise MalformedKey("Malformed key object, `kty` field is missing")
    if not isinstance(kty, str):
        raise MalformedKey("Malformed key object, `kty` is not a string")

    if kty == "EC":
        if not all(k in jwk for k in ("x", "y", "crv")):
            raise MalformedKey("Malformed EC key object")
        if not isinstance(jwk["crv"], str):
            raise MalformedKey("Malformed EC key object, `crv` is not a string")
        curve = CURVES.get(jwk["crv"])
        if curve is None:
            raise MalformedKey(f"Unsupported curve {jwk['crv']}")
        x = _b64_int(jwk["x"], "x")
        y = _b64_int(jwk["y"], "y")
        try:
            return ec.EllipticCurvePublicNumbers(x, y, curve()).public_key()
        except ValueError as e:
            raise MalformedKey(f"Unable to verify that point exists on curve: {e}") from e

    if kty == "RSA":
        if "n" not in jwk or "e" not in jwk:
            raise MalformedKey("Malformed RSA key object")
        n = _b64_int(jwk["n"], "n")
        e = _b64_int(jwk["e"], "e")
        try:
            return rsa.RSAPublicNumbers(e, n).public_key()
        except ValueError as exc:
            raise MalformedKey(f"Invalid RSA key material: {exc}") from exc

    raise MalformedKey(f"Not supported key type {kty}")


def _verify_rsa(
    alg: str, key: PublicKey, signing_input: bytes, signature: bytes
) -> bool:
    if not isinstance(key, rsa.RSAPublicKey):
        raise MalformedKey(f"{alg} requires an RSA key")
    hash_alg = HASHES[alg[2:]]()
    if alg.startswith("P"):
        pad = padding.PSS(
            mgf=padding.MGF1(HASHES[alg[2:]]()), salt_length=hash_alg.digest_size
        )
    else:
        pad = padding.PKCS1v15()
    try:
        key.verify(signature, signing_input, pad, hash_alg)
    except InvalidSignature:
        return False
    return True


def _verify_ec(alg: str, key: PublicKey, signing_input: bytes, signature: bytes) -> bool:
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise MalformedKey(f"{alg} requires an EC key")
    if len(signature) % 2:
        raise MalformedSignature("Signature has invalid length")
    half = len(signature) // 2
    r = int.from_bytes(signature[:half], "big")
    s = int.from_bytes(signature[half:], "big")
    try:
        key.verify(
            encode_dss_signature(r, s), signing_input, ec.ECDSA(HASHES[alg[2:]]())
        )
    except InvalidSignature:
        return False
    return True


def _verify_hmac(alg: str, secret: str | bytes, signing_input: bytes, signature: bytes) -> bool:
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    expected = hmac.new(secret, signing_input, HMAC_HASHES[alg]).digest()
    return hmac.compare_digest(expected, signature)


def verify_signature(
    alg: str,
    key: PublicKey | str | bytes,
    signing_input: bytes,
    signature: bytes,
) -> bool:
    """Verify ``signature`` over ``signing_input`` with exactly ``alg``.

    Args:
        alg: The algorithm declared in the token header
        key: A public key for RS/PS/ES, the shared secret for HS
        signing_input: The undecoded ``header.payload`` bytes
        signature: The decoded signature bytes

    Returns:
        True if the signature verifies

    Raises:
        UnsupportedAlgorithm: For any alg outside the supported families
        MalformedSignature: For an odd-length ECDSA signature
    """
    if alg in RSA_ALGORITHMS:
        return _verify_rsa(alg, key, signing_input, signature)
    if alg in EC_ALGORITHMS:
        return _verify_ec(alg, key, signing_input, signature)
    if alg in HMAC_ALGORITHMS:
        if not isinstance(key, (str, bytes)):
            raise MalformedKey(f"{alg} requires a shared secret")
        return _verify_hmac(alg, key, signing_input, signature)
    raise UnsupportedAlgorithm(f"No support for signature type: {alg}")

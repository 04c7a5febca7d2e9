"""Provider key set (JWKS) resolution service.

Fetches and caches the provider's JSON Web Key Set and selects the key that
matches a token header.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from verity.models.errors import (
    KeyNotFound,
    MalformedToken,
    OIDCError,
    ProtocolError,
    TransportError,
)
from verity.primitives.cache import Cache, NullCache
from verity.primitives.http import Fetcher
from verity.primitives.jws import PublicKey, key_family, load_public_key
from verity.services.discovery import MetadataCache, fingerprint

logger = logging.getLogger(__name__)

KEYS_CACHE_PREFIX = "openid_connect_key_"

# Certificate members are not needed for verification
_UNCACHED_MEMBERS = ("x5c", "x5t", "x5t#S256")


@dataclass(frozen=True)
class KeySet:
    """Ordered JSON Web Keys; order decides ties."""

    keys: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    @classmethod
    def from_keys(cls, keys: Sequence[dict[str, Any]]) -> KeySet:
        return cls(tuple(dict(k) for k in keys))

    def select(self, header: dict[str, Any]) -> PublicKey:
        """Select and load the key for a token header.

        The alg decides the family (EC for ES*, RSA otherwise). With a kid
        in the header both family and kid must match; without one, the
        first key of the family wins.

        Raises:
            MalformedToken: If the header has no ``alg``
            MalformedKey: If the selected key lacks required members
            KeyNotFound: If no key matches
        """
        alg = header.get("alg")
        if not isinstance(alg, str) or not alg:
            raise MalformedToken("Malformed JWT token header, `alg` field is missing")

        family = key_family(alg)
        kid = header.get("kid")

        for key in self.keys:
            if key.get("kty") != family:
                continue
            if kid is None or key.get("kid") == kid:
                return load_public_key(key)

        if kid is not None:
            raise KeyNotFound(f"Unable to find a key for {alg} with kid `{kid}`")
        raise KeyNotFound(f"Unable to find a key for {family}")

    def to_cache(self) -> list[dict[str, Any]]:
        return [
            {k: v for k, v in key.items() if k not in _UNCACHED_MEMBERS}
            for key in self.keys
        ]


class KeyResolver:
    """Resolves verification keys for token headers.

    Resolution order: the key set already held in memory, then the shared
    cache, then exactly one fetch of ``jwks_uri``. A miss on the freshly
    fetched set falls back to the supplementary keys.
    """

    def __init__(
        self,
        metadata: MetadataCache,
        fetcher: Fetcher,
        cache: Cache | None = None,
        ttl: int = 86400,
        additional_keys: Sequence[dict[str, Any]] = (),
    ):
        self._metadata = metadata
        self._fetcher = fetcher
        self._cache = cache or NullCache()
        self.ttl = ttl
        self.additional_keys = KeySet.from_keys(additional_keys)
        self._key_set: KeySet | None = None

    def add_key(self, jwk: dict[str, Any]) -> None:
        """Append a supplementary key used after a miss on the provider set."""
        self.additional_keys = KeySet(self.additional_keys.keys + (dict(jwk),))

    def resolve(self, header: dict[str, Any]) -> PublicKey:
        """Return the public key for ``header``.

        Raises:
            KeyNotFound: If neither the provider set nor the supplementary
                keys contain a match
            MalformedKey: If the matching key in the fetched set is malformed
            TransportError: If the key set cannot be fetched
        """
        if not header.get("alg"):
            raise MalformedToken("Malformed JWT token header, `alg` field is missing")

        # Any failure against a previously held set only costs a refetch
        if self._key_set is not None:
            try:
                return self._key_set.select(header)
            except OIDCError as e:
                logger.debug(f"Held key set miss, refetching: {e}")

        jwks_uri = self._metadata.get("jwks_uri", None)
        if not jwks_uri:
            raise KeyNotFound(
                "Unable to verify signature due to no jwks_uri being defined"
            )

        cache_key = KEYS_CACHE_PREFIX + fingerprint(jwks_uri)
        if self.ttl > 0:
            cached = self._cache.get(cache_key)
            if cached:
                self._key_set = KeySet.from_keys(cached)
                try:
                    return self._key_set.select(header)
                except OIDCError as e:
                    logger.debug(f"Cached key set miss, refetching: {e}")

        self._key_set = self._fetch(jwks_uri)
        if self.ttl > 0:
            self._cache.set(cache_key, self._key_set.to_cache(), self.ttl)

        try:
            return self._key_set.select(header)
        except KeyNotFound:
            logger.debug("No provider key matched, trying supplementary keys")
            return self.additional_keys.select(header)

    def _fetch(self, jwks_uri: str) -> KeySet:
        logger.debug(f"Fetching key set from: {jwks_uri}")
        response = self._fetcher.fetch(jwks_uri)
        if not response.is_success():
            raise TransportError(
                f"Error fetching JSON from jwks_uri: invalid response code {response.status}"
            )
        try:
            document = json.loads(response.body)
        except ValueError as e:
            raise ProtocolError("Error fetching JSON from jwks_uri") from e
        if not isinstance(document, dict) or not isinstance(document.get("keys"), list):
            raise ProtocolError("Key set from jwks_uri has no `keys` array")
        return KeySet.from_keys(k for k in document["keys"] if isinstance(k, dict))

"""OpenID Provider discovery service.

Implements OpenID Connect Discovery 1.0: resolves the provider's
``/.well-known/openid-configuration`` document, caches it, and answers
lookups of individual metadata values.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from verity.models.discovery import WELL_KNOWN_SUFFIX, ProviderMetadata
from verity.models.errors import ConfigurationError, ProtocolError, TransportError
from verity.primitives.cache import Cache, NullCache
from verity.primitives.http import Fetcher, encode_form

logger = logging.getLogger(__name__)

WELLKNOWN_CACHE_PREFIX = "openid_connect_wellknown_"

_MISSING = object()


def fingerprint(url: str) -> str:
    """Stable cache-key fingerprint of a URL."""
    return hashlib.md5(url.encode("utf-8")).hexdigest()


class MetadataCache:
    """Resolves and caches provider metadata.

    Values supplied explicitly through ``overrides`` win and never trigger a
    fetch. Everything else comes from the discovery document, fetched at most
    once per cache miss.
    """

    def __init__(
        self,
        provider_url: str | None,
        fetcher: Fetcher,
        cache: Cache | None = None,
        ttl: int = 86400,
        well_known_params: Mapping[str, str] | None = None,
        overrides: Mapping[str, Any] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the metadata cache.

        Args:
            provider_url: Provider base URL or full discovery URL
            fetcher: Fetch capability
            cache: Shared cache; a no-op cache when omitted
            ttl: Seconds to keep the document; 0 disables caching
            well_known_params: Extra query parameters for the discovery URL
            overrides: Provider values that take precedence over discovery
            clock: Monotonic clock for expiring the in-memory snapshot
        """
        self.provider_url = provider_url
        self.ttl = ttl
        self.well_known_params = dict(well_known_params or {})
        self.overrides: dict[str, Any] = dict(overrides or {})
        self._fetcher = fetcher
        self._cache = cache or NullCache()
        self._clock = clock
        self._metadata: ProviderMetadata | None = None
        self._expires_at = 0.0

    def get(self, name: str, default: Any = _MISSING) -> Any:
        """Return a provider metadata value.

        Args:
            name: Metadata member, e.g. ``token_endpoint``
            default: Returned when the provider does not advertise the value

        Raises:
            ConfigurationError: If the value is unavailable and no default was given
        """
        if self.overrides.get(name) is not None:
            return self.overrides[name]

        value = self.metadata().value(name)
        if value:
            return value

        if default is not _MISSING:
            return default

        raise ConfigurationError(
            f"The provider {name} could not be fetched. Make sure your provider "
            "has a well known configuration available."
        )

    def set(self, values: Mapping[str, Any]) -> None:
        """Supply provider values explicitly."""
        self.overrides.update(values)

    def metadata(self) -> ProviderMetadata:
        """Return the discovery snapshot, fetching it on a miss.

        The snapshot is held for ``ttl`` seconds, then read again through the
        cache. With a zero ``ttl`` it is held for the life of the instance.
        """
        expired = self.ttl > 0 and self._clock() >= self._expires_at
        if self._metadata is None or expired:
            self._metadata = self._load()
            self._expires_at = self._clock() + self.ttl
        return self._metadata

    def well_known_issuer(self, append_slash: bool = False) -> str:
        """The issuer advertised in the discovery document."""
        issuer = self.metadata().value("issuer")
        if not issuer:
            raise ConfigurationError(
                "The provider issuer could not be fetched. Make sure your provider "
                "has a well known configuration available."
            )
        return issuer + ("/" if append_slash else "")

    def well_known_url(self) -> str:
        """Build the discovery URL for the provider.

        A provider URL that already ends with the well-known suffix is used
        verbatim.
        """
        if not self.provider_url:
            raise ConfigurationError("The provider URL has not been set")

        if self.provider_url.endswith(WELL_KNOWN_SUFFIX):
            url = self.provider_url
        else:
            url = self.provider_url.rstrip("/") + WELL_KNOWN_SUFFIX

        if self.well_known_params:
            url += "?" + encode_form(self.well_known_params)
        return url

    def _load(self) -> ProviderMetadata:
        url = self.well_known_url()
        cache_key = WELLKNOWN_CACHE_PREFIX + fingerprint(url)

        document = self._cache.get(cache_key) if self.ttl else None
        if document:
            logger.debug(f"Using cached provider metadata for {url}")
        else:
            document = self._fetch_document(url)
            if self.ttl:
                self._cache.set(cache_key, document, self.ttl)

        try:
            return ProviderMetadata.model_validate(document)
        except ValidationError as e:
            raise ProtocolError(f"Invalid provider metadata from {url}: {e}") from e

    def _fetch_document(self, url: str) -> dict[str, Any]:
        logger.debug(f"Fetching provider metadata from: {url}")
        response = self._fetcher.fetch(url)
        if not response.is_success():
            raise TransportError(
                f"Invalid response code {response.status} when fetching "
                "wellKnown, expected 200"
            )
        try:
            document = json.loads(response.body)
        except ValueError as e:
            raise ProtocolError(f"Invalid JSON in provider metadata from {url}") from e
        if not isinstance(document, dict):
            raise ProtocolError(f"Provider metadata from {url} is not a JSON object")
        return document

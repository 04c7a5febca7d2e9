"""Fetch capability backed by a reusable httpx client.

The core only depends on the ``Fetcher`` protocol; ``HttpFetcher`` owns the
connection pool, redirect following, proxy and TLS settings.
"""

from __future__ import annotations

import logging
import ssl
from dataclasses import dataclass
from typing import Mapping, Protocol
from urllib.parse import quote, quote_plus, urlencode

import httpx

from verity.models.errors import TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResponse:
    status: int
    body: str
    content_type: str | None = None

    def is_success(self) -> bool:
        """True if the status is between 200 and 299."""
        return 200 <= self.status < 300


class Fetcher(Protocol):
    def fetch(
        self,
        url: str,
        method: str = "GET",
        body: Mapping[str, str] | str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResponse: ...


def encode_form(params: Mapping[str, object], url_encoding: str = "rfc1738") -> str:
    """Form/query encode ``params``.

    rfc1738 encodes spaces as ``+``, rfc3986 as ``%20``.
    """
    quote_via = quote if url_encoding == "rfc3986" else quote_plus
    return urlencode(
        {k: v for k, v in params.items() if v is not None},
        doseq=True,
        quote_via=quote_via,
    )


def build_ssl_context(
    cert_path: str | None = None, verify_peer: bool = True, verify_host: bool = True
) -> ssl.SSLContext:
    context = ssl.create_default_context(cafile=cert_path)
    if not verify_peer:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    elif not verify_host:
        context.check_hostname = False
    return context


class HttpFetcher:
    """Synchronous fetcher sharing one connection pool across requests."""

    def __init__(
        self,
        timeout: float = 60.0,
        proxy: str | None = None,
        cert_path: str | None = None,
        verify_peer: bool = True,
        verify_host: bool = True,
        url_encoding: str = "rfc1738",
        client: httpx.Client | None = None,
    ):
        """Initialize the fetcher.

        Args:
            timeout: Per-request timeout in seconds
            proxy: Optional proxy URL
            cert_path: Optional CA bundle for peer verification
            verify_peer: Verify the server certificate
            verify_host: Verify the certificate matches the host name
            url_encoding: Form body encoding, rfc1738 or rfc3986
            client: Preconfigured client, mainly for tests
        """
        self.url_encoding = url_encoding
        self._http_client = client or httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            proxy=proxy,
            verify=build_ssl_context(cert_path, verify_peer, verify_host),
        )

    def fetch(
        self,
        url: str,
        method: str = "GET",
        body: Mapping[str, str] | str | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchResponse:
        """Perform one request.

        A mapping body is form encoded, a string body is sent as JSON.

        Raises:
            TransportError: If the request cannot be completed
        """
        request_headers = dict(headers or {})
        content: str | None = None
        if body is not None:
            if isinstance(body, str):
                content = body
                request_headers["Content-Type"] = "application/json"
            else:
                content = encode_form(body, self.url_encoding)
                request_headers["Content-Type"] = "application/x-www-form-urlencoded"

        logger.debug(f"{method} {url}")
        try:
            response = self._http_client.request(
                method, url, content=content, headers=request_headers
            )
        except httpx.HTTPError as e:
            raise TransportError(f"HTTP error fetching {url}: {e}") from e

        content_type = response.headers.get("Content-Type")
        if content_type:
            content_type = content_type.split(";")[0].strip()
        return FetchResponse(
            status=response.status_code, body=response.text, content_type=content_type
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._http_client.close()

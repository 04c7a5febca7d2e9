"""Per-request and per-session state passed into the flow at call time.

``RequestContext`` carries the incoming query/form parameters and enough of
the request URL to derive a redirect URL. ``SessionStore`` is the end-user
session; implementations must isolate values per end user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol
from urllib.parse import parse_qs, urlparse


class SessionStore(Protocol):
    """End-user session storage scoped to one user."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def commit(self) -> None:
        """Persist pending writes; called before any redirect."""
        ...


class MemorySessionStore:
    """Dictionary-backed session store."""

    def __init__(self, initial: Mapping[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})
        self.commits = 0

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def commit(self) -> None:
        self.commits += 1


@dataclass(frozen=True)
class RequestContext:
    """The incoming request as seen by the relying party."""

    params: Mapping[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_url(
        cls, callback_url: str, headers: Mapping[str, str] | None = None
    ) -> RequestContext:
        """Build a context from a full callback URL.

        Query parameters are read first; fragment parameters (implicit
        responses) fill in anything the query lacks.
        """
        parsed = urlparse(callback_url)
        params: dict[str, str] = {}
        for source in (parsed.query, parsed.fragment):
            for key, values in parse_qs(source).items():
                if values and key not in params:
                    params[key] = values[0]
        return cls(params=params, url=callback_url, headers=dict(headers or {}))

    def get(self, key: str) -> str | None:
        return self.params.get(key)

    def _header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def current_url(self, upgrade_insecure_requests: bool = True) -> str:
        """The URL of the current page, query and fragment stripped.

        Forwarding headers take precedence over the request URL so the
        result is correct behind a reverse proxy.
        """
        parsed = urlparse(self.url or "")

        if upgrade_insecure_requests and self._header("Upgrade-Insecure-Requests") == "1":
            scheme = "https"
        elif self._header("X-Forwarded-Proto"):
            scheme = self._header("X-Forwarded-Proto")
        else:
            scheme = parsed.scheme or "http"

        # Non-numeric forwarded ports are ignored
        forwarded_port = (self._header("X-Forwarded-Port") or "").strip()
        if forwarded_port.isascii() and forwarded_port.isdigit():
            port = int(forwarded_port)
        elif parsed.port:
            port = parsed.port
        else:
            port = 443 if scheme == "https" else 80

        host_header = self._header("Host")
        if host_header:
            host = host_header.split(":")[0]
        elif parsed.hostname:
            host = parsed.hostname
        else:
            return "http:///"

        port_part = "" if port in (80, 443) else f":{port}"
        path = parsed.path.strip("/")
        return f"{scheme}://{host}{port_part}/{path}"

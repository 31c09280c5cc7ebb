"""
Request and response types shared by the cache and the network layer.

Responses carry their whole body in memory, so "cloning" a response to
both cache it and return it is a plain copy.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def canonical_url(url: str) -> str:
    """Normalize a URL for use as a cache key.

    Lowercases scheme and host, drops default ports and fragments, and
    gives an empty path the root ``/``. Query strings are kept as-is.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    netloc = host
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


@dataclass
class FetchRequest:
    """An outgoing HTTP request as seen by the strategy selector.

    Attributes:
        url: Absolute URL
        method: HTTP method
        headers: Request headers (lookups are case-insensitive)
        destination: Resource kind, e.g. "document", "image", "script"
        mode: "navigate" for top-level page loads
        body: Optional request body for passthrough requests
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    destination: str = ""
    mode: str = ""
    body: bytes | None = None

    def __post_init__(self) -> None:
        self.method = self.method.upper()

    def header(self, name: str, default: str | None = None) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @property
    def cache_key(self) -> str:
        """``METHOD canonical-url``; at most one cache entry per key."""
        return f"{self.method} {canonical_url(self.url)}"

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def is_navigation(self) -> bool:
        """True for HTML page loads."""
        if self.mode == "navigate" or self.destination == "document":
            return True
        return "text/html" in (self.header("Accept") or "")

@dataclass
class FetchResponse:
    """An HTTP response with its body fully read."""

    status: int
    body: bytes = b""
    content_type: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def clone(self) -> FetchResponse:
        return replace(self, headers=dict(self.headers))


@dataclass
class CacheEntry:
    """A stored response snapshot.

    Attributes:
        request_key: ``METHOD canonical-url``
        body: Response body
        content_type: Response content type
        stored_at: Epoch seconds when written
        status: Original HTTP status
        headers: Original response headers
        url: Original response URL
    """

    request_key: str
    body: bytes
    content_type: str
    stored_at: float
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "request_key": self.request_key,
            "body": base64.b64encode(self.body).decode("ascii"),
            "content_type": self.content_type,
            "stored_at": self.stored_at,
            "status": self.status,
            "headers": self.headers,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        """Create from dictionary."""
        return cls(
            request_key=data["request_key"],
            body=base64.b64decode(data.get("body", "")),
            content_type=data.get("content_type", ""),
            stored_at=float(data.get("stored_at", 0.0)),
            status=int(data.get("status", 200)),
            headers=dict(data.get("headers", {})),
            url=data.get("url", ""),
        )

    def to_response(self) -> FetchResponse:
        return FetchResponse(
            status=self.status,
            body=self.body,
            content_type=self.content_type,
            headers=dict(self.headers),
            url=self.url,
            from_cache=True,
        )

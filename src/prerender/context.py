"""Request descriptor for classification.

Provides a framework-neutral view of the inbound request so the classifier
and URL builder never touch mitmproxy or Starlette objects directly.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import parse_qsl, urlsplit

if TYPE_CHECKING:
    from mitmproxy import http
    from starlette.requests import Request

ESCAPED_FRAGMENT = "_escaped_fragment_"


@dataclass(frozen=True)
class RequestDescriptor:
    """Per-request values the prerender engine reads.

    Attributes:
        url: Absolute URL as requested
        query_params: Ordered (key, value) pairs; keys may repeat
        user_agent: User-Agent header value, empty when absent
        referer: Absolute referer URL, empty when absent
        headers: Ordered (name, value) inbound header pairs
        application_path: Base path the application is mounted at
    """

    url: str
    query_params: tuple[tuple[str, str], ...] = ()
    user_agent: str = ""
    referer: str = ""
    headers: tuple[tuple[str, str], ...] = field(default=(), repr=False)
    application_path: str = "/"

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        user_agent: str | None = None,
        referer: str | None = None,
        headers: Iterable[tuple[str, str]] | None = None,
        application_path: str = "/",
    ) -> RequestDescriptor:
        """Create a descriptor from plain values, parsing the query string out of the URL."""
        return cls(
            url=url,
            query_params=tuple(parse_qsl(urlsplit(url).query, keep_blank_values=True)),
            user_agent=user_agent or "",
            referer=referer or "",
            headers=tuple(headers or ()),
            application_path=application_path,
        )

    @classmethod
    def from_flow(cls, request: http.Request, application_path: str = "/") -> RequestDescriptor:
        """Create a descriptor from a mitmproxy request.

        Args:
            request: mitmproxy HTTP request (flow.request)
            application_path: Mount path of the application behind the proxy

        Returns:
            RequestDescriptor for the request
        """
        headers = tuple((str(k), str(v)) for k, v in request.headers.items(multi=True))
        return cls(
            url=request.pretty_url,
            query_params=tuple((str(k), str(v)) for k, v in request.query.items(multi=True)),
            user_agent=request.headers.get("user-agent", ""),
            referer=request.headers.get("referer", ""),
            headers=headers,
            application_path=application_path,
        )

    @classmethod
    def from_starlette(cls, request: Request) -> RequestDescriptor:
        """Create a descriptor from a Starlette (or FastAPI) request.

        The application path comes from the ASGI root_path.
        """
        return cls(
            url=str(request.url),
            query_params=tuple(request.query_params.multi_items()),
            user_agent=request.headers.get("user-agent", ""),
            referer=request.headers.get("referer", ""),
            headers=tuple(request.headers.items()),
            application_path=request.scope.get("root_path", "") or "/",
        )

    def get_header(self, name: str, default: str = "") -> str:
        """Get the first value of a header (case-insensitive).

        Args:
            name: Header name
            default: Default value if not found

        Returns:
            Header value or default
        """
        name_lower = name.lower()
        for key, value in self.headers:
            if key.lower() == name_lower:
                return value
        return default

    def has_query_param(self, key: str) -> bool:
        """Check whether the query string carries a key, with or without a value."""
        return any(name == key for name, _ in self.query_params)

    @property
    def has_escaped_fragment(self) -> bool:
        """Check for the `_escaped_fragment_` crawling convention."""
        return self.has_query_param(ESCAPED_FRAGMENT)

"""Rendering service access: upstream URL construction and the fetch itself."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from prerender.config import PrerenderConfig

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Prerender-Token"
FORWARDED_PROTO_HEADER = "X-Forwarded-Proto"


class PrerenderError(Exception):
    """Base class for prerender errors."""


class UpstreamUnavailableError(PrerenderError):
    """The rendering service could not be reached at all (no HTTP response)."""

    def __init__(self, url: str, cause: Exception) -> None:
        super().__init__(f"rendering service unreachable for {url}: {type(cause).__name__}: {cause}")
        self.url = url
        self.cause = cause


@dataclass(frozen=True)
class UpstreamResult:
    """Response of the rendering service, relayed once to the caller.

    Attributes:
        status_code: HTTP status returned by the service (any value, 4xx/5xx included)
        body: Response body decoded as UTF-8
        headers: Read-only view of header name (as received) -> tuple of values,
            in received order
    """

    status_code: int
    body: str
    headers: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {name: tuple(values) for name, values in self.headers.items()}
        object.__setattr__(self, "headers", MappingProxyType(frozen))

    @classmethod
    def from_response(cls, response: httpx.Response) -> UpstreamResult:
        """Build a result from an httpx response, keeping header case and repeats."""
        headers: dict[str, list[str]] = {}
        for raw_name, raw_value in response.headers.raw:
            name = raw_name.decode("latin-1")
            headers.setdefault(name, []).append(raw_value.decode("latin-1"))
        return cls(
            status_code=response.status_code,
            body=response.content.decode("utf-8", errors="replace"),
            headers=headers,
        )


def _header_value(headers: Mapping[str, str] | Iterable[tuple[str, str]], name: str) -> str:
    """Case-insensitive lookup in a mapping or a sequence of header pairs."""
    items = headers.items() if isinstance(headers, Mapping) else headers
    name_lower = name.lower()
    for key, value in items:
        if key.lower() == name_lower:
            return value
    return ""


def build_upstream_url(
    requested_url: str,
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
    application_path: str,
    config: PrerenderConfig,
) -> str:
    """Build the rendering service URL for a request.

    Args:
        requested_url: Absolute URL the client asked for
        headers: Inbound request headers
        application_path: Base path the application is mounted at
        config: Prerender configuration

    Returns:
        `<service_url>/<requested url>`, with the scheme corrected for
        TLS-terminating load balancers and the application path optionally removed
    """
    url = requested_url

    # Correct for HTTPS if that is what the request arrived at the load balancer as.
    # Plain substring replacement: every "http" in the URL becomes "https".
    if _header_value(headers, FORWARDED_PROTO_HEADER).lower() == "https":
        url = url.replace("http", "https")

    # e.g. http://test.com/MyApp/?_escaped_fragment_=/somewhere -> http://test.com/?_escaped_fragment_=/somewhere
    if config.strip_application_path and application_path and application_path != "/":
        url = url.replace(application_path, "", 1)

    service_url = config.service_url
    if service_url.endswith("/"):
        return service_url + url
    return f"{service_url}/{url}"


class UpstreamFetcher:
    """Fetches pre-rendered pages from the rendering service.

    Every HTTP status is returned as data; only a failure with no response at
    all (connection refused, DNS failure, timeout) raises UpstreamUnavailableError.
    """

    def __init__(
        self,
        config: PrerenderConfig,
        transport: httpx.BaseTransport | None = None,
        async_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Prerender configuration
            transport: Optional httpx transport for the blocking client (tests)
            async_transport: Optional httpx transport for the async client (tests)
        """
        self.config = config
        self._transport = transport
        self._async_transport = async_transport

    def request_headers(self, user_agent: str) -> dict[str, str]:
        """Headers sent to the rendering service."""
        headers = {
            "User-Agent": user_agent,
            "Cache-Control": "no-cache",
            "Content-Type": "text/html",
        }
        token = self.config.token
        if token and token.strip():
            headers[TOKEN_HEADER] = token
        return headers

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments shared by the blocking and async httpx clients."""
        options: dict[str, Any] = {
            "timeout": httpx.Timeout(self.config.timeout),
            "follow_redirects": False,
        }
        proxy = self.config.proxy_address
        if proxy:
            options["proxy"] = proxy
        return options

    def fetch(self, upstream_url: str, user_agent: str) -> UpstreamResult:
        """Fetch a pre-rendered page, blocking until the service answers.

        Args:
            upstream_url: Full rendering service URL (see build_upstream_url)
            user_agent: User agent of the original request

        Returns:
            UpstreamResult with the service's status, body and headers

        Raises:
            UpstreamUnavailableError: If no HTTP response was received
        """
        logger.debug("Fetching pre-rendered page: %s", upstream_url)
        try:
            with httpx.Client(transport=self._transport, **self.client_options()) as client:
                response = client.get(upstream_url, headers=self.request_headers(user_agent))
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(upstream_url, e) from e
        return self._result(upstream_url, response)

    async def afetch(self, upstream_url: str, user_agent: str) -> UpstreamResult:
        """Awaitable variant of fetch() for asyncio hosts (mitmproxy, ASGI).

        Cancelling the awaiting task abandons the request.
        """
        logger.debug("Fetching pre-rendered page: %s", upstream_url)
        try:
            async with httpx.AsyncClient(transport=self._async_transport, **self.client_options()) as client:
                response = await client.get(upstream_url, headers=self.request_headers(user_agent))
        except httpx.TransportError as e:
            raise UpstreamUnavailableError(upstream_url, e) from e
        return self._result(upstream_url, response)

    @staticmethod
    def _result(upstream_url: str, response: httpx.Response) -> UpstreamResult:
        result = UpstreamResult.from_response(response)
        if response.is_success:
            logger.debug("Rendering service returned %d for %s", result.status_code, upstream_url)
        else:
            # Invalid renders (404s, 504s etc.) are relayed as-is
            logger.info("Rendering service returned %d for %s", result.status_code, upstream_url)
        return result


def fetch(
    upstream_url: str,
    user_agent: str,
    config: PrerenderConfig,
    transport: httpx.BaseTransport | None = None,
) -> UpstreamResult:
    """Fetch a pre-rendered page with a one-off UpstreamFetcher."""
    return UpstreamFetcher(config, transport=transport).fetch(upstream_url, user_agent)



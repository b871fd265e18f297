"""Mitmproxy addon that answers crawler requests with pre-rendered pages.

In reverse proxy mode mitmproxy forwards every request to the application.
When this addon sets flow.response in the request hook, mitmproxy skips the
application and sends the pre-rendered page instead.
"""

from __future__ import annotations

import logging

from mitmproxy import http

from prerender.config import PrerenderConfig
from prerender.context import RequestDescriptor
from prerender.headers import HTML_CONTENT_TYPE
from prerender.interceptor import PrerenderInterceptor
from prerender.upstream import UpstreamResult, UpstreamUnavailableError

logger = logging.getLogger(__name__)


class PrerenderMitmAddon:
    """Mitmproxy addon that relays pre-rendered pages to crawlers."""

    def __init__(
        self,
        config: PrerenderConfig,
        interceptor: PrerenderInterceptor | None = None,
    ) -> None:
        """Initialize the addon.

        Args:
            config: Prerender configuration
            interceptor: Optional interceptor (a default one is built from config)
        """
        self.config = config
        self.interceptor = interceptor or PrerenderInterceptor(config)

    def _build_response(self, result: UpstreamResult) -> http.Response:
        """Turn the rendering service result into a mitmproxy response.

        Args:
            result: Rendering service result

        Returns:
            Response carrying the upstream status, headers and body
        """
        headers = http.Headers()
        self.interceptor.write_headers(headers.add, result)
        headers["content-type"] = HTML_CONTENT_TYPE
        # make() sets content-length from the encoded body
        return http.Response.make(result.status_code, result.body.encode("utf-8"), headers)

    async def request(self, flow: http.HTTPFlow) -> None:
        """Serve the pre-rendered page for crawler requests.

        Any failure leaves the flow untouched so the application answers instead.

        Args:
            flow: HTTP flow object
        """
        if flow.response is not None:
            return

        try:
            request = RequestDescriptor.from_flow(flow.request, application_path=self.config.application_path)
            result = await self.interceptor.aresolve(request)
            if result is None:
                return
            flow.response = self._build_response(result)
            logger.debug(
                "Relayed pre-rendered page: %s (status: %d, flow: %s)",
                request.url,
                result.status_code,
                flow.id,
            )
        except UpstreamUnavailableError as e:
            logger.warning("Rendering service unavailable, passing request through: %s", e)
        except Exception as e:
            logger.error("Error pre-rendering %s: %s", flow.request.pretty_url, e, exc_info=True)

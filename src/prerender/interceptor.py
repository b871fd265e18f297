"""Framework-neutral interception sequence.

classify -> build upstream URL -> fetch -> relay. The framework adapters
(prerender.mitm.addon, prerender.asgi) wrap this in their fail-open boundary.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prerender.classifier import RequestClassifier
from prerender.headers import HeaderSink, merge_headers, without_framing_headers
from prerender.upstream import UpstreamFetcher, UpstreamResult, build_upstream_url

if TYPE_CHECKING:
    from prerender.config import PrerenderConfig
    from prerender.context import RequestDescriptor

logger = logging.getLogger(__name__)


class PrerenderInterceptor:
    """Decides per request and fetches the pre-rendered page when needed.

    Attributes:
        config: Frozen prerender configuration shared by all requests
        classifier: Request classifier built from the config
        fetcher: Rendering service client
    """

    def __init__(
        self,
        config: PrerenderConfig,
        fetcher: UpstreamFetcher | None = None,
        classifier: RequestClassifier | None = None,
    ) -> None:
        self.config = config
        self.classifier = classifier or RequestClassifier(config)
        self.fetcher = fetcher or UpstreamFetcher(config)

    def upstream_url(self, request: RequestDescriptor) -> str:
        """Rendering service URL for the request."""
        return build_upstream_url(request.url, request.headers, request.application_path, self.config)

    def resolve(self, request: RequestDescriptor) -> UpstreamResult | None:
        """Fetch the pre-rendered page if the request should be intercepted.

        Args:
            request: Request descriptor

        Returns:
            UpstreamResult to relay, or None to continue with normal handling

        Raises:
            UpstreamUnavailableError: If the rendering service gave no response
        """
        if not self.classifier.should_intercept(request):
            return None
        upstream_url = self.upstream_url(request)
        logger.info("Pre-rendering %s via %s", request.url, upstream_url)
        return self.fetcher.fetch(upstream_url, request.user_agent)

    async def aresolve(self, request: RequestDescriptor) -> UpstreamResult | None:
        """Awaitable variant of resolve()."""
        if not self.classifier.should_intercept(request):
            return None
        upstream_url = self.upstream_url(request)
        logger.info("Pre-rendering %s via %s", request.url, upstream_url)
        return await self.fetcher.afetch(upstream_url, request.user_agent)

    def write_headers(self, sink: HeaderSink, result: UpstreamResult) -> None:
        """Copy the relayable upstream headers into the outbound response.

        The content type is not written here: adapters set it to
        prerender.headers.HTML_CONTENT_TYPE when they write the body.
        """
        headers = {k: v for k, v in without_framing_headers(result.headers).items() if k.lower() != "content-type"}
        merge_headers(sink, headers, self.config)



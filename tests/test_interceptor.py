"""Tests for the framework-neutral interception sequence."""

import httpx
import pytest

from prerender.config import PrerenderConfig
from prerender.context import RequestDescriptor
from prerender.interceptor import PrerenderInterceptor
from prerender.upstream import UpstreamFetcher, UpstreamResult, UpstreamUnavailableError

CRAWLER = "facebookexternalhit/1.1"


@pytest.fixture
def interceptor(ok_transport: httpx.MockTransport) -> PrerenderInterceptor:
    config = PrerenderConfig(service_url="http://svc.example.com", intercept_by_default=False)
    fetcher = UpstreamFetcher(config, transport=ok_transport, async_transport=ok_transport)
    return PrerenderInterceptor(config, fetcher=fetcher)


class TestPrerenderInterceptor:
    """Tests for PrerenderInterceptor."""

    def test_resolve_crawler(self, interceptor: PrerenderInterceptor, upstream_calls: list) -> None:
        request = RequestDescriptor.from_url("http://app.com/page", user_agent=CRAWLER)

        result = interceptor.resolve(request)

        assert result is not None
        assert result.status_code == 200
        assert result.body == "<html>ok</html>"
        assert str(upstream_calls[0].url).endswith("app.com/page")
        assert upstream_calls[0].headers["User-Agent"] == CRAWLER

    def test_resolve_browser(self, interceptor: PrerenderInterceptor, upstream_calls: list) -> None:
        request = RequestDescriptor.from_url("http://app.com/page", user_agent="Mozilla/5.0 Firefox/120.0")
        assert interceptor.resolve(request) is None
        assert upstream_calls == []

    def test_upstream_url_uses_request_headers(self, interceptor: PrerenderInterceptor) -> None:
        request = RequestDescriptor.from_url(
            "http://app.com/page", user_agent=CRAWLER, headers=[("X-Forwarded-Proto", "https")]
        )
        assert interceptor.upstream_url(request) == "http://svc.example.com/https://app.com/page"

    @pytest.mark.asyncio
    async def test_aresolve(self, interceptor: PrerenderInterceptor) -> None:
        request = RequestDescriptor.from_url("http://app.com/page", user_agent=CRAWLER)
        result = await interceptor.aresolve(request)
        assert result is not None
        assert result.headers["Set-Cookie"] == ("a=1", "b=2")

    @pytest.mark.asyncio
    async def test_aresolve_unavailable(self, down_transport: httpx.MockTransport) -> None:
        config = PrerenderConfig()
        interceptor = PrerenderInterceptor(config, fetcher=UpstreamFetcher(config, async_transport=down_transport))
        request = RequestDescriptor.from_url("http://app.com/page", user_agent=CRAWLER)
        with pytest.raises(UpstreamUnavailableError):
            await interceptor.aresolve(request)

    def test_write_headers_drops_framing_and_content_type(self) -> None:
        interceptor = PrerenderInterceptor(PrerenderConfig(headers_to_exclude=["Set-Cookie"]))
        result = UpstreamResult(
            status_code=200,
            body="<html></html>",
            headers={
                "Content-Length": ["13"],
                "Content-Type": ["text/html"],
                "Content-Encoding": ["gzip"],
                "Set-Cookie": ["a=1"],
                "Cache-Control": ["max-age=60"],
                "Link": ["</a>", "</b>"],
            },
        )
        pairs: list[tuple[str, str]] = []

        interceptor.write_headers(lambda name, value: pairs.append((name, value)), result)

        assert pairs == [("Cache-Control", "max-age=60"), ("Link", "</a>"), ("Link", "</b>")]

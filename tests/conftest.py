"""Shared fixtures for prerender tests."""

from collections.abc import Iterator

import httpx
import pytest

from prerender.config import PrerenderConfig, clear_config_instance


@pytest.fixture(autouse=True)
def reset_config(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    """Isolate every test from the global config and the user's environment."""
    monkeypatch.delenv("PRERENDER_CONFIG_DIR", raising=False)
    monkeypatch.delenv("PRERENDER_TOKEN", raising=False)
    monkeypatch.delenv("PRERENDER_SERVICE_URL", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    clear_config_instance()
    yield
    clear_config_instance()


@pytest.fixture
def config() -> PrerenderConfig:
    """Default configuration with a token."""
    return PrerenderConfig(token="test-token")


@pytest.fixture
def upstream_calls() -> list[httpx.Request]:
    """Requests received by the stubbed rendering service."""
    return []


@pytest.fixture
def ok_transport(upstream_calls: list[httpx.Request]) -> httpx.MockTransport:
    """Rendering service stub answering 200 with a small page."""

    def handler(request: httpx.Request) -> httpx.Response:
        upstream_calls.append(request)
        return httpx.Response(
            200,
            headers=[("X-Rendered-By", "stub"), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")],
            content=b"<html>ok</html>",
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def down_transport() -> httpx.MockTransport:
    """Rendering service stub that refuses connections."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    return httpx.MockTransport(handler)

"""Starlette / FastAPI integration.

PrerenderMiddleware covers a whole application; prerender_endpoint covers a
single endpoint:

    app.add_middleware(PrerenderMiddleware, config=PrerenderConfig(token="..."))

    @app.get("/products/{slug}")
    @prerender_endpoint()
    async def product(request: Request, slug: str): ...
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from prerender.config import PrerenderConfig, get_config
from prerender.context import RequestDescriptor
from prerender.headers import HTML_CONTENT_TYPE
from prerender.interceptor import PrerenderInterceptor
from prerender.upstream import UpstreamResult, UpstreamUnavailableError

logger = logging.getLogger(__name__)


def build_response(interceptor: PrerenderInterceptor, result: UpstreamResult) -> Response:
    """Turn a rendering service result into a Starlette response."""
    response = Response(content=result.body.encode("utf-8"), status_code=result.status_code)
    interceptor.write_headers(response.headers.append, result)
    response.headers["content-type"] = HTML_CONTENT_TYPE
    return response


async def prerender_response(interceptor: PrerenderInterceptor, request: Request) -> Response | None:
    """Pre-rendered response for the request, or None to let the application answer.

    Never raises: every failure is logged and answered with None (fail open).
    """
    try:
        descriptor = RequestDescriptor.from_starlette(request)
        result = await interceptor.aresolve(descriptor)
        if result is None:
            return None
        return build_response(interceptor, result)
    except UpstreamUnavailableError as e:
        logger.warning("Rendering service unavailable, passing request through: %s", e)
    except Exception as e:
        logger.error("Error pre-rendering %s: %s", request.url, e, exc_info=True)
    return None


class PrerenderMiddleware(BaseHTTPMiddleware):
    """Serves pre-rendered pages to crawlers in front of every route."""

    def __init__(
        self,
        app: ASGIApp,
        config: PrerenderConfig | None = None,
        interceptor: PrerenderInterceptor | None = None,
    ) -> None:
        super().__init__(app)
        self.config = config or get_config()
        self.interceptor = interceptor or PrerenderInterceptor(self.config)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await prerender_response(self.interceptor, request)
        if response is not None:
            return response

        # Application errors are not ours to handle, so call_next stays outside the boundary
        return await call_next(request)


def _find_request(args: tuple[Any, ...], kwargs: dict[str, Any]) -> Request | None:
    for value in (*args, *kwargs.values()):
        if isinstance(value, Request):
            return value
    return None


def prerender_endpoint(
    config: PrerenderConfig | None = None,
    interceptor: PrerenderInterceptor | None = None,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """Decorator serving pre-rendered pages for one async endpoint.

    The endpoint must accept the Request as a parameter. When the request is
    intercepted the endpoint body never runs.

    Args:
        config: Prerender configuration (defaults to the global config on first call)
        interceptor: Optional interceptor to share between endpoints
    """

    def decorator(endpoint: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        if not inspect.iscoroutinefunction(endpoint):
            raise TypeError(f"prerender_endpoint requires an async endpoint, got {endpoint.__name__}")

        resolved: list[PrerenderInterceptor] = [interceptor] if interceptor else []

        @functools.wraps(endpoint)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            request = _find_request(args, kwargs)
            if request is None:
                logger.warning("prerender_endpoint: no Request argument on %s, skipping", endpoint.__name__)
                return await endpoint(*args, **kwargs)

            if not resolved:
                resolved.append(PrerenderInterceptor(config or get_config()))

            response = await prerender_response(resolved[0], request)
            if response is not None:
                return response
            return await endpoint(*args, **kwargs)

        return wrapper

    return decorator

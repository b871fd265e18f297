"""Copying rendering service headers into the outbound response."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from prerender.config import PrerenderConfig

# Appends one header value to the outbound response, e.g. mitmproxy
# Headers.add or Starlette MutableHeaders.append
HeaderSink = Callable[[str, str], Any]

HTML_CONTENT_TYPE = "text/html; charset=utf-8"

# Describe the upstream wire encoding; the body is re-encoded by the outbound framework
FRAMING_HEADERS = frozenset({"content-length", "content-encoding", "transfer-encoding"})


def merge_headers(
    sink: HeaderSink,
    upstream_headers: Mapping[str, Iterable[str]],
    config: PrerenderConfig,
) -> None:
    """Append every upstream header value to the outbound response.

    Headers named in config.headers_to_exclude (exact, case-sensitive match)
    are skipped entirely. Repeated values are all copied, in received order.

    Args:
        sink: Callable appending a (name, value) pair to the outbound headers
        upstream_headers: Header name -> values from the rendering service
        config: Prerender configuration
    """
    excluded = set(config.headers_to_exclude)

    for name, values in upstream_headers.items():
        if values is None:
            continue
        # Make sure we aren't sending back any headers we don't want
        if name in excluded:
            continue
        for value in values:
            sink(name, value)


def without_framing_headers(headers: Mapping[str, Iterable[str]]) -> dict[str, Iterable[str]]:
    """Drop Content-Length, Content-Encoding and Transfer-Encoding (any case)."""
    return {name: values for name, values in headers.items() if name.lower() not in FRAMING_HEADERS}

"""Mitmproxy addon script for use with mitmdump -s flag.

This script is loaded by mitmdump to answer crawler requests with pages from
the rendering service via PrerenderMitmAddon. Every other request is forwarded
to the application by mitmproxy's reverse proxy mode.

Usage:
    mitmdump --mode reverse:http://localhost:{app_port} --set keep_host_header=true -s script.py
"""

from __future__ import annotations

import logging
from typing import Any

from prerender.config import PrerenderConfig, get_config
from prerender.mitm.addon import PrerenderMitmAddon

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class PrerenderScript:
    """Mitmproxy addon script that wraps PrerenderMitmAddon."""

    def __init__(self) -> None:
        self.config: PrerenderConfig | None = None
        self.addon: PrerenderMitmAddon | None = None

    def load(self, loader: Any) -> None:  # noqa: ANN401
        """Called when addon is loaded by mitmproxy.

        Configuration errors (e.g. an invalid whitelist pattern) propagate so
        mitmdump refuses to start instead of failing per request.
        """
        logger.info("Loading prerender mitmproxy addon...")

        self.config = get_config()
        self.addon = PrerenderMitmAddon(self.config)

        logger.info(
            "Rendering service: %s (token: %s, proxy: %s)",
            self.config.service_url,
            "set" if self.config.token else "not set",
            self.config.proxy_address or "none",
        )

    async def request(self, flow: Any) -> None:  # noqa: ANN401
        """Handle HTTP request."""
        if self.addon:
            await self.addon.request(flow)


addons = [PrerenderScript()]

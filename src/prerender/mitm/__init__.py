"""Mitmproxy integration: reverse proxy in front of a web application."""

from prerender.mitm.addon import PrerenderMitmAddon

__all__ = ["PrerenderMitmAddon"]

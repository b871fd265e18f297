"""Classification rules for deciding whether a request gets a pre-rendered page.

Each rule returns True (intercept), False (pass through) or None (no opinion,
let the next rule decide). RequestClassifier evaluates them in order and the
first rule with an opinion wins.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prerender.config import PrerenderConfig
    from prerender.context import RequestDescriptor


def matches_any(patterns: Sequence[re.Pattern[str]], value: str) -> bool:
    """Check whether any pattern matches somewhere in value (unanchored search)."""
    return any(pattern.search(value) for pattern in patterns)


def is_crawler_user_agent(user_agent: str, crawler_user_agents: Sequence[str]) -> bool:
    """Check whether a user agent contains any crawler substring (case-insensitive).

    Args:
        user_agent: User-Agent header value
        crawler_user_agents: Lowercased crawler substrings

    Returns:
        True if the user agent identifies a crawler
    """
    user_agent_lower = user_agent.lower()
    return any(agent in user_agent_lower for agent in crawler_user_agents)


class ClassificationRule(ABC):
    """Base class for a single classification rule."""

    name: str = "rule"

    def __init__(self, config: PrerenderConfig) -> None:
        self.config = config

    @abstractmethod
    def evaluate(self, request: RequestDescriptor) -> bool | None:
        """Decide for the request, or return None to defer to the next rule."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class IgnoredResourceRule(ClassificationRule):
    """Static resources (scripts, images, archives) are never pre-rendered."""

    name = "ignored_resource"

    def __init__(self, config: PrerenderConfig) -> None:
        super().__init__(config)
        self.extensions = config.ignored_extensions

    def evaluate(self, request: RequestDescriptor) -> bool | None:
        url_lower = request.url.lower()
        if any(extension in url_lower for extension in self.extensions):
            return False
        return None


class BlankUserAgentRule(ClassificationRule):
    """Requests without a user agent pass through."""

    name = "blank_user_agent"

    def evaluate(self, request: RequestDescriptor) -> bool | None:
        if not request.user_agent.strip():
            return False
        return None


class CrawlerUserAgentRule(ClassificationRule):
    """Known crawlers get the pre-rendered page.

    Matching is by substring, so "bingbot" catches
    "Mozilla/5.0 (compatible; Bingbot/2.0; +http://www.bing.com/bingbot.htm)".
    """

    name = "crawler_user_agent"

    def __init__(self, config: PrerenderConfig) -> None:
        super().__init__(config)
        self.user_agents = config.user_agents

    def evaluate(self, request: RequestDescriptor) -> bool | None:
        if is_crawler_user_agent(request.user_agent, self.user_agents):
            return True
        return None


class EscapedFragmentRule(ClassificationRule):
    """Crawlers asking for `?_escaped_fragment_=` get the pre-rendered page.

    Only reachable when CrawlerUserAgentRule is left out of a custom chain; in
    the default chain a crawler has already been intercepted by then.
    """

    name = "escaped_fragment"

    def __init__(self, config: PrerenderConfig) -> None:
        super().__init__(config)
        self.user_agents = config.user_agents

    def evaluate(self, request: RequestDescriptor) -> bool | None:
        if request.has_escaped_fragment and is_crawler_user_agent(request.user_agent, self.user_agents):
            return True
        return None


class WhitelistRule(ClassificationRule):
    """With a non-empty whitelist, only matching URLs are pre-rendered."""

    name = "whitelist"

    def evaluate(self, request: RequestDescriptor) -> bool | None:
        whitelist = self.config.whitelist
        if whitelist and not matches_any(whitelist, request.url):
            return False
        return None


class BlacklistRule(ClassificationRule):
    """URLs (or referers) matching the blacklist are never pre-rendered."""

    name = "blacklist"

    def evaluate(self, request: RequestDescriptor) -> bool | None:
        blacklist = self.config.blacklist
        if not blacklist:
            return None
        if matches_any(blacklist, request.url):
            return False
        if request.referer.strip() and matches_any(blacklist, request.referer):
            return False
        return None


DEFAULT_RULES: tuple[type[ClassificationRule], ...] = (
    IgnoredResourceRule,
    BlankUserAgentRule,
    CrawlerUserAgentRule,
    EscapedFragmentRule,
    WhitelistRule,
    BlacklistRule,
)

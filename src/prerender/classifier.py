"""Request classifier: decides whether a request is served a pre-rendered page."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, NamedTuple

from prerender.context import RequestDescriptor
from prerender.rules import DEFAULT_RULES, ClassificationRule

if TYPE_CHECKING:
    from prerender.config import PrerenderConfig

logger = logging.getLogger(__name__)

DEFAULT_DECISION = "default"


class Decision(NamedTuple):
    """Classification outcome and the name of the rule that produced it."""

    intercept: bool
    rule: str


class RequestClassifier:
    """Evaluates classification rules in order; the first rule with an opinion wins.

    Rules are built once from the frozen config, so a classifier can be shared
    by every request of the process.
    """

    def __init__(
        self,
        config: PrerenderConfig,
        rules: Iterable[type[ClassificationRule]] = DEFAULT_RULES,
    ) -> None:
        self.config = config
        self.rules: list[ClassificationRule] = [rule_class(config) for rule_class in rules]

    def explain(self, request: RequestDescriptor) -> Decision:
        """Classify a request and report which rule decided.

        Args:
            request: Request descriptor

        Returns:
            Decision with the intercept flag and the deciding rule name
        """
        for rule in self.rules:
            result = rule.evaluate(request)
            if result is not None:
                return Decision(result, rule.name)
        return Decision(self.config.intercept_by_default, DEFAULT_DECISION)

    def should_intercept(self, request: RequestDescriptor) -> bool:
        """Check whether the request should get the pre-rendered page."""
        decision = self.explain(request)
        logger.debug(
            "Classified %s (user-agent %r): %s by %s",
            request.url,
            request.user_agent,
            "intercept" if decision.intercept else "pass",
            decision.rule,
        )
        return decision.intercept


def should_intercept(
    url: str,
    query_params: Iterable[tuple[str, str]],
    user_agent: str | None,
    referer: str | None,
    config: PrerenderConfig,
) -> bool:
    """Classify a request given as plain values.

    Args:
        url: Absolute request URL
        query_params: Ordered (key, value) query pairs
        user_agent: User-Agent header value, may be None
        referer: Referer URL, may be None
        config: Prerender configuration

    Returns:
        True if the request should be served from the rendering service
    """
    request = RequestDescriptor(
        url=url,
        query_params=tuple(query_params),
        user_agent=user_agent or "",
        referer=referer or "",
    )
    return RequestClassifier(config).should_intercept(request)

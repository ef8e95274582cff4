"""Best-effort answers when an assistant run fails."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FallbackRoute:
    """A registered tool to call directly for a kind of intent."""
    tool_name: str
    parameter: str
    keywords: tuple[str, ...]


RECENT_ROUTE = FallbackRoute(
    tool_name="get_recent_updates",
    parameter="topic",
    keywords=("latest", "recent", "recently", "newest", "new docs", "updated", "last week", "this week"),
)

SEARCH_ROUTE = FallbackRoute(
    tool_name="search_confluence",
    parameter="query",
    keywords=("documentation", "docs", "doc ", "confluence", "wiki", "page", "runbook", "guide", "how do i", "where is", "find", "search"),
)

# Words that carry intent or politeness rather than the topic itself
STOPWORDS = {
    "a", "an", "the", "me", "my", "our", "we", "i", "you", "can", "could", "would", "please",
    "show", "give", "list", "find", "search", "get", "tell", "what", "which", "where", "is", "are",
    "do", "does", "how", "any", "some", "all", "of", "in", "on", "for", "about", "to", "from", "was", "were", "been",
    "with", "there", "have", "has", "latest", "recent", "recently", "newest", "new", "updated",
    "update", "updates", "documentation", "docs", "doc", "documents", "document", "pages", "page",
    "confluence", "wiki", "ai", "this", "last", "week", "most",
}

COUNT_PATTERN = re.compile(r"\b(\d{1,2})\b")
MENTION_PATTERN = re.compile(r"<@[A-Z0-9]+>")


def extract_search_term(text: str) -> str:
    """Naive topic extraction: drop mentions, punctuation and intent words."""
    text = MENTION_PATTERN.sub(" ", text).lower()
    words = re.findall(r"[a-z0-9][a-z0-9_\-\.]*", text)
    meaningful = [w.strip(".") for w in words if w.strip(".") not in STOPWORDS and not w.isdigit()]
    return " ".join(w for w in meaningful if w)


def extract_count(text: str) -> Optional[int]:
    """Number of results asked for ("latest 5 docs"), if any."""
    match = COUNT_PATTERN.search(MENTION_PATTERN.sub(" ", text))
    if match:
        count = int(match.group(1))
        return count if count > 0 else None
    return None


def limit_results(text: str, max_results: int) -> str:
    """Keep the header and the first ``max_results`` blank-line separated entries."""
    blocks = [block for block in text.strip().split("\n\n") if block.strip()]
    if len(blocks) <= max_results + 1:
        return text
    return "\n\n".join(blocks[:max_results + 1])


class KeywordFallback:
    """Answers a failed turn by calling a matching tool directly.

    Bypasses the assistant entirely: the last user message is matched against
    keyword routes and the first route whose tool is registered is invoked
    with a naively extracted search term.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        routes: tuple[FallbackRoute, ...] = (RECENT_ROUTE, SEARCH_ROUTE),
        timeout: float = 30.0,
    ):
        self.registry = registry
        self.routes = routes
        self.timeout = timeout

    def match(self, user_text: str) -> Optional[FallbackRoute]:
        """First route whose keywords appear in the text and whose tool exists."""
        lowered = f" {user_text.lower()} "
        for route in self.routes:
            if route.tool_name not in self.registry:
                continue
            if any(keyword in lowered for keyword in route.keywords):
                return route
        return None

    async def recover(self, user_text: Optional[str]) -> Optional[str]:
        """Return a substitute answer, or None when no route applies.

        Never raises; tool errors and timeouts are logged and yield None.
        """
        if not user_text:
            return None

        route = self.match(user_text)
        if route is None:
            logger.info("No fallback route matched the last user message")
            return None

        tool = self.registry.find_by_name(route.tool_name)
        term = extract_search_term(user_text)
        arguments = json.dumps({route.parameter: term})
        logger.info(f"Falling back to {route.tool_name} with {route.parameter}='{term}'")

        try:
            result = await asyncio.wait_for(tool.invoke(arguments), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Fallback {route.tool_name} timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.error(f"Fallback {route.tool_name} failed: {e}")
            return None

        if not result:
            return None

        count = extract_count(user_text)
        if count:
            result = limit_results(result, count)
        return result

import asyncio

import pytest

from pebot.core.recovery import (
    RECENT_ROUTE,
    SEARCH_ROUTE,
    KeywordFallback,
    extract_count,
    extract_search_term,
    limit_results,
)
from pebot.core.tool_registry import ToolRegistry, function_tool


async def _search(query: str) -> str:
    return f"search:{query}"


async def _recent(topic: str) -> str:
    return f"recent:{topic}"


def _registry(*tools) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_all(list(tools))
    return registry


def _search_tool(func=_search):
    return function_tool("search_confluence", "Search", func, {"query": "q"})


def _recent_tool(func=_recent):
    return function_tool("get_recent_updates", "Recent", func, {"topic": "t"})


def test_extract_search_term_drops_intent_words() -> None:
    assert extract_search_term("What are the latest docs about load testing?") == "load testing"
    assert extract_search_term("<@U123ABC> find the JMeter runbook") == "jmeter runbook"
    assert extract_search_term("show me the latest docs") == ""


def test_extract_count() -> None:
    assert extract_count("latest 5 docs") == 5
    assert extract_count("<@U123> latest docs") is None
    assert extract_count("latest 0 docs") is None


def test_limit_results_keeps_header_and_first_entries() -> None:
    text = "Header:\n\nentry 1\n  a\n\nentry 2\n  b\n\nentry 3\n  c"

    assert limit_results(text, 2) == "Header:\n\nentry 1\n  a\n\nentry 2\n  b"
    assert limit_results(text, 5) == text


def test_match_prefers_recent_route_for_recency_words() -> None:
    fallback = KeywordFallback(_registry(_search_tool(), _recent_tool()))

    assert fallback.match("any recent documentation on caching?") is RECENT_ROUTE
    assert fallback.match("find docs on caching") is SEARCH_ROUTE
    assert fallback.match("good morning") is None


def test_match_skips_routes_without_registered_tool() -> None:
    fallback = KeywordFallback(_registry(_search_tool()))

    assert fallback.match("latest docs on caching") is SEARCH_ROUTE
    assert KeywordFallback(ToolRegistry()).match("latest docs") is None


@pytest.mark.asyncio
async def test_recover_invokes_tool_with_extracted_term() -> None:
    fallback = KeywordFallback(_registry(_search_tool(), _recent_tool()))

    assert await fallback.recover("search confluence for capacity planning") == "search:capacity planning"
    assert await fallback.recover("what was recently updated about grafana") == "recent:grafana"


@pytest.mark.asyncio
async def test_recover_returns_none_without_match_or_message() -> None:
    fallback = KeywordFallback(_registry(_search_tool()))

    assert await fallback.recover("thanks!") is None
    assert await fallback.recover(None) is None
    assert await fallback.recover("") is None


@pytest.mark.asyncio
async def test_recover_swallows_tool_errors_and_timeouts() -> None:
    async def broken(query: str) -> str:
        raise RuntimeError("confluence down")

    async def hanging(topic: str) -> str:
        await asyncio.sleep(1)
        return "too late"

    fallback = KeywordFallback(_registry(_search_tool(broken), _recent_tool(hanging)), timeout=0.01)

    assert await fallback.recover("find docs on caching") is None
    assert await fallback.recover("latest docs") is None

import json

import pytest

from pebot.core.tool_registry import ToolRegistry, function_tool


async def _echo(query: str) -> str:
    return f"echo:{query}"


async def _other(query: str) -> str:
    return "other"


def test_register_skips_duplicates_and_keeps_first() -> None:
    registry = ToolRegistry()
    first = function_tool("search", "first", _echo, {"query": "q"})
    second = function_tool("search", "second", _other, {"query": "q"})

    assert registry.register(first) is True
    assert registry.register(second) is False
    assert len(registry) == 1
    assert registry.find_by_name("search") is first


def test_find_by_name_is_case_sensitive() -> None:
    registry = ToolRegistry()
    registry.register(function_tool("search_confluence", "d", _echo, {"query": "q"}))

    assert registry.find_by_name("search_confluence") is not None
    assert registry.find_by_name("Search_Confluence") is None
    assert "search_confluence" in registry


def test_all_keeps_registration_order() -> None:
    registry = ToolRegistry()
    added = registry.register_all([
        function_tool("b", "d", _echo, {"query": "q"}),
        function_tool("a", "d", _echo, {"query": "q"}),
        function_tool("b", "d", _other, {"query": "q"}),
    ])

    assert added == 2
    assert [tool.name for tool in registry.all()] == ["b", "a"]


def test_tool_definitions_append_file_search() -> None:
    registry = ToolRegistry()
    registry.register(function_tool("search", "Find docs", _echo, {"query": "What to find"}))

    tools = registry.tool_definitions()

    assert tools[-1] == {"type": "file_search"}
    assert tools[0] == {
        "type": "function",
        "function": {
            "name": "search",
            "description": "Find docs",
            "parameters": {
                "type": "object",
                "properties": {"query": {"type": "string", "description": "What to find"}},
                "required": ["query"],
            },
        },
    }


def test_empty_registry_still_advertises_file_search() -> None:
    assert ToolRegistry().tool_definitions() == [{"type": "file_search"}]


@pytest.mark.asyncio
async def test_function_tool_decodes_arguments() -> None:
    tool = function_tool("search", "d", _echo, {"query": "q"})

    assert await tool.invoke(json.dumps({"query": "jmeter"})) == "echo:jmeter"
    assert await tool.invoke("{}") == "echo:"


@pytest.mark.asyncio
async def test_function_tool_rejects_malformed_arguments() -> None:
    tool = function_tool("search", "d", _echo, {"query": "q"})

    with pytest.raises(ValueError, match="Error parsing arguments for search"):
        await tool.invoke("{not json")
    with pytest.raises(ValueError, match="expected a JSON object"):
        await tool.invoke("[1, 2]")


@pytest.mark.asyncio
async def test_function_tool_optional_parameters_are_not_required() -> None:
    async def recent(topic: str, space: str) -> str:
        return f"{topic}|{space}"

    tool = function_tool("recent", "d", recent, {"topic": "t", "space": "s"}, optional=("topic",))

    assert tool.parameters["required"] == ["space"]
    assert set(tool.parameters["properties"]) == {"topic", "space"}
    assert await tool.invoke('{"space": "PE"}') == "|PE"

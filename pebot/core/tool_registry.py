"""Tool registry for functions the assistant may call."""

import json
import logging
from dataclasses import dataclass
from typing import Optional, Any, Awaitable, Callable

from pebot.llm.base import FILE_SEARCH_TOOL, ToolDefinition

logger = logging.getLogger(__name__)

Invoker = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class RegisteredTool:
    """A callable tool advertised to the assistant."""
    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema format
    invoke: Invoker

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


def function_tool(
    name: str,
    description: str,
    func: Callable[..., Awaitable[Any]],
    parameters: Optional[dict[str, str]] = None,
    optional: tuple[str, ...] = (),
) -> RegisteredTool:
    """Wrap an async function taking string keyword arguments as a tool.

    Args:
        name: Tool name advertised to the assistant.
        description: What the tool does.
        func: Coroutine function called with the decoded arguments.
        parameters: Mapping of parameter name to description. Every
            parameter is a string.
        optional: Parameters left out of the schema's ``required`` list.

    Returns:
        RegisteredTool whose invoker decodes the JSON arguments.
    """
    parameters = parameters or {}
    schema = {
        "type": "object",
        "properties": {
            param: {"type": "string", "description": desc}
            for param, desc in parameters.items()
        },
        "required": [param for param in parameters if param not in optional],
    }

    async def invoke(arguments_json: str) -> str:
        try:
            arguments = json.loads(arguments_json) if arguments_json else {}
        except json.JSONDecodeError as e:
            raise ValueError(f"Error parsing arguments for {name}: {e}") from e
        if not isinstance(arguments, dict):
            raise ValueError(f"Error parsing arguments for {name}: expected a JSON object")

        # Missing parameters are passed as empty strings; the function decides
        kwargs = {param: str(arguments.get(param) or "") for param in parameters}
        result = await func(**kwargs)
        return "" if result is None else str(result)

    return RegisteredTool(name=name, description=description, parameters=schema, invoke=invoke)


class ToolRegistry:
    """Name to tool lookup with duplicate-safe registration."""

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, tool: RegisteredTool) -> bool:
        """Add a tool unless one with the same name already exists.

        Returns:
            True if the tool was added, False if it was skipped.
        """
        if tool.name in self._tools:
            logger.warning(f"Skipping duplicate function registration: {tool.name}")
            return False

        self._tools[tool.name] = tool
        logger.info(f"Registered function: {tool.name}")
        return True

    def register_all(self, tools: list[RegisteredTool]) -> int:
        """Register several tools, returning how many were added."""
        added = sum(1 for tool in tools if self.register(tool))
        logger.info(f"Total registered functions: {len(self._tools)}")
        return added

    def find_by_name(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def all(self) -> list[RegisteredTool]:
        return list(self._tools.values())

    def tool_definitions(self) -> list[dict]:
        """Tool list for a run: every registered function plus file search."""
        tools = [tool.to_definition().to_assistants_format() for tool in self._tools.values()]
        tools.append({"type": FILE_SEARCH_TOOL})
        return tools

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

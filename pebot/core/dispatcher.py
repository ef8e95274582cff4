"""Tool call dispatch for runs that require action."""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from pebot.llm.base import Run, ToolCall, ToolOutput
from .tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

PLACEHOLDER_OUTPUT = "No output could be produced for this tool call."


class ToolCallDispatcher:
    """Turns a requires_action run into one output per tool call and submits them."""

    def __init__(
        self,
        registry: ToolRegistry,
        fetch_run: Callable[[str], Awaitable[Run]],
        submit_outputs: Callable[[str, list[ToolOutput]], Awaitable[Any]],
    ):
        """Initialize the dispatcher.

        Args:
            registry: Tools available for invocation.
            fetch_run: Coroutine returning the current Run for a run id.
            submit_outputs: Coroutine submitting a batch of outputs for a run id.
        """
        self.registry = registry
        self._fetch_run = fetch_run
        self._submit_outputs = submit_outputs

    async def execute(self, tool_call: ToolCall) -> ToolOutput:
        """Run one tool call. Never raises; failures become the output text."""
        name = tool_call.function_name
        tool = self.registry.find_by_name(name)

        if tool is None:
            logger.warning(f"No matching function found for {name}")
            return ToolOutput(tool_call.id, f"Error: function '{name}' not found")

        if not tool_call.arguments_json or not tool_call.arguments_json.strip():
            logger.warning(f"Function {name} called without arguments")
            return ToolOutput(tool_call.id, f"Error: function '{name}' was called without arguments")

        logger.info(f"Processing tool call {tool_call.id} for function {name}")
        logger.debug(f"Arguments: {tool_call.arguments_json}")
        try:
            result = await tool.invoke(tool_call.arguments_json)
        except Exception as e:
            logger.error(f"Error executing function {name}: {e}")
            return ToolOutput(tool_call.id, f"Error executing function {name}: {e}")

        output = "" if result is None else str(result)
        logger.info(f"Function {name} returned {len(output)} chars")
        return ToolOutput(tool_call.id, output)

    async def collect_outputs(self, run: Run) -> list[ToolOutput]:
        """Execute every tool call of a run, concurrently, keeping call order."""
        tool_calls = run.required_tool_calls
        logger.info(f"Found {len(tool_calls)} tool calls")
        if not tool_calls:
            return []

        outputs = await asyncio.gather(*(self.execute(call) for call in tool_calls))
        by_id = {output.tool_call_id: output for output in outputs}
        return [by_id[call.id] for call in tool_calls]

    async def submit(self, run_id: str, outputs: list[ToolOutput]) -> None:
        """Submit a complete batch in one call; failures propagate."""
        await self._submit_outputs(run_id, outputs)

    async def dispatch(self, run_id: str) -> list[ToolOutput]:
        """Fetch the run, execute its tool calls and submit the outputs.

        Returns:
            The submitted outputs; empty (and nothing submitted) when the
            run carried no extractable tool calls.
        """
        run = await self._fetch_run(run_id)
        if not run.requires_action:
            logger.warning(f"Run {run_id} is '{run.status}', not requires_action")
            return []

        outputs = await self.collect_outputs(run)
        if outputs:
            await self.submit(run_id, outputs)
        return outputs

    @staticmethod
    def synthesize_placeholders(required_action: Any) -> list[ToolOutput]:
        """Placeholder outputs for every tool call id found in a raw payload.

        Secondary extraction path for payloads the regular parser rejected.
        """
        outputs: list[ToolOutput] = []
        seen: set[str] = set()

        def walk(node: Any) -> None:
            if isinstance(node, dict):
                call_id = node.get("id")
                is_call = node.get("type") == "function" or "function" in node
                if isinstance(call_id, str) and call_id and is_call and call_id not in seen:
                    seen.add(call_id)
                    outputs.append(ToolOutput(call_id, PLACEHOLDER_OUTPUT))
                for value in node.values():
                    walk(value)
            elif isinstance(node, list):
                for item in node:
                    walk(item)

        walk(required_action)
        return outputs

"""Data model for the Assistants run protocol."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Any

logger = logging.getLogger(__name__)

# Built-in retrieval capability advertised alongside registered functions
FILE_SEARCH_TOOL = "file_search"


class AssistantsAPIError(RuntimeError):
    """A request to the Assistants API failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RunTimeoutError(AssistantsAPIError):
    """A run stayed pending for longer than the poll ceiling allows."""


class RunStatus(str, Enum):
    """Statuses a run can report."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


PENDING_STATUSES = frozenset({RunStatus.QUEUED.value, RunStatus.IN_PROGRESS.value})
TERMINAL_STATUSES = frozenset({
    RunStatus.COMPLETED.value,
    RunStatus.FAILED.value,
    RunStatus.CANCELLED.value,
    RunStatus.EXPIRED.value,
})


@dataclass(frozen=True)
class ToolCall:
    """A pending function invocation requested by the assistant."""
    id: str
    function_name: str
    arguments_json: Optional[str]


@dataclass(frozen=True)
class ToolOutput:
    """Result submitted back for one tool call."""
    tool_call_id: str
    output: str

    def to_api(self) -> dict:
        return {"tool_call_id": self.tool_call_id, "output": self.output}


@dataclass
class Run:
    """One assistant execution attempt against a thread."""
    id: str
    thread_id: str = ""
    status: str = RunStatus.QUEUED.value
    required_tool_calls: list[ToolCall] = field(default_factory=list)
    required_action: Optional[dict[str, Any]] = None
    last_error: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def requires_action(self) -> bool:
        return self.status == RunStatus.REQUIRES_ACTION.value

    @classmethod
    def from_api(cls, data: dict) -> "Run":
        """Build a Run from an API payload.

        Tool calls are parsed defensively: entries missing an id are skipped,
        and a malformed ``required_action`` yields no tool calls at all.
        """
        required_action = data.get("required_action")
        if not isinstance(required_action, dict):
            required_action = None

        last_error = None
        error = data.get("last_error")
        if isinstance(error, dict):
            last_error = f"{error.get('code', 'error')}: {error.get('message', '')}"

        return cls(
            id=str(data.get("id") or ""),
            thread_id=str(data.get("thread_id") or ""),
            status=str(data.get("status") or ""),
            required_tool_calls=parse_tool_calls(required_action),
            required_action=required_action,
            last_error=last_error,
        )


def parse_tool_calls(required_action: Optional[dict]) -> list[ToolCall]:
    """Extract ordered tool calls from a ``required_action`` payload."""
    if not isinstance(required_action, dict):
        return []

    submit = required_action.get("submit_tool_outputs")
    raw_calls = submit.get("tool_calls") if isinstance(submit, dict) else None
    if not isinstance(raw_calls, list):
        logger.warning("required_action payload has no tool_calls list")
        return []

    tool_calls = []
    for raw in raw_calls:
        if not isinstance(raw, dict) or not raw.get("id"):
            logger.warning(f"Skipping malformed tool call entry: {raw!r}")
            continue
        function = raw.get("function") if isinstance(raw.get("function"), dict) else {}
        tool_calls.append(ToolCall(
            id=str(raw["id"]),
            function_name=str(function.get("name") or ""),
            arguments_json=function.get("arguments"),
        ))
    return tool_calls


@dataclass
class ToolDefinition:
    """Definition of a tool for the assistant."""
    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema format

    def to_assistants_format(self) -> dict:
        """Convert to Assistants API function tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

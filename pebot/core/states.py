"""State definitions for the run orchestration graph."""

from enum import Enum
from dataclasses import dataclass
from typing import TypedDict, Optional


class TurnStage(str, Enum):
    """Nodes of the run state machine."""
    CREATE_RUN = "create_run"
    POLL_RUN = "poll_run"
    DISPATCH_TOOLS = "dispatch_tools"
    FETCH_RESPONSE = "fetch_response"
    RECOVER = "recover"


class RunGraphState(TypedDict):
    """State passed through the graph for one conversational turn."""
    thread_id: str
    user_message: Optional[str]

    # Run tracking
    run_id: Optional[str]
    status: Optional[str]
    action_rounds: int

    # Outcome
    response: Optional[str]
    error: Optional[str]
    recovered: bool

    # Control flow
    next_action: str


@dataclass
class TurnResult:
    """Outcome of one turn as seen by the session."""
    text: str
    succeeded: bool
    run_id: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    recovered: bool = False

    @property
    def thread_may_be_poisoned(self) -> bool:
        """A failed turn can leave an active run or half-written state on the thread."""
        return not self.succeeded


def initial_state(thread_id: str, user_message: Optional[str]) -> RunGraphState:
    return RunGraphState(
        thread_id=thread_id,
        user_message=user_message,
        run_id=None,
        status=None,
        action_rounds=0,
        response=None,
        error=None,
        recovered=False,
        next_action="",
    )

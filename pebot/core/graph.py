"""LangGraph state machine driving one assistant run to completion."""

import asyncio
import logging
from typing import Literal, Optional, Awaitable, Callable

from langgraph.graph import StateGraph, END

from pebot.llm.assistants_client import AssistantsClient
from pebot.llm.base import RunStatus, TERMINAL_STATUSES
from pebot.core.states import RunGraphState, TurnResult, TurnStage, initial_state
from pebot.core.tool_registry import ToolRegistry
from pebot.core.poller import RunPoller
from pebot.core.dispatcher import ToolCallDispatcher
from pebot.core.recovery import KeywordFallback

logger = logging.getLogger(__name__)

CONTINUE_MESSAGE = "No tool outputs could be generated. Please continue without tool results."
APOLOGY_MESSAGE = (
    "Sorry, I'm having trouble getting an answer from my AI service right now. "
    "Please try again in a moment."
)
EMPTY_RESPONSE_MESSAGE = "I processed your request, but didn't get any text back to share."


class RunOrchestrator:
    """Drives create run → poll → [dispatch → poll]* → fetch, with recovery.

    Every turn ends with text: failures, timeouts and protocol anomalies are
    routed to the recover node instead of raising.
    """

    MAX_ACTION_ROUNDS = 10

    def __init__(
        self,
        client: AssistantsClient,
        assistant_id: str,
        registry: ToolRegistry,
        fallback: Optional[KeywordFallback] = None,
        initial_delay: float = RunPoller.INITIAL_DELAY,
        max_delay: float = RunPoller.MAX_DELAY,
        max_polls: int = RunPoller.MAX_POLLS,
        max_action_rounds: int = MAX_ACTION_ROUNDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            client: Assistants API client (the run service).
            assistant_id: Assistant that executes the runs.
            registry: Tools advertised to and invoked for the assistant.
            fallback: Recovery strategy for failed turns.
            initial_delay: First poll delay in seconds.
            max_delay: Poll delay cap in seconds.
            max_polls: Poll ceiling per wait.
            max_action_rounds: requires_action rounds allowed per turn.
            sleep: Suspension primitive used by the poller.
        """
        self.client = client
        self.assistant_id = assistant_id
        self.registry = registry
        self.fallback = fallback or KeywordFallback(registry)
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_polls = max_polls
        self.max_action_rounds = max_action_rounds
        self._sleep = sleep

        # Build the graph
        self.graph = self._build_graph()
        self.app = self.graph.compile()

    @property
    def recursion_limit(self) -> int:
        # create + (poll, dispatch) per round + final poll/fetch/recover
        return 2 * self.max_action_rounds + 6

    def poller_for(self, thread_id: str) -> RunPoller:
        return RunPoller(
            lambda run_id: self.client.get_run(thread_id, run_id),
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            max_polls=self.max_polls,
            sleep=self._sleep,
        )

    def dispatcher_for(self, thread_id: str) -> ToolCallDispatcher:
        return ToolCallDispatcher(
            self.registry,
            fetch_run=lambda run_id: self.client.get_run(thread_id, run_id),
            submit_outputs=lambda run_id, outputs: self.client.submit_tool_outputs(thread_id, run_id, outputs),
        )

    def _build_graph(self) -> StateGraph:
        """Build the LangGraph state machine."""
        graph = StateGraph(RunGraphState)

        # Add nodes
        graph.add_node(TurnStage.CREATE_RUN.value, self._create_run)
        graph.add_node(TurnStage.POLL_RUN.value, self._poll_run)
        graph.add_node(TurnStage.DISPATCH_TOOLS.value, self._dispatch_tools)
        graph.add_node(TurnStage.FETCH_RESPONSE.value, self._fetch_response)
        graph.add_node(TurnStage.RECOVER.value, self._recover)

        # Set entry point
        graph.set_entry_point(TurnStage.CREATE_RUN.value)

        # Add edges
        graph.add_conditional_edges(
            TurnStage.CREATE_RUN.value,
            self._route_after_create,
            {
                "poll": TurnStage.POLL_RUN.value,
                "recover": TurnStage.RECOVER.value,
            }
        )

        graph.add_conditional_edges(
            TurnStage.POLL_RUN.value,
            self._route_after_poll,
            {
                "dispatch": TurnStage.DISPATCH_TOOLS.value,
                "fetch": TurnStage.FETCH_RESPONSE.value,
                "recover": TurnStage.RECOVER.value,
            }
        )

        graph.add_conditional_edges(
            TurnStage.DISPATCH_TOOLS.value,
            self._route_after_dispatch,
            {
                "poll": TurnStage.POLL_RUN.value,
                "recover": TurnStage.RECOVER.value,
            }
        )

        graph.add_conditional_edges(
            TurnStage.FETCH_RESPONSE.value,
            self._route_after_fetch,
            {
                "done": END,
                "recover": TurnStage.RECOVER.value,
            }
        )

        graph.add_edge(TurnStage.RECOVER.value, END)

        return graph

    # Node implementations

    async def _create_run(self, state: RunGraphState) -> RunGraphState:
        """Start a run on the thread advertising every registered tool."""
        try:
            run = await self.client.create_run(
                state["thread_id"],
                self.assistant_id,
                self.registry.tool_definitions(),
            )
            state["run_id"] = run.id
            state["status"] = run.status
            state["next_action"] = "poll"
        except Exception as e:
            logger.error(f"Failed to create run: {e}")
            state["error"] = str(e)
            state["next_action"] = "recover"
        return state

    async def _poll_run(self, state: RunGraphState) -> RunGraphState:
        """Wait for the run to leave queued/in_progress."""
        poller = self.poller_for(state["thread_id"])
        try:
            run = await poller.wait(state["run_id"])
        except Exception as e:
            logger.error(f"Polling run {state['run_id']} failed: {e}")
            state["error"] = str(e)
            state["next_action"] = "recover"
            return state

        state["status"] = run.status
        if run.status == RunStatus.REQUIRES_ACTION.value:
            state["next_action"] = "dispatch"
        elif run.status == RunStatus.COMPLETED.value:
            state["next_action"] = "fetch"
        else:
            detail = f" ({run.last_error})" if run.last_error else ""
            state["error"] = f"Run failed with status: {run.status}{detail}"
            logger.warning(state["error"])
            state["next_action"] = "recover"
        return state

    async def _dispatch_tools(self, state: RunGraphState) -> RunGraphState:
        """Answer the run's tool calls, falling back when none can be extracted."""
        state["action_rounds"] += 1
        if state["action_rounds"] > self.max_action_rounds:
            state["error"] = f"Run exceeded {self.max_action_rounds} tool call rounds"
            logger.warning(state["error"])
            state["next_action"] = "recover"
            return state

        logger.info("Run requires action - processing tool calls")
        dispatcher = self.dispatcher_for(state["thread_id"])
        try:
            outputs = await dispatcher.dispatch(state["run_id"])
            if not outputs:
                await self._handle_missing_outputs(state, dispatcher)
            state["next_action"] = "poll"
        except Exception as e:
            logger.error(f"Tool call dispatch failed for run {state['run_id']}: {e}")
            state["error"] = str(e)
            state["next_action"] = "recover"
        return state

    async def _handle_missing_outputs(self, state: RunGraphState, dispatcher: ToolCallDispatcher) -> None:
        """Keep the run moving when requires_action carried no usable tool calls."""
        thread_id, run_id = state["thread_id"], state["run_id"]
        run = await self.client.get_run(thread_id, run_id)
        if not run.requires_action:
            return

        placeholders = dispatcher.synthesize_placeholders(run.required_action)
        if placeholders:
            logger.warning(f"Submitting {len(placeholders)} placeholder outputs for run {run_id}")
            await dispatcher.submit(run_id, placeholders)
            return

        logger.warning("No tool outputs to submit, posting continue message to thread")
        await self.client.add_message(thread_id, "user", CONTINUE_MESSAGE)

    async def _fetch_response(self, state: RunGraphState) -> RunGraphState:
        """Read the assistant's answer from the thread."""
        try:
            text = await self.client.get_latest_message(state["thread_id"])
            state["response"] = text or EMPTY_RESPONSE_MESSAGE
            state["next_action"] = "done"
        except Exception as e:
            logger.error(f"Failed to fetch assistant message: {e}")
            state["error"] = str(e)
            state["next_action"] = "recover"
        return state

    async def _recover(self, state: RunGraphState) -> RunGraphState:
        """Cancel a still-active run, then try the direct tool fallback."""
        run_id = state.get("run_id")
        status = state.get("status")
        if run_id and status not in TERMINAL_STATUSES:
            try:
                await self.client.cancel_run(state["thread_id"], run_id)
                logger.info(f"Cancelled abandoned run {run_id}")
            except Exception as e:
                logger.warning(f"Could not cancel run {run_id}: {e}")

        answer = await self.fallback.recover(state.get("user_message"))
        if answer:
            state["response"] = answer
            state["recovered"] = True
        else:
            state["response"] = APOLOGY_MESSAGE
        return state

    # Routing functions

    def _route_after_create(self, state: RunGraphState) -> Literal["poll", "recover"]:
        return state.get("next_action", "recover")

    def _route_after_poll(self, state: RunGraphState) -> Literal["dispatch", "fetch", "recover"]:
        return state.get("next_action", "recover")

    def _route_after_dispatch(self, state: RunGraphState) -> Literal["poll", "recover"]:
        return state.get("next_action", "recover")

    def _route_after_fetch(self, state: RunGraphState) -> Literal["done", "recover"]:
        return state.get("next_action", "recover")

    async def run_turn(self, thread_id: str, user_message: Optional[str] = None) -> TurnResult:
        """Run the graph for one turn. Always returns text."""
        state = initial_state(thread_id, user_message)
        try:
            result = await self.app.ainvoke(state, {"recursion_limit": self.recursion_limit})
        except Exception as e:
            logger.exception(f"Run orchestration aborted: {e}")
            return TurnResult(text=APOLOGY_MESSAGE, succeeded=False, error=str(e))

        return TurnResult(
            text=result.get("response") or APOLOGY_MESSAGE,
            succeeded=result.get("error") is None,
            run_id=result.get("run_id"),
            status=result.get("status"),
            error=result.get("error"),
            recovered=bool(result.get("recovered")),
        )

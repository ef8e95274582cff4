"""Conversation session bound to one assistant thread."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pebot.llm.assistants_client import AssistantsClient
from pebot.llm.base import AssistantsAPIError
from .graph import RunOrchestrator, APOLOGY_MESSAGE
from .states import TurnResult

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE_PREFIX = "[SYSTEM MESSAGE]: "


def is_active_run_rejection(error: AssistantsAPIError) -> bool:
    """The thread refused a message because one of its runs is still active."""
    body = (error.body or str(error)).lower()
    return error.status_code == 400 and "while a run" in body and "is active" in body


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ConversationMessage:
    """One entry of the local conversation history."""
    role: MessageRole
    text: str


class ConversationSession:
    """Message history plus the remote thread a conversation runs on.

    The remote thread is authoritative; the local history is only kept for
    auditing. After a failed turn the thread may still hold an active run, so
    the next message is posted to a fresh thread.
    """

    def __init__(
        self,
        client: AssistantsClient,
        orchestrator: RunOrchestrator,
        thread_id: Optional[str] = None,
    ):
        self.client = client
        self.orchestrator = orchestrator
        self.thread_id = thread_id
        self._messages: list[ConversationMessage] = []
        self.last_result: Optional[TurnResult] = None

    @classmethod
    async def start(cls, client: AssistantsClient, orchestrator: RunOrchestrator) -> "ConversationSession":
        """Create a session with its own new thread."""
        thread_id = await client.create_thread()
        return cls(client, orchestrator, thread_id)

    @property
    def messages(self) -> list[ConversationMessage]:
        return list(self._messages)

    @property
    def last_user_message(self) -> Optional[str]:
        for message in reversed(self._messages):
            if message.role == MessageRole.USER:
                return message.text
        return None

    async def _ensure_thread(self) -> str:
        if self.thread_id is None:
            self.thread_id = await self.client.create_thread()
        return self.thread_id

    async def reset_thread(self) -> None:
        """Drop the current thread; the next message goes to a new one."""
        logger.info(f"Resetting session thread {self.thread_id}")
        self.thread_id = None

    async def _post(self, role: str, content: str) -> None:
        thread_id = await self._ensure_thread()
        try:
            await self.client.add_message(thread_id, role, content)
        except AssistantsAPIError as e:
            if not is_active_run_rejection(e):
                raise
            # A thread with an active run rejects new messages; retry once on a fresh one
            logger.warning(f"Posting to thread {thread_id} failed, retrying on a new thread: {e}")
            await self.reset_thread()
            thread_id = await self._ensure_thread()
            await self.client.add_message(thread_id, role, content)

    async def add_user_message(self, text: str) -> None:
        """Record a user message and post it to the thread.

        Raises:
            AssistantsAPIError: The message was rejected for a reason other
                than an active run, or could not be posted on a fresh thread.
        """
        await self._post(MessageRole.USER.value, text)
        self._messages.append(ConversationMessage(MessageRole.USER, text))

    async def add_system_message(self, text: str) -> None:
        """Post out-of-band guidance; the thread only accepts user messages."""
        await self._post(MessageRole.USER.value, f"{SYSTEM_MESSAGE_PREFIX}{text}")
        self._messages.append(ConversationMessage(MessageRole.SYSTEM, text))

    async def get_response(self) -> str:
        """Run one turn on the thread and return the assistant's text.

        Never raises: failures come back as a fallback answer or apology, and
        leave the session ready to continue on a new thread.
        """
        try:
            thread_id = await self._ensure_thread()
        except Exception as e:
            logger.exception(f"Could not create a thread for the turn: {e}")
            return APOLOGY_MESSAGE

        result = await self.orchestrator.run_turn(thread_id, self.last_user_message)
        self.last_result = result
        self._messages.append(ConversationMessage(MessageRole.ASSISTANT, result.text))

        if result.thread_may_be_poisoned:
            logger.warning(f"Turn failed on thread {thread_id}: {result.error}")
            await self.reset_thread()
        return result.text

"""Slack message handling and reply formatting."""

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from slack_bolt.async_app import AsyncApp
from slack_sdk.web.async_client import AsyncWebClient

from pebot.core.session import ConversationSession

logger = logging.getLogger(__name__)

# Slack rejects section blocks with more text than this
MAX_BLOCK_TEXT_LENGTH = 3000
MAX_SESSIONS = 500

PROCESSING_MESSAGE = "Processing your request..."
ERROR_MESSAGE_PREFIX = "Sorry, I encountered an error processing your request: "

AI_PREFIX_PATTERN = re.compile(r"(?:^|>)\s*AI\s+(.+)", re.DOTALL)
CODE_BLOCK_PATTERN = re.compile(r"```[^`]*```")
SENTENCE_BREAK_PATTERN = re.compile(r"(?<=[.!?])\s+")

SessionFactory = Callable[[], Awaitable[ConversationSession]]


def convert_to_mrkdwn(text: str) -> str:
    """Convert standard markdown emphasis to Slack mrkdwn.

    ``**bold**`` becomes ``*bold*`` and ``*italic*`` becomes ``_italic_``.
    """
    placeholder = "\x00BOLD\x00"
    text = re.sub(r"\*\*(.*?)\*\*", lambda m: f"{placeholder}{m.group(1)}{placeholder}", text)
    text = re.sub(r"\*(.*?)\*", r"_\1_", text)
    return text.replace(placeholder, "*")


def _split_paragraph(paragraph: str, max_len: int) -> list[str]:
    """Split one oversized paragraph on sentence boundaries, then by length."""
    chunks = []
    group: list[str] = []
    group_len = 0

    for sentence in SENTENCE_BREAK_PATTERN.split(paragraph):
        if group and group_len + len(sentence) + 1 > max_len:
            chunks.append(" ".join(group))
            group, group_len = [], 0

        if len(sentence) > max_len:
            chunks.extend(sentence[i:i + max_len] for i in range(0, len(sentence), max_len))
            continue

        group.append(sentence)
        group_len += len(sentence) + (1 if group_len else 0)

    if group:
        chunks.append(" ".join(group))
    return chunks


def split_long_message(text: str, max_len: int = MAX_BLOCK_TEXT_LENGTH) -> list[str]:
    """Split text into Slack-sized parts on paragraphs, sentences, then length."""
    if len(text) <= max_len:
        return [text]

    parts = []
    current: list[str] = []
    current_len = 0

    for paragraph in text.split("\n\n"):
        if current and current_len + len(paragraph) + 2 > max_len:
            parts.append("\n\n".join(current))
            current, current_len = [], 0

        if len(paragraph) > max_len:
            parts.extend(_split_paragraph(paragraph, max_len))
            continue

        current.append(paragraph)
        current_len += len(paragraph) + (2 if current_len else 0)

    if current:
        parts.append("\n\n".join(current))
    return parts


@dataclass
class SlackRequest:
    """A Slack message the bot decided to answer."""
    channel: str
    thread_ts: str
    text: str
    reason: str


class SlackMessageHandler:
    """Routes Slack messages to per-thread conversation sessions."""

    def __init__(
        self,
        client: AsyncWebClient,
        bot_user_id: str,
        session_factory: SessionFactory,
        max_sessions: int = MAX_SESSIONS,
    ):
        """Initialize the handler.

        Args:
            client: Slack Web API client used for replies.
            bot_user_id: The bot's own user id (from auth.test).
            session_factory: Coroutine creating a session for a new Slack thread.
            max_sessions: Threads kept in memory; the least recently used idle
                ones are dropped beyond this.
        """
        self.client = client
        self.bot_user_id = bot_user_id
        self._session_factory = session_factory
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, ConversationSession] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def mention(self) -> str:
        return f"<@{self.bot_user_id}>" if self.bot_user_id else ""

    def parse_request(self, event: dict) -> Optional[SlackRequest]:
        """Decide whether to answer an event and extract the question."""
        text = (event.get("text") or "").strip()
        user = event.get("user", "")

        if not text or event.get("bot_id") or event.get("subtype"):
            return None
        if self.bot_user_id and user == self.bot_user_id:
            return None

        channel = event.get("channel", "")
        thread_ts = event.get("thread_ts") or event.get("ts", "")
        is_mention = bool(self.mention) and self.mention in text
        is_direct = channel.startswith("D") or event.get("channel_type") == "im"

        # Channel mentions also arrive as app_mention events; answer those once
        if is_mention and not is_direct and event.get("type") == "message":
            return None

        ai_match = AI_PREFIX_PATTERN.search(text)
        if ai_match:
            question = ai_match.group(1).replace(self.mention, "").strip()
            return SlackRequest(channel, thread_ts, question, "ai_prefix")

        if is_mention:
            return SlackRequest(channel, thread_ts, text.replace(self.mention, "").strip(), "mention")

        if is_direct:
            return SlackRequest(channel, thread_ts, text, "direct_message")

        return None

    async def on_message(self, event: dict) -> None:
        """Entry point for message and app_mention events."""
        logger.debug(
            f"Event received: type={event.get('type')} subtype={event.get('subtype')} "
            f"user={event.get('user')} channel={event.get('channel')}"
        )
        request = self.parse_request(event)
        if request is None:
            return

        if not request.text:
            logger.info(f"Ignoring empty {request.reason} in {request.channel}")
            return

        logger.info(f"Processing {request.reason} from user {event.get('user')} in {request.channel}")
        await self.respond(request)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _get_session(self, key: str) -> ConversationSession:
        session = self._sessions.get(key)
        if session is None:
            session = await self._session_factory()
            self._sessions[key] = session
        self._sessions.move_to_end(key)
        self._evict_idle()
        return session

    def _evict_idle(self) -> None:
        """Drop least recently used threads beyond the cap, skipping busy ones."""
        excess = len(self._sessions) - self.max_sessions
        for key in list(self._sessions):
            if excess <= 0:
                break
            lock = self._locks.get(key)
            if lock is not None and lock.locked():
                continue
            del self._sessions[key]
            self._locks.pop(key, None)
            excess -= 1
            logger.info(f"Dropped idle conversation {key}")

        # Locks left behind by requests that never got a session
        for key in [k for k, lock in self._locks.items() if k not in self._sessions and not lock.locked()]:
            del self._locks[key]

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def respond(self, request: SlackRequest) -> None:
        """Answer one request in its Slack thread, one turn at a time per thread."""
        key = f"{request.channel}:{request.thread_ts}"
        try:
            await self.send_simple_message(request.channel, PROCESSING_MESSAGE, request.thread_ts)
            async with self._lock_for(key):
                session = await self._get_session(key)
                await session.add_user_message(request.text)
                response = await session.get_response()
            await self.send_message(request.channel, response, request.thread_ts)
        except Exception as e:
            logger.exception(f"Error responding to message in {request.channel}: {e}")
            await self.send_simple_message(request.channel, f"{ERROR_MESSAGE_PREFIX}{e}", request.thread_ts)

    async def send_simple_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> None:
        await self.client.chat_postMessage(channel=channel, text=text, thread_ts=thread_ts)

    async def send_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> None:
        """Send assistant output as mrkdwn, split to fit Slack's block limit."""
        for part in split_long_message(convert_to_mrkdwn(text)):
            await self._send_formatted(channel, part, thread_ts)

    async def _send_formatted(self, channel: str, text: str, thread_ts: Optional[str]) -> None:
        if CODE_BLOCK_PATTERN.search(text):
            # Section blocks mangle code fences; plain text renders them
            await self.client.chat_postMessage(channel=channel, text=text, thread_ts=thread_ts)
            return

        blocks = [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]
        await self.client.chat_postMessage(channel=channel, text=text, blocks=blocks, thread_ts=thread_ts)


def setup_handlers(app: AsyncApp, handler: SlackMessageHandler) -> None:
    """Register Slack event listeners with the application."""

    @app.event("message")
    async def handle_message(event: dict) -> None:
        await handler.on_message(event)

    @app.event("app_mention")
    async def handle_mention(event: dict) -> None:
        await handler.on_message(event)

    logger.info("Slack event handlers registered (message + app_mention)")

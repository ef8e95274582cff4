import pytest

from pebot.bot.handlers import (
    ERROR_MESSAGE_PREFIX,
    PROCESSING_MESSAGE,
    SlackMessageHandler,
    convert_to_mrkdwn,
    split_long_message,
)

BOT_ID = "UBOT"


class FakeWebClient:
    def __init__(self) -> None:
        self.posts: list[dict] = []

    async def chat_postMessage(self, **kwargs) -> dict:
        self.posts.append(kwargs)
        return {"ok": True}


class FakeSession:
    def __init__(self, answer: str = "Here you go", error: Exception = None) -> None:
        self.answer = answer
        self.error = error
        self.questions: list[str] = []

    async def add_user_message(self, text: str) -> None:
        if self.error:
            raise self.error
        self.questions.append(text)

    async def get_response(self) -> str:
        return self.answer


class SessionFactory:
    def __init__(self, session: FakeSession) -> None:
        self.session = session
        self.created = 0

    async def __call__(self) -> FakeSession:
        self.created += 1
        return self.session


def _handler(session: FakeSession = None, max_sessions: int = 500):
    client = FakeWebClient()
    factory = SessionFactory(session or FakeSession())
    return SlackMessageHandler(client, BOT_ID, factory, max_sessions=max_sessions), client, factory


def test_convert_to_mrkdwn() -> None:
    assert convert_to_mrkdwn("**bold** and *italic*") == "*bold* and _italic_"
    assert convert_to_mrkdwn("plain") == "plain"


def test_split_long_message_prefers_paragraphs() -> None:
    first, second = "a" * 2000, "b" * 2000

    parts = split_long_message(f"{first}\n\n{second}")

    assert parts == [first, second]


def test_split_long_message_falls_back_to_sentences_and_length() -> None:
    sentences = " ".join(["This is a sentence."] * 200)
    parts = split_long_message(sentences)
    assert all(len(part) <= 3000 for part in parts)
    assert " ".join(parts) == sentences

    blob = "x" * 7000
    assert [len(part) for part in split_long_message(blob)] == [3000, 3000, 1000]


def test_short_message_is_not_split() -> None:
    assert split_long_message("hello") == ["hello"]


def test_parse_request_routing() -> None:
    handler, _, _ = _handler()

    dm = handler.parse_request({"type": "message", "channel": "D1", "user": "U1", "text": "hi", "ts": "1.0"})
    assert dm.reason == "direct_message"
    assert dm.thread_ts == "1.0"

    ai = handler.parse_request({"type": "message", "channel": "C1", "user": "U1", "text": "<@U999> AI what's new?", "ts": "2.0"})
    assert ai.reason == "ai_prefix"
    assert ai.text == "what's new?"

    mention = handler.parse_request(
        {"type": "app_mention", "channel": "C1", "user": "U1", "text": "<@UBOT> latest docs", "ts": "3.0", "thread_ts": "2.5"}
    )
    assert mention.reason == "mention"
    assert mention.text == "latest docs"
    assert mention.thread_ts == "2.5"


def test_parse_request_ignores_noise() -> None:
    handler, _, _ = _handler()

    assert handler.parse_request({"type": "message", "channel": "C1", "user": "U1", "text": "lunch?"}) is None
    assert handler.parse_request({"type": "message", "channel": "D1", "user": BOT_ID, "text": "hi"}) is None
    assert handler.parse_request({"type": "message", "channel": "D1", "bot_id": "B1", "text": "hi"}) is None
    assert handler.parse_request({"type": "message", "channel": "D1", "user": "U1", "text": ""}) is None
    assert handler.parse_request(
        {"type": "message", "subtype": "channel_join", "channel": "D1", "user": "U1", "text": "joined"}
    ) is None
    # Channel mentions are answered from the app_mention event
    assert handler.parse_request({"type": "message", "channel": "C1", "user": "U1", "text": "<@UBOT> hi"}) is None


@pytest.mark.asyncio
async def test_on_message_replies_in_thread() -> None:
    session = FakeSession(answer="**Doc X** is here")
    handler, client, factory = _handler(session)

    await handler.on_message({"type": "message", "channel": "D1", "user": "U1", "text": "where is Doc X", "ts": "1.0"})

    assert session.questions == ["where is Doc X"]
    assert client.posts[0] == {"channel": "D1", "text": PROCESSING_MESSAGE, "thread_ts": "1.0"}
    answer = client.posts[1]
    assert answer["text"] == "*Doc X* is here"
    assert answer["blocks"] == [{"type": "section", "text": {"type": "mrkdwn", "text": "*Doc X* is here"}}]
    assert answer["thread_ts"] == "1.0"


@pytest.mark.asyncio
async def test_code_blocks_are_sent_as_plain_text() -> None:
    handler, client, _ = _handler(FakeSession(answer="Run:\n```\nk6 run test.js\n```"))

    await handler.on_message({"type": "message", "channel": "D1", "user": "U1", "text": "how?", "ts": "1.0"})

    assert "blocks" not in client.posts[1]


@pytest.mark.asyncio
async def test_sessions_are_reused_per_thread() -> None:
    handler, _, factory = _handler()

    await handler.on_message({"type": "message", "channel": "D1", "user": "U1", "text": "one", "ts": "1.0"})
    await handler.on_message({"type": "message", "channel": "D1", "user": "U1", "text": "two", "ts": "1.5", "thread_ts": "1.0"})
    await handler.on_message({"type": "message", "channel": "D1", "user": "U1", "text": "three", "ts": "2.0"})

    assert factory.created == 2


@pytest.mark.asyncio
async def test_errors_are_reported_to_the_user() -> None:
    handler, client, _ = _handler(FakeSession(error=RuntimeError("thread creation failed")))

    await handler.on_message({"type": "message", "channel": "D1", "user": "U1", "text": "hi", "ts": "1.0"})

    assert client.posts[-1]["text"] == f"{ERROR_MESSAGE_PREFIX}thread creation failed"


def _dm(ts: str, thread_ts: str = None) -> dict:
    event = {"type": "message", "channel": "D1", "user": "U1", "text": "hello", "ts": ts}
    if thread_ts:
        event["thread_ts"] = thread_ts
    return event


@pytest.mark.asyncio
async def test_least_recently_used_threads_are_evicted() -> None:
    handler, _, factory = _handler(max_sessions=2)

    await handler.on_message(_dm("1.0"))
    await handler.on_message(_dm("2.0"))
    await handler.on_message(_dm("3.0"))
    assert handler.session_count == 2
    assert factory.created == 3

    # Thread 1.0 was dropped and starts over; 3.0 is still cached
    await handler.on_message(_dm("1.5", thread_ts="1.0"))
    await handler.on_message(_dm("3.5", thread_ts="3.0"))

    assert factory.created == 4
    assert handler.session_count == 2


@pytest.mark.asyncio
async def test_busy_threads_are_not_evicted() -> None:
    handler, _, _ = _handler(max_sessions=1)
    await handler.on_message(_dm("1.0"))

    async with handler._lock_for("D1:1.0"):
        await handler.on_message(_dm("2.0"))
        assert handler.session_count == 2

    await handler.on_message(_dm("3.0"))

    assert handler.session_count == 1


@pytest.mark.asyncio
async def test_locks_do_not_outlive_failed_session_creation() -> None:
    handler, _, factory = _handler()

    async def broken_factory():
        raise RuntimeError("thread creation failed")

    handler._session_factory = broken_factory
    await handler.on_message(_dm("1.0"))
    handler._session_factory = factory
    await handler.on_message(_dm("2.0"))

    assert set(handler._locks) == {"D1:2.0"}

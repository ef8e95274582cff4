import pytest

from pebot.core.poller import RunPoller
from pebot.llm.base import AssistantsAPIError, RunTimeoutError

from fakes import make_run


class ScriptedFetch:
    def __init__(self, statuses: list[str]) -> None:
        self.statuses = statuses
        self.calls = 0

    async def __call__(self, run_id: str):
        status = self.statuses[min(self.calls, len(self.statuses) - 1)]
        self.calls += 1
        return make_run(status)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_delays_double_and_cap() -> None:
    poller = RunPoller(ScriptedFetch(["completed"]), max_polls=6)

    assert list(poller.delays()) == [1.0, 2.0, 4.0, 5.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_wait_backs_off_until_status_changes() -> None:
    fetch = ScriptedFetch(["queued", "in_progress", "in_progress", "in_progress", "requires_action"])
    sleep = RecordingSleep()

    run = await RunPoller(fetch, sleep=sleep).wait("run_1")

    assert run.status == "requires_action"
    assert sleep.delays == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert fetch.calls == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["completed", "failed", "cancelled", "expired"])
async def test_terminal_status_stops_polling(status: str) -> None:
    fetch = ScriptedFetch([status, "in_progress"])

    run = await RunPoller(fetch, sleep=RecordingSleep()).wait("run_1")

    assert run.status == status
    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_poll_ceiling_raises_timeout() -> None:
    fetch = ScriptedFetch(["in_progress"])

    with pytest.raises(RunTimeoutError):
        await RunPoller(fetch, max_polls=3, sleep=RecordingSleep()).wait("run_1")

    assert fetch.calls == 3


@pytest.mark.asyncio
async def test_fetch_errors_propagate_without_retry() -> None:
    calls = 0

    async def failing_fetch(run_id: str):
        nonlocal calls
        calls += 1
        raise AssistantsAPIError("Failed to get run status: 503", status_code=503)

    with pytest.raises(AssistantsAPIError):
        await RunPoller(failing_fetch, sleep=RecordingSleep()).wait("run_1")

    assert calls == 1

"""Run status polling with capped exponential backoff."""

import asyncio
import logging
from typing import Awaitable, Callable, Iterator

from pebot.llm.base import Run, RunTimeoutError

logger = logging.getLogger(__name__)


class RunPoller:
    """Suspend until a run leaves the queued/in_progress states."""

    INITIAL_DELAY = 1.0
    MAX_DELAY = 5.0
    MAX_POLLS = 100

    def __init__(
        self,
        fetch_run: Callable[[str], Awaitable[Run]],
        initial_delay: float = INITIAL_DELAY,
        max_delay: float = MAX_DELAY,
        max_polls: int = MAX_POLLS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the poller.

        Args:
            fetch_run: Coroutine returning the current Run for a run id.
            initial_delay: Seconds to wait before the first poll.
            max_delay: Upper bound for the wait between polls.
            max_polls: Hard ceiling on status fetches per wait.
            sleep: Suspension primitive (injectable for tests).
        """
        self._fetch_run = fetch_run
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_polls = max_polls
        self._sleep = sleep

    def delays(self) -> Iterator[float]:
        """Wait before each poll: doubling from the initial delay, capped."""
        delay = self.initial_delay
        for _ in range(self.max_polls):
            yield delay
            delay = min(delay * 2, self.max_delay)

    async def wait(self, run_id: str) -> Run:
        """Poll until the run is no longer pending.

        Returns:
            The first Run observed outside queued/in_progress.

        Raises:
            RunTimeoutError: The poll ceiling was reached.
            AssistantsAPIError: A status fetch failed.
        """
        polls = 0
        for delay in self.delays():
            await self._sleep(delay)
            run = await self._fetch_run(run_id)
            polls += 1

            if not run.is_pending:
                logger.info(f"Run {run_id} reached status '{run.status}' after {polls} polls")
                return run

            logger.debug(f"Run {run_id} still {run.status}, next poll in {min(delay * 2, self.max_delay)}s")

        raise RunTimeoutError(f"Maximum retries reached waiting for run {run_id} completion")

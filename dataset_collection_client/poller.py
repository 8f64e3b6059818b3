import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from dataset_collection_client.errors import PollError
from dataset_collection_client.models import (
    PollResult,
    StatusPollingConfig,
    StatusResponse,
)

StatusFetcher = Callable[[str], Awaitable[StatusResponse]]
ProgressCallback = Callable[[StatusResponse], Any]


class SnapshotPoller:
    """Polls a job until it reaches a terminal status or the attempt budget runs out.

    Status fetch failures are raised as PollError without being retried. Progress
    callbacks are observational: an exception they raise is logged and ignored.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        config: Optional[StatusPollingConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.fetch_status = fetch_status
        self.config = config or StatusPollingConfig()
        self.on_progress = on_progress
        self.logger = logger

    def _calculate_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) attempt, capped at max_delay"""
        delay = min(
            self.config.delay * (self.config.backoff_factor ** (attempt - 1)),
            self.config.max_delay,
        )
        if self.config.jitter:
            delay *= 1 + random.uniform(0, 0.2)
        return delay

    async def _fetch(self, job_handle: str) -> StatusResponse:
        try:
            return await self.fetch_status(job_handle)
        except PollError:
            raise
        except Exception as e:
            raise PollError(f"Could not fetch status for {job_handle}: {e}") from e

    async def _report_progress(self, status_response: StatusResponse) -> None:
        if self.on_progress is None:
            return
        try:
            result = self.on_progress(status_response)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.warning(f"Progress callback failed, continuing: {e!r}")

    async def _wait_before_retry(
        self, attempt: int, cancel_event: Optional[asyncio.Event]
    ) -> None:
        """Sleeps between attempts; returns early once cancel_event is set"""
        delay = self._calculate_delay(attempt)
        self.logger.debug(f"Job not finished, waiting {delay:.2f}s before next attempt")
        if cancel_event is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def poll_until_terminal(
        self, job_handle: str, cancel_event: Optional[asyncio.Event] = None
    ) -> PollResult:
        loop = asyncio.get_running_loop()
        deadline = (
            loop.time() + self.config.timeout if self.config.timeout is not None else None
        )
        attempt = 0
        last_response = None

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        while True:
            if cancelled():
                self.logger.info(f"Polling of {job_handle} cancelled after {attempt} attempts")
                return PollResult(
                    final_status=last_response, attempts_used=attempt, cancelled=True
                )

            status_response = await self._fetch(job_handle)
            attempt += 1
            last_response = status_response
            await self._report_progress(status_response)

            if status_response.status.is_terminal:
                self.logger.debug(
                    f"Job {job_handle} reached {status_response.status.value} "
                    f"after {attempt} attempts"
                )
                return PollResult(final_status=status_response, attempts_used=attempt)

            out_of_time = deadline is not None and loop.time() >= deadline
            if attempt >= self.config.max_attempts or out_of_time:
                self.logger.info(
                    f"Job {job_handle} still {status_response.status.value} "
                    f"after {attempt}/{self.config.max_attempts} attempts"
                )
                return PollResult(
                    final_status=status_response, attempts_used=attempt, exhausted=True
                )

            if cancelled():
                continue
            await self._wait_before_retry(attempt, cancel_event)

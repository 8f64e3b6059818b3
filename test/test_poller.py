import asyncio
from typing import List

import pytest
from dataset_collection_client.errors import PollError
from dataset_collection_client.models import (
    JobStatus,
    StatusPollingConfig,
    StatusResponse,
)
from dataset_collection_client.poller import SnapshotPoller


class ScriptedFetcher:
    """Returns the given statuses in order, repeating the last one"""

    def __init__(self, statuses: List[JobStatus]):
        self.statuses = statuses
        self.calls = []

    async def __call__(self, job_handle: str) -> StatusResponse:
        self.calls.append(job_handle)
        index = min(len(self.calls), len(self.statuses)) - 1
        return StatusResponse(status=self.statuses[index])


def make_config(max_attempts: int = 3, delay: float = 0.0) -> StatusPollingConfig:
    return StatusPollingConfig(max_attempts=max_attempts, delay=delay)


@pytest.mark.asyncio
@pytest.mark.parametrize("max_attempts", [1, 2, 5])
async def test_exhausts_budget_while_running(max_attempts):
    """Always-running job is queried exactly max_attempts times."""
    fetcher = ScriptedFetcher([JobStatus.running])
    poller = SnapshotPoller(fetcher, make_config(max_attempts))

    result = await poller.poll_until_terminal("s_1")

    assert len(fetcher.calls) == max_attempts
    assert result.attempts_used == max_attempts
    assert result.exhausted is True
    assert result.final_status.status == JobStatus.running
    assert not result.ready


@pytest.mark.asyncio
async def test_running_then_ready():
    fetcher = ScriptedFetcher([JobStatus.running, JobStatus.running, JobStatus.ready])
    poller = SnapshotPoller(fetcher, make_config(max_attempts=3))

    result = await poller.poll_until_terminal("s_1")

    assert result.final_status.status == JobStatus.ready
    assert result.attempts_used == 3
    assert result.exhausted is False
    assert result.ready


@pytest.mark.asyncio
async def test_early_exit_skips_remaining_delay():
    fetcher = ScriptedFetcher([JobStatus.pending, JobStatus.ready])
    poller = SnapshotPoller(fetcher, make_config(max_attempts=10))
    waits = []

    async def record_wait(attempt, cancel_event):
        waits.append(attempt)

    poller._wait_before_retry = record_wait

    result = await poller.poll_until_terminal("s_1")

    assert len(fetcher.calls) == 2
    assert result.attempts_used == 2
    assert waits == [1]


@pytest.mark.asyncio
async def test_failed_status_is_terminal():
    fetcher = ScriptedFetcher([JobStatus.running, JobStatus.failed])
    poller = SnapshotPoller(fetcher, make_config(max_attempts=5))

    result = await poller.poll_until_terminal("s_1")

    assert result.final_status.status == JobStatus.failed
    assert result.attempts_used == 2
    assert result.exhausted is False
    assert not result.ready


@pytest.mark.asyncio
async def test_progress_called_once_per_query_in_order():
    statuses = [JobStatus.pending, JobStatus.running, JobStatus.ready]
    seen = []
    poller = SnapshotPoller(
        ScriptedFetcher(statuses),
        make_config(max_attempts=5),
        on_progress=lambda response: seen.append(response.status),
    )

    await poller.poll_until_terminal("s_1")

    assert seen == statuses


@pytest.mark.asyncio
async def test_async_progress_callback_is_awaited():
    seen = []

    async def on_progress(response):
        await asyncio.sleep(0)
        seen.append(response.status)

    poller = SnapshotPoller(
        ScriptedFetcher([JobStatus.running, JobStatus.ready]),
        make_config(),
        on_progress=on_progress,
    )

    await poller.poll_until_terminal("s_1")

    assert seen == [JobStatus.running, JobStatus.ready]


@pytest.mark.asyncio
async def test_failing_callback_does_not_change_outcome():
    statuses = [JobStatus.running, JobStatus.running, JobStatus.ready]

    def broken(response):
        raise RuntimeError("callback exploded")

    async def broken_async(response):
        raise ValueError("async callback exploded")

    quiet = await SnapshotPoller(
        ScriptedFetcher(statuses), make_config()
    ).poll_until_terminal("s_1")
    noisy = await SnapshotPoller(
        ScriptedFetcher(statuses), make_config(), on_progress=broken
    ).poll_until_terminal("s_1")
    noisy_async = await SnapshotPoller(
        ScriptedFetcher(statuses), make_config(), on_progress=broken_async
    ).poll_until_terminal("s_1")

    for result in (noisy, noisy_async):
        assert result.attempts_used == quiet.attempts_used
        assert result.final_status.status == quiet.final_status.status
        assert result.exhausted == quiet.exhausted


@pytest.mark.asyncio
async def test_fetch_failure_raises_poll_error_without_retry():
    calls = []

    async def fetch_status(job_handle):
        calls.append(job_handle)
        raise ConnectionError("network down")

    poller = SnapshotPoller(fetch_status, make_config(max_attempts=5))

    with pytest.raises(PollError) as exc_info:
        await poller.poll_until_terminal("s_1")

    assert len(calls) == 1
    assert isinstance(exc_info.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_poll_error_from_fetcher_passes_through():
    original = PollError("bad status", status=503, response_body="unavailable")

    async def fetch_status(job_handle):
        raise original

    poller = SnapshotPoller(fetch_status, make_config())

    with pytest.raises(PollError) as exc_info:
        await poller.poll_until_terminal("s_1")

    assert exc_info.value is original


@pytest.mark.asyncio
async def test_cancelled_before_first_query():
    fetcher = ScriptedFetcher([JobStatus.running])
    cancel_event = asyncio.Event()
    cancel_event.set()

    result = await SnapshotPoller(fetcher, make_config()).poll_until_terminal(
        "s_1", cancel_event
    )

    assert fetcher.calls == []
    assert result.cancelled is True
    assert result.final_status is None
    assert result.attempts_used == 0
    assert result.describe() == "cancelled"


@pytest.mark.asyncio
async def test_cancel_interrupts_delay():
    fetcher = ScriptedFetcher([JobStatus.running])
    cancel_event = asyncio.Event()
    poller = SnapshotPoller(fetcher, make_config(max_attempts=5, delay=30.0))

    task = asyncio.create_task(poller.poll_until_terminal("s_1", cancel_event))
    await asyncio.sleep(0.05)
    cancel_event.set()
    result = await asyncio.wait_for(task, timeout=2.0)

    assert len(fetcher.calls) == 1
    assert result.cancelled is True
    assert result.attempts_used == 1
    assert result.final_status.status == JobStatus.running


@pytest.mark.asyncio
async def test_deadline_ends_polling_as_exhausted():
    fetcher = ScriptedFetcher([JobStatus.running])
    config = StatusPollingConfig(max_attempts=1000, delay=0.05, timeout=0.2)

    result = await SnapshotPoller(fetcher, config).poll_until_terminal("s_1")

    assert result.exhausted is True
    assert 1 <= result.attempts_used < 1000


def test_delay_backoff_is_capped():
    config = StatusPollingConfig(delay=1.0, backoff_factor=2.0, max_delay=5.0)
    poller = SnapshotPoller(ScriptedFetcher([JobStatus.running]), config)

    assert [poller._calculate_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_adds_up_to_twenty_percent():
    config = StatusPollingConfig(delay=10.0, backoff_factor=2.0, max_delay=15.0, jitter=True)
    poller = SnapshotPoller(ScriptedFetcher([JobStatus.running]), config)

    first = [poller._calculate_delay(1) for _ in range(50)]
    capped = [poller._calculate_delay(4) for _ in range(50)]

    assert all(10.0 <= delay <= 12.0 for delay in first)
    assert all(15.0 <= delay <= 18.0 for delay in capped)
    assert len(set(first)) > 1


def test_constant_delay_by_default():
    poller = SnapshotPoller(ScriptedFetcher([JobStatus.running]), StatusPollingConfig())

    assert poller._calculate_delay(1) == poller._calculate_delay(7) == 30.0


def test_config_rejects_zero_attempts():
    with pytest.raises(ValueError):
        StatusPollingConfig(max_attempts=0)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("starting", JobStatus.pending),
        ("running", JobStatus.running),
        ("Building", JobStatus.running),
        ("ready", JobStatus.ready),
        ("failed", JobStatus.failed),
    ],
)
def test_api_status_mapping(value, expected):
    assert JobStatus.from_api(value) == expected


def test_unknown_api_status_rejected():
    with pytest.raises(ValueError):
        JobStatus.from_api("exploded")

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
from loguru import logger
from dataset_collection_client.errors import (
    DownloadError,
    IncompleteError,
    PollError,
    TriggerError,
)
from dataset_collection_client.models import (
    JobStatus,
    PollResult,
    SnapshotProgress,
    StatusPollingConfig,
    StatusResponse,
    TriggerResponse,
)
from dataset_collection_client.poller import ProgressCallback, SnapshotPoller
from dataset_collection_client.settings import DEFAULT_BASE_URL


class DatasetCollectionClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        config: Optional[StatusPollingConfig] = None,
        on_progress: Optional[ProgressCallback] = None,
        request_timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.config = config or StatusPollingConfig()
        self.on_progress = on_progress
        self.request_timeout = request_timeout
        self.logger = logger

    def _session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        )

    @asynccontextmanager
    async def _request(
        self,
        session: aiohttp.ClientSession,
        method: str,
        path: str,
        error_cls: type,
        **kwargs: Any,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Performs a request, raising error_cls with the response body on failure"""
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    body = await response.text()
                    self.logger.error(f"HTTP error {response.status} at {url}: {body}")
                    raise error_cls(
                        f"{method} {path} failed with HTTP {response.status}",
                        status=response.status,
                        response_body=body,
                    )
                yield response
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Request to {url} failed: {e!r}")
            raise error_cls(f"{method} {path} failed: {e!r}") from e

    async def trigger_collection(
        self, dataset_id: str, inputs: List[Dict[str, Any]]
    ) -> TriggerResponse:
        """Starts a collection job for the dataset and returns its snapshot id"""
        async with self._session() as session:
            async with self._request(
                session,
                "POST",
                "/datasets/v3/trigger",
                TriggerError,
                params={"dataset_id": dataset_id},
                json=inputs,
            ) as response:
                try:
                    data = await response.json()
                except (aiohttp.ContentTypeError, ValueError) as e:
                    raise TriggerError(f"Trigger returned an unreadable body: {e}") from e

        if not isinstance(data, dict) or not data.get("snapshot_id"):
            raise TriggerError(
                "Trigger response did not include a snapshot_id", response_body=str(data)
            )
        self.logger.info(f"Collection triggered, snapshot {data['snapshot_id']}")
        return TriggerResponse(snapshot_id=data["snapshot_id"], raw_response=data)

    async def _get_status_once(
        self, session: aiohttp.ClientSession, snapshot_id: str
    ) -> StatusResponse:
        """Fetches the status of a snapshot from the server"""
        start_time = asyncio.get_running_loop().time()
        async with self._request(
            session, "GET", f"/datasets/v3/progress/{snapshot_id}", PollError
        ) as response:
            try:
                data = await response.json()
                status = JobStatus.from_api(data["status"])
                # counters are nested under "progress" or sit at the top level
                counters = data["progress"] if isinstance(data.get("progress"), dict) else data
                progress = SnapshotProgress(
                    pages_crawled=counters.get("pages_crawled") or 0,
                    pages_extracted=counters.get("pages_extracted") or 0,
                )
            except (aiohttp.ContentTypeError, ValueError, KeyError, TypeError) as e:
                # pydantic's ValidationError is a ValueError
                raise PollError(f"Unreadable status for {snapshot_id}: {e}") from e

        elapsed_time = asyncio.get_running_loop().time() - start_time
        return StatusResponse(
            status=status,
            progress=progress,
            raw_response=data,
            elapsed_time=elapsed_time,
        )

    async def get_snapshot_status(self, snapshot_id: str) -> StatusResponse:
        async with self._session() as session:
            return await self._get_status_once(session, snapshot_id)

    async def wait_for_snapshot(
        self,
        snapshot_id: str,
        config: Optional[StatusPollingConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """Polls the snapshot until it is ready, failed, out of attempts or cancelled"""
        async with self._session() as session:

            async def fetch_status(job_handle: str) -> StatusResponse:
                return await self._get_status_once(session, job_handle)

            poller = SnapshotPoller(
                fetch_status, config or self.config, on_progress=self.on_progress
            )
            return await poller.poll_until_terminal(snapshot_id, cancel_event)

    async def download_snapshot(self, snapshot_id: str, format: str = "json") -> Any:
        """Downloads a ready snapshot; JSON is decoded, other formats are returned as bytes"""
        async with self._session() as session:
            async with self._request(
                session,
                "GET",
                f"/datasets/v3/snapshot/{snapshot_id}",
                DownloadError,
                params={"format": format},
            ) as response:
                if format != "json":
                    return await response.read()
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise DownloadError(f"Snapshot {snapshot_id} is not valid JSON: {e}") from e

    async def collect(
        self,
        dataset_id: str,
        inputs: List[Dict[str, Any]],
        format: str = "json",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Any:
        """Triggers a collection, waits for it and downloads the result"""
        trigger = await self.trigger_collection(dataset_id, inputs)
        result = await self.wait_for_snapshot(trigger.snapshot_id, cancel_event=cancel_event)

        if not result.ready:
            reason = "was cancelled" if result.cancelled else "did not complete successfully"
            raise IncompleteError(
                f"Collection {reason} after {result.attempts_used} attempts. "
                f"Final status: {result.describe()}",
                attempts=result.attempts_used,
                last_status=result.describe(),
            )

        self.logger.info(f"Snapshot {trigger.snapshot_id} ready, downloading results")
        return await self.download_snapshot(trigger.snapshot_id, format=format)

import random
import uuid
from datetime import datetime

from aiohttp import web
from loguru import logger


class CollectionServer:
    def __init__(
        self,
        api_key: str = "test-key",
        completion_time: float = 10.0,
        error_rate: float = 0.1,
    ):
        self.api_key = api_key
        self.completion_time = completion_time
        self.error_rate = error_rate
        self.snapshots = {}
        self.status_requests = 0
        self.download_requests = 0
        # when set, /progress answers with this body verbatim
        self.progress_body = None
        self.app = web.Application(middlewares=[self.check_auth])
        self.app.router.add_post("/datasets/v3/trigger", self.handle_trigger)
        self.app.router.add_get("/datasets/v3/progress/{snapshot_id}", self.handle_progress)
        self.app.router.add_get("/datasets/v3/snapshot/{snapshot_id}", self.handle_snapshot)
        self.logger = logger

    @web.middleware
    async def check_auth(self, request, handler):
        if request.headers.get("Authorization") != f"Bearer {self.api_key}":
            return web.json_response({"error": "Invalid API key"}, status=401)
        return await handler(request)

    def _status(self, snapshot):
        if snapshot["status"] == "failed":
            return "failed"
        elapsed = (datetime.now() - snapshot["start_time"]).total_seconds()
        return "ready" if elapsed >= self.completion_time else "running"

    async def handle_trigger(self, request):
        dataset_id = request.query.get("dataset_id")
        if not dataset_id:
            return web.json_response({"error": "dataset_id is required"}, status=400)

        inputs = await request.json()
        snapshot_id = f"s_{uuid.uuid4().hex[:12]}"
        self.snapshots[snapshot_id] = {
            "dataset_id": dataset_id,
            "inputs": inputs,
            "start_time": datetime.now(),
            "status": "running",
        }
        self.logger.info(f"Triggered snapshot {snapshot_id} for {dataset_id}")
        return web.json_response({"snapshot_id": snapshot_id})

    async def handle_progress(self, request):
        self.status_requests += 1
        snapshot = self.snapshots.get(request.match_info["snapshot_id"])
        if snapshot is None:
            return web.json_response({"error": "Snapshot not found"}, status=404)

        if isinstance(self.progress_body, str):
            return web.Response(text=self.progress_body, content_type="application/json")
        if self.progress_body is not None:
            return web.json_response(self.progress_body)

        if snapshot["status"] == "running" and random.random() < self.error_rate:
            self.logger.info("Returning failed status")
            snapshot["status"] = "failed"

        status = self._status(snapshot)
        self.logger.info(f"Returning {status} status")
        return web.json_response(
            {
                "snapshot_id": request.match_info["snapshot_id"],
                "dataset_id": snapshot["dataset_id"],
                "status": status,
                "progress": {
                    "pages_crawled": self.status_requests,
                    "pages_extracted": self.status_requests // 2,
                },
            }
        )

    async def handle_snapshot(self, request):
        self.download_requests += 1
        snapshot = self.snapshots.get(request.match_info["snapshot_id"])
        if snapshot is None:
            return web.json_response({"error": "Snapshot not found"}, status=404)
        if self._status(snapshot) != "ready":
            return web.json_response({"error": "Snapshot is not ready"}, status=400)

        records = [
            {"input": item, "answer": f"Collected data for {item.get('url')}"}
            for item in snapshot["inputs"]
        ]
        if request.query.get("format") == "csv":
            lines = ["url,answer"] + [f"{r['input'].get('url')},{r['answer']}" for r in records]
            return web.Response(text="\n".join(lines) + "\n", content_type="text/csv")
        return web.json_response(records)

    async def start(self, port: int = 8080):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    ready = "ready"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.ready, JobStatus.failed)

    @classmethod
    def from_api(cls, value: str) -> "JobStatus":
        """Map the API's status vocabulary onto the four job states"""
        try:
            return _API_STATUSES[value.strip().lower()]
        except (KeyError, AttributeError):
            raise ValueError(f"Unrecognized snapshot status: {value!r}") from None


_API_STATUSES = {
    "starting": JobStatus.pending,
    "pending": JobStatus.pending,
    "queued": JobStatus.pending,
    "running": JobStatus.running,
    "building": JobStatus.running,
    "collecting": JobStatus.running,
    "digesting": JobStatus.running,
    "ready": JobStatus.ready,
    "done": JobStatus.ready,
    "completed": JobStatus.ready,
    "failed": JobStatus.failed,
    "error": JobStatus.failed,
    "cancelled": JobStatus.failed,
    "canceled": JobStatus.failed,
}


class SnapshotProgress(BaseModel):
    pages_crawled: int = 0
    pages_extracted: int = 0


class StatusResponse(BaseModel):
    status: JobStatus
    progress: SnapshotProgress = Field(default_factory=SnapshotProgress)
    raw_response: dict = Field(default_factory=dict)
    elapsed_time: float = 0.0


class TriggerResponse(BaseModel):
    snapshot_id: str
    raw_response: dict = Field(default_factory=dict)


class StatusPollingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=10, ge=1)
    delay: float = Field(default=30.0, ge=0)
    backoff_factor: float = Field(default=1.0, ge=1)
    max_delay: float = Field(default=300.0, ge=0)
    jitter: bool = False
    timeout: Optional[float] = Field(default=None, gt=0)  # wall-clock deadline


class PollResult(BaseModel):
    final_status: Optional[StatusResponse] = None
    attempts_used: int = 0
    exhausted: bool = False
    cancelled: bool = False

    @property
    def ready(self) -> bool:
        return (
            self.final_status is not None
            and self.final_status.status == JobStatus.ready
            and not self.exhausted
            and not self.cancelled
        )

    def describe(self) -> str:
        if self.cancelled:
            return "cancelled"
        if self.final_status is None:
            return "unknown"
        return self.final_status.status.value

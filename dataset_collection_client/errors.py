from typing import Optional


class CollectionError(Exception):
    """Base class for every failure surfaced by the collection client"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.response_body = response_body


class ConfigurationError(CollectionError):
    pass


class TriggerError(CollectionError):
    pass


class PollError(CollectionError):
    """The job status could not be determined"""


class IncompleteError(CollectionError):
    """Polling ended without the job becoming ready"""

    def __init__(self, message: str, attempts: int, last_status: Optional[str]):
        super().__init__(message)
        self.attempts = attempts
        self.last_status = last_status


class DownloadError(CollectionError):
    pass

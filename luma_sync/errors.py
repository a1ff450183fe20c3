"""Exception hierarchy for the sync job."""

from __future__ import annotations

from typing import Optional


class SyncError(Exception):
    """Base class for all sync errors."""

    pass


class RequestError(SyncError):
    """An outbound HTTP request failed."""

    def __init__(
        self,
        message: str,
        url: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class TransientNetworkError(RequestError):
    """Retryable failure: 5xx, 429, timeout or connection error."""

    def __init__(
        self,
        message: str,
        url: str = "",
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message, url=url, status_code=status_code)


class RequestTimeoutError(TransientNetworkError):
    """The request did not complete within the configured timeout."""

    pass


class FatalRequestError(RequestError):
    """Non-retryable 4xx failure, surfaced immediately."""

    def __init__(
        self,
        message: str,
        url: str = "",
        status_code: Optional[int] = None,
        body: str = "",
    ) -> None:
        self.body = body
        super().__init__(message, url=url, status_code=status_code)


class MalformedResponseError(SyncError):
    """A response body could not be parsed into source records."""

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class SinkWriteError(SyncError):
    """A sink write failed after exhausting its retries."""

    def __init__(
        self,
        destination: str,
        start_row: int,
        end_row: int,
        message: str = "",
    ) -> None:
        self.destination = destination
        self.start_row = start_row
        self.end_row = end_row
        detail = f": {message}" if message else ""
        super().__init__(
            f"Write to {destination} failed for rows {start_row}-{end_row}{detail}"
        )


class SchemaError(SyncError):
    """A row does not match its destination schema."""

    pass


class StateCorruptedError(SyncError):
    """The persisted sync state could not be decoded."""

    pass


class TransitionError(SyncError):
    """Invalid stage transition."""

    def __init__(self, from_stage: object, to_stage: object) -> None:
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(f"Invalid transition: {from_stage} -> {to_stage}")

"""HTTP clients: rate limiting, retry and the Luma reader."""

from luma_sync.client.http import HttpClient, RetryPolicy, raise_for_status, retry_async
from luma_sync.client.luma import EventSource, LumaClient
from luma_sync.client.ratelimit import ConcurrencyGate, TokenBucket

__all__ = [
    "ConcurrencyGate",
    "EventSource",
    "HttpClient",
    "LumaClient",
    "RetryPolicy",
    "TokenBucket",
    "raise_for_status",
    "retry_async",
]

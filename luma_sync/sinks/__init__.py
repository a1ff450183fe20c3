"""Destinations for synced rows."""

from luma_sync.sinks.base import RelationalSink, TabularSink
from luma_sync.sinks.database import SupabaseSink
from luma_sync.sinks.sheets import GoogleSheetsSink, ServiceAccountTokenProvider
from luma_sync.sinks.writer import BatchSinkWriter, WriteMode, WriteReport

__all__ = [
    "BatchSinkWriter",
    "GoogleSheetsSink",
    "RelationalSink",
    "ServiceAccountTokenProvider",
    "SupabaseSink",
    "TabularSink",
    "WriteMode",
    "WriteReport",
]

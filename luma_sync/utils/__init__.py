"""Utility modules for luma-sync."""

from luma_sync.utils.atomic import AtomicWriteError, atomic_write, atomic_write_json
from luma_sync.utils.logging import (
    configure_logging,
    get_correlation_id,
    get_logger,
    log_stage_timing,
    log_write_result,
    set_correlation_id,
    set_run_context,
    set_stage,
)
from luma_sync.utils.result import ConfigError, Err, ExitCode, Ok, Result

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "get_correlation_id",
    "set_correlation_id",
    "set_run_context",
    "set_stage",
    "log_stage_timing",
    "log_write_result",
    # Atomic writes
    "AtomicWriteError",
    "atomic_write",
    "atomic_write_json",
    # Result
    "Ok",
    "Err",
    "Result",
    "ConfigError",
    "ExitCode",
]

"""CLI entry point for luma-sync."""

from __future__ import annotations

import asyncio
import json
import sys
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click

from luma_sync import __version__
from luma_sync.client.luma import LumaClient
from luma_sync.config.settings import Credentials, SyncConfig, load_config
from luma_sync.errors import StateCorruptedError, SyncError
from luma_sync.processor.machine import SyncMachine
from luma_sync.processor.progress import compute_status
from luma_sync.processor.runner import SyncRunner
from luma_sync.processor.store import StateStore
from luma_sync.sinks.database import SupabaseSink
from luma_sync.sinks.sheets import GoogleSheetsSink
from luma_sync.sinks.writer import BatchSinkWriter
from luma_sync.utils.atomic import AtomicWriteError
from luma_sync.utils.logging import configure_logging, get_logger, set_run_context
from luma_sync.utils.result import ExitCode

T = TypeVar("T")

# Default paths
DEFAULT_CONFIG = "./config"


class Context:
    """CLI context for sharing state between commands."""

    def __init__(
        self,
        config_dir: Path,
        state_dir: Optional[Path],
        log_level: Optional[str],
        log_format: Optional[str],
    ) -> None:
        self.config_dir = config_dir
        self.state_dir = state_dir
        self.log_level = log_level
        self.log_format = log_format
        self.logger = get_logger("cli")
        self._config: Optional[SyncConfig] = None

    @property
    def config(self) -> SyncConfig:
        """Load and validate configuration once, exiting on error."""
        if self._config is None:
            result = load_config(self.config_dir)
            if result.is_err():
                error = result.unwrap_err()
                self.logger.error("config_invalid", field=error.field, error=error.message)
                output_json({
                    "status": "error",
                    "message": f"Invalid configuration ({error.field}): {error.message}",
                })
                sys.exit(ExitCode.CONFIG_INVALID)

            config = result.unwrap().with_state_dir(self.state_dir)
            if self.log_level is None or self.log_format is None:
                configure_logging(
                    level=self.log_level or config.logging.level,
                    format_type=self.log_format or config.logging.format,
                )
            self._config = config
        return self._config

    @property
    def store(self) -> StateStore:
        return StateStore(self.config.storage.state_path)

    def credentials(self) -> Credentials:
        """Read credentials from the environment, exiting on error."""
        result = Credentials.from_env()
        if result.is_err():
            error = result.unwrap_err()
            self.logger.error("credentials_missing", error=error.message)
            output_json({"status": "error", "message": error.message})
            sys.exit(ExitCode.CREDENTIALS_MISSING)
        return result.unwrap()


pass_context = click.make_pass_decorator(Context)


def output_json(data: dict) -> None:
    """Output JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


async def with_machine(
    config: SyncConfig,
    credentials: Credentials,
    operation: Callable[[SyncMachine], Awaitable[T]],
) -> T:
    """Build the clients and sinks, run ``operation`` and close them."""
    source = LumaClient.create(credentials.luma_api_key, config)
    sheets = GoogleSheetsSink.create(credentials, config)
    database = SupabaseSink.create(credentials, config)

    machine = SyncMachine(
        source=source,
        writer=BatchSinkWriter.from_config(sheets, config),
        store=StateStore(config.storage.state_path),
        config=config,
        database=database,
    )
    try:
        return await operation(machine)
    finally:
        await source.aclose()
        await sheets.aclose()
        if database is not None:
            await database.aclose()


def _state_corrupted(ctx: Context, error: StateCorruptedError) -> None:
    ctx.logger.error("state_corrupted", error=str(error))
    output_json({
        "status": "error",
        "message": f"State file is corrupted: {error}. Run 'cleanup' to start over.",
    })
    sys.exit(ExitCode.STATE_CORRUPTED)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False, path_type=Path),
    default=DEFAULT_CONFIG,
    help="Path to config directory",
)
@click.option(
    "--state-dir",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Directory holding the sync state (overrides config)",
)
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warn", "error"], case_sensitive=False),
    default=None,
    help="Logging level (overrides config)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "text"], case_sensitive=False),
    default=None,
    help="Log format (overrides config)",
)
@click.version_option(version=__version__)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Path,
    state_dir: Optional[Path],
    log_level: Optional[str],
    log_format: Optional[str],
) -> None:
    """
    Luma Sync - Copy Luma events and guests into Google Sheets.

    A run is started with 'start' and advanced with 'tick' (one unit of
    work) or 'run' (poll until done). Progress survives restarts.
    """
    configure_logging(level=log_level or "info", format_type=log_format or "json")
    set_run_context(run_id=f"run-{uuid.uuid4().hex[:8]}")

    ctx.obj = Context(
        config_dir=config,
        state_dir=state_dir,
        log_level=log_level,
        log_format=log_format,
    )


@cli.command()
@click.option("--after", default=None, help="Only events starting after this ISO-8601 time")
@click.option("--before", default=None, help="Only events starting before this ISO-8601 time")
@pass_context
def start(ctx: Context, after: Optional[str], before: Optional[str]) -> None:
    """Start a new sync run and list all events."""
    config = ctx.config
    credentials = ctx.credentials()

    ctx.logger.info("start_requested", after=after, before=before)

    async def operation(machine: SyncMachine) -> Any:
        await machine.queue_all_events(after=after, before=before)
        return machine.get_status()

    try:
        status = asyncio.run(with_machine(config, credentials, operation))
    except (SyncError, AtomicWriteError) as e:
        ctx.logger.error("start_failed", error=str(e))
        output_json({
            "status": "error",
            "message": f"Start failed: {e}. Run 'tick' to resume the listing.",
        })
        sys.exit(ExitCode.START_FAILED)

    output_json({
        "status": "success",
        "message": f"Queued {status.total_events} events",
        **status.to_dict(),
    })


@cli.command()
@pass_context
def tick(ctx: Context) -> None:
    """Perform one unit of work."""
    config = ctx.config
    credentials = ctx.credentials()

    async def operation(machine: SyncMachine) -> Any:
        result = await machine.process_pending_events()
        return result, machine.get_status()

    try:
        result, status = asyncio.run(with_machine(config, credentials, operation))
    except StateCorruptedError as e:
        _state_corrupted(ctx, e)
    except (SyncError, AtomicWriteError) as e:
        ctx.logger.error("tick_failed", error=str(e))
        output_json({"status": "error", "message": f"Tick failed: {e}"})
        sys.exit(ExitCode.TICK_FAILED)

    output_json({
        "status": "success",
        "tick": result.to_dict(),
        **status.to_dict(),
    })


@cli.command()
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between ticks (defaults to sync.tick_interval)",
)
@click.option(
    "--max-ticks",
    type=int,
    default=None,
    help="Stop after this many ticks",
)
@pass_context
def run(ctx: Context, interval: Optional[float], max_ticks: Optional[int]) -> None:
    """Poll the sync until it completes."""
    config = ctx.config
    credentials = ctx.credentials()
    interval = config.sync.tick_interval if interval is None else interval

    async def operation(machine: SyncMachine) -> Any:
        summary = await SyncRunner(machine).run(interval=interval, max_ticks=max_ticks)
        return summary, machine.get_status()

    try:
        summary, status = asyncio.run(with_machine(config, credentials, operation))
    except StateCorruptedError as e:
        _state_corrupted(ctx, e)

    output_json({
        "status": "success" if summary.errors == 0 else "partial",
        "run": summary.to_dict(),
        **status.to_dict(),
    })


@cli.command()
@pass_context
def stop(ctx: Context) -> None:
    """Mark the current run completed without writing buffered guests."""
    try:
        state = ctx.store.stop()
    except StateCorruptedError as e:
        _state_corrupted(ctx, e)

    output_json({
        "status": "success",
        "message": "Sync stopped",
        **compute_status(state).to_dict(),
    })


@cli.command()
@pass_context
def reset(ctx: Context) -> None:
    """Reset the sync state to defaults."""
    state = ctx.store.reset()
    output_json({
        "status": "success",
        "message": "State reset",
        **compute_status(state).to_dict(),
    })


@cli.command()
@pass_context
def cleanup(ctx: Context) -> None:
    """Delete the state file and start from a clean default state."""
    state = ctx.store.clear()
    output_json({
        "status": "success",
        "message": "State file removed",
        **compute_status(state).to_dict(),
    })


@cli.command()
@pass_context
def status(ctx: Context) -> None:
    """Show sync progress."""
    try:
        state = ctx.store.load()
    except StateCorruptedError as e:
        _state_corrupted(ctx, e)

    output_json({
        "status": "success",
        **compute_status(state).to_dict(),
    })


def main() -> None:
    """Main entry point."""
    try:
        cli()
    except Exception as e:
        logger = get_logger("cli")
        logger.error("cli_error", error=str(e))
        sys.exit(ExitCode.UNHANDLED)


if __name__ == "__main__":
    main()

"""Replay harvester CLI using Typer."""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import typer
from typing_extensions import Annotated

from .config import AppSettings, get_settings, load_token
from .errors import CorruptStateError, CredentialError
from .harvest_logging import configure_logging, get_logger

app = typer.Typer(help="Resumable, rate-limited replay harvester")

logger = get_logger(__name__)


class Mode(str, Enum):
    SETUP_INDEX = "setup-index"
    AUTO_DOWNLOAD = "auto-download"
    STATUS = "status"


def resolve_mode(setup_index: bool, auto_download: bool, status: bool, index_dir: Path) -> Mode:
    """Pick the run mode, inferring it from the index directory when unset.

    Raises:
        ValueError: If more than one mode flag is given
    """
    chosen = [
        mode for mode, flag in (
            (Mode.SETUP_INDEX, setup_index),
            (Mode.AUTO_DOWNLOAD, auto_download),
            (Mode.STATUS, status),
        ) if flag
    ]
    if len(chosen) > 1:
        raise ValueError("--setup-index, --auto-download and --status are mutually exclusive")
    if chosen:
        return chosen[0]
    return Mode.AUTO_DOWNLOAD if index_dir.is_dir() else Mode.SETUP_INDEX


def build_http_client(settings: AppSettings) -> httpx.AsyncClient:
    """HTTP client shared by every upstream request of a run."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.TIMEOUT_S),
        follow_redirects=True,
    )


async def _run_setup_index(settings: AppSettings, token: str) -> Dict[str, Any]:
    """Execute the bootstrap flow."""
    # Import pipelines at runtime to keep --help fast
    from .pipelines.bootstrap import bootstrap_index
    from .raw_io.client import UpstreamClient
    from .raw_io.persist import PageStore
    from .rate_limit import RateLimiter

    limiter = RateLimiter.from_settings(settings)
    store = PageStore(settings.INDEX_DIR)
    async with build_http_client(settings) as http:
        upstream = UpstreamClient.from_settings(settings, token, limiter, client=http)
        return await bootstrap_index(settings, store, upstream, limiter)


async def _run_auto_download(settings: AppSettings, token: str, max_cycles: Optional[int]) -> int:
    """Execute the steady-state sweep."""
    from .pipelines.sweep import SweepController
    from .raw_io.client import UpstreamClient
    from .raw_io.persist import PageStore
    from .rate_limit import RateLimiter

    store = PageStore(settings.INDEX_DIR)
    missing = [rank for rank in settings.RANKS if not store.is_initialized(rank)]
    if missing:
        raise CorruptStateError(
            f"Index not initialized for: {', '.join(missing)}; run --setup-index first"
        )

    limiter = RateLimiter.from_settings(settings)
    async with build_http_client(settings) as http:
        upstream = UpstreamClient.from_settings(settings, token, limiter, client=http)
        controller = SweepController.from_settings(settings, store, upstream, limiter)
        return await controller.run(max_cycles=max_cycles)


def _print_status(settings: AppSettings) -> None:
    from .raw_io.persist import PageStore
    from .raw_io.report import format_summary_for_display, summarize_index

    store = PageStore(settings.INDEX_DIR)
    summary = summarize_index(store, settings.RANKS, settings.PAGE_SIZE)
    typer.echo(format_summary_for_display(summary))


@app.command()
def harvest(
    setup_index: Annotated[bool, typer.Option("--setup-index", help="Download the first index page for every rank")] = False,
    auto_download: Annotated[bool, typer.Option("--auto-download", help="Sweep all ranks and download replays forever")] = False,
    status: Annotated[bool, typer.Option("--status", help="Print per-rank progress and exit")] = False,
    index_dir: Annotated[Optional[Path], typer.Option("--index-dir", help="Index directory (default: INDEX_DIR)")] = None,
    token_file: Annotated[Optional[Path], typer.Option("--token-file", help="API token file (default: TOKEN_FILE)")] = None,
    max_cycles: Annotated[Optional[int], typer.Option("--max-cycles", hidden=True, min=1)] = None,
):
    """Build the replay index once, then keep downloading replays.

    With no mode flag, --auto-download is used when the index directory
    exists and --setup-index otherwise.
    """
    settings = get_settings()
    overrides = {}
    if index_dir is not None:
        overrides['INDEX_DIR'] = index_dir
    if token_file is not None:
        overrides['TOKEN_FILE'] = token_file
    if overrides:
        settings = settings.model_copy(update=overrides)

    configure_logging(settings)

    try:
        mode = resolve_mode(setup_index, auto_download, status, settings.INDEX_DIR)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if mode is Mode.STATUS:
        _print_status(settings)
        return

    try:
        token = load_token(settings.TOKEN_FILE)
    except CredentialError as e:
        logger.error("Failed to read token file", error=str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    try:
        if mode is Mode.SETUP_INDEX:
            typer.echo(f"Setting up replay index in {settings.INDEX_DIR}")
            result = asyncio.run(_run_setup_index(settings, token))

            typer.echo(f"Initialized ranks: {len(result['initialized'])}")
            typer.echo(f"Already initialized: {len(result['skipped'])}")
            if result['failed']:
                typer.echo(f"Failed ranks: {len(result['failed'])}", err=True)
                for failure in result['failed']:
                    typer.echo(f"   - {failure['rank']}: {failure['error']}", err=True)
                raise typer.Exit(1)
            typer.echo("Index setup complete; run again with --auto-download")
        else:
            typer.echo(f"Auto-downloading replays into {settings.INDEX_DIR}")
            cycles = asyncio.run(_run_auto_download(settings, token, max_cycles))
            typer.echo(f"Completed {cycles} sweep cycles")

    except CorruptStateError as e:
        logger.error("Index state is corrupted", error=str(e))
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    except KeyboardInterrupt:
        typer.echo("Harvest interrupted by user; progress is saved", err=True)
        raise typer.Exit(130)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    app()

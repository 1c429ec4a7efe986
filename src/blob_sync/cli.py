# src/blob_sync/cli.py
"""Command-line interface for the blob-sync tool."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from blob_sync.config import AppConfig, Config
from blob_sync.exceptions import BlobSyncError
from blob_sync.signals import GracefulShutdown

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["aiobotocore", "botocore", "urllib3"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _split(raw: Optional[str]) -> List[str]:
    return [part.strip() for part in raw.split(",") if part.strip()] if raw else []


async def main_async(
    config: Config, action: Callable[[Any], Awaitable[T]], verbose: bool = False
) -> T:
    """
    Runs one pipeline action with signal handling installed.

    Args:
        config (Config): The application configuration.
        action (Callable): Receives the pipeline and returns the awaited result.
        verbose (bool): Print file tables while running.

    Returns:
        T: Whatever `action` returns.
    """
    # Lazily import to keep CLI startup fast
    from blob_sync.pipeline import BlobSyncPipeline

    async with GracefulShutdown() as shutdown_event:
        pipeline: BlobSyncPipeline = BlobSyncPipeline(config, shutdown_event, verbose=verbose)
        return await action(pipeline)


def _execute(build: Callable[[], Awaitable[T]]) -> T:
    """Runs a command coroutine, mapping failures to exit status 1."""
    try:
        return asyncio.run(build())
    except BlobSyncError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except asyncio.CancelledError:
        logger.warning("Shutdown signal received. Exiting.")
        sys.exit(130)
    except Exception:
        logger.critical("An unexpected error caused the application to fail:", exc_info=True)
        sys.exit(1)


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(log_level: str) -> None:
    """
    Publish a directory to redundant content-addressed blob storage.

    Files are stored under their SHA-256 hash on every configured endpoint
    and a signed pointer record maps each path to its hash. Only new or
    changed files are uploaded on subsequent runs.

    Credentials, endpoints and the signing key are read from environment
    variables. See the .env.example file for the required variables.
    """
    load_dotenv()
    setup_logging(log_level)


@cli.command()
@click.argument(
    "folder",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)
@click.option("-f", "--force", is_flag=True, default=False, help="Re-upload unchanged files too.")
@click.option(
    "-p", "--purge", is_flag=True, default=False,
    help="Delete published files that no longer exist locally.",
)
@click.option(
    "--purge-concurrent", is_flag=True, default=False,
    help="Delete purged blobs from all endpoints at once.",
)
@click.option(
    "-s", "--endpoints", default=None,
    help="Additional blob endpoint URLs (comma separated).",
)
@click.option(
    "-c", "--concurrency", type=click.IntRange(min=1), default=5,
    help="Number of files uploaded at the same time.", show_default=True,
)
@click.option(
    "--timeout", type=click.FloatRange(min=0, min_open=True), default=60.0,
    help="Seconds before a single endpoint attempt is abandoned.", show_default=True,
)
@click.option("--fallback", default=None, help="HTML file to copy and publish as 404.html.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Print file lists.")
@click.option("--no-progress", is_flag=True, default=False, help="Hide the progress bar.")
def upload(folder: Path, **kwargs: Any) -> None:
    """Upload new and changed files from FOLDER."""

    async def _build() -> Any:
        app_config: AppConfig = AppConfig(
            concurrency=kwargs["concurrency"],
            endpoint_timeout_s=kwargs["timeout"],
            purge=kwargs["purge"],
            purge_concurrent_endpoints=kwargs["purge_concurrent"],
            force=kwargs["force"],
            fallback=kwargs["fallback"],
            show_progress=not kwargs["no_progress"],
        )
        config: Config = Config(app=app_config).with_extra_endpoints(_split(kwargs["endpoints"]))
        return await main_async(config, lambda p: p.run(folder), kwargs["verbose"])

    report = _execute(_build)
    if report.interrupted or report.upload.skipped:
        logger.warning(
            f"Shutdown signal received. {report.upload.skipped} files were not uploaded."
        )
        sys.exit(130)
    if report.upload.failed:
        logger.error(f"{report.upload.failed} files could not be uploaded.")
        sys.exit(1)
    logger.info("✅ Run completed successfully.")


@cli.command("ls")
@click.argument("identity", required=False)
def list_files(identity: Optional[str]) -> None:
    """List published files of IDENTITY (defaults to your own)."""

    async def _build() -> Any:
        return await main_async(Config(), lambda p: p.list_files(identity), verbose=True)

    files = _execute(_build)
    logger.info(f"{len(files)} files published.")


@cli.command()
@click.argument("target", type=click.Path(file_okay=False, dir_okay=True, path_type=Path))
@click.argument("identity")
@click.option(
    "-s", "--endpoints", default=None,
    help="Additional blob endpoint URLs (comma separated).",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Print file lists.")
def download(target: Path, identity: str, endpoints: Optional[str], verbose: bool) -> None:
    """Download the files published by IDENTITY into TARGET."""

    async def _build() -> Any:
        config: Config = Config().with_extra_endpoints(_split(endpoints))
        return await main_async(config, lambda p: p.download(target, identity), verbose)

    result = _execute(_build)
    if result.failed:
        sys.exit(1)


if __name__ == "__main__":
    cli()

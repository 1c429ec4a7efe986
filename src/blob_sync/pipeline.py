# src/blob_sync/pipeline.py
"""Core orchestration logic for the blob-sync commands."""

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

from rich.console import Console

from blob_sync import display
from blob_sync.config import AppConfig, Config
from blob_sync.differ import diff
from blob_sync.display import MARKUP
from blob_sync.download import run_download
from blob_sync.exceptions import ConfigError, ScanError
from blob_sync.manifest import list_remote
from blob_sync.models import BatchResult, DiffResult, DownloadResult, FileList, PurgeResult
from blob_sync.purge import PurgeOptions, run_purge
from blob_sync.scanner import scan_local
from blob_sync.session import SyncSession
from blob_sync.uploader import UploadOptions, run_upload

logger: logging.Logger = logging.getLogger(__name__)

SessionFactory = Callable[..., Any]


@dataclass
class SyncReport:
    """
    What an upload run found and did.

    Attributes:
        local_files (int): Files found locally.
        remote_files (int): Files published before the run.
        plan (DiffResult, optional): The diff the run acted on.
        upload (BatchResult): The upload tally.
        purge (PurgeResult, optional): The purge tally, if purge ran.
        interrupted (bool): A shutdown signal arrived before the run finished.
    """

    local_files: int = 0
    remote_files: int = 0
    plan: Optional[DiffResult] = None
    upload: BatchResult = field(default_factory=BatchResult)
    purge: Optional[PurgeResult] = None
    interrupted: bool = False


class BlobSyncPipeline:
    """Orchestrates a publish, listing or download run from start to finish."""

    def __init__(
        self,
        config: Config,
        shutdown_event: asyncio.Event,
        session_factory: SessionFactory = SyncSession,
        verbose: bool = False,
    ) -> None:
        """
        Initializes the pipeline with the given configuration.

        Args:
            config (Config): The application configuration.
            shutdown_event (asyncio.Event): Event to signal graceful shutdown.
            session_factory (SessionFactory): Builds the per-run session from
                the config; must return an async context manager.
            verbose (bool): Print file tables while running.
        """
        self._config: Config = config
        self._shutdown_event: asyncio.Event = shutdown_event
        self._session_factory: SessionFactory = session_factory
        self._console: Optional[Console] = Console() if verbose else None

    def _print_files(self, files: FileList, title: str) -> None:
        if self._console is not None and files:
            self._console.print(display.render_file_table(files, title=title))

    def _copy_fallback(self, root: Path) -> None:
        fallback: Optional[str] = self._config.app.fallback
        if not fallback:
            return
        source: Path = root / fallback.lstrip("/")
        destination: Path = root / "404.html"
        logger.debug(f"Copying 404 fallback from '{source}' to '{destination}'")
        try:
            shutil.copyfile(source, destination)
        except OSError as e:
            raise ScanError(f"Could not copy fallback page '{source}': {e}") from e

    async def _scan_and_list(self, root: Path, session: Any) -> Tuple[FileList, FileList]:
        """Scans the local tree and lists the published files concurrently."""
        scan_task: "asyncio.Task[FileList]" = asyncio.create_task(
            asyncio.to_thread(scan_local, root, self._config.app.exclude_patterns)
        )
        list_task: "asyncio.Task[FileList]" = asyncio.create_task(
            list_remote(session.publisher, session.identity)
        )
        try:
            local, remote = await asyncio.gather(scan_task, list_task)
        except BaseException:
            for task in (scan_task, list_task):
                task.cancel()
            await asyncio.gather(scan_task, list_task, return_exceptions=True)
            raise
        return local, remote

    async def run(self, root: Path) -> SyncReport:
        """
        Publishes the directory `root`.

        Scans and lists concurrently, diffs, uploads new and changed files and,
        if configured, purges published files that are gone locally.

        Args:
            root (Path): The directory to publish.

        Returns:
            SyncReport: What was found and done.

        Raises:
            ConfigError: If no endpoint is configured.
            ScanError: If the local tree is unreadable or empty.
            NetworkError: If the published files cannot be listed.
        """
        app: AppConfig = self._config.app
        if not self._config.endpoints:
            raise ConfigError(
                "No blob endpoints configured. Set BLOBSYNC_ENDPOINT_URLS or pass --endpoints."
            )
        logger.info("Starting blob-sync upload.")
        root = Path(root)
        report: SyncReport = SyncReport()

        self._copy_fallback(root)

        async with self._session_factory(self._config) as session:
            logger.info(f"Upload for identity: {display.emphasis(session.identity)}", extra=MARKUP)
            logger.info(
                "Using endpoints: "
                + ", ".join(display.emphasis(e.name) for e in session.endpoints),
                extra=MARKUP,
            )

            local, remote = await self._scan_and_list(root, session)
            if not local:
                raise ScanError(f"No files found in local source folder '{root}'.")
            report.local_files, report.remote_files = len(local), len(remote)

            logger.info(
                f"{display.count(len(local))} files found locally in {display.file_path(str(root))}",
                extra=MARKUP,
            )
            self._print_files(local, "Local files")
            logger.info(f"{display.count(len(remote))} files available online.", extra=MARKUP)
            self._print_files(remote, "Published files")

            plan: DiffResult = diff(local, remote)
            report.plan = plan
            logger.info(
                f"{display.count(len(plan.to_transfer))} new files to upload, "
                f"{display.count(len(plan.unchanged))} files unchanged, "
                f"{display.count(len(plan.to_delete))} files to delete online.",
                extra=MARKUP,
            )

            to_upload: FileList = list(plan.to_transfer)
            if app.force:
                to_upload.extend(plan.unchanged)

            if self._shutdown_event.is_set():
                report.interrupted = True
                return report

            report.upload = await run_upload(
                to_upload,
                session.endpoints,
                session.signer,
                session.blob_store,
                session.publisher,
                UploadOptions(
                    concurrency=app.concurrency,
                    endpoint_timeout_s=app.endpoint_timeout_s,
                    auth_expiration_s=app.auth_expiration_s,
                    show_progress=app.show_progress,
                ),
                shutdown_event=self._shutdown_event,
            )
            self._print_files(to_upload, "Uploaded files")

            if app.purge and not self._shutdown_event.is_set():
                report.purge = await run_purge(
                    plan.to_delete,
                    session.endpoints,
                    session.signer,
                    session.blob_store,
                    session.publisher,
                    PurgeOptions(
                        concurrent_endpoints=app.purge_concurrent_endpoints,
                        endpoint_timeout_s=app.endpoint_timeout_s,
                        auth_expiration_s=app.auth_expiration_s,
                        keep_hashes=frozenset(f.sha256 for f in local),
                    ),
                )

        report.interrupted = self._shutdown_event.is_set()
        if not report.interrupted:
            logger.info(
                f"{display.header('Done.')} {display.count(report.upload.successful)} files "
                f"published for {display.emphasis(str(session.identity))}.",
                extra=MARKUP,
            )
        return report

    async def list_files(self, identity: Optional[str] = None) -> FileList:
        """
        Lists the files published by `identity`, or by the configured signer.

        Args:
            identity (str, optional): The identity to list.

        Returns:
            FileList: The published files.
        """
        async with self._session_factory(self._config, require_signer=identity is None) as session:
            target: Optional[str] = identity or session.identity
            logger.info(
                f"{display.header('Listing web content for:')} {display.emphasis(str(target))}",
                extra=MARKUP,
            )
            files: FileList = await list_remote(session.publisher, target)
        self._print_files(files, "Published files")
        return files

    async def download(self, target: Path, identity: str) -> DownloadResult:
        """
        Downloads the files published by `identity` into `target`.

        Args:
            target (Path): The destination directory.
            identity (str): The identity whose files are downloaded.

        Returns:
            DownloadResult: The download tally.
        """
        if not self._config.endpoints:
            raise ConfigError(
                "No blob endpoints configured. Set BLOBSYNC_ENDPOINT_URLS or pass --endpoints."
            )
        target = Path(target)
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        async with self._session_factory(self._config, require_signer=False) as session:
            logger.info(
                f"{display.header('Downloading web content for:')} {display.emphasis(identity)}",
                extra=MARKUP,
            )
            remote: FileList = await list_remote(session.publisher, identity)
            self._print_files(remote, "Published files")
            local: FileList = await asyncio.to_thread(
                scan_local, target, self._config.app.exclude_patterns
            )
            logger.info(
                f"{display.count(len(local))} files found locally in "
                f"{display.file_path(str(target))}",
                extra=MARKUP,
            )
            return await run_download(target, remote, local, session.endpoints, session.blob_store)

# src/blob_sync/download.py
"""
Mirrors a published file set into a local directory.

Each missing or changed file is fetched from the first endpoint that serves
content matching its hash. Local files that are not published are left alone.
"""

import asyncio
import hashlib
import logging
from pathlib import Path, PurePosixPath
from typing import Sequence

from blob_sync import display
from blob_sync.blobstore import BlobStore
from blob_sync.config import EndpointConfig
from blob_sync.differ import diff
from blob_sync.display import MARKUP
from blob_sync.exceptions import EndpointError, TransferError
from blob_sync.models import DiffResult, DownloadResult, FileEntry, FileList

logger: logging.Logger = logging.getLogger(__name__)


def safe_target_path(target: Path, remote_path: str) -> Path:
    """
    Maps a remote path below `target`, rejecting traversal.

    Args:
        target (Path): The download directory.
        remote_path (str): The published path, e.g. `/css/site.css`.

    Returns:
        Path: The local destination.

    Raises:
        TransferError: If the path is empty or escapes `target`.
    """
    relative: PurePosixPath = PurePosixPath(remote_path.lstrip("/"))
    if not relative.parts or ".." in relative.parts or relative.is_absolute():
        raise TransferError(f"Refusing unsafe remote path '{remote_path}'")
    return target.joinpath(*relative.parts)


async def _fetch_verified(
    entry: FileEntry, endpoints: Sequence[EndpointConfig], blob_store: BlobStore
) -> bytes:
    for endpoint in endpoints:
        try:
            data: bytes = await blob_store.get(endpoint, entry.sha256)
        except EndpointError as e:
            logger.debug(f"Failed to download {entry.remote_path} from {endpoint.name}: {e}")
            continue
        actual: str = hashlib.sha256(data).hexdigest()
        if actual != entry.sha256:
            logger.warning(
                f"Integrity check failed for '{entry.remote_path}' on {endpoint.name}: "
                f"expected {entry.sha256}, got {actual}"
            )
            continue
        logger.info(
            display.format_file_status(
                entry.remote_path,
                display.success("✓ Downloaded"),
                f"from {display.emphasis(endpoint.name)}",
            ),
            extra=MARKUP,
        )
        return data
    raise TransferError(f"No endpoint served a valid copy of '{entry.remote_path}'")


async def run_download(
    target: Path,
    remote: FileList,
    local: FileList,
    endpoints: Sequence[EndpointConfig],
    blob_store: BlobStore,
) -> DownloadResult:
    """
    Downloads every published file that is missing or different locally.

    Args:
        target (Path): The download directory, created if needed.
        remote (FileList): The published files.
        local (FileList): What `target` currently holds.
        endpoints (Sequence[EndpointConfig]): Endpoints tried in order.
        blob_store (BlobStore): The blob storage client.

    Returns:
        DownloadResult: Counts and the paths that could not be fetched.
    """
    # Remote is the source of truth here, so it takes the "local" side of the diff
    plan: DiffResult = diff(remote, local)
    result: DownloadResult = DownloadResult(unchanged=len(plan.unchanged))
    logger.info(
        f"{display.count(len(plan.to_transfer))} new files to download, "
        f"{display.count(len(plan.unchanged))} files unchanged.",
        extra=MARKUP,
    )

    for entry in plan.to_transfer:
        try:
            destination: Path = safe_target_path(target, entry.remote_path)
            data: bytes = await _fetch_verified(entry, endpoints, blob_store)
            await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(destination.write_bytes, data)
            result.downloaded += 1
        except (TransferError, OSError) as e:
            logger.error(f"Failed to download '{entry.remote_path}': {e}")
            logger.info(
                display.format_file_status(
                    entry.remote_path, display.error("✗ Failed"), "no endpoint available"
                ),
                extra=MARKUP,
            )
            result.failed += 1
            result.failed_paths.append(entry.remote_path)

    logger.info(display.header("Download Summary:"), extra=MARKUP)
    logger.info(f"- {display.format_summary('Total files', len(plan.to_transfer))}", extra=MARKUP)
    logger.info(f"- Successfully downloaded: {display.success(result.downloaded)}", extra=MARKUP)
    logger.info(f"- Failed: {display.error(result.failed)}", extra=MARKUP)
    return result

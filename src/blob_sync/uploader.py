# src/blob_sync/uploader.py
"""
Redundant multi-endpoint upload orchestration.

A fixed pool of worker tasks drains a queue of files, so at most
`concurrency` files are in flight at any time. Each worker handles one file
end to end: it reads the bytes once, uploads them to every endpoint at the
same time, and publishes the pointer record when at least one endpoint
stored the blob. Failures of an endpoint or a file are turned into outcome
data and never stop the rest of the batch.
"""

import asyncio
import hashlib
import logging
import mimetypes
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)

from blob_sync import display
from blob_sync.auth import DEFAULT_EXPIRATION_S, Proof, SignFn, create_upload_auth
from blob_sync.blobstore import BlobStore
from blob_sync.config import EndpointConfig
from blob_sync.display import MARKUP
from blob_sync.exceptions import (
    AuthError,
    ConfigError,
    EndpointError,
    PublishError,
    ScanError,
    TransferError,
)
from blob_sync.models import (
    BatchResult,
    BlobDescriptor,
    EndpointResult,
    FileEntry,
    ServerStatus,
    StoredBlob,
    UploadOutcome,
)
from blob_sync.publisher import Publisher

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE: str = "application/octet-stream"


@dataclass(frozen=True)
class UploadOptions:
    """
    Tuning knobs for an upload batch.

    Attributes:
        concurrency (int): Maximum number of files uploaded at the same time.
        endpoint_timeout_s (float, optional): Limit for one endpoint attempt,
            signing included. None disables the limit.
        auth_expiration_s (int): Validity of upload proofs.
        show_progress (bool): Render a progress bar.
    """

    concurrency: int = 5
    endpoint_timeout_s: Optional[float] = 60.0
    auth_expiration_s: int = DEFAULT_EXPIRATION_S
    show_progress: bool = False


def guess_mime_type(path: Path) -> str:
    """
    Best-effort MIME type from the file extension.

    Args:
        path (Path): The file path.

    Returns:
        str: The guessed type, or `application/octet-stream`.
    """
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or DEFAULT_MIME_TYPE


def _display_name(entry: FileEntry) -> str:
    if entry.local_path is not None:
        return entry.local_path.name
    return entry.remote_path.rsplit("/", 1)[-1] or entry.remote_path


async def _attempt_endpoint(
    endpoint: EndpointConfig,
    data: bytes,
    blob: BlobDescriptor,
    sign_fn: SignFn,
    blob_store: BlobStore,
    options: UploadOptions,
) -> EndpointResult:
    """
    Uploads one blob to one endpoint and reports the result as data.

    The upload proof is requested here, when the attempt begins, so the
    signing callback runs exactly once per file and endpoint.

    Args:
        endpoint (EndpointConfig): The target endpoint.
        data (bytes): The blob content.
        blob (BlobDescriptor): Description of the blob.
        sign_fn (SignFn): The signing callback.
        blob_store (BlobStore): The blob storage client.
        options (UploadOptions): Batch options.

    Returns:
        EndpointResult: The stored blob or the error that prevented it.
    """

    async def _authorize_and_put() -> StoredBlob:
        proof: Proof = await create_upload_auth(sign_fn, blob, options.auth_expiration_s)
        return await blob_store.put(endpoint, data, blob.mime_type, proof)

    error: BaseException
    try:
        stored: StoredBlob = await asyncio.wait_for(
            _authorize_and_put(), timeout=options.endpoint_timeout_s
        )
        return EndpointResult(endpoint=endpoint.name, stored=stored)
    except asyncio.TimeoutError as e:
        error = EndpointError(
            endpoint.name, f"upload timed out after {options.endpoint_timeout_s}s", e
        )
    except (AuthError, EndpointError) as e:
        error = e
    except Exception as e:
        logger.exception(f"Unexpected error uploading {blob.sha256} to {endpoint.name}")
        error = EndpointError(endpoint.name, f"unexpected error: {e}", e)
    return EndpointResult(endpoint=endpoint.name, error=error)


async def _upload_file(
    entry: FileEntry,
    endpoints: Sequence[EndpointConfig],
    sign_fn: SignFn,
    blob_store: BlobStore,
    publisher: Publisher,
    options: UploadOptions,
) -> UploadOutcome:
    """
    Uploads one file to all endpoints and publishes its pointer record.

    The status map and counters belong to this coroutine alone; endpoint
    attempts only return results, which are consumed in completion order.

    Args:
        entry (FileEntry): The local file to upload.
        endpoints (Sequence[EndpointConfig]): All blob endpoints.
        sign_fn (SignFn): The signing callback.
        blob_store (BlobStore): The blob storage client.
        publisher (Publisher): The pointer record store.
        options (UploadOptions): Batch options.

    Returns:
        UploadOutcome: The per-file result.
    """
    start_time: float = time.monotonic()
    name: str = _display_name(entry)
    total: int = len(endpoints)
    logger.info(display.format_file_status(name, display.emphasis("→ Uploading")), extra=MARKUP)

    if entry.local_path is None:
        return UploadOutcome(
            path=entry.remote_path,
            success=False,
            succeeded_endpoints=0,
            total_endpoints=total,
            error=ScanError(f"'{entry.remote_path}' has no local file"),
        )

    try:
        data: bytes = await asyncio.to_thread(entry.local_path.read_bytes)
    except OSError as e:
        logger.error(f"Error reading '{entry.local_path}': {e}")
        logger.info(
            display.format_file_status(name, display.error("✗ Error"), display.escape_text(str(e))),
            extra=MARKUP,
        )
        return UploadOutcome(
            path=entry.remote_path,
            success=False,
            succeeded_endpoints=0,
            total_endpoints=total,
            error=ScanError(f"Could not read '{entry.local_path}': {e}"),
            duration_s=time.monotonic() - start_time,
        )

    sha256: str = hashlib.sha256(data).hexdigest()
    if sha256 != entry.sha256:
        logger.warning(
            f"'{entry.local_path}' changed since it was scanned, uploading current content."
        )
    blob: BlobDescriptor = BlobDescriptor(
        sha256=sha256,
        size=len(data),
        mime_type=guess_mime_type(entry.local_path),
        name=name,
    )
    logger.debug(f"Publishing {entry.local_path} as {entry.remote_path} ({sha256})")

    statuses: Dict[str, ServerStatus] = {e.name: ServerStatus.PENDING for e in endpoints}
    endpoint_errors: Dict[str, BaseException] = {}
    succeeded: int = 0
    attempts: List["asyncio.Task[EndpointResult]"] = [
        asyncio.create_task(
            _attempt_endpoint(endpoint, data, blob, sign_fn, blob_store, options)
        )
        for endpoint in endpoints
    ]
    try:
        for next_done in asyncio.as_completed(attempts):
            result: EndpointResult = await next_done
            if result.ok:
                statuses[result.endpoint] = ServerStatus.SUCCESS
                succeeded += 1
                logger.debug(f"Uploaded {entry.remote_path} to {result.endpoint}")
            else:
                statuses[result.endpoint] = ServerStatus.ERROR
                endpoint_errors[result.endpoint] = result.error  # type: ignore[assignment]
                logger.warning(
                    f"Error uploading {entry.remote_path} to {result.endpoint}: {result.error}"
                )
            logger.debug(
                f"Progress for {name}: {succeeded}/{total} endpoints "
                f"({len(endpoint_errors)} failed)"
            )
    finally:
        for attempt in attempts:
            if not attempt.done():
                attempt.cancel()
        await asyncio.gather(*attempts, return_exceptions=True)
    logger.debug(
        f"Endpoint status for {entry.remote_path}: "
        + ", ".join(f"{endpoint}={status.value}" for endpoint, status in statuses.items())
    )

    if succeeded == 0:
        logger.info(
            display.format_file_status(name, display.error("✗ Failed"), "no endpoint accepted it"),
            extra=MARKUP,
        )
        return UploadOutcome(
            path=entry.remote_path,
            success=False,
            succeeded_endpoints=0,
            total_endpoints=total,
            error=TransferError(
                f"No endpoint accepted '{entry.remote_path}' "
                f"({len(endpoint_errors)} of {total} failed)"
            ),
            duration_s=time.monotonic() - start_time,
            endpoint_errors=endpoint_errors,
        )

    published: bool = False
    publish_error: Optional[BaseException] = None
    try:
        await publisher.publish(entry.remote_path, sha256)
        published = True
    except PublishError as e:
        publish_error = e
        logger.error(f"Stored '{entry.remote_path}' but could not publish its record: {e}")
    except Exception as e:
        logger.exception(f"Unexpected error publishing the record for '{entry.remote_path}'")
        publish_error = PublishError(str(e))

    duration_s: float = time.monotonic() - start_time
    status: str = (
        f"{display.success(succeeded)}/{display.count(total)} endpoints "
        f"in {display.count(f'{duration_s:.1f}')}s"
    )
    if endpoint_errors:
        status += f", {display.error(len(endpoint_errors))} failed"
    if publish_error is not None:
        status += f", {display.error('record not published')}"
    logger.info(
        display.format_file_status(name, display.success("✓ Uploaded"), status), extra=MARKUP
    )

    return UploadOutcome(
        path=entry.remote_path,
        success=True,
        succeeded_endpoints=succeeded,
        total_endpoints=total,
        published=published,
        publish_error=publish_error,
        duration_s=duration_s,
        endpoint_errors=endpoint_errors,
    )


async def upload_worker(
    worker_id: int,
    file_queue: "asyncio.Queue[FileEntry]",
    outcomes: List[UploadOutcome],
    endpoints: Sequence[EndpointConfig],
    sign_fn: SignFn,
    blob_store: BlobStore,
    publisher: Publisher,
    options: UploadOptions,
    progress_bar: Progress,
    progress_task_id: TaskID,
) -> None:
    """
    A long-lived worker task that uploads files from a queue.

    Each file is processed end to end before the next one is taken, which is
    what bounds the number of files in flight to the number of workers.

    Args:
        worker_id (int): A unique identifier for this worker.
        file_queue (asyncio.Queue[FileEntry]): The queue of files to upload.
        outcomes (List[UploadOutcome]): Where per-file results are collected.
        endpoints (Sequence[EndpointConfig]): All blob endpoints.
        sign_fn (SignFn): The signing callback.
        blob_store (BlobStore): The blob storage client.
        publisher (Publisher): The pointer record store.
        options (UploadOptions): Batch options.
        progress_bar (Progress): The rich Progress instance for UI updates.
        progress_task_id (TaskID): The TaskID for the upload progress bar.
    """
    logger.debug(f"Upload worker {worker_id} started.")
    while True:
        try:
            entry: FileEntry = await file_queue.get()
        except asyncio.CancelledError:
            logger.debug(f"Upload worker {worker_id} shutting down.")
            break

        try:
            outcome: UploadOutcome = await _upload_file(
                entry, endpoints, sign_fn, blob_store, publisher, options
            )
        except asyncio.CancelledError:
            file_queue.task_done()
            logger.debug(f"Upload worker {worker_id} cancelled during '{entry.remote_path}'.")
            break
        except Exception as e:
            logger.exception(f"Unexpected error uploading '{entry.remote_path}'")
            outcome = UploadOutcome(
                path=entry.remote_path,
                success=False,
                succeeded_endpoints=0,
                total_endpoints=len(endpoints),
                error=e,
            )

        outcomes.append(outcome)
        file_queue.task_done()
        progress_bar.update(progress_task_id, advance=1)


def _log_summary(result: BatchResult, total: int) -> None:
    logger.info(display.header("Upload Summary:"), extra=MARKUP)
    logger.info(f"- {display.format_summary('Total files', total)}", extra=MARKUP)
    logger.info(f"- Successfully uploaded: {display.success(result.successful)}", extra=MARKUP)
    failed: str = display.error(result.failed) if result.failed else display.success(0)
    logger.info(f"- Failed: {failed}", extra=MARKUP)
    if result.publish_failed:
        logger.info(
            f"- Stored but not published: {display.error(result.publish_failed)}", extra=MARKUP
        )
    if result.skipped:
        logger.info(f"- Not started: {display.count(result.skipped)}", extra=MARKUP)


async def run_upload(
    files: Sequence[FileEntry],
    endpoints: Sequence[EndpointConfig],
    sign_fn: SignFn,
    blob_store: BlobStore,
    publisher: Publisher,
    options: UploadOptions = UploadOptions(),
    shutdown_event: Optional[asyncio.Event] = None,
) -> BatchResult:
    """
    Uploads a batch of files to every endpoint under bounded concurrency.

    Files are queued in submission order and may complete in any order. A
    file succeeds when at least one endpoint stored it, in which case its
    pointer record is published. The batch always returns a tally, whatever
    happened to individual files or endpoints.

    Args:
        files (Sequence[FileEntry]): Local files to upload.
        endpoints (Sequence[EndpointConfig]): All blob endpoints.
        sign_fn (SignFn): The signing callback for upload proofs.
        blob_store (BlobStore): The blob storage client.
        publisher (Publisher): The pointer record store.
        options (UploadOptions): Batch options.
        shutdown_event (asyncio.Event, optional): When set, no further files
            are started and in-flight ones are cancelled.

    Returns:
        BatchResult: Counts and per-file outcomes.

    Raises:
        ConfigError: If `options.concurrency` is below 1.
    """
    if options.concurrency < 1:
        raise ConfigError(f"Upload concurrency must be at least 1, got {options.concurrency}.")
    if not files:
        logger.info("No files to upload.")
        return BatchResult()
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    logger.info(
        f"Uploading {display.count(len(files))} files to {display.count(len(endpoints))} "
        f"endpoints with concurrency {display.count(options.concurrency)}...",
        extra=MARKUP,
    )

    file_queue: "asyncio.Queue[FileEntry]" = asyncio.Queue()
    for entry in files:
        file_queue.put_nowait(entry)
    outcomes: List[UploadOutcome] = []

    progress: Progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        transient=True,
        disable=not options.show_progress,
    )

    with progress:
        task_id: TaskID = progress.add_task("Uploading...", total=len(files))
        worker_tasks: List["asyncio.Task[None]"] = [
            asyncio.create_task(
                upload_worker(
                    worker_id=i,
                    file_queue=file_queue,
                    outcomes=outcomes,
                    endpoints=endpoints,
                    sign_fn=sign_fn,
                    blob_store=blob_store,
                    publisher=publisher,
                    options=options,
                    progress_bar=progress,
                    progress_task_id=task_id,
                )
            )
            for i in range(min(options.concurrency, len(files)))
        ]

        # Race normal completion against a shutdown signal
        completion_task: "asyncio.Task[None]" = asyncio.create_task(file_queue.join())
        shutdown_task: "asyncio.Task[bool]" = asyncio.create_task(shutdown_event.wait())
        done, pending = await asyncio.wait(
            {completion_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if completion_task not in done:
            logger.warning("Shutdown signal received. Stopping uploads.")

        for task in pending:
            task.cancel()
        for task in worker_tasks:
            task.cancel()
        await asyncio.gather(*pending, *worker_tasks, return_exceptions=True)

    result: BatchResult = BatchResult.from_outcomes(outcomes, skipped=len(files) - len(outcomes))
    _log_summary(result, len(files))
    logger.debug("run_upload() ended.")
    return result

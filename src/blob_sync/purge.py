# src/blob_sync/purge.py
"""
Best-effort removal of published files that no longer exist locally.

For every file the blob is deleted from each endpoint and the pointer record
is retracted afterwards, whatever the endpoints answered. Nothing is rolled
back and no failure stops the remaining work. Blobs whose hash a local
file still uses are never deleted.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Sequence

from blob_sync import display
from blob_sync.auth import DEFAULT_EXPIRATION_S, Proof, SignFn, create_delete_auth
from blob_sync.blobstore import BlobStore
from blob_sync.config import EndpointConfig
from blob_sync.display import MARKUP
from blob_sync.exceptions import AuthError, EndpointError, PublishError
from blob_sync.models import FileEntry, PurgeResult
from blob_sync.publisher import Publisher

logger: logging.Logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PurgeOptions:
    """
    Tuning knobs for a purge run.

    Attributes:
        concurrent_endpoints (bool): Delete from all endpoints at once instead
            of one endpoint after another.
        endpoint_timeout_s (float, optional): Limit for one endpoint deletion.
        auth_expiration_s (int): Validity of delete proofs.
        keep_hashes (FrozenSet[str]): Content hashes still used by local files.
            Blobs with these hashes are left on the endpoints while their
            records are still retracted.
    """

    concurrent_endpoints: bool = False
    endpoint_timeout_s: Optional[float] = 60.0
    auth_expiration_s: int = DEFAULT_EXPIRATION_S
    keep_hashes: FrozenSet[str] = frozenset()


async def _delete_from_endpoint(
    entry: FileEntry,
    endpoint: EndpointConfig,
    proof: Proof,
    blob_store: BlobStore,
    options: PurgeOptions,
) -> bool:
    logger.info(
        f"{display.error('Deleting')} blob {display.file_path(entry.sha256)} "
        f"from endpoint {display.emphasis(endpoint.name)}.",
        extra=MARKUP,
    )
    try:
        await asyncio.wait_for(
            blob_store.delete(endpoint, entry.sha256, proof),
            timeout=options.endpoint_timeout_s,
        )
        return True
    except asyncio.TimeoutError:
        logger.error(f"Timed out deleting blob {entry.sha256} from {endpoint.name}")
    except EndpointError as e:
        logger.error(f"Error deleting blob {entry.sha256} from {endpoint.name}: {e}")
    except Exception:
        logger.exception(f"Unexpected error deleting blob {entry.sha256} from {endpoint.name}")
    return False


async def _delete_everywhere(
    entry: FileEntry,
    endpoints: Sequence[EndpointConfig],
    sign_fn: SignFn,
    blob_store: BlobStore,
    options: PurgeOptions,
) -> List[bool]:
    """Deletes the blob of `entry` from every endpoint, one flag per endpoint."""
    try:
        proof: Proof = await create_delete_auth(sign_fn, entry.sha256, options.auth_expiration_s)
    except AuthError as e:
        logger.error(f"Could not authorize deletion of {entry.sha256}: {e}")
        return [False] * len(endpoints)

    if options.concurrent_endpoints:
        return list(
            await asyncio.gather(
                *(
                    _delete_from_endpoint(entry, endpoint, proof, blob_store, options)
                    for endpoint in endpoints
                )
            )
        )
    deleted: List[bool] = []
    for endpoint in endpoints:
        deleted.append(await _delete_from_endpoint(entry, endpoint, proof, blob_store, options))
    return deleted


async def _purge_file(
    entry: FileEntry,
    endpoints: Sequence[EndpointConfig],
    sign_fn: SignFn,
    blob_store: BlobStore,
    publisher: Publisher,
    options: PurgeOptions,
    result: PurgeResult,
) -> None:
    record = entry.source_record
    if record is None:
        logger.debug(f"Skipping '{entry.remote_path}': no published record to retract.")
        result.skipped += 1
        return

    deleted: List[bool] = []
    if entry.sha256 in options.keep_hashes:
        logger.info(
            f"Keeping blob {display.file_path(entry.sha256)} of "
            f"{display.file_path(entry.remote_path)}, a local file still uses it.",
            extra=MARKUP,
        )
        result.blobs_kept += 1
    else:
        deleted = await _delete_everywhere(entry, endpoints, sign_fn, blob_store, options)

    result.blob_deletes += sum(1 for ok in deleted if ok)
    result.blob_delete_failures += sum(1 for ok in deleted if not ok)

    logger.info(
        f"{display.error('Retracting')} record {display.file_path(record.record_id)} "
        f"for {display.file_path(entry.remote_path)}.",
        extra=MARKUP,
    )
    try:
        await publisher.retract(record)
        result.retracted += 1
    except PublishError as e:
        logger.error(f"Error retracting record {record.record_id}: {e}")
        result.retract_failed += 1
    except Exception:
        logger.exception(f"Unexpected error retracting record {record.record_id}")
        result.retract_failed += 1


async def run_purge(
    files: Sequence[FileEntry],
    endpoints: Sequence[EndpointConfig],
    sign_fn: SignFn,
    blob_store: BlobStore,
    publisher: Publisher,
    options: PurgeOptions = PurgeOptions(),
) -> PurgeResult:
    """
    Deletes blobs and retracts records of files that are gone locally.

    Files are processed one after another. One delete proof is signed per
    file and reused for every endpoint. The record is retracted exactly once
    per file after all endpoint deletions were attempted, also when the blob
    is kept because its hash is listed in `options.keep_hashes`.

    Args:
        files (Sequence[FileEntry]): Remote entries to purge.
        endpoints (Sequence[EndpointConfig]): All blob endpoints.
        sign_fn (SignFn): The signing callback for delete proofs.
        blob_store (BlobStore): The blob storage client.
        publisher (Publisher): The pointer record store.
        options (PurgeOptions): Purge options.

    Returns:
        PurgeResult: Counts of what was deleted, kept, retracted and skipped.
    """
    result: PurgeResult = PurgeResult()
    if not files:
        logger.info("Nothing to purge.")
        return result

    logger.info(f"Purging {display.count(len(files))} files...", extra=MARKUP)
    for entry in files:
        await _purge_file(entry, endpoints, sign_fn, blob_store, publisher, options, result)

    logger.info(
        f"Purge finished: {display.count(result.retracted)} records retracted "
        f"({display.error(result.retract_failed)} failed), "
        f"{display.count(result.blob_deletes)} blob deletions "
        f"({display.error(result.blob_delete_failures)} failed), "
        f"{display.count(result.blobs_kept)} blobs kept.",
        extra=MARKUP,
    )
    return result

# src/blob_sync/manifest.py
"""Reads the published manifest of an identity into a file list."""

import logging
from typing import Dict, List

from blob_sync.exceptions import BlobSyncError, NetworkError
from blob_sync.models import FileEntry, FileList, PointerRecord
from blob_sync.publisher import Publisher

logger: logging.Logger = logging.getLogger(__name__)


async def list_remote(publisher: Publisher, identity: str) -> FileList:
    """
    Lists the files currently published by `identity`.

    When several records claim the same path the newest one wins, which keeps
    the resulting list keyed uniquely by `remote_path`.

    Args:
        publisher (Publisher): The record store.
        identity (str): The publishing identity.

    Returns:
        FileList: One entry per path with `source_record` set, ordered by path.
            Empty if nothing is published.

    Raises:
        NetworkError: If the records cannot be listed.
    """
    try:
        records: List[PointerRecord] = await publisher.list_records(identity)
    except NetworkError:
        raise
    except BlobSyncError as e:
        raise NetworkError(f"Failed to list published files: {e}") from e

    latest: Dict[str, PointerRecord] = {}
    for record in records:
        current = latest.get(record.path)
        if current is None or record.created_at > current.created_at:
            latest[record.path] = record

    files: FileList = [
        FileEntry(
            remote_path=record.path,
            sha256=record.sha256,
            changed_at=record.created_at,
            source_record=record,
        )
        for record in latest.values()
    ]
    files.sort(key=lambda f: f.remote_path)
    logger.debug(f"Found {len(files)} published files for '{identity}'")
    return files

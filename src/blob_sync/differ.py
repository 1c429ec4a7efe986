# src/blob_sync/differ.py
"""Classification of local and remote file lists."""

from typing import Dict, Set

from blob_sync.models import DiffResult, FileEntry, FileList, ensure_unique_paths


def diff(local: FileList, remote: FileList) -> DiffResult:
    """
    Compares two file lists keyed by `remote_path`.

    A local entry is transferred when the remote side has no entry at the same
    path or holds a different content hash; otherwise it is unchanged. Remote
    entries without a local counterpart are scheduled for deletion. Only the
    hash decides sameness, sizes and timestamps are ignored.

    The inputs are neither mutated nor retained and the output keeps their order.

    Args:
        local (FileList): Entries that should be published.
        remote (FileList): Entries that are currently published.

    Returns:
        DiffResult: The `to_transfer`, `unchanged` and `to_delete` partitions.

    Raises:
        ValueError: If either list holds the same `remote_path` twice.
    """
    ensure_unique_paths(local)
    ensure_unique_paths(remote)
    remote_by_path: Dict[str, FileEntry] = {f.remote_path: f for f in remote}
    local_paths: Set[str] = {f.remote_path for f in local}

    to_transfer: FileList = []
    unchanged: FileList = []
    for entry in local:
        published = remote_by_path.get(entry.remote_path)
        if published is None or published.sha256 != entry.sha256:
            to_transfer.append(entry)
        else:
            unchanged.append(entry)

    to_delete: FileList = [f for f in remote if f.remote_path not in local_paths]
    return DiffResult(to_transfer=to_transfer, unchanged=unchanged, to_delete=to_delete)

# src/blob_sync/models.py
"""
Data model shared by the sync engine.

File entries are created fresh on every run. Upload outcomes and endpoint
statuses are transient and owned by the task that produced them.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set


@dataclass(frozen=True)
class PointerRecord:
    """
    A published "path -> content hash" record.

    Attributes:
        record_id (str): Storage key of the record, used to retract it.
        identity (str): Fingerprint of the key that signed the record.
        path (str): The logical publication path.
        sha256 (str): Hex digest of the referenced blob.
        created_at (int): Unix timestamp of publication.
    """

    record_id: str
    identity: str
    path: str
    sha256: str
    created_at: int


@dataclass(frozen=True)
class FileEntry:
    """
    One local or remote file.

    Attributes:
        remote_path (str): Logical publication path, unique within a list.
        sha256 (str): Hex digest of the file content.
        size (int): Size in bytes. Informational only.
        changed_at (int): Unix timestamp of the last change. Informational only.
        local_path (Path, optional): Filesystem path, for local entries.
        source_record (PointerRecord, optional): The record a remote entry
            was read from.
    """

    remote_path: str
    sha256: str
    size: int = 0
    changed_at: int = 0
    local_path: Optional[Path] = None
    source_record: Optional[PointerRecord] = field(default=None, compare=False)


FileList = List[FileEntry]


def ensure_unique_paths(files: Iterable[FileEntry]) -> None:
    """
    Checks that no two entries share a `remote_path`.

    Args:
        files (Iterable[FileEntry]): The entries to check.

    Raises:
        ValueError: If a path occurs more than once.
    """
    seen: Set[str] = set()
    for entry in files:
        if entry.remote_path in seen:
            raise ValueError(f"Duplicate remote path in file list: '{entry.remote_path}'")
        seen.add(entry.remote_path)


@dataclass(frozen=True)
class DiffResult:
    """The three disjoint classes produced by `diff`."""

    to_transfer: FileList
    unchanged: FileList
    to_delete: FileList


class ServerStatus(Enum):
    """State of one endpoint attempt for one file."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class BlobDescriptor:
    """Describes a blob about to be uploaded."""

    sha256: str
    size: int
    mime_type: str
    name: str


@dataclass(frozen=True)
class StoredBlob:
    """Acknowledgement that an endpoint stored a blob."""

    endpoint: str
    sha256: str
    size: int
    url: str


@dataclass(frozen=True)
class EndpointResult:
    """
    The result of one endpoint attempt.

    Exactly one of `stored` and `error` is set.
    """

    endpoint: str
    stored: Optional[StoredBlob] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.stored is not None


@dataclass
class UploadOutcome:
    """
    Per-file upload result.

    Attributes:
        path (str): The file's remote path.
        success (bool): True if at least one endpoint stored the blob.
        succeeded_endpoints (int): Number of endpoints that stored the blob.
        total_endpoints (int): Number of endpoints attempted.
        error (BaseException, optional): Why the file failed, if it did.
        published (bool): Whether the pointer record was written.
        publish_error (BaseException, optional): Why publishing failed.
        duration_s (float): Wall time spent on this file.
        endpoint_errors (Dict[str, BaseException]): Failed attempts by endpoint.
    """

    path: str
    success: bool
    succeeded_endpoints: int
    total_endpoints: int
    error: Optional[BaseException] = None
    published: bool = False
    publish_error: Optional[BaseException] = None
    duration_s: float = 0.0
    endpoint_errors: Dict[str, BaseException] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.success != (self.succeeded_endpoints > 0):
            raise ValueError(
                f"Inconsistent outcome for '{self.path}': success={self.success} "
                f"with {self.succeeded_endpoints} succeeded endpoints"
            )


@dataclass
class BatchResult:
    """Aggregate tally of an upload batch."""

    successful: int = 0
    failed: int = 0
    per_file: List[UploadOutcome] = field(default_factory=list)
    publish_failed: int = 0
    skipped: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: List[UploadOutcome], skipped: int = 0) -> "BatchResult":
        successful: int = sum(1 for o in outcomes if o.success)
        return cls(
            successful=successful,
            failed=len(outcomes) - successful,
            per_file=list(outcomes),
            publish_failed=sum(1 for o in outcomes if o.success and not o.published),
            skipped=skipped,
        )


@dataclass
class PurgeResult:
    """Aggregate tally of a purge run."""

    retracted: int = 0
    retract_failed: int = 0
    blob_deletes: int = 0
    blob_delete_failures: int = 0
    blobs_kept: int = 0
    skipped: int = 0


@dataclass
class DownloadResult:
    """Aggregate tally of a download run."""

    downloaded: int = 0
    failed: int = 0
    unchanged: int = 0
    failed_paths: List[str] = field(default_factory=list)

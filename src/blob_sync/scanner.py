# src/blob_sync/scanner.py
"""
Local tree scanning.

Walks a directory and produces a file list with a streamed SHA-256 digest and
basic metadata for every regular file.
"""

import fnmatch
import hashlib
import logging
from pathlib import Path
from typing import Iterator, Sequence

from blob_sync.exceptions import ScanError
from blob_sync.models import FileEntry, FileList

logger: logging.Logger = logging.getLogger(__name__)

_CHUNK_SIZE: int = 64 * 1024


def compute_sha256(file_path: Path) -> str:
    """
    Streams a file through SHA-256.

    Args:
        file_path (Path): The file to hash.

    Returns:
        str: The hex digest.
    """
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def _is_excluded(rel_path: str, patterns: Sequence[str]) -> bool:
    name: str = rel_path.rsplit("/", 1)[-1]
    parts = rel_path.split("/")
    for pattern in patterns:
        if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern):
            return True
        # A pattern naming a directory excludes everything beneath it
        if any(fnmatch.fnmatch(part, pattern) for part in parts[:-1]):
            return True
    return False


def _iter_files(root: Path, patterns: Sequence[str]) -> Iterator[Path]:
    for file_path in root.rglob("*"):
        if not file_path.is_file() or file_path.is_symlink():
            continue
        if _is_excluded(file_path.relative_to(root).as_posix(), patterns):
            logger.debug(f"Excluding '{file_path}'")
            continue
        yield file_path


def scan_local(root: Path, exclude: Sequence[str] = ()) -> FileList:
    """
    Recursively lists and hashes all regular files beneath `root`.

    The remote path of each entry is its POSIX path relative to `root`,
    prefixed with `/`.

    Args:
        root (Path): The directory to publish.
        exclude (Sequence[str]): fnmatch patterns matched against the relative
            path, the file name and every parent directory name.

    Returns:
        FileList: One entry per file, ordered by remote path.

    Raises:
        ScanError: If `root` is not a readable directory or a file cannot be read.
    """
    root = Path(root)
    if not root.is_dir():
        raise ScanError(f"Local source folder '{root}' does not exist or is not a directory.")

    files: FileList = []
    try:
        for file_path in _iter_files(root, exclude):
            stat = file_path.stat()
            files.append(
                FileEntry(
                    remote_path="/" + file_path.relative_to(root).as_posix(),
                    sha256=compute_sha256(file_path),
                    size=stat.st_size,
                    changed_at=int(stat.st_mtime),
                    local_path=file_path,
                )
            )
    except OSError as e:
        raise ScanError(f"Failed to read local files under '{root}': {e}") from e

    files.sort(key=lambda f: f.remote_path)
    logger.debug(f"Scanned {len(files)} files under '{root}'")
    return files

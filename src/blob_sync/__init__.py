# src/blob_sync/__init__.py
"""
blob-sync: Publish a directory to redundant, content-addressed blob storage.

This package compares a local tree against the pointer records published for
an identity, uploads new and changed files to every configured blob endpoint
with bounded concurrency, and optionally purges what no longer exists
locally.

The primary entry point for programmatic use is the `BlobSyncPipeline` class;
`diff`, `run_upload` and `run_purge` can also be driven directly.
"""

from typing import List

from blob_sync.differ import diff
from blob_sync.pipeline import BlobSyncPipeline
from blob_sync.purge import run_purge
from blob_sync.uploader import run_upload

__all__: List[str] = ["BlobSyncPipeline", "diff", "run_purge", "run_upload"]

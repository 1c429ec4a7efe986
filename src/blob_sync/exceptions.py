# src/blob_sync/exceptions.py
"""Custom exceptions for the blob-sync application."""

from typing import Optional


class BlobSyncError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(BlobSyncError):
    """Raised for configuration-related issues."""

    pass


class ScanError(BlobSyncError):
    """Raised when the local tree cannot be read into a file list."""

    pass


class NetworkError(BlobSyncError):
    """Raised when the published pointer records cannot be listed."""

    pass


class AuthError(BlobSyncError):
    """Raised when an authorization proof cannot be produced."""

    pass


class PublishError(BlobSyncError):
    """Raised when a pointer record cannot be written or retracted."""

    pass


class TransferError(BlobSyncError):
    """Raised when a blob cannot be transferred to or from any endpoint."""

    pass


class EndpointError(BlobSyncError):
    """
    Raised when a single blob endpoint rejects or fails an operation.

    Attributes:
        endpoint (str): The name of the endpoint that failed.
        cause (BaseException, optional): The underlying error, if any.
    """

    def __init__(
        self, endpoint: str, message: str, cause: Optional[BaseException] = None
    ) -> None:
        super().__init__(f"{endpoint}: {message}")
        self.endpoint: str = endpoint
        self.cause: Optional[BaseException] = cause

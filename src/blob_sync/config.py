# src/blob_sync/config.py
"""
Configuration for the blob-sync pipeline.

This module centralizes all configuration, loading credentials and endpoint
lists from environment variables and providing typed dataclasses for use
throughout the application.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from blob_sync.exceptions import ConfigError


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _split_urls(raw: Optional[str]) -> List[str]:
    """Splits a comma separated URL list, dropping blanks and trailing slashes."""
    if not raw:
        return []
    return [url.strip().rstrip("/") for url in raw.split(",") if url.strip()]


@dataclass(frozen=True)
class EndpointConfig:
    """
    Represents one S3-compatible storage endpoint.

    Attributes:
        endpoint_url (str): The S3 endpoint URL.
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        bucket (str): The bucket name.
        region (str): The AWS region.
    """

    endpoint_url: str
    access_key_id: str
    secret_access_key: str
    bucket: str
    region: str

    @property
    def name(self) -> str:
        """
        A stable, human readable identifier used in logs and status maps.

        Returns:
            str: The endpoint URL joined with the bucket name.
        """
        return f"{self.endpoint_url}/{self.bucket}"

    def as_boto_dict(self) -> Dict[str, str]:
        """
        Returns the configuration as a dictionary suitable for aiobotocore clients.

        Returns:
            Dict[str, str]: A dictionary of client parameters.
        """
        return {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }


def endpoints_from_urls(urls: Iterable[str]) -> Tuple[EndpointConfig, ...]:
    """
    Builds blob endpoint configs for a list of URLs using the shared credentials.

    Duplicate URLs are dropped while keeping the first occurrence's position.

    Args:
        urls (Iterable[str]): The endpoint URLs.

    Returns:
        Tuple[EndpointConfig, ...]: One config per unique URL.
    """
    unique: List[str] = []
    for url in urls:
        url = url.strip().rstrip("/")
        if url and url not in unique:
            unique.append(url)
    if not unique:
        return ()

    access_key_id: str = _get_env_var("BLOBSYNC_ACCESS_KEY_ID")
    secret_access_key: str = _get_env_var("BLOBSYNC_SECRET_ACCESS_KEY")
    bucket: str = _get_env_var("BLOBSYNC_BLOB_BUCKET")
    region: str = _get_env_var("BLOBSYNC_REGION", "us-east-1")
    return tuple(
        EndpointConfig(
            endpoint_url=url,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            bucket=bucket,
            region=region,
        )
        for url in unique
    )


def _endpoints_from_env() -> Tuple[EndpointConfig, ...]:
    return endpoints_from_urls(_split_urls(os.environ.get("BLOBSYNC_ENDPOINT_URLS")))


def _get_env_var_or(name: str, fallback: str) -> str:
    """Reads `name`, falling back to the variable `fallback` when unset or empty."""
    return os.environ.get(name) or _get_env_var(fallback)


def _records_from_env() -> EndpointConfig:
    return EndpointConfig(
        endpoint_url=_get_env_var("BLOBSYNC_RECORDS_ENDPOINT_URL"),
        access_key_id=_get_env_var_or("BLOBSYNC_RECORDS_ACCESS_KEY_ID", "BLOBSYNC_ACCESS_KEY_ID"),
        secret_access_key=_get_env_var_or(
            "BLOBSYNC_RECORDS_SECRET_ACCESS_KEY", "BLOBSYNC_SECRET_ACCESS_KEY"
        ),
        bucket=_get_env_var("BLOBSYNC_RECORDS_BUCKET"),
        region=_get_env_var("BLOBSYNC_REGION", "us-east-1"),
    )


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        concurrency (int): Number of files uploaded at the same time.
        endpoint_timeout_s (float): Upper bound for a single endpoint attempt.
        transfer_max_attempts (int): Max botocore attempts per request.
        purge (bool): Whether records and blobs missing locally are removed.
        purge_concurrent_endpoints (bool): Delete from all endpoints at once
            instead of one after another.
        force (bool): Re-upload files even when their hash is unchanged.
        fallback (str, optional): File copied to `404.html` before scanning.
        exclude_patterns (Tuple[str, ...]): fnmatch patterns skipped by the scanner.
        auth_expiration_s (int): Lifetime of authorization proofs.
        records_prefix (str): Key prefix for pointer records.
        show_progress (bool): Whether to render a progress bar during uploads.
    """

    concurrency: int = 5
    endpoint_timeout_s: float = 60.0
    transfer_max_attempts: int = 3
    purge: bool = False
    purge_concurrent_endpoints: bool = False
    force: bool = False
    fallback: Optional[str] = None
    exclude_patterns: Tuple[str, ...] = (".git", ".DS_Store")
    auth_expiration_s: int = 300
    records_prefix: str = "records/"
    show_progress: bool = True


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        endpoints (Tuple[EndpointConfig, ...]): The redundant blob endpoints.
        records (EndpointConfig): Where pointer records are stored.
        signing_key (str, optional): Secret used to sign proofs and records.
        app (AppConfig): General application settings.
    """

    endpoints: Tuple[EndpointConfig, ...] = field(default_factory=_endpoints_from_env)
    records: EndpointConfig = field(default_factory=_records_from_env)
    signing_key: Optional[str] = field(
        default_factory=lambda: os.environ.get("BLOBSYNC_SIGNING_KEY") or None
    )
    app: AppConfig = field(default_factory=AppConfig)

    def with_extra_endpoints(self, urls: Iterable[str]) -> "Config":
        """
        Returns a copy with additional endpoints appended.

        Args:
            urls (Iterable[str]): Extra endpoint URLs, e.g. from the command line.

        Returns:
            Config: A new config; endpoints already present are not repeated.
        """
        known: List[str] = [e.endpoint_url for e in self.endpoints]
        extra: Tuple[EndpointConfig, ...] = endpoints_from_urls(
            url for url in urls if url.strip().rstrip("/") not in known
        )
        return Config(
            endpoints=self.endpoints + extra,
            records=self.records,
            signing_key=self.signing_key,
            app=self.app,
        )

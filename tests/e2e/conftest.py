"""
Pytest fixtures for the blob-sync end-to-end tests.

This module sets up the testing environment, including:
- Spinning up two MinIO containers that act as redundant blob endpoints.
- Creating and cleaning up isolated buckets for each test function.
- Exporting the environment variables the application's `Config` reads.
"""

import uuid
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List

import boto3
import pytest
import pytest_asyncio
import requests
from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from requests.exceptions import ConnectionError
from types_boto3_s3.service_resource import Bucket, S3ServiceResource

from blob_sync.config import AppConfig, Config

# --- Constants ---
S3_ACCESS_KEY: str = "minio-key"
S3_SECRET_KEY: str = "minio-secret"
S3_REGION: str = "us-east-1"
SIGNING_KEY: str = "e2e-signing-key"
MINIO_SERVICES: List[str] = ["minio-a", "minio-b"]


# --- Docker Fixtures ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the test suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration object.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootdir) / "tests" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    return "blob-sync-tests"


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    try:
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except ConnectionError:
        return False


@pytest.fixture(scope="session")
def s3_services(docker_ip: str, docker_services: Any) -> List[Dict[str, Any]]:
    """
    Ensure both MinIO services are running and return their connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        List[Dict[str, Any]]: Client parameters for each service, in order.
    """
    services: List[Dict[str, Any]] = []
    for name in MINIO_SERVICES:
        port: int = docker_services.port_for(name, 9000)
        api_url: str = f"http://{docker_ip}:{port}"
        docker_services.wait_until_responsive(
            timeout=30.0, pause=0.1, check=lambda url=api_url: _is_s3_responsive(url)
        )
        services.append(
            {
                "endpoint_url": api_url,
                "aws_access_key_id": S3_ACCESS_KEY,
                "aws_secret_access_key": S3_SECRET_KEY,
                "region_name": S3_REGION,
            }
        )
    return services


# --- Application Fixtures ---
@pytest_asyncio.fixture(scope="function")
async def s3_buckets(
    s3_services: List[Dict[str, Any]], monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[Dict[str, str], None]:
    """
    Create unique, isolated buckets for a single test function.

    A blob bucket of the same name is created on every service and a records
    bucket on the first one. The environment variables read by `Config` are
    set accordingly and all buckets are removed after the test.

    Args:
        s3_services (List[Dict[str, Any]]): Connection details of the services.
        monkeypatch (pytest.MonkeyPatch): Used to set the environment.

    Yields:
        AsyncGenerator[Dict[str, str], None]: The blob and records bucket names.
    """
    session: AioSession = get_session()
    suffix: str = f"test-bucket-{uuid.uuid4()}"
    blob_bucket: str = f"blobs-{suffix}"
    records_bucket: str = f"records-{suffix}"

    monkeypatch.setenv(
        "BLOBSYNC_ENDPOINT_URLS", ",".join(s["endpoint_url"] for s in s3_services)
    )
    monkeypatch.setenv("BLOBSYNC_ACCESS_KEY_ID", S3_ACCESS_KEY)
    monkeypatch.setenv("BLOBSYNC_SECRET_ACCESS_KEY", S3_SECRET_KEY)
    monkeypatch.setenv("BLOBSYNC_BLOB_BUCKET", blob_bucket)
    monkeypatch.setenv("BLOBSYNC_REGION", S3_REGION)
    monkeypatch.setenv("BLOBSYNC_RECORDS_ENDPOINT_URL", s3_services[0]["endpoint_url"])
    monkeypatch.setenv("BLOBSYNC_RECORDS_BUCKET", records_bucket)
    monkeypatch.setenv("BLOBSYNC_SIGNING_KEY", SIGNING_KEY)

    for service in s3_services:
        async with session.create_client("s3", **service) as client:
            await client.create_bucket(Bucket=blob_bucket)
    async with session.create_client("s3", **s3_services[0]) as client:
        await client.create_bucket(Bucket=records_bucket)

    yield {"blobs": blob_bucket, "records": records_bucket}

    # Cleanup: boto3 is simpler for synchronous, recursive delete
    boto_config: BotoConfig = BotoConfig(retries={"max_attempts": 0, "mode": "standard"})
    to_delete = [(service, blob_bucket) for service in s3_services]
    to_delete.append((s3_services[0], records_bucket))
    for service, bucket in to_delete:
        resource: S3ServiceResource = boto3.resource("s3", **service, config=boto_config)
        try:
            bucket_obj: Bucket = resource.Bucket(bucket)
            bucket_obj.objects.all().delete()
            bucket_obj.delete()
        except ClientError as e:
            if e.response["Error"]["Code"] != "NoSuchBucket":
                raise


@pytest.fixture(scope="function")
def test_config(s3_buckets: Dict[str, str]) -> Config:
    """
    Provide a Config read from the environment prepared by `s3_buckets`.

    Args:
        s3_buckets (Dict[str, str]): The created buckets.

    Returns:
        Config: A Config instance for use in tests.
    """
    return Config(app=AppConfig(concurrency=4, endpoint_timeout_s=10.0, show_progress=False))


@pytest.fixture(scope="function")
def site_files() -> Dict[str, str]:
    """A small site with distinct content per file."""
    files: Dict[str, str] = {
        "index.html": "<h1>home</h1>",
        "about.html": "<h1>about</h1>",
        "css/site.css": "body { margin: 0 }",
    }
    files.update({f"blog/post-{i}.html": f"<p>post {i}</p>" for i in range(12)})
    return files

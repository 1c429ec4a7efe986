# src/blob_sync/blobstore.py
"""
Blob storage endpoints.

The sync engine talks to endpoints through the `BlobStore` protocol. The
bundled implementation stores content-addressed blobs in S3-compatible
buckets, one aiobotocore client per endpoint.
"""

import base64
import hashlib
import logging
from typing import TYPE_CHECKING, Dict, Mapping, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from blob_sync.auth import Proof
from blob_sync.config import EndpointConfig
from blob_sync.exceptions import EndpointError
from blob_sync.models import StoredBlob

if TYPE_CHECKING:
    from aiobotocore.response import StreamingBody
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import GetObjectOutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Operations the engine needs from a set of blob endpoints."""

    async def put(
        self, endpoint: EndpointConfig, data: bytes, mime_type: str, proof: Proof
    ) -> StoredBlob: ...

    async def delete(self, endpoint: EndpointConfig, sha256: str, proof: Proof) -> None: ...

    async def get(self, endpoint: EndpointConfig, sha256: str) -> bytes: ...


def _check_proof(endpoint: EndpointConfig, action: str, sha256: str, proof: Proof) -> None:
    if proof.template.action != action or sha256 not in proof.template.hashes:
        raise EndpointError(
            endpoint.name, f"authorization does not cover {action} of {sha256}"
        )
    if proof.is_expired():
        raise EndpointError(endpoint.name, "authorization has expired")


class S3BlobStore:
    """
    Content-addressed blob storage on S3-compatible buckets.

    Each blob is stored under its hex SHA-256 digest. The server verifies the
    digest on upload through the `ChecksumSHA256` parameter and the upload
    proof is kept as object metadata.
    """

    def __init__(self, clients: Mapping[str, "S3Client"]) -> None:
        """
        Initializes the store.

        Args:
            clients (Mapping[str, S3Client]): Open clients keyed by endpoint name.
        """
        self._clients: Dict[str, "S3Client"] = dict(clients)

    def _client(self, endpoint: EndpointConfig) -> "S3Client":
        try:
            return self._clients[endpoint.name]
        except KeyError:
            raise EndpointError(endpoint.name, "no client is open for this endpoint") from None

    async def put(
        self, endpoint: EndpointConfig, data: bytes, mime_type: str, proof: Proof
    ) -> StoredBlob:
        """
        Uploads a blob to one endpoint.

        Args:
            endpoint (EndpointConfig): The target endpoint.
            data (bytes): The blob content.
            mime_type (str): Content type stored with the object.
            proof (Proof): An upload authorization for the blob's hash.

        Returns:
            StoredBlob: Where the blob was stored.

        Raises:
            EndpointError: If the endpoint rejects the upload.
        """
        sha256: str = hashlib.sha256(data).hexdigest()
        _check_proof(endpoint, "upload", sha256, proof)
        client: "S3Client" = self._client(endpoint)
        try:
            await client.put_object(
                Bucket=endpoint.bucket,
                Key=sha256,
                Body=data,
                ContentLength=len(data),
                ContentType=mime_type,
                ChecksumSHA256=base64.b64encode(bytes.fromhex(sha256)).decode("ascii"),
                Metadata={"authorization": proof.token()},
            )
        except (ClientError, BotoCoreError) as e:
            raise EndpointError(endpoint.name, f"upload of {sha256} failed: {e}", e) from e

        logger.debug(f"Stored {sha256} ({len(data)} bytes) on {endpoint.name}")
        return StoredBlob(
            endpoint=endpoint.name,
            sha256=sha256,
            size=len(data),
            url=f"{endpoint.endpoint_url}/{endpoint.bucket}/{sha256}",
        )

    async def delete(self, endpoint: EndpointConfig, sha256: str, proof: Proof) -> None:
        """
        Deletes a blob from one endpoint.

        Args:
            endpoint (EndpointConfig): The target endpoint.
            sha256 (str): The blob's hash.
            proof (Proof): A delete authorization for the hash.

        Raises:
            EndpointError: If the endpoint rejects the deletion.
        """
        _check_proof(endpoint, "delete", sha256, proof)
        client: "S3Client" = self._client(endpoint)
        try:
            await client.delete_object(Bucket=endpoint.bucket, Key=sha256)
        except (ClientError, BotoCoreError) as e:
            raise EndpointError(endpoint.name, f"delete of {sha256} failed: {e}", e) from e

    async def get(self, endpoint: EndpointConfig, sha256: str) -> bytes:
        """
        Downloads a blob from one endpoint.

        Args:
            endpoint (EndpointConfig): The source endpoint.
            sha256 (str): The blob's hash.

        Returns:
            bytes: The blob content.

        Raises:
            EndpointError: If the blob cannot be fetched.
        """
        client: "S3Client" = self._client(endpoint)
        try:
            response: "GetObjectOutputTypeDef" = await client.get_object(
                Bucket=endpoint.bucket, Key=sha256
            )
            stream: "StreamingBody" = response["Body"]
            return await stream.read()
        except (ClientError, BotoCoreError) as e:
            raise EndpointError(endpoint.name, f"download of {sha256} failed: {e}", e) from e

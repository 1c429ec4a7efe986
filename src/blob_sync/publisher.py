# src/blob_sync/publisher.py
"""
Pointer record storage.

A pointer record maps a logical path to the content hash of a blob and is
signed by the publishing identity. Records are written as small JSON
documents to an S3-compatible records bucket, one document per path, so a
later publish of the same path replaces the earlier one.
"""

import asyncio
import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Protocol

from botocore.exceptions import BotoCoreError, ClientError

from blob_sync.auth import DEFAULT_EXPIRATION_S, Proof, SignFn, create_publish_auth
from blob_sync.config import EndpointConfig
from blob_sync.exceptions import AuthError, NetworkError, PublishError
from blob_sync.models import PointerRecord

if TYPE_CHECKING:
    from aiobotocore.response import StreamingBody
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.paginator import ListObjectsV2Paginator
    from types_aiobotocore_s3.type_defs import ListObjectsV2OutputTypeDef

logger: logging.Logger = logging.getLogger(__name__)


class Publisher(Protocol):
    """Operations the engine needs from the pointer record store."""

    async def publish(self, path: str, sha256: str) -> PointerRecord: ...

    async def retract(self, record: PointerRecord) -> None: ...

    async def list_records(self, identity: str) -> List[PointerRecord]: ...


def record_from_document(document: Dict[str, Any]) -> PointerRecord:
    """
    Parses a stored record document.

    Args:
        document (Dict[str, Any]): The decoded JSON document.

    Returns:
        PointerRecord: The record.

    Raises:
        KeyError, TypeError, ValueError: If the document is malformed.
    """
    return PointerRecord(
        record_id=str(document["id"]),
        identity=str(document["identity"]),
        path=str(document["path"]),
        sha256=str(document["sha256"]),
        created_at=int(document["created_at"]),
    )


class S3RecordPublisher:
    """Stores signed pointer records in an S3-compatible bucket."""

    def __init__(
        self,
        client: "S3Client",
        records: EndpointConfig,
        sign_fn: Optional[SignFn],
        identity: Optional[str],
        prefix: str = "records/",
        expiration_s: int = DEFAULT_EXPIRATION_S,
    ) -> None:
        """
        Initializes the publisher.

        Args:
            client (S3Client): An open client for the records endpoint.
            records (EndpointConfig): The records endpoint and bucket.
            sign_fn (SignFn, optional): Signs publish proofs. Read-only
                publishers (listing another identity) may pass None.
            identity (str, optional): The identity records are published under.
            prefix (str): Key prefix for all records.
            expiration_s (int): Validity of publish proofs.
        """
        self._client: "S3Client" = client
        self._records: EndpointConfig = records
        self._sign_fn: Optional[SignFn] = sign_fn
        self._identity: Optional[str] = identity
        self._prefix: str = prefix
        self._expiration_s: int = expiration_s

    def record_key(self, identity: str, path: str) -> str:
        """Returns the storage key of the record for `path`."""
        path_digest: str = hashlib.sha256(path.encode("utf-8")).hexdigest()
        return f"{self._prefix}{identity}/{path_digest}.json"

    async def publish(self, path: str, sha256: str) -> PointerRecord:
        """
        Writes the pointer record for `path`, replacing any previous one.

        Args:
            path (str): The logical path.
            sha256 (str): The content hash the path points to.

        Returns:
            PointerRecord: The stored record.

        Raises:
            PublishError: If the record cannot be signed or stored.
        """
        if self._sign_fn is None or not self._identity:
            raise PublishError("Publishing requires a signing key.")
        try:
            proof: Proof = await create_publish_auth(
                self._sign_fn, path, sha256, self._expiration_s
            )
        except AuthError as e:
            raise PublishError(f"Could not sign record for '{path}': {e}") from e

        record: PointerRecord = PointerRecord(
            record_id=self.record_key(self._identity, path),
            identity=self._identity,
            path=path,
            sha256=sha256,
            created_at=proof.template.created_at,
        )
        document: Dict[str, Any] = {
            "id": record.record_id,
            "identity": record.identity,
            "path": record.path,
            "sha256": record.sha256,
            "created_at": record.created_at,
            "proof": proof.token(),
        }
        try:
            await self._client.put_object(
                Bucket=self._records.bucket,
                Key=record.record_id,
                Body=json.dumps(document).encode("utf-8"),
                ContentType="application/json",
            )
        except (ClientError, BotoCoreError) as e:
            raise PublishError(f"Failed to publish record for '{path}': {e}") from e

        logger.debug(f"Published record {record.record_id} ({path} -> {sha256})")
        return record

    async def retract(self, record: PointerRecord) -> None:
        """
        Removes a pointer record.

        Args:
            record (PointerRecord): The record to retract.

        Raises:
            PublishError: If the record cannot be removed.
        """
        try:
            await self._client.delete_object(Bucket=self._records.bucket, Key=record.record_id)
        except (ClientError, BotoCoreError) as e:
            raise PublishError(f"Failed to retract record {record.record_id}: {e}") from e

    async def _iter_keys(self, identity: str) -> AsyncIterator[str]:
        paginator: "ListObjectsV2Paginator" = self._client.get_paginator("list_objects_v2")
        pages: AsyncIterator["ListObjectsV2OutputTypeDef"] = paginator.paginate(
            Bucket=self._records.bucket, Prefix=f"{self._prefix}{identity}/"
        )
        async for page in pages:
            for obj in page.get("Contents", []):
                if obj["Key"].endswith(".json"):
                    yield obj["Key"]

    async def _load(self, key: str) -> Optional[PointerRecord]:
        response = await self._client.get_object(Bucket=self._records.bucket, Key=key)
        stream: "StreamingBody" = response["Body"]
        raw: bytes = await stream.read()
        try:
            return record_from_document(json.loads(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed record '{key}': {e}")
            return None

    async def list_records(self, identity: str) -> List[PointerRecord]:
        """
        Lists all live records published by `identity`.

        Args:
            identity (str): The publishing identity.

        Returns:
            List[PointerRecord]: The records, in storage key order.

        Raises:
            NetworkError: If the records cannot be listed or read.
        """
        try:
            keys: List[str] = [key async for key in self._iter_keys(identity)]
            loaded: List[Optional[PointerRecord]] = await asyncio.gather(
                *(self._load(key) for key in keys)
            )
        except (ClientError, BotoCoreError) as e:
            raise NetworkError(f"Failed to list records for '{identity}': {e}") from e
        return [record for record in loaded if record is not None]

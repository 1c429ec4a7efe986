# src/blob_sync/session.py
"""
Per-command connection context.

A `SyncSession` is built once per command and handed to every component
that needs network access. It opens one S3 client per blob endpoint plus
one for the records bucket and closes all of them on exit.
"""

import logging
from contextlib import AsyncExitStack
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig

from blob_sync.auth import HmacSigner
from blob_sync.blobstore import S3BlobStore
from blob_sync.config import Config, EndpointConfig
from blob_sync.exceptions import ConfigError
from blob_sync.publisher import S3RecordPublisher

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

logger: logging.Logger = logging.getLogger(__name__)


class SyncSession:
    """
    Owns the clients, signer and collaborators for one command run.

    Attributes (available inside `async with`):
        endpoints (Tuple[EndpointConfig, ...]): The blob endpoints.
        signer (HmacSigner, optional): The signer, if a key is configured.
        identity (str, optional): The signer's identity.
        blob_store (S3BlobStore): Blob storage across all endpoints.
        publisher (S3RecordPublisher): The pointer record store.
    """

    def __init__(self, config: Config, require_signer: bool = True) -> None:
        """
        Initializes the session without opening any connection.

        Args:
            config (Config): The application configuration.
            require_signer (bool): Fail early when no signing key is configured.
        """
        self._config: Config = config
        self._session: AioSession = get_session()
        self._stack: Optional[AsyncExitStack] = None
        self.endpoints: Tuple[EndpointConfig, ...] = config.endpoints
        self.signer: Optional[HmacSigner] = None
        if config.signing_key:
            self.signer = HmacSigner(config.signing_key)
        elif require_signer:
            raise ConfigError("Environment variable 'BLOBSYNC_SIGNING_KEY' must be set.")
        self.identity: Optional[str] = self.signer.identity if self.signer else None

    def _boto_config(self) -> BotoConfig:
        timeout: float = self._config.app.endpoint_timeout_s
        return BotoConfig(
            signature_version="s3v4",
            max_pool_connections=self._config.app.concurrency * 2 + 10,
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"max_attempts": self._config.app.transfer_max_attempts},
        )

    async def _open(self, stack: AsyncExitStack, endpoint: EndpointConfig) -> "S3Client":
        client: "S3Client" = await stack.enter_async_context(
            self._session.create_client(
                "s3", **endpoint.as_boto_dict(), config=self._boto_config()
            )
        )
        logger.debug(f"Opened client for {endpoint.name}")
        return client

    async def __aenter__(self) -> "SyncSession":
        stack: AsyncExitStack = AsyncExitStack()
        await stack.__aenter__()
        try:
            clients: Dict[str, Any] = {}
            for endpoint in self.endpoints:
                clients[endpoint.name] = await self._open(stack, endpoint)
            records_client: "S3Client" = await self._open(stack, self._config.records)
        except BaseException:
            await stack.aclose()
            raise

        self._stack = stack
        self.blob_store: S3BlobStore = S3BlobStore(clients)
        self.publisher: S3RecordPublisher = S3RecordPublisher(
            client=records_client,
            records=self._config.records,
            sign_fn=self.signer,
            identity=self.identity,
            prefix=self._config.app.records_prefix,
            expiration_s=self._config.app.auth_expiration_s,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Closes every client opened by this session."""
        if self._stack is not None:
            stack, self._stack = self._stack, None
            await stack.__aexit__(*args)
            logger.debug("Sync session closed.")

# src/blob_sync/auth.py
"""
Authorization proofs for blob and record operations.

Every upload, delete and publish is accompanied by a signed template that
states the action, the affected content hashes and an expiration time. The
signing callback is the only component holding the secret key.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from blob_sync.exceptions import AuthError
from blob_sync.models import BlobDescriptor

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_EXPIRATION_S: int = 300


@dataclass(frozen=True)
class AuthTemplate:
    """
    The unsigned payload of a proof.

    Attributes:
        action (str): One of `upload`, `delete` or `publish`.
        content (str): Human readable description of the operation.
        hashes (Tuple[str, ...]): Content hashes the proof is valid for.
        expiration (int): Unix timestamp after which the proof is void.
        created_at (int): Unix timestamp of creation.
    """

    action: str
    content: str
    hashes: Tuple[str, ...]
    expiration: int
    created_at: int

    def canonical(self) -> bytes:
        """Deterministic serialization used as the signed message."""
        payload: Dict[str, Any] = asdict(self)
        payload["hashes"] = list(self.hashes)
        return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class Proof:
    """A signed `AuthTemplate`."""

    template: AuthTemplate
    identity: str
    signature: str

    def token(self) -> str:
        """
        Encodes the proof for transport in a header or object metadata.

        Returns:
            str: URL-safe base64 of the proof as JSON.
        """
        payload: Dict[str, Any] = {
            "template": json.loads(self.template.canonical()),
            "identity": self.identity,
            "signature": self.signature,
        }
        raw: bytes = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
        return base64.urlsafe_b64encode(raw).decode("ascii")

    def is_expired(self, now: Optional[int] = None) -> bool:
        return (now if now is not None else int(time.time())) >= self.template.expiration


SignFn = Callable[[AuthTemplate], Awaitable[Proof]]


class HmacSigner:
    """
    Signs templates with HMAC-SHA256.

    The identity of the signer is the SHA-256 fingerprint of its key, so two
    signers built from the same secret publish into the same namespace.
    """

    def __init__(self, secret: str) -> None:
        """
        Initialize the signer.

        Args:
            secret (str): The signing key.
        """
        if not secret:
            raise AuthError("A non-empty signing key is required.")
        self._key: bytes = secret.encode("utf-8")
        self.identity: str = hashlib.sha256(self._key).hexdigest()

    def _digest(self, template: AuthTemplate) -> str:
        return hmac.new(self._key, template.canonical(), hashlib.sha256).hexdigest()

    async def __call__(self, template: AuthTemplate) -> Proof:
        logger.debug(f"Signing {template.action} template for {list(template.hashes)}")
        return Proof(template=template, identity=self.identity, signature=self._digest(template))

    def verify(self, proof: Proof) -> bool:
        """
        Checks that a proof was produced by this signer and has not expired.

        Args:
            proof (Proof): The proof to check.

        Returns:
            bool: True if the signature matches and the proof is still valid.
        """
        if proof.identity != self.identity or proof.is_expired():
            return False
        return hmac.compare_digest(proof.signature, self._digest(proof.template))


def _template(action: str, content: str, hashes: Tuple[str, ...], expiration_s: int) -> AuthTemplate:
    now: int = int(time.time())
    return AuthTemplate(
        action=action,
        content=content,
        hashes=hashes,
        expiration=now + expiration_s,
        created_at=now,
    )


async def _sign(sign_fn: SignFn, template: AuthTemplate) -> Proof:
    try:
        return await sign_fn(template)
    except AuthError:
        raise
    except Exception as e:
        raise AuthError(f"Failed to sign {template.action} authorization: {e}") from e


async def create_upload_auth(
    sign_fn: SignFn, blob: BlobDescriptor, expiration_s: int = DEFAULT_EXPIRATION_S
) -> Proof:
    """
    Produces a proof authorizing the upload of one blob.

    Args:
        sign_fn (SignFn): The signing callback.
        blob (BlobDescriptor): The blob to upload.
        expiration_s (int): Validity of the proof in seconds.

    Returns:
        Proof: The signed upload authorization.

    Raises:
        AuthError: If signing fails for any reason.
    """
    return await _sign(
        sign_fn, _template("upload", f"Upload {blob.name}", (blob.sha256,), expiration_s)
    )


async def create_delete_auth(
    sign_fn: SignFn, sha256: str, expiration_s: int = DEFAULT_EXPIRATION_S
) -> Proof:
    """
    Produces a proof authorizing the deletion of one blob on any endpoint.

    Args:
        sign_fn (SignFn): The signing callback.
        sha256 (str): The hash of the blob to delete.
        expiration_s (int): Validity of the proof in seconds.

    Returns:
        Proof: The signed delete authorization.

    Raises:
        AuthError: If signing fails for any reason.
    """
    return await _sign(sign_fn, _template("delete", f"Delete {sha256}", (sha256,), expiration_s))


async def create_publish_auth(
    sign_fn: SignFn, path: str, sha256: str, expiration_s: int = DEFAULT_EXPIRATION_S
) -> Proof:
    """Produces a proof binding `path` to `sha256` for a pointer record."""
    return await _sign(sign_fn, _template("publish", path, (sha256,), expiration_s))

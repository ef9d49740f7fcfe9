"""
compliancehub - File reference resolution.

Uploads never pass through the submission endpoint. A client first asks for
pre-signed URLs, pushes each blob to its URL, and then references the
returned object keys in the application. At submission time every key is
resolved: it counts only if its blob landed before the URL expired.
"""

import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlencode
from uuid import uuid4

from .exceptions import ConflictError, NotFoundError, UploadRejectedError
from .models import FileReference, UploadTicket
from .validation import is_object_key, validate_file_names

logger = logging.getLogger("compliancehub.files")

DEFAULT_UPLOAD_TTL_SECONDS = 15 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_unix(moment: datetime) -> int:
    return int(moment.replace(tzinfo=timezone.utc).timestamp())


class UrlSigner:
    """HMAC-SHA256 signatures binding an object key to its expiry."""

    def __init__(self, secret: Union[str, bytes], base_url: str):
        self.secret = secret.encode() if isinstance(secret, str) else secret
        self.base_url = base_url.rstrip("/")

    def signature(self, object_key: str, expires: int) -> str:
        message = f"PUT\n{object_key}\n{expires}".encode()
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def sign(self, object_key: str, expires_at: datetime) -> str:
        expires = _to_unix(expires_at)
        query = urlencode({"expires": expires, "signature": self.signature(object_key, expires)})
        return f"{self.base_url}/api/compliance/uploads/{object_key}?{query}"

    def verify(self, object_key: str, expires: int, signature: str) -> bool:
        expected = self.signature(object_key, expires)
        return hmac.compare_digest(expected, signature or "")


class LocalUploadStorage:
    """Blob storage on the local filesystem, one file per object key."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, object_key: str) -> Path:
        if not is_object_key(object_key):
            raise NotFoundError(f"Invalid object key: {object_key}")
        return self.root / object_key

    def put(self, object_key: str, data: bytes) -> int:
        path = self._path(object_key)
        tmp = path.with_suffix(".part")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
        return len(data)

    def exists(self, object_key: str) -> bool:
        return self._path(object_key).is_file()

    def read(self, object_key: str) -> bytes:
        path = self._path(object_key)
        if not path.is_file():
            raise NotFoundError(f"No blob stored for {object_key}")
        return path.read_bytes()


class FileReferenceResolver:
    """
    Issues upload URLs and resolves object keys at submission time.

    Args:
        db: Database holding file references.
        storage: Blob storage written by :meth:`receive`.
        signer: Signs and verifies the upload URLs.
        ttl_seconds: Validity window of every issued URL.
        clock: Override for the current time, naive UTC.
    """

    def __init__(
        self,
        db,
        storage: LocalUploadStorage,
        signer: UrlSigner,
        ttl_seconds: int = DEFAULT_UPLOAD_TTL_SECONDS,
        clock=None,
    ):
        self.db = db
        self.storage = storage
        self.signer = signer
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or _utcnow

    def issue(self, session, file_names: list[str], tenant: str) -> list[UploadTicket]:
        """Create one fresh object key and upload URL per file name."""
        validate_file_names(file_names)

        tickets = []
        issued_at = self.clock()
        expires_at = issued_at + self.ttl
        for name in file_names:
            object_key = uuid4().hex
            self.db.create_file_reference(
                session,
                object_key=object_key,
                tenant=tenant,
                original_name=name,
                issued_at=issued_at,
                expires_at=expires_at,
            )
            tickets.append(
                UploadTicket(
                    file_name=name,
                    object_key=object_key,
                    pre_signed_url=self.signer.sign(object_key, expires_at),
                    expires_at=expires_at,
                )
            )
        logger.info(f"Issued {len(tickets)} upload URL(s) for tenant {tenant}")
        return tickets

    def receive(
        self,
        session,
        object_key: str,
        expires: int,
        signature: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> FileReference:
        """Store a blob pushed to a pre-signed URL."""
        if not is_object_key(object_key) or not self.signer.verify(object_key, expires, signature):
            logger.warning(f"Rejected upload to {object_key}: bad signature")
            raise UploadRejectedError("Upload signature does not match")

        reference = self.db.get_file_reference(session, object_key)
        if reference is None or _to_unix(reference.expires_at) != expires:
            raise UploadRejectedError("Upload signature does not match")

        now = self.clock()
        if now > reference.expires_at:
            logger.warning(f"Rejected upload to {object_key}: URL expired at {reference.expires_at}")
            raise UploadRejectedError("Upload URL has expired")
        if reference.uploaded_at is not None:
            raise ConflictError("A file was already uploaded to this URL")

        size = self.storage.put(object_key, data)
        updated = self.db.mark_uploaded(session, object_key, size, content_type, now)
        if updated is None:
            raise ConflictError("A file was already uploaded to this URL")
        logger.info(f"Received {size} bytes for {object_key}")
        return self._to_reference(updated)

    def consume(self, session, object_key: str, tenant: Optional[str] = None) -> bool:
        """Whether a completed, in-window upload exists for ``object_key``."""
        if not is_object_key(object_key):
            return False
        reference = self.db.get_file_reference(session, object_key)
        if reference is None or reference.uploaded_at is None:
            return False
        if tenant is not None and reference.tenant != tenant:
            return False
        if reference.uploaded_at > reference.expires_at:
            return False
        return self.storage.exists(object_key)

    def get(self, session, object_key: str) -> FileReference:
        reference = self.db.get_file_reference(session, object_key) if is_object_key(object_key) else None
        if reference is None:
            raise NotFoundError(f"Unknown object key: {object_key}")
        return self._to_reference(reference)

    @staticmethod
    def _to_reference(model) -> FileReference:
        return FileReference(
            object_key=model.object_key,
            original_name=model.original_name,
            issued_at=model.issued_at,
            expires_at=model.expires_at,
            uploaded_at=model.uploaded_at,
            size=model.size,
            content_type=model.content_type,
        )

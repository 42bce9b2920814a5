"""Blob storage for incident photos and audio.

Objects are addressed by public URL. Uploads and downloads go through
short-lived HMAC-signed URLs so clients never hold storage credentials.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlencode

from services.api.src.safesnap.core.errors import BlobStoreError, ValidationError
from services.api.src.safesnap.core.metrics import MetricsSink
from services.api.src.safesnap.schemas.enums import FileKind

logger = logging.getLogger(__name__)

_FOLDERS = {
    FileKind.IMAGE: "incidents/images",
    FileKind.AUDIO: "incidents/audio",
}

_CONTENT_TYPES = {
    FileKind.IMAGE: {
        "jpg": "image/jpeg",
        "jpeg": "image/jpeg",
        "png": "image/png",
        "gif": "image/gif",
        "webp": "image/webp",
    },
    FileKind.AUDIO: {
        "mp3": "audio/mpeg",
        "wav": "audio/wav",
        "m4a": "audio/mp4",
        "ogg": "audio/ogg",
        "webm": "audio/webm",
    },
}


@dataclass(frozen=True)
class PresignedUpload:
    upload_url: str
    final_url: str
    file_name: str
    content_type: str
    expires_in_s: int


def content_type_for(kind: FileKind, extension: str) -> str:
    ext = extension.lower().lstrip(".")
    try:
        return _CONTENT_TYPES[kind][ext]
    except KeyError:
        allowed = ", ".join(sorted(_CONTENT_TYPES[kind]))
        raise ValidationError(f"Unsupported {kind.value} extension '{ext}'. Allowed: {allowed}")


class BlobStore(ABC):
    @abstractmethod
    def exists(self, url: str) -> bool: ...

    @abstractmethod
    def download_bytes(self, url: str) -> bytes:
        """Object contents, or empty bytes if it cannot be read."""

    @abstractmethod
    def presigned_upload_url(
        self, kind: FileKind, extension: str, owner_id: str
    ) -> PresignedUpload: ...

    @abstractmethod
    def presigned_download_url(self, url: str) -> str: ...


class LocalBlobStore(BlobStore):
    """Filesystem-backed store served under ``public_base_url``."""

    def __init__(
        self,
        root: str,
        public_base_url: str,
        signing_secret: str,
        upload_expiry_s: int = 15 * 60,
        download_expiry_s: int = 60 * 60,
        metrics: MetricsSink | None = None,
    ):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self._secret = signing_secret.encode()
        self.upload_expiry_s = upload_expiry_s
        self.download_expiry_s = download_expiry_s
        self.metrics = metrics

    # -- Addressing ------------------------------------------------------------

    def key_for(self, url: str) -> str:
        prefix = self.public_base_url + "/"
        if not url.startswith(prefix):
            raise BlobStoreError(f"URL is not served by this store: {url}")
        key = url[len(prefix):].split("?", 1)[0]
        if ".." in key.split("/"):
            raise BlobStoreError(f"Invalid object key: {key}")
        return key

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def _path(self, key: str) -> Path:
        return self.root / key

    # -- Signing ---------------------------------------------------------------

    def _signature(self, method: str, key: str, expires: int) -> str:
        msg = f"{method}:{key}:{expires}".encode()
        return hmac.new(self._secret, msg, hashlib.sha256).hexdigest()

    def _signed(self, method: str, key: str, expires_in_s: int) -> str:
        expires = int(time.time()) + expires_in_s
        query = urlencode({"expires": expires, "signature": self._signature(method, key, expires)})
        return f"{self.url_for(key)}?{query}"

    def verify(self, method: str, key: str, expires: int, signature: str) -> bool:
        if expires < int(time.time()):
            return False
        return hmac.compare_digest(self._signature(method, key, expires), signature)

    # -- Objects ---------------------------------------------------------------

    def exists(self, url: str) -> bool:
        try:
            return self._path(self.key_for(url)).is_file()
        except BlobStoreError:
            return False

    def download_bytes(self, url: str) -> bytes:
        try:
            if not self.exists(url):
                logger.warning("blob_not_found", extra={"url": url})
                return b""
            return self._path(self.key_for(url)).read_bytes()
        except (OSError, BlobStoreError) as e:
            logger.error("blob_download_failed", extra={"url": url, "error": str(e)})
            return b""

    def put_bytes(self, key: str, data: bytes) -> str:
        """Store ``data`` under ``key``. Used by the upload endpoint."""
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return self.url_for(key)

    def presigned_upload_url(
        self, kind: FileKind, extension: str, owner_id: str
    ) -> PresignedUpload:
        content_type = content_type_for(kind, extension)
        ext = extension.lower().lstrip(".")
        file_name = f"user_{owner_id}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{ext}"
        key = f"{_FOLDERS[kind]}/{file_name}"

        if self.metrics:
            self.metrics.record_file_uploaded(kind.value)
        logger.info("presigned_upload_issued", extra={"key": key, "kind": kind.value})

        return PresignedUpload(
            upload_url=self._signed("PUT", key, self.upload_expiry_s),
            final_url=self.url_for(key),
            file_name=file_name,
            content_type=content_type,
            expires_in_s=self.upload_expiry_s,
        )

    def presigned_download_url(self, url: str) -> str:
        return self._signed("GET", self.key_for(url), self.download_expiry_s)

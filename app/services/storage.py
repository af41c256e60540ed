"""Binary storage for files attached to status transitions."""
import base64
import binascii
import logging
import mimetypes
import os
import re
import uuid
from typing import NamedTuple, Optional, Tuple

from app import config

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<content_type>[\w.+-]+/[\w.+-]+)?(?:;[^,]*)?;base64,(?P<data>.*)$", re.DOTALL)


class StorageError(Exception):
    """Raised by a storage backend when a file cannot be stored or removed."""


class StoredObject(NamedTuple):
    url: str
    path: str
    content_type: str
    size: int


class BinaryStorage:
    """Interface of the binary storage collaborator."""

    def store(self, data: bytes, path: str, content_type: str) -> StoredObject:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError


class LocalFileStorage(BinaryStorage):
    """Stores files under a root directory and serves them from a base URL."""

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = os.path.abspath(root or config.STORAGE_ROOT)
        self.base_url = (base_url if base_url is not None else config.STORAGE_BASE_URL).rstrip("/")

    def _full_path(self, path: str) -> str:
        full_path = os.path.abspath(os.path.join(self.root, path))
        if os.path.commonpath([self.root, full_path]) != self.root:
            raise StorageError(f"Path escapes storage root: {path}")
        return full_path

    def store(self, data: bytes, path: str, content_type: str) -> StoredObject:
        full_path = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, "wb") as f:
                f.write(data)
        except OSError as exc:
            raise StorageError(f"Could not write {path}: {exc}") from exc
        logger.debug("Stored %d bytes at %s", len(data), path)
        return StoredObject(
            url=f"{self.base_url}/{path}",
            path=path,
            content_type=content_type,
            size=len(data),
        )

    def delete(self, path: str) -> None:
        try:
            os.remove(self._full_path(path))
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageError(f"Could not delete {path}: {exc}") from exc


def storage_path(application_id: str, filename: str) -> str:
    """Unique path for a file attached to an application, keeping its extension."""
    extension = os.path.splitext(filename or "")[1].lower()
    return f"applications/{application_id}/{uuid.uuid4().hex}{extension}"


def guess_content_type(filename: str) -> str:
    return mimetypes.guess_type(filename or "")[0] or "application/octet-stream"


def decode_data_url(data: str) -> Tuple[bytes, Optional[str]]:
    """
    Decode a base64 payload, optionally wrapped as a data URL.

    Returns the bytes and the content type named in the data URL, if any.

    Raises:
        ValueError: the payload is not valid base64
    """
    content_type = None
    data = data.strip()
    match = _DATA_URL.match(data)
    if match:
        content_type = match.group("content_type")
        data = match.group("data")
    try:
        return base64.b64decode(data, validate=True), content_type
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Attachment data is not valid base64") from exc

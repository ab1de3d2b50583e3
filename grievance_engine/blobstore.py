"""
blobstore.py - Physical storage for attachment bytes.

Handles are content addresses (sha256 hex), so writing the same bytes
twice lands on the same file and a retried write is a no-op.

A handle can be shared by several attachment rows. delete() with an
``in_use`` check moves the file aside first, asks again, and puts it back
if a row appeared in the meantime.
"""

import hashlib
import logging
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from .errors import storage_unavailable

logger = logging.getLogger(__name__)


class BlobNotFound(KeyError):
    """No blob stored under the given handle."""


class BlobStore(ABC):
    @abstractmethod
    def store(self, data: bytes) -> str:
        """Persist ``data`` and return its handle."""

    @abstractmethod
    def retrieve(self, handle: str) -> bytes:
        """Return the bytes behind ``handle``; raises BlobNotFound."""

    @abstractmethod
    def exists(self, handle: str) -> bool:
        """True if bytes are stored under ``handle``."""

    @abstractmethod
    def delete(self, handle: str, in_use: Optional[Callable[[], bool]] = None) -> bool:
        """
        Remove the blob; returns False if it was already gone or ``in_use``
        reported a reference.
        """


class LocalBlobStore(BlobStore):
    """Content-addressed files under a root directory, sharded by prefix."""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    @staticmethod
    def handle_for(data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def path_for(self, handle: str) -> Path:
        if len(handle) < 3 or not all(c in "0123456789abcdef" for c in handle):
            raise BlobNotFound(handle)
        return self.root / handle[:2] / handle

    def store(self, data: bytes) -> str:
        handle = self.handle_for(data)
        path = self.path_for(handle)
        if path.exists():
            return handle

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            logger.error("Blob write failed for %s: %s", handle, e)
            raise storage_unavailable(f"blob write failed: {e}") from e

        logger.debug("Stored blob %s (%d bytes)", handle, len(data))
        return handle

    def retrieve(self, handle: str) -> bytes:
        path = self.path_for(handle)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFound(handle) from e
        except OSError as e:
            raise storage_unavailable(f"blob read failed: {e}") from e

    def exists(self, handle: str) -> bool:
        try:
            return self.path_for(handle).exists()
        except BlobNotFound:
            return False

    def delete(self, handle: str, in_use: Optional[Callable[[], bool]] = None) -> bool:
        path = self.path_for(handle)
        if in_use is None:
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            return True

        retired = path.with_name(f".retired-{handle}-{uuid.uuid4().hex}")
        try:
            os.replace(path, retired)
        except FileNotFoundError:
            return False

        try:
            used = in_use()
        except BaseException:
            os.replace(retired, path)
            raise
        if used:
            os.replace(retired, path)
            logger.info("Blob %s gained a reference while being deleted, kept", handle)
            return False

        retired.unlink()
        return True

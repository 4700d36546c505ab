"""
Storage Service - Object storage for uploaded documents.

This module provides a small bucket-style object store on the local
filesystem: uploading, downloading, overwriting and removing objects,
plus signed download URLs that external OCR providers can fetch.
"""

import hashlib
import hmac
import logging
import time
import uuid
from pathlib import Path, PurePosixPath
from typing import Iterable
from urllib.parse import quote, urlencode

from services.errors import StorageError

logger = logging.getLogger(__name__)

# Default storage directory
DEFAULT_STORAGE_DIR = 'storage/'
DEFAULT_BUCKET = 'files'


class StorageService:
    """
    Framework-agnostic storage service for uploaded documents.

    Objects live under ``<storage_dir>/<bucket>/<object_path>``. Object paths
    are POSIX-style and relative, e.g. ``user-1/3f2a...9c.xlsx``.
    """

    def __init__(self, storage_dir: str = DEFAULT_STORAGE_DIR,
                 bucket: str = DEFAULT_BUCKET,
                 signing_secret: str = 'change-me'):
        """
        Initialize storage service.

        Args:
            storage_dir: Root directory for all buckets (default: 'storage/')
            bucket: Bucket name (default: 'files')
            signing_secret: Secret used to sign download URLs
        """
        self.storage_dir = storage_dir
        self.bucket = bucket
        self.signing_secret = signing_secret
        self._ensure_directory_exists()

    @property
    def root(self) -> Path:
        return Path(self.storage_dir) / self.bucket

    def _ensure_directory_exists(self):
        """Ensure the bucket directory exists."""
        self.root.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Storage directory ensured: {self.root}")

    def local_path(self, object_path: str) -> Path:
        """
        Resolve an object path to a file inside the bucket.

        Raises:
            StorageError: If the path is absolute or escapes the bucket
        """
        if not object_path:
            raise StorageError("Object path is required")

        pure = PurePosixPath(object_path)
        if pure.is_absolute() or '..' in pure.parts:
            raise StorageError(f"Invalid object path: {object_path}")

        return self.root.joinpath(*pure.parts)

    @staticmethod
    def new_object_path(user_id: str, filename: str) -> str:
        """Build a random object path for a new upload, keeping its extension."""
        ext = Path(filename).suffix.lower().lstrip('.')
        name = uuid.uuid4().hex
        if ext:
            name = f"{name}.{ext}"
        return f"{user_id}/{name}"

    @staticmethod
    def compute_hash(data: bytes, algorithm: str = 'sha256') -> str:
        """
        Compute hash of an object's bytes.

        Args:
            data: Object contents
            algorithm: Hash algorithm ('sha256', 'md5', 'sha1')

        Returns:
            Hex digest
        """
        if algorithm not in ('sha256', 'md5', 'sha1'):
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        return hashlib.new(algorithm, data).hexdigest()

    def put(self, object_path: str, data: bytes, upsert: bool = False) -> str:
        """
        Store a new object.

        Args:
            object_path: Destination object path
            data: Object contents
            upsert: Overwrite an existing object instead of failing

        Returns:
            The object path
        """
        path = self.local_path(object_path)

        if path.exists() and not upsert:
            raise StorageError(f"Object already exists: {object_path}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info(f"Stored object {self.bucket}/{object_path} ({len(data)} bytes)")

        return object_path

    def update(self, object_path: str, data: bytes) -> str:
        """Overwrite an existing object."""
        if not self.exists(object_path):
            raise StorageError(f"Object not found: {object_path}")
        return self.put(object_path, data, upsert=True)

    def get(self, object_path: str) -> bytes:
        """Download an object's bytes."""
        path = self.local_path(object_path)

        if not path.is_file():
            raise StorageError(f"Object not found: {object_path}")

        return path.read_bytes()

    def exists(self, object_path: str) -> bool:
        return self.local_path(object_path).is_file()

    def remove(self, object_paths: Iterable[str]) -> int:
        """
        Remove objects from storage.

        Args:
            object_paths: Object paths to delete

        Returns:
            Number of objects actually deleted
        """
        deleted = 0

        for object_path in object_paths:
            path = self.local_path(object_path)
            if path.exists():
                path.unlink()
                deleted += 1
                logger.info(f"Deleted object: {self.bucket}/{object_path}")
            else:
                logger.warning(f"Object not found for deletion: {object_path}")

        return deleted

    def _signature(self, object_path: str, expires: int) -> str:
        message = f"{self.bucket}/{object_path}:{expires}".encode('utf-8')
        return hmac.new(self.signing_secret.encode('utf-8'), message, hashlib.sha256).hexdigest()

    def create_signed_url(self, object_path: str, expires_in: int,
                          base_url: str = '') -> str:
        """
        Create a time-limited download URL for an object.

        Args:
            object_path: Object to expose
            expires_in: Lifetime of the URL in seconds
            base_url: Public base URL of the API (e.g. 'https://host')

        Returns:
            URL of the form ``{base_url}/api/storage/{path}?expires=..&signature=..``
        """
        if not self.exists(object_path):
            raise StorageError(f"Object not found: {object_path}")

        expires = int(time.time()) + int(expires_in)
        query = urlencode({
            'expires': expires,
            'signature': self._signature(object_path, expires)
        })

        return f"{base_url.rstrip('/')}/api/storage/{quote(object_path)}?{query}"

    def verify_signature(self, object_path: str, expires: int, signature: str) -> bool:
        """Check a signed URL's signature and expiry."""
        if int(expires) < int(time.time()):
            logger.debug(f"Signed URL for {object_path} expired")
            return False

        expected = self._signature(object_path, int(expires))
        return hmac.compare_digest(expected, signature or '')

    def cleanup_temp_files(self, temp_dir: str, older_than_hours: int = 24) -> int:
        """
        Clean up temporary files older than specified hours.

        Args:
            temp_dir: Temporary directory to clean
            older_than_hours: Remove files older than this many hours

        Returns:
            Number of files deleted
        """
        temp_path = Path(temp_dir)

        if not temp_path.exists():
            return 0

        cutoff_time = time.time() - (older_than_hours * 3600)
        deleted_count = 0

        for file_path in temp_path.glob("*"):
            if file_path.is_file() and file_path.stat().st_mtime < cutoff_time:
                try:
                    file_path.unlink()
                    deleted_count += 1
                    logger.debug(f"Cleaned up temp file: {file_path}")
                except OSError as e:
                    logger.error(f"Error deleting temp file {file_path}: {e}")

        if deleted_count > 0:
            logger.info(f"Cleaned up {deleted_count} temporary files")

        return deleted_count

"""
UploadCoordinator - Issues write credentials for new originals and records
confirmed uploads, enqueueing a thumbnail job for each.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from .errors import AlbumNotFoundError, InvalidKeyError, ValidationError
from .job_queue import JobQueue, ThumbnailJob
from .photo import Photo, UploadMetadata, album_original_prefix, build_original_key, is_original_key
from .photo_db import PhotoDb
from .s3_client import DEFAULT_PRESIGN_TTL, S3Client


ALLOWED_CONTENT_TYPES = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/webp': '.webp',
    'image/avif': '.avif',
}

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp', '.avif', '.gif', '.tif', '.tiff', '.bmp', '.heic'}

FALLBACK_EXTENSION = '.bin'

MAX_UPLOAD_BYTES = 20 * 1024 * 1024


@dataclass
class UploadTicket:
    """Where and how the client should PUT the original."""
    key: str
    upload_url: str

    def to_dict(self) -> dict:
        return {'key': self.key, 'upload_url': self.upload_url}


def choose_extension(file_name: Optional[str], content_type: Optional[str]) -> str:
    """
    Pick the original's extension: the file name's if it is a known image
    extension, else the content type's, else a generic binary one.
    """
    ext = os.path.splitext(file_name or '')[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return ext
    return ALLOWED_CONTENT_TYPES.get((content_type or '').lower(), FALLBACK_EXTENSION)


class UploadCoordinator:
    """
    Coordinates the two-step upload: presign, then confirm.

    Dependencies are injected so the web tier and tests can supply their
    own store, storage client and queue.
    """

    def __init__(
        self,
        photo_db: PhotoDb,
        s3_client: S3Client,
        job_queue: JobQueue,
        job_attempts: int = 3,
        job_backoff_ms: int = 10_000,
        presign_ttl: int = DEFAULT_PRESIGN_TTL,
        logger: Optional[logging.Logger] = None
    ):
        self.photo_db = photo_db
        self.s3 = s3_client
        self.queue = job_queue
        self.job_attempts = job_attempts
        self.job_backoff_ms = job_backoff_ms
        self.presign_ttl = presign_ttl
        self.logger = logger or logging.getLogger(__name__)

    def request_upload(
        self,
        album_id: str,
        file_name: str,
        content_type: str,
        size_bytes: int
    ) -> UploadTicket:
        """
        Issue a presigned PUT for a new original. Nothing is persisted.

        Raises:
            AlbumNotFoundError: Unknown album
            ValidationError: Disallowed content type or size
            PresignError: Storage misconfiguration
        """
        self._require_album(album_id)

        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(f"Content type not allowed: {content_type}")
        if not isinstance(size_bytes, int) or size_bytes <= 0 or size_bytes > MAX_UPLOAD_BYTES:
            raise ValidationError(
                f"size_bytes must be between 1 and {MAX_UPLOAD_BYTES}, got {size_bytes}"
            )

        key = build_original_key(album_id, choose_extension(file_name, content_type))
        url = self.s3.presign_upload(
            key,
            content_type,
            ttl=self.presign_ttl,
            content_disposition='inline'
        )
        self.logger.info(f"Issued upload credential for {key}")
        return UploadTicket(key=key, upload_url=url)

    def confirm_upload(
        self,
        album_id: str,
        key: str,
        metadata: Optional[UploadMetadata] = None
    ) -> Photo:
        """
        Record an uploaded original and enqueue its thumbnail job.

        Idempotent: confirming the same ``(album_id, key)`` again returns
        the existing record unchanged and re-enqueues its job.

        Raises:
            AlbumNotFoundError: Unknown album
            InvalidKeyError: ``key`` is outside the album's original namespace
        """
        self._require_album(album_id)
        if not is_original_key(key, album_id):
            raise InvalidKeyError(
                f"invalid_original_key: {key!r} is not under {album_original_prefix(album_id)}"
            )

        existing = self.photo_db.find_by_album_and_key(album_id, key)
        if existing is not None:
            self.logger.info(f"Upload {key} already confirmed as photo {existing.id}; re-enqueueing")
            self._enqueue(existing)
            return existing

        photo, created = self.photo_db.create_photo(album_id, key, metadata)
        if not created:
            self.logger.info(f"Concurrent confirm for {key} resolved to photo {photo.id}")
        self._enqueue(photo)
        return photo

    def requeue(self, photo_id: str) -> bool:
        """
        Re-enqueue the thumbnail job for an existing photo.

        Returns:
            False if the photo does not exist
        """
        photo = self.photo_db.get_photo(photo_id)
        if photo is None:
            self.logger.warning(f"Cannot requeue {photo_id}: photo not found")
            return False
        self._enqueue(photo)
        return True

    def _require_album(self, album_id: str) -> None:
        if not album_id or not self.photo_db.album_exists(album_id):
            raise AlbumNotFoundError(f"Album not found: {album_id}")

    def _enqueue(self, photo: Photo) -> None:
        job = ThumbnailJob(
            photo_id=photo.id,
            album_id=photo.album_id,
            key_original=photo.key_original,
        )
        self.queue.enqueue(
            job,
            attempts=self.job_attempts,
            backoff_ms=self.job_backoff_ms
        )

"""
Thumbnail worker - per-job processing state machine.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from .config import WorkerConfig
from .errors import (
    InvalidKeyError,
    PipelineError,
    StateConsistencyError,
    UnsupportedMediaError,
)
from .job_queue import ThumbnailJob
from .photo import PhotoStatus, derive_thumb_key, is_original_key
from .photo_db import PhotoDb
from .s3_client import S3Client
from .storage_retry import fetch_with_retry, store_with_retry
from .thumbnail_generator import ThumbnailGenerator


THUMB_CACHE_CONTROL = 'public, max-age=31536000, immutable'
THUMB_CONTENT_DISPOSITION = 'inline'


@dataclass
class ProcessResult:
    """
    Outcome of one job that did not raise.

    Attributes:
        status: 'processed' or 'skipped'
        reason: Why the job was skipped
        key_thumb: Derivative key (processed, or already present)
        width, height: Derivative dimensions when processed
    """
    status: str
    reason: Optional[str] = None
    key_thumb: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    @classmethod
    def skipped(cls, reason: str, key_thumb: Optional[str] = None) -> 'ProcessResult':
        return cls(status='skipped', reason=reason, key_thumb=key_thumb)

    @classmethod
    def processed(cls, key_thumb: str, width: Optional[int], height: Optional[int]) -> 'ProcessResult':
        return cls(status='processed', key_thumb=key_thumb, width=width, height=height)

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


class ThumbnailWorker:
    """
    Processes a single thumbnail job against the authoritative photo record.

    Each guard exits early so redelivered, duplicate and stale jobs are
    no-ops. Every failure is written to the photo record before it is
    raised, so the record reflects it even if the caller ignores the error.
    """

    def __init__(
        self,
        photo_db: PhotoDb,
        s3_client: S3Client,
        thumbnail_generator: ThumbnailGenerator,
        config: Optional[WorkerConfig] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.photo_db = photo_db
        self.s3 = s3_client
        self.thumb_gen = thumbnail_generator
        self.config = config or WorkerConfig()
        self.logger = logger or logging.getLogger(__name__)

    def process(self, job: ThumbnailJob) -> ProcessResult:
        current = self.photo_db.get_photo(job.photo_id)
        if current is None:
            return ProcessResult.skipped('not_found')

        if current.album_id != job.album_id:
            self.logger.critical(
                f"Integrity: job for photo {job.photo_id} names album {job.album_id} "
                f"but the record belongs to {current.album_id}"
            )
            raise self._record_failure(job, StateConsistencyError('album_mismatch'))

        if current.key_original != job.key_original:
            return ProcessResult.skipped('stale_job_key')

        if current.status == PhotoStatus.PROCESSED and current.key_thumb:
            return ProcessResult.skipped('already_processed', current.key_thumb)
        if current.key_thumb:
            return ProcessResult.skipped('already_has_thumb', current.key_thumb)

        if not is_original_key(job.key_original):
            raise self._record_failure(job, InvalidKeyError('invalid_original_key'))

        try:
            original = fetch_with_retry(
                self.s3,
                job.key_original,
                attempts=self.config.storage_attempts,
                timeout=self.config.storage_timeout,
                backoff_ms=self.config.storage_backoff_ms
            )
        except PipelineError as e:
            raise self._record_failure(job, e)
        if not original:
            raise self._record_failure(job, UnsupportedMediaError('empty_object'))

        try:
            derivative = self.thumb_gen.generate(original)
        except UnsupportedMediaError as e:
            raise self._record_failure(job, e)
        except Exception as e:
            raise self._record_failure(job, UnsupportedMediaError(f"transform_failed: {e}")) from e

        key_thumb = derive_thumb_key(job.key_original, derivative.extension)

        try:
            store_with_retry(
                self.s3,
                key_thumb,
                derivative.data,
                derivative.content_type,
                cache_control=THUMB_CACHE_CONTROL,
                content_disposition=THUMB_CONTENT_DISPOSITION,
                attempts=self.config.storage_attempts,
                timeout=self.config.storage_timeout,
                backoff_ms=self.config.storage_backoff_ms
            )
        except PipelineError as e:
            raise self._record_failure(job, e, prefix='putObject: ')

        width = derivative.width or current.width or derivative.source_width
        height = derivative.height or current.height or derivative.source_height

        if not self.photo_db.mark_processed(job.photo_id, job.key_original, key_thumb, width, height):
            self.logger.warning(
                f"Photo {job.photo_id} changed while processing; "
                f"uploaded {key_thumb} left unreferenced"
            )
            return ProcessResult.skipped('record_changed')

        self.logger.info(f"Processed photo {job.photo_id}: {key_thumb} ({width}x{height})")
        return ProcessResult.processed(key_thumb, width, height)

    def _record_failure(self, job: ThumbnailJob, error: PipelineError, prefix: str = '') -> PipelineError:
        """Persist ``error`` on the photo record and return it for raising."""
        message = f"{prefix}{error}"
        try:
            self.photo_db.mark_error(job.photo_id, message)
        except Exception as e:
            # The original error is the one the queue must see
            self.logger.error(f"Could not record error on photo {job.photo_id}: {e}")
        self.logger.error(f"Photo {job.photo_id} failed: {message}")
        return error


"""
Photo ingestion and thumbnail pipeline.

Two stages:
    1. Upload coordination: presign a PUT for the original, then record the
       confirmed upload and enqueue a thumbnail job
    2. Thumbnail worker: fetch the original, derive a normalized WebP
       thumbnail, upload it and reconcile the photo record

Storage is S3-compatible, jobs run as Celery tasks on a Redis broker and
photo records live in MySQL.
"""

__version__ = "1.0.0"

from .errors import (
    PipelineError,
    ValidationError,
    AlbumNotFoundError,
    InvalidKeyError,
    PresignError,
    StorageError,
    TransientStorageError,
    ObjectNotFoundError,
    UnknownStorageError,
    UnsupportedMediaError,
    StateConsistencyError,
)
from .s3_config import S3Config
from .config import DbConfig, QueueConfig, WorkerConfig
from .s3_client import S3Client
from .photo import Photo, PhotoStatus, UploadMetadata
from .photo_db import PhotoDb
from .job_queue import JobQueue, ThumbnailJob, FailedJob
from .thumbnail_generator import ThumbnailGenerator, Derivative
from .upload_coordinator import UploadCoordinator, UploadTicket
from .worker import ThumbnailWorker, ProcessResult

__all__ = [
    "PipelineError",
    "ValidationError",
    "AlbumNotFoundError",
    "InvalidKeyError",
    "PresignError",
    "StorageError",
    "TransientStorageError",
    "ObjectNotFoundError",
    "UnknownStorageError",
    "UnsupportedMediaError",
    "StateConsistencyError",
    "S3Config",
    "DbConfig",
    "QueueConfig",
    "WorkerConfig",
    "S3Client",
    "Photo",
    "PhotoStatus",
    "UploadMetadata",
    "PhotoDb",
    "JobQueue",
    "ThumbnailJob",
    "FailedJob",
    "ThumbnailGenerator",
    "Derivative",
    "UploadCoordinator",
    "UploadTicket",
    "ThumbnailWorker",
    "ProcessResult",
]

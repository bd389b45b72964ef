"""
Builders that turn environment configuration into live collaborators.
"""

import logging
from typing import List, Optional

import urllib3

from .config import DbConfig, QueueConfig, WorkerConfig
from .job_queue import JobQueue
from .photo_db import PhotoDb
from .s3_client import S3Client
from .s3_config import S3Config
from .thumbnail_generator import ThumbnailGenerator
from .worker import ThumbnailWorker


def check_config(errors: List[str], what: str, logger: logging.Logger) -> None:
    if errors:
        for error in errors:
            logger.error(error)
        raise ValueError(f"{what} configuration invalid")


def build_s3_client(logger: logging.Logger) -> S3Client:
    config = S3Config.from_env()
    check_config(config.validate(), 'S3', logger)
    if not config.verify_ssl:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    return S3Client(config, logger)


def build_job_queue(logger: logging.Logger, config: Optional[QueueConfig] = None) -> JobQueue:
    config = config or QueueConfig.from_env()
    check_config(config.validate(), 'Queue', logger)
    return JobQueue.from_url(
        config.redis_url,
        name=config.name,
        guard_ttl=config.guard_ttl,
        keep_failed=config.keep,
        logger=logger,
    )


def build_photo_db(logger: logging.Logger, min_pool_size: int = 0) -> PhotoDb:
    """
    Build the photo store.

    ``min_pool_size`` raises the connection pool to at least that many
    connections, so every worker thread can hold one at the same time.
    """
    config = DbConfig.from_env()
    if config.pool_size < min_pool_size:
        logger.info(f"Raising SQL_POOL_SIZE from {config.pool_size} to {min_pool_size} to match worker concurrency")
        config.pool_size = min_pool_size
    check_config(config.validate(), 'Database', logger)
    return PhotoDb(config, logger)


def build_thumbnail_worker(logger: logging.Logger, config: Optional[WorkerConfig] = None) -> ThumbnailWorker:
    config = config or WorkerConfig.from_env()
    check_config(config.validate(), 'Worker', logger)

    s3 = build_s3_client(logger)
    photo_db = build_photo_db(logger, min_pool_size=config.concurrency)

    ThumbnailGenerator.set_codec_concurrency(config.codec_concurrency)
    thumb_gen = ThumbnailGenerator(size=config.max_size, quality=config.quality, logger=logger)
    return ThumbnailWorker(photo_db, s3, thumb_gen, config=config, logger=logger)

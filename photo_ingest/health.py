"""
Reachability checks for the pipeline's collaborators.
"""

import time
from typing import Optional

import mysql.connector
import redis

from .errors import StorageError
from .job_queue import JobQueue
from .photo_db import PhotoDb
from .s3_client import S3Client


def check_storage(s3_client: S3Client) -> dict:
    started = time.monotonic()
    info = {'bucket': s3_client.config.bucket, 'region': s3_client.config.region}
    try:
        s3_client.head_bucket()
    except StorageError as e:
        return {'ok': False, **info, 'error': str(e)}
    return {'ok': True, **info, 'ping_ms': round((time.monotonic() - started) * 1000, 1)}


def check_queue(job_queue: JobQueue) -> dict:
    try:
        ping_ms = job_queue.ping()
        counts = job_queue.counts()
    except redis.RedisError as e:
        return {'ok': False, 'error': str(e)}
    return {'ok': True, 'ping_ms': round(ping_ms, 1), 'counts': counts}


def check_database(photo_db: PhotoDb) -> dict:
    started = time.monotonic()
    try:
        photo_db.ping()
    except mysql.connector.Error as e:
        return {'ok': False, 'error': str(e)}
    return {'ok': True, 'ping_ms': round((time.monotonic() - started) * 1000, 1)}


def health_report(
    s3_client: Optional[S3Client] = None,
    job_queue: Optional[JobQueue] = None,
    photo_db: Optional[PhotoDb] = None
) -> dict:
    """Run the checks for whichever collaborators are given."""
    report = {}
    if s3_client is not None:
        report['storage'] = check_storage(s3_client)
    if job_queue is not None:
        report['queue'] = check_queue(job_queue)
    if photo_db is not None:
        report['database'] = check_database(photo_db)
    report['ok'] = all(part['ok'] for part in report.values())
    return report

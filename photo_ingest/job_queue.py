"""
JobQueue - Producer side of the thumbnail queue.

Jobs are Celery tasks on the Redis broker. Next to the broker this module
keeps two small structures of its own (all keys under ``<prefix>:<name>:``):

    pending:<id>  string  set while a job for that id is queued or running
    failed        list    JSON records of the most recent exhausted jobs, capped

Job ids are deterministic (``photo-<photo_id>``) and double as Celery task
ids. The pending guard makes a second enqueue for the same photo collapse
onto the job already in flight; the task clears it when it finishes.
"""

import json
import logging
import time
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional

import redis
from celery import Celery


TASK_NAME = 'photo_ingest.generate_thumbnail'


def job_id_for(photo_id: str) -> str:
    """Deterministic queue identity for a photo's thumbnail job."""
    return f"photo-{photo_id}"


@dataclass
class ThumbnailJob:
    """Payload of a thumbnail job."""
    photo_id: str
    album_id: str
    key_original: str

    @property
    def job_id(self) -> str:
        return job_id_for(self.photo_id)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'ThumbnailJob':
        return cls(
            photo_id=data['photo_id'],
            album_id=data['album_id'],
            key_original=data['key_original'],
        )


@dataclass
class FailedJob:
    """
    A job that ran out of attempts.

    Attributes:
        id: Queue identity
        data: Payload
        attempts_made: Attempts run before giving up
        max_attempts: Attempts the job was allowed
        failed_reason: Message of the final failure
        finished_at: Epoch milliseconds of the final failure
    """
    id: str
    data: ThumbnailJob
    attempts_made: int
    max_attempts: int
    failed_reason: str
    finished_at: int

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> 'FailedJob':
        record = json.loads(raw)
        return cls(
            id=record['id'],
            data=ThumbnailJob.from_dict(record['data']),
            attempts_made=int(record['attempts_made']),
            max_attempts=int(record['max_attempts']),
            failed_reason=record['failed_reason'],
            finished_at=int(record['finished_at']),
        )


class JobQueue:
    """
    Enqueue thumbnail jobs and keep track of the ones that failed.

    The Redis client must be created with ``decode_responses=True`` and
    point at the same database as the Celery broker.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        app: Optional[Celery] = None,
        name: str = 'image',
        prefix: str = 'photo_ingest',
        guard_ttl: int = 3600,
        keep_failed: int = 1000,
        logger: Optional[logging.Logger] = None
    ):
        if app is None:
            from .celery_app import celery_app as app
        self._redis = redis_client
        self.app = app
        self.name = name
        self.prefix = prefix
        self.guard_ttl = guard_ttl
        self.keep_failed = keep_failed
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> 'JobQueue':
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, suffix: str) -> str:
        return f"{self.prefix}:{self.name}:{suffix}"

    def _guard_key(self, job_id: str) -> str:
        return self._key(f"pending:{job_id}")

    def enqueue(
        self,
        data: ThumbnailJob,
        attempts: int = 3,
        backoff_ms: int = 10_000
    ) -> bool:
        """
        Send a thumbnail task unless one for the same photo is pending.

        Returns:
            True if a new task was sent, False if it collapsed onto a
            pending one
        """
        job_id = data.job_id
        guard = self._guard_key(job_id)
        if not self._redis.set(guard, int(time.time() * 1000), nx=True, ex=self.guard_ttl):
            self.logger.debug(f"Job {job_id} already pending; enqueue collapsed")
            return False

        try:
            self.app.send_task(
                TASK_NAME,
                kwargs={
                    **data.to_dict(),
                    'attempts': max(1, attempts),
                    'backoff_ms': max(0, backoff_ms),
                },
                task_id=job_id,
                queue=self.name,
            )
        except Exception:
            self._redis.delete(guard)
            raise

        self.logger.info(f"Enqueued job {job_id} ({data.key_original})")
        return True

    def is_pending(self, job_id: str) -> bool:
        return bool(self._redis.exists(self._guard_key(job_id)))

    def release(self, job_id: str) -> None:
        """
        Drop the pending guard so the photo can be enqueued again.

        Redis errors are logged, not raised: a guard left behind expires
        after ``guard_ttl`` seconds.
        """
        try:
            self._redis.delete(self._guard_key(job_id))
        except redis.RedisError as e:
            self.logger.warning(f"Could not release job {job_id}: {e}")

    def record_failure(
        self,
        data: ThumbnailJob,
        error: BaseException,
        attempts_made: int,
        max_attempts: int
    ) -> None:
        """Add an exhausted job to the failed list and release its guard."""
        record = FailedJob(
            id=data.job_id,
            data=data,
            attempts_made=attempts_made,
            max_attempts=max_attempts,
            failed_reason=str(error)[:1000],
            finished_at=int(time.time() * 1000),
        )
        failed_key = self._key('failed')
        try:
            pipe = self._redis.pipeline()
            pipe.lpush(failed_key, record.to_json())
            pipe.ltrim(failed_key, 0, max(0, self.keep_failed - 1))
            pipe.execute()
        except redis.RedisError as e:
            self.logger.warning(f"Could not record failure of job {record.id}: {e}")
        self.logger.error(f"Job {record.id} failed after {attempts_made} attempt(s): {record.failed_reason}")
        self.release(record.id)

    def failed_jobs(self, limit: int = 50) -> List[FailedJob]:
        """Most recently failed jobs, newest first."""
        raw = self._redis.lrange(self._key('failed'), 0, max(0, limit - 1))
        return [FailedJob.from_json(item) for item in raw]

    def counts(self) -> Dict[str, int]:
        pipe = self._redis.pipeline()
        # The Redis transport keeps ready messages in a list named after the queue
        pipe.llen(self.name)
        pipe.llen(self._key('failed'))
        waiting, failed = pipe.execute()
        return {'waiting': waiting, 'failed': failed}

    def ping(self) -> float:
        """Round-trip to Redis; returns latency in milliseconds."""
        started = time.monotonic()
        self._redis.ping()
        return (time.monotonic() - started) * 1000

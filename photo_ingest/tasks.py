"""
Celery task that runs a ThumbnailWorker for each queued job.
"""

import logging
import threading
from typing import Optional

from celery import Task

from .bootstrap import build_job_queue, build_thumbnail_worker
from .celery_app import celery_app
from .errors import PipelineError
from .job_queue import TASK_NAME, JobQueue, ThumbnailJob
from .worker import ThumbnailWorker

logger = logging.getLogger(__name__)


def retry_countdown(retries: int, backoff_ms: int) -> float:
    """Seconds before retry number ``retries + 1``: backoff, 2 * backoff, ..."""
    return backoff_ms * 2 ** retries / 1000


class ThumbnailTask(Task):
    """
    Base task holding the worker and queue the job runs against.

    ``configure()`` installs them up front (the ``worker`` command does);
    otherwise they are built from the environment on first use.
    """

    _worker: Optional[ThumbnailWorker] = None
    _job_queue: Optional[JobQueue] = None
    _context_lock = threading.Lock()

    @staticmethod
    def configure(worker: ThumbnailWorker, job_queue: JobQueue) -> None:
        with ThumbnailTask._context_lock:
            ThumbnailTask._worker = worker
            ThumbnailTask._job_queue = job_queue

    @staticmethod
    def reset() -> None:
        with ThumbnailTask._context_lock:
            ThumbnailTask._worker = None
            ThumbnailTask._job_queue = None

    def _ensure_context(self) -> None:
        with ThumbnailTask._context_lock:
            if ThumbnailTask._worker is None:
                ThumbnailTask._worker = build_thumbnail_worker(logging.getLogger('photo_ingest'))
            if ThumbnailTask._job_queue is None:
                ThumbnailTask._job_queue = build_job_queue(logging.getLogger('photo_ingest'))

    @property
    def worker(self) -> ThumbnailWorker:
        if ThumbnailTask._worker is None:
            self._ensure_context()
        return ThumbnailTask._worker

    @property
    def job_queue(self) -> JobQueue:
        if ThumbnailTask._job_queue is None:
            self._ensure_context()
        return ThumbnailTask._job_queue

    def on_success(self, retval, task_id, args, kwargs):
        self.job_queue.release(task_id)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(f"Job {task_id} retrying (attempt {self.request.retries + 1}): {exc}")

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Runs once a job is out of attempts or failed for good."""
        self.job_queue.record_failure(
            ThumbnailJob.from_dict(kwargs),
            exc,
            attempts_made=self.request.retries + 1,
            max_attempts=kwargs.get('attempts', 3),
        )


def run_job(task: Task, worker: ThumbnailWorker, job: ThumbnailJob, attempts: int, backoff_ms: int) -> dict:
    """
    Process one job, turning retryable failures into Celery retries.

    Errors whose ``retryable`` flag is unset propagate straight to
    ``on_failure``. Anything else is retried until ``attempts`` runs out.
    """
    try:
        result = worker.process(job)
    except PipelineError as e:
        if not e.retryable:
            raise
        raise task.retry(
            exc=e,
            countdown=retry_countdown(task.request.retries, backoff_ms),
            max_retries=attempts - 1,
        )
    except Exception as e:
        logger.exception(f"Job {job.job_id} crashed: {e}")
        raise task.retry(
            exc=e,
            countdown=retry_countdown(task.request.retries, backoff_ms),
            max_retries=attempts - 1,
        )

    logger.info(f"Job {job.job_id} completed: {result.status}"
                + (f" ({result.reason})" if result.reason else ""))
    return result.to_dict()


@celery_app.task(base=ThumbnailTask, bind=True, name=TASK_NAME)
def generate_thumbnail(
    self,
    photo_id: str,
    album_id: str,
    key_original: str,
    attempts: int = 3,
    backoff_ms: int = 10_000
) -> dict:
    job = ThumbnailJob(photo_id=photo_id, album_id=album_id, key_original=key_original)
    return run_job(self, self.worker, job, max(1, attempts), backoff_ms)

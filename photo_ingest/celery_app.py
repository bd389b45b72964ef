"""
Celery configuration for the thumbnail queue.
"""

from typing import Optional

from celery import Celery

from .config import QueueConfig, WorkerConfig


def visibility_timeout(config: QueueConfig) -> float:
    """
    Seconds an unacknowledged task may stay with a worker before the broker
    redelivers it.

    Retries wait on the worker until their countdown elapses, so the window
    covers the longest retry delay on top of the job lock.
    """
    longest_retry_ms = config.backoff_ms * 2 ** max(0, config.attempts - 2)
    return (config.lock_ms + longest_retry_ms) / 1000


def configure_celery_app(
    app: Celery,
    queue_config: Optional[QueueConfig] = None,
    worker_config: Optional[WorkerConfig] = None
) -> Celery:
    """Apply queue and worker settings to ``app``."""
    queue_config = queue_config or QueueConfig.from_env()
    worker_config = worker_config or WorkerConfig.from_env()

    app.conf.update(
        # Broker settings (Redis)
        broker_url=queue_config.redis_url or 'redis://localhost:6379/0',
        broker_transport_options={'visibility_timeout': visibility_timeout(queue_config)},
        broker_connection_retry_on_startup=True,

        # Task settings
        task_serializer='json',
        accept_content=['json'],
        timezone='UTC',
        enable_utc=True,
        task_default_queue=queue_config.name,
        task_ignore_result=True,

        # Redelivery of jobs whose worker died mid-task
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        # Worker settings
        worker_pool='threads',
        worker_concurrency=worker_config.concurrency,
        worker_prefetch_multiplier=1,
        worker_hijack_root_logger=False,
    )
    return app


def create_celery_app(
    queue_config: Optional[QueueConfig] = None,
    worker_config: Optional[WorkerConfig] = None
) -> Celery:
    app = Celery('photo_ingest', include=['photo_ingest.tasks'])
    return configure_celery_app(app, queue_config, worker_config)


celery_app = create_celery_app()

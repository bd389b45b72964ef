"""
Command Line Interface for the thumbnail pipeline.
"""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from .bootstrap import (
    build_job_queue,
    build_photo_db,
    build_s3_client,
    build_thumbnail_worker,
)
from .celery_app import celery_app, configure_celery_app
from .config import QueueConfig, WorkerConfig
from .health import health_report
from .upload_coordinator import UploadCoordinator


def setup_logging(verbose: bool) -> logging.Logger:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.getLevelName(os.getenv('LOG_LEVEL', 'INFO').upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)

    return logging.getLogger('photo_ingest')


def get_worker_config(args: argparse.Namespace) -> WorkerConfig:
    """Get worker configuration from environment and CLI overrides."""
    config = WorkerConfig.from_env()

    if getattr(args, 'concurrency', None):
        config.concurrency = args.concurrency
    if getattr(args, 'codec_concurrency', None):
        config.codec_concurrency = args.codec_concurrency
    if getattr(args, 'size', None):
        config.max_size = args.size
    if getattr(args, 'quality', None):
        config.quality = args.quality

    # Re-apply clamping after overrides
    config.__post_init__()
    return config


def cmd_worker(args: argparse.Namespace) -> int:
    """Run a Celery worker that consumes thumbnail jobs until shut down."""
    logger = setup_logging(args.verbose)
    config = get_worker_config(args)
    queue_config = QueueConfig.from_env()

    try:
        worker = build_thumbnail_worker(logger, config)
        queue = build_job_queue(logger, queue_config)
    except ValueError:
        return 1

    from .tasks import ThumbnailTask
    ThumbnailTask.configure(worker, queue)
    configure_celery_app(celery_app, queue_config, config)

    logger.info(
        f"Thumbnail worker starting: concurrency={config.concurrency}, "
        f"codec_concurrency={config.codec_concurrency}, max_size={config.max_size}"
    )
    celery_app.worker_main([
        'worker',
        f'--concurrency={config.concurrency}',
        '--pool=threads',
        f'--queues={queue_config.name}',
        f'--loglevel={"DEBUG" if args.verbose else "INFO"}',
    ])
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    """Check storage, queue and database."""
    logger = setup_logging(args.verbose)
    try:
        s3 = build_s3_client(logger)
        queue = build_job_queue(logger)
        photo_db = build_photo_db(logger)
    except ValueError:
        return 1

    report = health_report(s3, queue, photo_db)
    print(json.dumps(report, indent=2))
    return 0 if report['ok'] else 1


def cmd_init_db(args: argparse.Namespace) -> int:
    """Create the photos table."""
    logger = setup_logging(args.verbose)
    try:
        photo_db = build_photo_db(logger)
    except ValueError:
        return 1

    photo_db.create_tables()
    logger.info("Database initialized")
    return 0


def cmd_failed(args: argparse.Namespace) -> int:
    """List the most recently failed jobs."""
    logger = setup_logging(args.verbose)
    try:
        queue = build_job_queue(logger)
    except ValueError:
        return 1

    jobs = queue.failed_jobs(limit=args.limit)
    if not jobs:
        print("No failed jobs.")
        return 0

    for job in jobs:
        print(
            f"{job.id}  attempts={job.attempts_made}/{job.max_attempts}  "
            f"key={job.data.key_original}  reason={job.failed_reason}"
        )
    return 0


def cmd_requeue(args: argparse.Namespace) -> int:
    """Re-enqueue thumbnail jobs for existing photos."""
    logger = setup_logging(args.verbose)
    queue_config = QueueConfig.from_env()
    try:
        s3 = build_s3_client(logger)
        queue = build_job_queue(logger, queue_config)
        photo_db = build_photo_db(logger)
    except ValueError:
        return 1

    coordinator = UploadCoordinator(
        photo_db,
        s3,
        queue,
        job_attempts=queue_config.attempts,
        job_backoff_ms=queue_config.backoff_ms,
        logger=logger,
    )
    missing = [photo_id for photo_id in args.photo_id if not coordinator.requeue(photo_id)]
    for photo_id in missing:
        logger.error(f"Photo not found: {photo_id}")
    return 1 if missing else 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog='photo-ingest',
        description='Asynchronous photo ingestion and thumbnail pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  S3_ENDPOINT, S3_PUBLIC_ENDPOINT, S3_BUCKET, S3_ACCESS_KEY, S3_SECRET_KEY, S3_REGION
  SQL_HOST, SQL_PORT, SQL_USER, SQL_PASSWORD, SQL_DATABASE, SQL_POOL_SIZE
  REDIS_URL, QUEUE_NAME, JOB_ATTEMPTS, JOB_BACKOFF_MS, JOB_KEEP, JOB_LOCK_MS, JOB_GUARD_TTL
  WORKER_CONCURRENCY, CODEC_CONCURRENCY, THUMB_MAX_SIZE, THUMB_QUALITY

Examples:
  photo-ingest init-db
  photo-ingest worker --concurrency 4
  photo-ingest failed --limit 20
  photo-ingest requeue 6f1c0c9e-0d7e-4c4e-9b1e-5f2f0e6d9a11
"""
    )

    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    worker_parser = subparsers.add_parser('worker', help='Run a thumbnail worker')
    worker_parser.add_argument('-c', '--concurrency', type=int, help='Worker threads (default: WORKER_CONCURRENCY or 4)')
    worker_parser.add_argument('--codec-concurrency', type=int, help='Images decoded at once (default: 2)')
    worker_parser.add_argument('-s', '--size', type=int, help='Maximum thumbnail dimension (default: 960)')
    worker_parser.add_argument('-q', '--quality', type=int, help='WebP quality (default: 82)')
    worker_parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    health_parser = subparsers.add_parser('health', help='Check storage, queue and database')
    health_parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    init_parser = subparsers.add_parser('init-db', help='Create the photos table')
    init_parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    failed_parser = subparsers.add_parser('failed', help='List recently failed jobs')
    failed_parser.add_argument('-n', '--limit', type=int, default=50, help='Number of jobs to show')
    failed_parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    requeue_parser = subparsers.add_parser('requeue', help='Re-enqueue thumbnail jobs for photos')
    requeue_parser.add_argument('photo_id', nargs='+', help='Photo id(s)')
    requeue_parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    commands = {
        'worker': cmd_worker,
        'health': cmd_health,
        'init-db': cmd_init_db,
        'failed': cmd_failed,
        'requeue': cmd_requeue,
    }
    return commands[parsed_args.command](parsed_args)


if __name__ == '__main__':
    sys.exit(main())

"""Tests for CLI module."""

import json

import pytest
from unittest.mock import MagicMock

from photo_ingest.cli import cmd_failed, cmd_health, cmd_requeue, cmd_worker, create_parser, get_worker_config, main
from photo_ingest.errors import UnsupportedMediaError
from photo_ingest.job_queue import ThumbnailJob


class TestCreateParser:
    """Tests for argument parser creation."""

    def test_parser_created(self):
        """Test parser is created successfully."""
        parser = create_parser()
        assert parser is not None

    def test_worker_command(self):
        """Test worker command parsing."""
        parser = create_parser()
        args = parser.parse_args(['worker', '-c', '8', '--codec-concurrency', '3', '--size', '512'])

        assert args.command == 'worker'
        assert args.concurrency == 8
        assert args.codec_concurrency == 3
        assert args.size == 512

    def test_failed_command(self):
        parser = create_parser()
        args = parser.parse_args(['failed', '-n', '5'])

        assert args.command == 'failed'
        assert args.limit == 5

    def test_requeue_command(self):
        parser = create_parser()
        args = parser.parse_args(['requeue', 'a', 'b'])

        assert args.photo_id == ['a', 'b']

    def test_requeue_requires_id(self):
        parser = create_parser()

        with pytest.raises(SystemExit):
            parser.parse_args(['requeue'])


class TestMain:
    """Tests for main entry point."""

    def test_no_command(self):
        """Test running without command shows help."""
        result = main([])
        assert result == 1


class TestGetWorkerConfig:
    """Tests for worker configuration overrides."""

    def test_overrides_are_clamped(self, monkeypatch):
        monkeypatch.delenv('WORKER_CONCURRENCY', raising=False)
        args = create_parser().parse_args(['worker', '-c', '500', '-q', '70'])

        config = get_worker_config(args)

        assert config.concurrency == 32
        assert config.quality == 70
        assert config.max_size == 960


class TestCommands:
    """Tests for commands with patched collaborators."""

    def test_health_with_missing_config(self, monkeypatch):
        """Test health fails cleanly when storage is not configured."""
        monkeypatch.delenv('S3_ENDPOINT', raising=False)
        args = create_parser().parse_args(['health'])

        assert cmd_health(args) == 1

    def test_health_ok(self, mocker, job_queue, s3_config, capsys):
        s3 = MagicMock()
        s3.config = s3_config
        mocker.patch('photo_ingest.cli.build_s3_client', return_value=s3)
        mocker.patch('photo_ingest.cli.build_job_queue', return_value=job_queue)
        mocker.patch('photo_ingest.cli.build_photo_db', return_value=MagicMock())
        args = create_parser().parse_args(['health'])

        assert cmd_health(args) == 0
        report = json.loads(capsys.readouterr().out)
        assert report['ok'] is True

    def test_failed_empty(self, mocker, job_queue, capsys):
        mocker.patch('photo_ingest.cli.build_job_queue', return_value=job_queue)
        args = create_parser().parse_args(['failed'])

        assert cmd_failed(args) == 0
        assert 'No failed jobs.' in capsys.readouterr().out

    def test_failed_lists_jobs(self, mocker, job_queue, capsys):
        """Test failed jobs are printed with their reason."""
        job_queue.record_failure(
            ThumbnailJob(photo_id='p1', album_id='alb_123', key_original='albums/alb_123/original/p1.jpg'),
            UnsupportedMediaError('animated_gif_not_supported'),
            attempts_made=1,
            max_attempts=3,
        )
        mocker.patch('photo_ingest.cli.build_job_queue', return_value=job_queue)
        args = create_parser().parse_args(['failed'])

        assert cmd_failed(args) == 0
        out = capsys.readouterr().out
        assert 'photo-p1' in out
        assert 'animated_gif_not_supported' in out
        assert 'attempts=1/3' in out

    def test_requeue(self, mocker, job_queue, photo_db, storage, pending_photo):
        """Test requeue enqueues known photos and reports unknown ones."""
        mocker.patch('photo_ingest.cli.build_s3_client', return_value=storage)
        mocker.patch('photo_ingest.cli.build_job_queue', return_value=job_queue)
        mocker.patch('photo_ingest.cli.build_photo_db', return_value=photo_db)

        assert cmd_requeue(create_parser().parse_args(['requeue', pending_photo.id])) == 0
        assert job_queue.is_pending(f'photo-{pending_photo.id}')

        assert cmd_requeue(create_parser().parse_args(['requeue', 'nope'])) == 1

    def test_worker_starts_celery(self, mocker, job_queue, monkeypatch):
        """Test the worker command configures the task and hands off to Celery."""
        from photo_ingest.tasks import ThumbnailTask

        monkeypatch.delenv('QUEUE_NAME', raising=False)
        worker = MagicMock()
        build_worker = mocker.patch('photo_ingest.cli.build_thumbnail_worker', return_value=worker)
        mocker.patch('photo_ingest.cli.build_job_queue', return_value=job_queue)
        mocker.patch('photo_ingest.cli.configure_celery_app')
        app = mocker.patch('photo_ingest.cli.celery_app')
        try:
            assert cmd_worker(create_parser().parse_args(['worker', '-c', '6'])) == 0

            assert ThumbnailTask._worker is worker
            assert ThumbnailTask._job_queue is job_queue
        finally:
            ThumbnailTask.reset()

        assert build_worker.call_args.args[1].concurrency == 6
        argv = app.worker_main.call_args.args[0]
        assert argv[0] == 'worker'
        assert '--concurrency=6' in argv
        assert '--queues=image' in argv

    def test_worker_with_missing_config(self, mocker):
        mocker.patch('photo_ingest.cli.build_thumbnail_worker', side_effect=ValueError('bad'))
        app = mocker.patch('photo_ingest.cli.celery_app')

        assert cmd_worker(create_parser().parse_args(['worker'])) == 1
        app.worker_main.assert_not_called()

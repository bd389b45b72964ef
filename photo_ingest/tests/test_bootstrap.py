"""Tests for building collaborators from the environment."""

import pytest

from photo_ingest.bootstrap import build_job_queue, build_photo_db, build_thumbnail_worker
from photo_ingest.config import DbConfig, QueueConfig, WorkerConfig


@pytest.fixture
def db_env(monkeypatch):
    monkeypatch.setenv('SQL_HOST', 'db')
    monkeypatch.setenv('SQL_USER', 'photos')
    monkeypatch.setenv('SQL_PASSWORD', 'secret')
    monkeypatch.setenv('SQL_DATABASE', 'photos')
    monkeypatch.delenv('SQL_POOL_SIZE', raising=False)


class TestBuildPhotoDb:
    """Tests for connection pool sizing."""

    def test_default_pool_size(self, db_env, logger):
        assert build_photo_db(logger).config.pool_size == 8

    def test_pool_grows_to_worker_concurrency(self, db_env, logger):
        """Test every worker thread can hold a connection at once."""
        assert build_photo_db(logger, min_pool_size=32).config.pool_size == 32

    def test_larger_pool_is_kept(self, db_env, monkeypatch, logger):
        monkeypatch.setenv('SQL_POOL_SIZE', '16')

        assert build_photo_db(logger, min_pool_size=4).config.pool_size == 16

    def test_oversized_pool_rejected(self, db_env, monkeypatch, logger):
        monkeypatch.setenv('SQL_POOL_SIZE', '64')

        with pytest.raises(ValueError):
            build_photo_db(logger)

    def test_pool_bounds(self):
        assert DbConfig(host='db', database='photos', pool_size=32).validate() == []
        assert DbConfig(host='db', database='photos', pool_size=33).validate() == [
            "SQL_POOL_SIZE must be within 1..32, got 33"
        ]


class TestBuildThumbnailWorker:
    """Tests for assembling a worker."""

    def test_pool_matches_concurrency(self, db_env, mocker, logger):
        mocker.patch('photo_ingest.bootstrap.build_s3_client')
        try:
            worker = build_thumbnail_worker(logger, WorkerConfig(concurrency=24, codec_concurrency=3))
        finally:
            from photo_ingest.thumbnail_generator import ThumbnailGenerator
            ThumbnailGenerator.set_codec_concurrency(2)

        assert worker.photo_db.config.pool_size == 24
        assert worker.config.concurrency == 24

    def test_invalid_worker_config(self, db_env, logger):
        with pytest.raises(ValueError):
            build_thumbnail_worker(logger, WorkerConfig(quality=500))


class TestBuildJobQueue:
    """Tests for the queue builder."""

    def test_uses_queue_config(self, logger):
        queue = build_job_queue(logger, QueueConfig(redis_url='redis://localhost:6379/0', name='thumbs', keep=10, guard_ttl=60))

        assert queue.name == 'thumbs'
        assert queue.keep_failed == 10
        assert queue.guard_ttl == 60

    def test_missing_redis_url(self, logger):
        with pytest.raises(ValueError):
            build_job_queue(logger, QueueConfig(redis_url=None))

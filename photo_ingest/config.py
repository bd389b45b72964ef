"""
Runtime configuration for the record store, job queue and worker pool.

Values come from environment variables; the CLI overrides individual
fields from its flags.
"""

import os
from dataclasses import dataclass
from typing import List, Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    return int(value)


# mysql-connector caps a pool at 32 connections
MAX_POOL_SIZE = 32


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


@dataclass
class DbConfig:
    """MySQL connection settings for the photo record store."""
    host: Optional[str]
    port: int = 3306
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    pool_size: int = 8

    @classmethod
    def from_env(cls) -> 'DbConfig':
        return cls(
            host=os.getenv('SQL_HOST'),
            port=_env_int('SQL_PORT', 3306),
            user=os.getenv('SQL_USER'),
            password=os.getenv('SQL_PASSWORD'),
            database=os.getenv('SQL_DATABASE'),
            pool_size=_env_int('SQL_POOL_SIZE', 8),
        )

    def validate(self) -> List[str]:
        errors = []
        if not self.host:
            errors.append("SQL_HOST is not set")
        if not self.user:
            errors.append("SQL_USER is not set")
        if not self.database:
            errors.append("SQL_DATABASE is not set")
        if not 1 <= self.pool_size <= MAX_POOL_SIZE:
            errors.append(f"SQL_POOL_SIZE must be within 1..{MAX_POOL_SIZE}, got {self.pool_size}")
        return errors


@dataclass
class QueueConfig:
    """
    Job queue settings.

    Attributes:
        redis_url: Redis connection URL
        name: Queue name (namespaces all Redis keys)
        attempts: Delivery attempts per job before it is marked failed
        backoff_ms: Base delay for exponential retry backoff
        keep: Number of failed job records retained
        lock_ms: How long a delivered job may stay unacknowledged before
            the broker redelivers it
        guard_ttl: Seconds a pending-job guard lives; bounds how long a
            lost job can keep absorbing duplicate enqueues
    """
    redis_url: Optional[str]
    name: str = 'image'
    attempts: int = 3
    backoff_ms: int = 10_000
    keep: int = 1000
    lock_ms: int = 120_000
    guard_ttl: int = 3600

    @classmethod
    def from_env(cls) -> 'QueueConfig':
        return cls(
            redis_url=os.getenv('REDIS_URL'),
            name=os.getenv('QUEUE_NAME') or 'image',
            attempts=_env_int('JOB_ATTEMPTS', 3),
            backoff_ms=_env_int('JOB_BACKOFF_MS', 10_000),
            keep=_env_int('JOB_KEEP', 1000),
            lock_ms=_env_int('JOB_LOCK_MS', 120_000),
            guard_ttl=_env_int('JOB_GUARD_TTL', 3600),
        )

    def validate(self) -> List[str]:
        errors = []
        if not self.redis_url:
            errors.append("REDIS_URL is not set")
        if self.attempts < 1:
            errors.append(f"JOB_ATTEMPTS must be at least 1, got {self.attempts}")
        if self.backoff_ms < 0:
            errors.append(f"JOB_BACKOFF_MS must not be negative, got {self.backoff_ms}")
        if self.guard_ttl < 1:
            errors.append(f"JOB_GUARD_TTL must be positive, got {self.guard_ttl}")
        return errors


@dataclass
class WorkerConfig:
    """Thumbnail worker tuning."""
    concurrency: int = 4
    codec_concurrency: int = 2
    max_size: int = 960
    quality: int = 82
    storage_timeout: float = 15.0
    storage_attempts: int = 3
    storage_backoff_ms: int = 250

    def __post_init__(self):
        self.concurrency = _clamp(self.concurrency, 1, 32)
        self.codec_concurrency = _clamp(self.codec_concurrency, 1, 32)

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        return cls(
            concurrency=_env_int('WORKER_CONCURRENCY', 4),
            codec_concurrency=_env_int('CODEC_CONCURRENCY', 2),
            max_size=_env_int('THUMB_MAX_SIZE', 960),
            quality=_env_int('THUMB_QUALITY', 82),
            storage_timeout=float(os.getenv('STORAGE_TIMEOUT') or 15.0),
            storage_attempts=_env_int('STORAGE_ATTEMPTS', 3),
            storage_backoff_ms=_env_int('STORAGE_BACKOFF_MS', 250),
        )

    def validate(self) -> List[str]:
        errors = []
        if self.max_size < 1:
            errors.append(f"THUMB_MAX_SIZE must be positive, got {self.max_size}")
        if not 1 <= self.quality <= 100:
            errors.append(f"THUMB_QUALITY must be within 1..100, got {self.quality}")
        if self.storage_attempts < 1:
            errors.append(f"STORAGE_ATTEMPTS must be at least 1, got {self.storage_attempts}")
        return errors

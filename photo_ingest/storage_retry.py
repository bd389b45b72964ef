"""
Bounded retry for storage reads and writes.

Linear backoff (``backoff_ms * attempt``) on retryable storage errors only;
ObjectNotFoundError and other non-retryable errors propagate immediately.
"""

import logging
from typing import Callable, Optional, TypeVar

from retrying import Retrying

from .errors import PipelineError
from .s3_client import DEFAULT_TIMEOUT, S3Client

T = TypeVar('T')

logger = logging.getLogger(__name__)


def is_retryable(exc: BaseException) -> bool:
    """True for errors the storage retry policy may try again."""
    return isinstance(exc, PipelineError) and exc.retryable


def call_with_retry(
    func: Callable[..., T],
    *args,
    attempts: int = 3,
    backoff_ms: int = 250,
    **kwargs
) -> T:
    """
    Call ``func`` up to ``attempts`` times.

    The wait before attempt n+1 is ``backoff_ms * n`` milliseconds. The last
    error is re-raised unchanged once attempts are exhausted.
    """
    def _retry_on(exc: BaseException) -> bool:
        if is_retryable(exc):
            logger.warning(f"Retrying {getattr(func, '__name__', func)} after: {exc}")
            return True
        return False

    retryer = Retrying(
        stop_max_attempt_number=max(1, attempts),
        wait_incrementing_start=backoff_ms,
        wait_incrementing_increment=backoff_ms,
        retry_on_exception=_retry_on,
        wrap_exception=False,
    )
    return retryer.call(func, *args, **kwargs)


def fetch_with_retry(
    client: S3Client,
    key: str,
    attempts: int = 3,
    timeout: float = DEFAULT_TIMEOUT,
    backoff_ms: int = 250
) -> bytes:
    """Download ``key`` with bounded retry."""
    return call_with_retry(
        client.fetch, key,
        attempts=attempts, backoff_ms=backoff_ms, timeout=timeout
    )


def store_with_retry(
    client: S3Client,
    key: str,
    data: bytes,
    content_type: str,
    cache_control: Optional[str] = None,
    content_disposition: Optional[str] = None,
    attempts: int = 3,
    timeout: float = DEFAULT_TIMEOUT,
    backoff_ms: int = 250
) -> None:
    """Upload ``data`` to ``key`` with bounded retry."""
    call_with_retry(
        client.store, key, data, content_type,
        attempts=attempts, backoff_ms=backoff_ms,
        cache_control=cache_control,
        content_disposition=content_disposition,
        timeout=timeout
    )

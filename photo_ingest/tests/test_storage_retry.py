"""Tests for bounded storage retry."""

import pytest
from unittest.mock import MagicMock

from photo_ingest.errors import (
    ObjectNotFoundError,
    TransientStorageError,
    UnknownStorageError,
)
from photo_ingest.storage_retry import call_with_retry, fetch_with_retry, is_retryable, store_with_retry


def transient(key='k'):
    return TransientStorageError(f"RequestTimeout: slow (getObject {key})", 'getObject', key, 'RequestTimeout')


class TestIsRetryable:
    """Tests for the retry predicate."""

    def test_transient(self):
        assert is_retryable(transient()) is True

    def test_unknown(self):
        assert is_retryable(UnknownStorageError('x')) is True

    def test_not_found(self):
        assert is_retryable(ObjectNotFoundError('x')) is False

    def test_foreign_exception(self):
        assert is_retryable(ValueError('x')) is False


class TestCallWithRetry:
    """Tests for call_with_retry."""

    def test_succeeds_after_transient_failures(self):
        """Test two transient failures then success returns the value."""
        func = MagicMock(side_effect=[transient(), transient(), b'ok'])

        assert call_with_retry(func, 'k', attempts=3, backoff_ms=0) == b'ok'
        assert func.call_count == 3

    def test_exhausted_reraises_last_error(self):
        """Test the final error is raised unchanged."""
        last = transient('last')
        func = MagicMock(side_effect=[transient(), transient(), last])

        with pytest.raises(TransientStorageError) as excinfo:
            call_with_retry(func, attempts=3, backoff_ms=0)

        assert excinfo.value is last
        assert func.call_count == 3

    def test_not_found_is_not_retried(self):
        """Test non-retryable errors propagate after one call."""
        func = MagicMock(side_effect=ObjectNotFoundError('gone'))

        with pytest.raises(ObjectNotFoundError):
            call_with_retry(func, attempts=3, backoff_ms=0)

        assert func.call_count == 1

    def test_foreign_exception_is_not_retried(self):
        """Test exceptions outside the taxonomy propagate immediately."""
        func = MagicMock(side_effect=KeyError('x'))

        with pytest.raises(KeyError):
            call_with_retry(func, attempts=3, backoff_ms=0)

        assert func.call_count == 1

    def test_passes_arguments(self):
        """Test positional and keyword arguments reach the callee."""
        func = MagicMock(return_value=None)

        call_with_retry(func, 'a', 'b', attempts=2, backoff_ms=0, flag=True)

        func.assert_called_once_with('a', 'b', flag=True)


class TestStorageHelpers:
    """Tests for fetch_with_retry and store_with_retry."""

    def test_fetch_with_retry(self, storage):
        """Test fetch retries a transient failure and passes the timeout."""
        storage.objects['k'] = {'data': b'bytes'}
        storage.fetch_errors.append(transient())

        assert fetch_with_retry(storage, 'k', attempts=3, timeout=2.0, backoff_ms=0) == b'bytes'
        assert storage.calls == [('fetch', 'k'), ('fetch', 'k')]

    def test_store_with_retry(self, storage):
        """Test store retries and sends headers."""
        storage.store_errors.append(transient())

        store_with_retry(
            storage, 'thumb.webp', b'data', 'image/webp',
            cache_control='public', content_disposition='inline',
            attempts=2, backoff_ms=0
        )

        assert storage.objects['thumb.webp']['content_type'] == 'image/webp'
        assert storage.objects['thumb.webp']['cache_control'] == 'public'
        assert len(storage.calls) == 2

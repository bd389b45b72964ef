"""
Error taxonomy for the ingestion pipeline.

Every error carries a ``retryable`` flag. Storage callers and the job queue
decide whether to try again from that flag alone, never from message text.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable = True


class ValidationError(PipelineError):
    """Bad caller input: unknown album, malformed key, disallowed content type."""

    retryable = False


class AlbumNotFoundError(ValidationError):
    """The referenced album does not exist."""


class InvalidKeyError(ValidationError):
    """A storage key lies outside the expected original namespace."""


class PresignError(PipelineError):
    """A presigned URL could not be built (usually storage misconfiguration)."""

    retryable = False


class StorageError(PipelineError):
    """
    Failure talking to object storage.

    Attributes:
        operation: Storage operation name (e.g. 'getObject')
        key: Object key involved, if any
        code: Provider error code (e.g. 'NoSuchKey', 'ReadTimeout')
    """

    kind = 'unknown'

    def __init__(
        self,
        message: str,
        operation: str = '',
        key: Optional[str] = None,
        code: Optional[str] = None
    ):
        super().__init__(message)
        self.operation = operation
        self.key = key
        self.code = code


class TransientStorageError(StorageError):
    """Network, timeout, throttling or 5xx failure. Safe to retry."""

    kind = 'transient'


class ObjectNotFoundError(StorageError):
    """The object does not exist. Never retried."""

    kind = 'not_found'
    retryable = False


class UnknownStorageError(StorageError):
    """Unclassified storage failure. Retried under the conservative policy."""


class UnsupportedMediaError(PipelineError):
    """The source cannot be turned into a static derivative."""

    retryable = False


class StateConsistencyError(PipelineError):
    """A job disagrees with the authoritative photo record (e.g. album mismatch)."""

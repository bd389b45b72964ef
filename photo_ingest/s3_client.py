"""
S3Client - S3/MinIO operations for presigning, buffered get/put and deletes.

The client never retries on its own (botocore retries are disabled); it
classifies every failure into a typed StorageError so callers can apply
their own retry policy.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from .errors import (
    ObjectNotFoundError,
    PresignError,
    StorageError,
    TransientStorageError,
    UnknownStorageError,
)
from .s3_config import S3Config


DEFAULT_TIMEOUT = 15.0
DEFAULT_PRESIGN_TTL = 300
MIN_PRESIGN_TTL = 60
MAX_PRESIGN_TTL = 3600

NOT_FOUND_CODES = {'NoSuchKey', 'NotFound', '404'}
TRANSIENT_CODES = {
    'RequestTimeout',
    'SlowDown',
    'Throttling',
    'ThrottlingException',
    'ServiceUnavailable',
    'InternalError',
    '500', '502', '503', '504',
}


def clamp_ttl(ttl: int) -> int:
    """Clamp a presign lifetime to the allowed 60..3600 second range."""
    return max(MIN_PRESIGN_TTL, min(MAX_PRESIGN_TTL, int(ttl)))


def classify_error(exc: BaseException, operation: str, key: Optional[str] = None) -> StorageError:
    """Map a boto/network exception onto the storage error taxonomy."""
    if isinstance(exc, StorageError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get('Error', {})
        code = str(error.get('Code', ''))
        status = exc.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        detail = error.get('Message') or str(exc)
        message = f"{code}: {detail} ({operation} {key})"

        if code in NOT_FOUND_CODES or status == 404:
            return ObjectNotFoundError(message, operation, key, code)
        if code in TRANSIENT_CODES or (status is not None and status >= 500):
            return TransientStorageError(message, operation, key, code)
        return UnknownStorageError(message, operation, key, code)

    code = type(exc).__name__
    message = f"{code}: {exc} ({operation} {key})"
    # Timeouts are subclasses of both botocore bases
    if isinstance(exc, (BotoConnectionError, HTTPClientError, TimeoutError, ConnectionError)):
        return TransientStorageError(message, operation, key, code)
    return UnknownStorageError(message, operation, key, code)


class S3Client:
    """
    Wrapper for S3/MinIO operations used by the ingestion pipeline.

    Data-plane calls (get/put/delete) go to ``config.endpoint``; presigned
    URLs are issued against ``config.presign_endpoint`` so they can point
    at a browser-reachable host.
    """

    def __init__(self, config: S3Config, logger: Optional[logging.Logger] = None):
        """
        Initialize S3 client.

        Args:
            config: S3 configuration
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

        self._clients: Dict[float, object] = {}
        self._clients_lock = threading.Lock()
        self._client = self._client_for(DEFAULT_TIMEOUT)
        self._presign_client = self._make_client(config.presign_endpoint, DEFAULT_TIMEOUT)

    def _make_client(self, endpoint: Optional[str], timeout: float):
        return boto3.client(
            's3',
            endpoint_url=endpoint,
            aws_access_key_id=self.config.access_key,
            aws_secret_access_key=self.config.secret_key,
            region_name=self.config.region,
            config=Config(
                signature_version='s3v4',
                s3={'addressing_style': 'path'},
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={'max_attempts': 1, 'mode': 'standard'},
            ),
            verify=self.config.verify_ssl
        )

    def _client_for(self, timeout: float):
        """Return a boto3 client whose socket timeouts equal ``timeout``."""
        timeout = float(timeout)
        with self._clients_lock:
            client = self._clients.get(timeout)
            if client is None:
                client = self._make_client(self.config.endpoint, timeout)
                self._clients[timeout] = client
            return client

    @property
    def client(self):
        """Return the underlying boto3 client."""
        return self._client

    # --- Presigning -------------------------------------------------------

    def presign_upload(
        self,
        key: str,
        content_type: str,
        ttl: int = DEFAULT_PRESIGN_TTL,
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = 'inline'
    ) -> str:
        """
        Presign a PUT for ``key``, scoped to ``content_type``.

        Raises:
            PresignError: If the URL cannot be built or lacks SigV4 parameters
        """
        params = {
            'Bucket': self.config.bucket,
            'Key': key,
            'ContentType': content_type,
        }
        if cache_control:
            params['CacheControl'] = cache_control
        if content_disposition:
            params['ContentDisposition'] = content_disposition
        return self._presign('put_object', params, ttl, 'PUT')

    def presign_download(self, key: str, ttl: int = DEFAULT_PRESIGN_TTL) -> str:
        """Presign a GET for ``key``."""
        params = {'Bucket': self.config.bucket, 'Key': key}
        return self._presign('get_object', params, ttl, 'GET')

    def _presign(self, client_method: str, params: dict, ttl: int, http_method: str) -> str:
        expires = clamp_ttl(ttl)
        try:
            url = self._presign_client.generate_presigned_url(
                client_method,
                Params=params,
                ExpiresIn=expires,
                HttpMethod=http_method
            )
        except (ClientError, BotoCoreError) as e:
            raise PresignError(f"{client_method} {params['Key']}: {e}") from e

        if not isinstance(url, str) or 'X-Amz-Algorithm' not in url:
            raise PresignError(
                f"Presigned URL for {params['Key']} is missing SigV4 parameters; "
                f"check S3 credentials and signature configuration"
            )
        return url

    # --- Buffered get/put -------------------------------------------------

    def fetch(self, key: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
        """
        Download an object into memory.

        Raises:
            ObjectNotFoundError: The object does not exist
            TransientStorageError: Network, timeout or 5xx failure
            UnknownStorageError: Anything else
        """
        try:
            response = self._client_for(timeout).get_object(Bucket=self.config.bucket, Key=key)
            body = response['Body']
            try:
                return body.read()
            finally:
                body.close()
        except (ClientError, BotoCoreError, OSError) as e:
            raise classify_error(e, 'getObject', key) from e

    def store(
        self,
        key: str,
        data: bytes,
        content_type: str = 'application/octet-stream',
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT
    ) -> None:
        """Upload an in-memory object. Raises the same errors as ``fetch``."""
        params = {
            'Bucket': self.config.bucket,
            'Key': key,
            'Body': data,
            'ContentType': content_type,
        }
        if cache_control:
            params['CacheControl'] = cache_control
        if content_disposition:
            params['ContentDisposition'] = content_disposition

        try:
            self._client_for(timeout).put_object(**params)
        except (ClientError, BotoCoreError, OSError) as e:
            raise classify_error(e, 'putObject', key) from e

    # --- Deletes ----------------------------------------------------------

    def delete(self, key: str) -> bool:
        """
        Delete an object, best-effort.

        Returns:
            True if the object is gone (including when it was already
            absent), False if the delete failed. Never raises.
        """
        try:
            self._client.delete_object(Bucket=self.config.bucket, Key=key)
        except (ClientError, BotoCoreError, OSError) as e:
            error = classify_error(e, 'deleteObject', key)
            if isinstance(error, ObjectNotFoundError):
                self.logger.info(f"Delete {key}: already absent")
                return True
            self.logger.error(f"Delete failed for {key}: {error}")
            return False

        self.logger.info(f"Deleted {key}")
        return True

    def delete_many(self, keys: Iterable[str], max_workers: int = 8) -> int:
        """
        Delete several objects concurrently. Never raises on partial failure.

        Returns:
            Number of keys deleted successfully
        """
        keys = [k for k in keys if k]
        if not keys:
            return 0

        with ThreadPoolExecutor(max_workers=min(max_workers, len(keys))) as executor:
            results = list(executor.map(self.delete, keys))

        ok = sum(1 for r in results if r)
        failed = len(results) - ok
        if failed:
            self.logger.warning(f"Bulk delete partial: {ok} deleted, {failed} failed")
        return ok

    # --- Health -----------------------------------------------------------

    def head_bucket(self) -> None:
        """Check that the bucket is reachable. Raises a StorageError otherwise."""
        try:
            self._client.head_bucket(Bucket=self.config.bucket)
        except (ClientError, BotoCoreError, OSError) as e:
            raise classify_error(e, 'headBucket', self.config.bucket) from e

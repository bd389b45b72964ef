"""
S3Config - Connection settings for S3/MinIO object storage.
"""

import os
from dataclasses import dataclass
from typing import List, Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'y', 't'}


@dataclass
class S3Config:
    """
    S3/MinIO connection settings.

    Attributes:
        endpoint: Endpoint used for data-plane calls (get/put/delete)
        bucket: Bucket holding originals and thumbnails
        access_key: Access key id
        secret_key: Secret access key
        region: Signing region
        verify_ssl: Verify TLS certificates
        public_endpoint: Browser-reachable endpoint used when presigning.
            Falls back to ``endpoint`` when unset.
    """
    endpoint: Optional[str]
    bucket: Optional[str]
    access_key: Optional[str]
    secret_key: Optional[str]
    region: str = 'us-east-1'
    verify_ssl: bool = True
    public_endpoint: Optional[str] = None

    @property
    def presign_endpoint(self) -> Optional[str]:
        """Endpoint that presigned URLs are issued against."""
        return self.public_endpoint or self.endpoint

    @classmethod
    def from_env(cls) -> 'S3Config':
        """Build configuration from S3_* environment variables."""
        return cls(
            endpoint=os.getenv('S3_ENDPOINT'),
            bucket=os.getenv('S3_BUCKET'),
            access_key=os.getenv('S3_ACCESS_KEY'),
            secret_key=os.getenv('S3_SECRET_KEY'),
            region=os.getenv('S3_REGION') or 'us-east-1',
            verify_ssl=_env_bool('S3_VERIFY_SSL', True),
            public_endpoint=os.getenv('S3_PUBLIC_ENDPOINT') or None,
        )

    def validate(self) -> List[str]:
        """Return a list of configuration problems (empty when valid)."""
        errors = []
        if not self.endpoint:
            errors.append("S3_ENDPOINT is not set")
        if not self.bucket:
            errors.append("S3_BUCKET is not set")
        if not self.access_key:
            errors.append("S3_ACCESS_KEY is not set")
        if not self.secret_key:
            errors.append("S3_SECRET_KEY is not set")
        return errors

"""
Photo - Record for a single uploaded photo and its processing state,
plus the storage key conventions shared by the coordinator and worker.
"""

import posixpath
import re
import uuid
from dataclasses import dataclass, asdict, fields
from datetime import datetime
from typing import Optional


ORIGINAL_PREFIX = 'albums'
ORIGINAL_DIR = 'original'
THUMB_DIR = 'thumb'

ORIGINAL_KEY_RE = re.compile(r'^albums/[^/]+/original/[^/]+$')

MAX_ERROR_LENGTH = 1000


class PhotoStatus:
    """Processing states. There is deliberately no 'processing' state."""
    PENDING = 'pending'
    PROCESSED = 'processed'
    ERROR = 'error'

    ALL = (PENDING, PROCESSED, ERROR)


@dataclass
class UploadMetadata:
    """Optional descriptive metadata supplied when an upload is confirmed."""
    width: Optional[int] = None
    height: Optional[int] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    checksum: Optional[str] = None
    caption: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Photo:
    """
    A photo's durable record.

    Attributes:
        id: Unique identifier
        album_id: Owning album
        key_original: Storage key of the uploaded original
        key_thumb: Storage key of the derivative; None until processed
        status: One of PhotoStatus.ALL
        last_error: Diagnostic for the latest failure; None once processed
        width, height, mime_type, size_bytes, checksum, caption: Metadata
    """
    id: str
    album_id: str
    key_original: str
    key_thumb: Optional[str] = None
    status: str = PhotoStatus.PENDING
    last_error: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    checksum: Optional[str] = None
    caption: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_processed(self) -> bool:
        return self.status == PhotoStatus.PROCESSED

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in ('created_at', 'updated_at'):
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data

    @classmethod
    def from_row(cls, row: dict) -> 'Photo':
        """Create from a database row dict, ignoring unknown columns."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})

    @classmethod
    def new(cls, album_id: str, key_original: str, metadata: Optional[UploadMetadata] = None) -> 'Photo':
        """Create a fresh pending photo with a generated id."""
        metadata = metadata or UploadMetadata()
        return cls(
            id=str(uuid.uuid4()),
            album_id=album_id,
            key_original=key_original,
            **metadata.to_dict()
        )


def truncate_error(message: str) -> str:
    return message[:MAX_ERROR_LENGTH]


def album_original_prefix(album_id: str) -> str:
    """Namespace every original of ``album_id`` must live under."""
    return f"{ORIGINAL_PREFIX}/{album_id}/{ORIGINAL_DIR}/"


def build_original_key(album_id: str, ext: str) -> str:
    """Generate a fresh original key ``albums/<album>/original/<uuid><ext>``."""
    return f"{album_original_prefix(album_id)}{uuid.uuid4()}{ext}"


def is_original_key(key: str, album_id: Optional[str] = None) -> bool:
    """Check ``key`` against the original namespace, optionally for one album."""
    if not ORIGINAL_KEY_RE.match(key or ''):
        return False
    if album_id is not None:
        return key.startswith(album_original_prefix(album_id))
    return True


def derive_thumb_key(key_original: str, ext: str = '.webp') -> str:
    """
    Convert an original key to its thumbnail key.

    ``albums/a1/original/x.jpg`` becomes ``albums/a1/thumb/x.webp``.
    """
    directory, filename = posixpath.split(key_original)
    parts = directory.split('/')
    parts = [THUMB_DIR if p == ORIGINAL_DIR else p for p in parts]
    stem = posixpath.splitext(filename)[0]
    return posixpath.join('/'.join(parts), f"{stem}{ext}")

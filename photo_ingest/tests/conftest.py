"""
Pytest fixtures for photo_ingest tests.
"""

import io
import json
import threading

import pytest

from photo_ingest.errors import ObjectNotFoundError
from photo_ingest.photo import Photo, PhotoStatus, truncate_error


ALBUM_ID = 'alb_123'
OTHER_ALBUM_ID = 'alb_999'


class InMemoryPhotoDb:
    """Test double for PhotoDb with the same conditional-update semantics."""

    def __init__(self, albums=(ALBUM_ID, OTHER_ALBUM_ID)):
        self.albums = set(albums)
        self.photos = {}
        self.writes = []
        self._lock = threading.Lock()

    def album_exists(self, album_id):
        return album_id in self.albums

    def get_photo(self, photo_id):
        with self._lock:
            photo = self.photos.get(photo_id)
            return Photo(**vars(photo)) if photo else None

    def find_by_album_and_key(self, album_id, key_original):
        with self._lock:
            for photo in self.photos.values():
                if photo.album_id == album_id and photo.key_original == key_original:
                    return Photo(**vars(photo))
        return None

    def create_photo(self, album_id, key_original, metadata=None):
        with self._lock:
            for photo in self.photos.values():
                if photo.album_id == album_id and photo.key_original == key_original:
                    return Photo(**vars(photo)), False
            photo = Photo.new(album_id, key_original, metadata)
            self.photos[photo.id] = photo
            self.writes.append(('create', photo.id))
            return Photo(**vars(photo)), True

    def add(self, photo):
        self.photos[photo.id] = photo
        return photo

    def mark_error(self, photo_id, message):
        with self._lock:
            photo = self.photos.get(photo_id)
            if photo is None or photo.status == PhotoStatus.PROCESSED:
                return False
            photo.status = PhotoStatus.ERROR
            photo.last_error = truncate_error(message)
            self.writes.append(('error', photo_id))
            return True

    def mark_processed(self, photo_id, key_original, key_thumb, width, height):
        with self._lock:
            photo = self.photos.get(photo_id)
            if photo is None or photo.key_original != key_original:
                return False
            photo.key_thumb = key_thumb
            photo.width = width
            photo.height = height
            photo.status = PhotoStatus.PROCESSED
            photo.last_error = None
            self.writes.append(('processed', photo_id))
            return True


class InMemoryStorage:
    """Test double for S3Client backed by a dict."""

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.fetch_errors = []
        self.store_errors = []

    def fetch(self, key, timeout=15.0):
        self.calls.append(('fetch', key))
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        if key not in self.objects:
            raise ObjectNotFoundError(
                f"NoSuchKey: The specified key does not exist. (getObject {key})",
                'getObject', key, 'NoSuchKey'
            )
        return self.objects[key]['data']

    def store(self, key, data, content_type='application/octet-stream',
              cache_control=None, content_disposition=None, timeout=15.0):
        self.calls.append(('store', key))
        if self.store_errors:
            raise self.store_errors.pop(0)
        self.objects[key] = {
            'data': data,
            'content_type': content_type,
            'cache_control': cache_control,
            'content_disposition': content_disposition,
        }

    def presign_upload(self, key, content_type, ttl=300, cache_control=None, content_disposition='inline'):
        self.calls.append(('presign_upload', key))
        return f"https://s3.example.com/test-bucket/{key}?X-Amz-Algorithm=AWS4-HMAC-SHA256&X-Amz-Signature=abc"


def _image_bytes(size=(100, 100), color='red', fmt='JPEG', **save_kwargs):
    from PIL import Image

    img = Image.new('RGB', size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def s3_config():
    """Fixture providing S3 configuration."""
    from photo_ingest.s3_config import S3Config

    return S3Config(
        endpoint='https://test-endpoint.example.com:9000',
        bucket='test-bucket',
        access_key='test-access-key',
        secret_key='test-secret-key',
        region='us-east-1',
    )


@pytest.fixture
def photo_db():
    return InMemoryPhotoDb()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def fake_redis():
    import fakeredis

    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def broker_app(fake_redis):
    """Celery app stand-in whose send_task lands messages in the broker list."""
    from unittest.mock import MagicMock

    def _send_task(name, kwargs=None, task_id=None, queue=None, **options):
        fake_redis.lpush(queue, json.dumps({'task': name, 'id': task_id, 'kwargs': kwargs}))

    app = MagicMock()
    app.send_task.side_effect = _send_task
    return app


@pytest.fixture
def job_queue(fake_redis, broker_app, logger):
    from photo_ingest.job_queue import JobQueue

    return JobQueue(fake_redis, app=broker_app, name='image-test', logger=logger)


@pytest.fixture
def worker_config():
    from photo_ingest.config import WorkerConfig

    return WorkerConfig(storage_backoff_ms=0, storage_timeout=1.0)


@pytest.fixture
def sample_image_bytes():
    """Fixture providing a 2000x1000 JPEG."""
    return _image_bytes(size=(2000, 1000))


@pytest.fixture
def small_image_bytes():
    """Fixture providing a JPEG smaller than the thumbnail bound."""
    return _image_bytes(size=(8, 6), color='gray')


@pytest.fixture
def sample_png_bytes():
    """Fixture providing a PNG with transparency."""
    from PIL import Image

    img = Image.new('RGBA', (100, 100), color=(255, 0, 0, 128))
    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    return buffer.getvalue()


@pytest.fixture
def animated_gif_bytes():
    """Fixture providing a two-frame animated GIF."""
    from PIL import Image

    frames = [Image.new('RGB', (20, 20), color=c) for c in ('red', 'blue')]
    buffer = io.BytesIO()
    frames[0].save(buffer, format='GIF', save_all=True, append_images=frames[1:], duration=100, loop=0)
    return buffer.getvalue()


@pytest.fixture
def mpo_jpeg_bytes():
    """Fixture providing a 1200x800 MPO JPEG with an embedded second image, as phone cameras write."""
    from PIL import Image

    primary = Image.new('RGB', (1200, 800), color='orange')
    secondary = Image.new('RGB', (600, 400), color='purple')
    buffer = io.BytesIO()
    primary.save(buffer, format='MPO', save_all=True, append_images=[secondary])
    return buffer.getvalue()


@pytest.fixture
def rotated_jpeg_bytes():
    """Fixture providing a 300x100 JPEG tagged with orientation 6 (rotate 90 CW)."""
    from PIL import Image

    img = Image.new('RGB', (300, 100), color='green')
    exif = Image.Exif()
    exif[0x0112] = 6
    buffer = io.BytesIO()
    img.save(buffer, format='JPEG', exif=exif)
    return buffer.getvalue()


@pytest.fixture
def truncated_jpeg_bytes(sample_image_bytes):
    """Fixture providing a JPEG cut off partway through its scan data."""
    return sample_image_bytes[: len(sample_image_bytes) * 2 // 3]


@pytest.fixture
def pending_photo(photo_db):
    """A freshly confirmed photo record."""
    return photo_db.add(Photo(
        id='ph_123',
        album_id=ALBUM_ID,
        key_original=f'albums/{ALBUM_ID}/original/abc.jpg',
    ))


@pytest.fixture
def logger():
    """Fixture providing a logger."""
    import logging
    return logging.getLogger('test')

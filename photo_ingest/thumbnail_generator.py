"""
ThumbnailGenerator - Decodes an original and produces the single normalized
derivative: orientation applied, fitted into a bounding box, re-encoded
as lossy WebP.
"""

import io
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageFile, ImageOps

from .errors import UnsupportedMediaError


class _DecodeGate:
    """
    Readers-writer gate around Pillow's process-wide LOAD_TRUNCATED_IMAGES.

    Strict decodes share the gate. Salvage flips the flag and holds the gate
    exclusively, so no strict decode runs while truncated data is accepted.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._readers = 0
        self._writing = False
        self._writers_waiting = 0

    @contextmanager
    def shared(self):
        with self._cond:
            while self._writing or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writing or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writing = True
        try:
            yield
        finally:
            with self._cond:
                self._writing = False
                self._cond.notify_all()


@dataclass
class Derivative:
    """
    An encoded thumbnail.

    Attributes:
        data: Encoded bytes
        content_type: MIME type of ``data``
        extension: File extension (with dot) for the storage key
        width, height: Dimensions of the derivative
        source_format: Format of the decoded original (e.g. 'jpeg')
        source_width, source_height: Dimensions of the decoded original
    """
    data: bytes
    content_type: str
    extension: str
    width: int
    height: int
    source_format: str
    source_width: int
    source_height: int


class ThumbnailGenerator:
    """
    Generates thumbnails from original images using Pillow.

    Decode and encode run under a process-wide semaphore so the number of
    images held in memory at once stays bounded regardless of how many
    worker threads are running.
    """

    OUTPUT_FORMAT = 'WEBP'
    CONTENT_TYPE = 'image/webp'
    EXTENSION = '.webp'

    _codec_slots = threading.BoundedSemaphore(2)
    _decode_gate = _DecodeGate()

    def __init__(
        self,
        size: int = 960,
        quality: int = 82,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize thumbnail generator.

        Args:
            size: Maximum dimension for thumbnails (default: 960)
            quality: WebP quality for output (default: 82)
            logger: Optional logger instance
        """
        self.size = size
        self.quality = quality
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def set_codec_concurrency(cls, slots: int) -> None:
        """Set how many images may be decoded/encoded at once in this process."""
        cls._codec_slots = threading.BoundedSemaphore(max(1, slots))

    def generate(self, image_data: bytes) -> Derivative:
        """
        Generate the derivative for an original.

        Raises:
            UnsupportedMediaError: Undecodable or animated source
        """
        with self._codec_slots:
            img = self._decode(image_data)
            try:
                source_format = (img.format or 'image').lower()
                source_size = img.size

                # MPO stores a still JPEG plus embedded previews as extra frames
                if img.format != 'MPO' and getattr(img, 'is_animated', False):
                    raise UnsupportedMediaError(f"animated_{source_format}_not_supported")

                try:
                    # Rotates pixels per EXIF and drops the orientation tag
                    img = ImageOps.exif_transpose(img)
                    img = self._convert_color_mode(img)
                    # thumbnail() only ever shrinks
                    img.thumbnail((self.size, self.size), Image.Resampling.LANCZOS)

                    output = io.BytesIO()
                    img.save(output, format=self.OUTPUT_FORMAT, quality=self.quality)
                except (OSError, ValueError) as e:
                    raise UnsupportedMediaError(f"transform_failed: {e}") from e
                width, height = img.size
            finally:
                img.close()

        return Derivative(
            data=output.getvalue(),
            content_type=self.CONTENT_TYPE,
            extension=self.EXTENSION,
            width=width,
            height=height,
            source_format=source_format,
            source_width=source_size[0],
            source_height=source_size[1],
        )

    def _decode(self, image_data: bytes) -> Image.Image:
        """Open and fully load an image, with one salvage attempt on failure."""
        try:
            with self._decode_gate.shared():
                img = Image.open(io.BytesIO(image_data))
                img.load()
            return img
        except Image.DecompressionBombError as e:
            raise UnsupportedMediaError(f"undecodable_image: {e}") from e
        except (OSError, SyntaxError, ValueError) as e:
            self.logger.warning(f"Decode failed ({e}); attempting salvage")
            first_error = e

        try:
            return self._salvage(image_data)
        except (OSError, SyntaxError, ValueError) as e:
            raise UnsupportedMediaError(
                f"undecodable_image: {first_error}; salvage: {e}"
            ) from e

    def _salvage(self, image_data: bytes) -> Image.Image:
        """
        Decode tolerating truncated data, re-encode to baseline JPEG and
        reopen that.
        """
        with self._decode_gate.exclusive():
            previous = ImageFile.LOAD_TRUNCATED_IMAGES
            ImageFile.LOAD_TRUNCATED_IMAGES = True
            try:
                with Image.open(io.BytesIO(image_data)) as damaged:
                    damaged.load()
                    baseline = io.BytesIO()
                    self._convert_color_mode(damaged).save(baseline, format='JPEG', quality=95)
            finally:
                ImageFile.LOAD_TRUNCATED_IMAGES = previous

        img = Image.open(io.BytesIO(baseline.getvalue()))
        img.load()
        self.logger.info("Salvaged image by re-encoding to baseline JPEG")
        return img

    def _convert_color_mode(self, img: Image.Image) -> Image.Image:
        """Flatten transparency onto white and convert to RGB."""
        if img.mode in ('RGBA', 'LA'):
            background = Image.new('RGB', img.size, (255, 255, 255))
            if img.mode == 'LA':
                img = img.convert('RGBA')
            background.paste(img, mask=img.split()[-1])
            return background
        elif img.mode == 'P':
            img = img.convert('RGBA')
            background = Image.new('RGB', img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[-1])
            return background
        elif img.mode != 'RGB':
            return img.convert('RGB')
        return img

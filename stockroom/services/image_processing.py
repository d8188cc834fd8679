from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Sequence

from PIL import Image, UnidentifiedImageError

from stockroom.services.exceptions import BatchTooLarge, TooLarge, UnsupportedType, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")

# header-declared size limit, checked before pixel data is decoded
MAX_SOURCE_PIXELS = 64_000_000


@dataclass(frozen=True)
class ImageFile:
    filename: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class ImageNormalizer:
    """
    Shrinks uploaded photos into small JPEGs the AI provider accepts inline.

    Every file in a batch is checked for type and size, and the batch for its
    total size, before any file is decoded.
    """

    def __init__(
        self,
        max_dimension: int = 600,
        jpeg_quality: int = 60,
        max_file_bytes: int = 4 * 1024 * 1024,
        max_batch_bytes: int = 10 * 1024 * 1024,
        inter_file_delay_seconds: float = 1.0,
        max_source_pixels: int = MAX_SOURCE_PIXELS,
    ):
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality
        self.max_file_bytes = max_file_bytes
        self.max_batch_bytes = max_batch_bytes
        self.inter_file_delay_seconds = inter_file_delay_seconds
        self.max_source_pixels = max_source_pixels

    def validate_file(self, file: ImageFile) -> None:
        if file.mime_type not in ALLOWED_MIME_TYPES:
            raise UnsupportedType(file.mime_type, ALLOWED_MIME_TYPES)
        if file.size > self.max_file_bytes:
            raise TooLarge(file.filename, file.size, self.max_file_bytes)

    def validate_batch(self, files: Sequence[ImageFile]) -> None:
        if not files:
            raise ValidationError("No images provided", field="images")
        for file in files:
            self.validate_file(file)
        total = sum(f.size for f in files)
        if total > self.max_batch_bytes:
            raise BatchTooLarge(total, self.max_batch_bytes)

    def _encode(self, file: ImageFile) -> str:
        try:
            with Image.open(BytesIO(file.data)) as img:
                width, height = img.size
                if width * height > self.max_source_pixels:
                    raise ValidationError(
                        f"Image dimensions too large: {file.filename} ({width}x{height})",
                        field="data",
                        actual_value=f"{width}x{height}",
                        constraints={"max_pixels": self.max_source_pixels},
                        error_code="INVALID_IMAGE",
                    )
                img.load()
                img.thumbnail((self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS)

                rgba = img.convert("RGBA")
                canvas = Image.new("RGB", rgba.size, (255, 255, 255))
                canvas.paste(rgba, mask=rgba.getchannel("A"))
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
            raise ValidationError(
                f"Could not decode image: {file.filename}",
                field="data",
                error_code="INVALID_IMAGE",
            ) from e

        out = BytesIO()
        canvas.save(out, format="JPEG", quality=self.jpeg_quality)
        return base64.b64encode(out.getvalue()).decode("ascii")

    async def normalize(self, file: ImageFile) -> str:
        """Returns base64 JPEG bytes without a data-URL prefix."""
        self.validate_file(file)
        return await asyncio.to_thread(self._encode, file)

    async def normalize_batch(self, files: Sequence[ImageFile]) -> list[str]:
        self.validate_batch(files)

        encoded: list[str] = []
        for index, file in enumerate(files):
            if index:
                await asyncio.sleep(self.inter_file_delay_seconds)
            encoded.append(await asyncio.to_thread(self._encode, file))

        logger.info(f"Normalized {len(encoded)} images ({sum(f.size for f in files)} bytes in)")
        return encoded

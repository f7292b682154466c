"""
Image Normalizer
Puts a photographed answer page into a consistent, portrait JPEG before OCR
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Sequence, Tuple, Union

from fastapi.concurrency import run_in_threadpool
from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

OUTPUT_MIME_TYPE = "image/jpeg"
DEFAULT_JPEG_QUALITY = 95


@dataclass(frozen=True)
class Normalized:
    """The page was decoded, oriented and re-encoded."""
    buffer: bytes
    mime_type: str
    rotated_to_portrait: bool = False


@dataclass(frozen=True)
class Passthrough:
    """The original bytes are used as-is; ``reason`` says why."""
    buffer: bytes
    mime_type: str
    reason: str


NormalizationOutcome = Union[Normalized, Passthrough]


def normalize_image(
    buffer: bytes,
    mime_type: str,
    *,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> NormalizationOutcome:
    """
    Normalize a single page.

    - non-image MIME types pass through untouched
    - EXIF orientation is applied
    - landscape pages are turned 90 degrees clockwise so the output is portrait
    - output is re-encoded as JPEG at ``quality``

    Never raises: a page that cannot be decoded comes back as ``Passthrough``
    so extraction can still try the original bytes.
    """
    if not mime_type or not mime_type.lower().startswith("image/"):
        return Passthrough(buffer, mime_type, reason="not an image")

    try:
        with Image.open(io.BytesIO(buffer)) as img:
            img = ImageOps.exif_transpose(img)

            rotated = False
            width, height = img.size
            if width > height:
                img = img.transpose(Image.Transpose.ROTATE_270)
                rotated = True

            if img.mode != "RGB":
                img = img.convert("RGB")

            out = io.BytesIO()
            img.save(out, "JPEG", quality=quality)

        return Normalized(out.getvalue(), OUTPUT_MIME_TYPE, rotated_to_portrait=rotated)

    except Exception as e:
        logger.warning(f"Image normalization failed, using original: {e}")
        return Passthrough(buffer, mime_type, reason=str(e) or type(e).__name__)


async def normalize_pages(
    pages: Sequence[Tuple[bytes, str]],
    *,
    quality: int = DEFAULT_JPEG_QUALITY,
) -> list[NormalizationOutcome]:
    """
    Normalize every page concurrently; results keep the input order.
    """
    return list(
        await asyncio.gather(
            *(
                run_in_threadpool(normalize_image, buffer, mime_type, quality=quality)
                for buffer, mime_type in pages
            )
        )
    )

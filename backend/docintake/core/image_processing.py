"""Image preparation for vision-model extraction.

Receipts photographed on phones arrive rotated, huge, or in formats the
vision endpoints reject.  ``prepare_for_vision`` auto-orients the image,
bounds its longest edge and re-encodes anything outside the accepted set
as JPEG.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Formats the vision endpoints accept without conversion.
VISION_NATIVE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}

JPEG_QUALITY = 88
EXIF_ORIENTATION_TAG = 0x0112


class ImagePreparationError(ValueError):
    """The bytes could not be decoded as an image."""


@dataclass(frozen=True)
class PreparedImage:
    content: bytes
    mime_type: str
    width: int
    height: int

    def as_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")


def is_image(mime_type: str | None) -> bool:
    return bool(mime_type) and mime_type.lower().startswith("image/")


def prepare_for_vision(content: bytes, mime_type: str, *, max_edge: int = 2048) -> PreparedImage:
    """Return an oriented, size-bounded copy of *content*.

    The original bytes are passed through untouched when the image is
    already upright, within *max_edge* and in a natively accepted format.
    """
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ImagePreparationError(f"Cannot decode image: {exc}") from exc

    orientation = img.getexif().get(EXIF_ORIENTATION_TAG, 1)
    oriented = ImageOps.exif_transpose(img)
    mime = (mime_type or "").lower()
    needs_resize = max(oriented.width, oriented.height) > max_edge
    needs_convert = mime not in VISION_NATIVE_TYPES
    rotated = orientation not in (None, 1)

    if not needs_resize and not needs_convert and not rotated:
        return PreparedImage(content=content, mime_type=mime, width=img.width, height=img.height)

    work = oriented.copy()
    if needs_resize:
        work.thumbnail((max_edge, max_edge), Image.LANCZOS)

    if work.mode not in ("RGB", "L"):
        work = work.convert("RGB")

    buf = io.BytesIO()
    work.save(buf, format="JPEG", quality=JPEG_QUALITY, optimize=True)
    prepared = buf.getvalue()
    logger.info(
        "Prepared image for vision: %dx%d -> %dx%d (%d -> %d bytes)",
        img.width,
        img.height,
        work.width,
        work.height,
        len(content),
        len(prepared),
    )
    return PreparedImage(content=prepared, mime_type="image/jpeg", width=work.width, height=work.height)

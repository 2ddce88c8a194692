"""Image input/output utilities built atop Pillow."""

from __future__ import annotations

import io
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError
from PIL.Image import DecompressionBombError

logger = logging.getLogger(__name__)

DEFAULT_BOMB_CAP = 350_000_000  # pixels accepted before Pillow's bomb guard fires
DEFAULT_MAX_SIDE = 4096
DEFAULT_THUMBNAIL_SIZE = 400
DEFAULT_WEBP_QUALITY = 85

_WEBP_HEADER_LEN = 12

# Image.MAX_IMAGE_PIXELS is process-wide and is read by the bomb check in Image.open
_PIXEL_CAP_LOCK = Lock()


def _open_with_cap(path: str | Path, pixel_cap: Optional[int]) -> Image.Image:
    with _PIXEL_CAP_LOCK:
        old_cap = Image.MAX_IMAGE_PIXELS
        if pixel_cap is not None:
            Image.MAX_IMAGE_PIXELS = int(pixel_cap)
        try:
            return Image.open(path)
        finally:
            Image.MAX_IMAGE_PIXELS = old_cap


def safe_load_image(
    source: str | Path,
    *,
    max_side: Optional[int] = DEFAULT_MAX_SIDE,
    bomb_pixel_cap: Optional[int] = DEFAULT_BOMB_CAP,
    rgb: bool = False,
) -> Image.Image | None:
    """Decode ``source`` fully, returning ``None`` when it cannot be read.

    Images larger than ``max_side`` on either axis are downscaled right after
    decoding to keep memory in check. Alpha is preserved unless ``rgb`` is set.
    """

    p = str(source)
    try:
        img: Image.Image = _open_with_cap(p, bomb_pixel_cap)
        try:
            img.load()
        except MemoryError:
            w, h = img.size
            logger.error("MemoryError while decoding (header %dx%d): %s", w, h, p)
            img.close()
            return None

        if max_side is not None and max(img.size) > max_side:
            img.thumbnail((max_side, max_side), Image.Resampling.LANCZOS)

        if rgb and img.mode != "RGB":
            img = img.convert("RGB")
        return img

    except (UnidentifiedImageError, DecompressionBombError, OSError) as e:
        logger.warning("safe_load_image failed for %s: %s", p, e)
        return None


def center_crop_thumbnail(image: Image.Image, size: int = DEFAULT_THUMBNAIL_SIZE) -> Image.Image:
    """Return a ``size`` x ``size`` centre crop of ``image``."""

    if image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA" if "A" in image.getbands() else "RGB")
    return ImageOps.fit(image, (size, size), Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def encode_webp(image: Image.Image, quality: int = DEFAULT_WEBP_QUALITY) -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format="WEBP", quality=int(quality))
    return buffer.getvalue()


def render_thumbnail(
    source_path: str | Path,
    *,
    size: int = DEFAULT_THUMBNAIL_SIZE,
    quality: int = DEFAULT_WEBP_QUALITY,
) -> bytes | None:
    """Decode ``source_path`` and return WebP thumbnail bytes, or ``None``."""

    image = safe_load_image(source_path)
    if image is None:
        return None
    try:
        return encode_webp(center_crop_thumbnail(image, size), quality)
    finally:
        image.close()


def write_atomic(path: str | Path, data: bytes) -> Path:
    """Write ``data`` to ``path`` through a temporary file and ``os.replace``."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
    return target


def is_image_corrupted(path: str | Path) -> bool:
    """Return True when ``path`` cannot be fully decoded."""

    try:
        with _open_with_cap(path, None) as img:
            img.load()
    except (UnidentifiedImageError, DecompressionBombError, OSError, ValueError, SyntaxError, EOFError) as exc:
        logger.debug("Decode failed for %s: %s", path, exc)
        return True
    return False


def is_webp_corrupted(path: str | Path) -> bool:
    """Return True when ``path`` lacks a RIFF/WEBP header or fails to decode."""

    try:
        with open(path, "rb") as handle:
            header = handle.read(_WEBP_HEADER_LEN)
    except OSError as exc:
        logger.debug("Unable to read %s: %s", path, exc)
        return True
    if len(header) < _WEBP_HEADER_LEN or header[:4] != b"RIFF" or header[8:12] != b"WEBP":
        return True
    return is_image_corrupted(path)


__all__ = [
    "DEFAULT_THUMBNAIL_SIZE",
    "DEFAULT_WEBP_QUALITY",
    "center_crop_thumbnail",
    "encode_webp",
    "is_image_corrupted",
    "is_webp_corrupted",
    "render_thumbnail",
    "safe_load_image",
    "write_atomic",
]

"""Image to tensor conversion for the WD14 tagger."""

from __future__ import annotations

import cv2
import numpy as np
from PIL import Image


def pad_to_square(image: Image.Image) -> tuple[Image.Image, tuple[int, int]]:
    """Composite ``image`` onto an opaque white square canvas.

    Returns the RGB canvas of side ``max(width, height)`` and the
    ``(left, top)`` offset at which the original was pasted.
    """

    rgba = image.convert("RGBA")
    width, height = rgba.size
    side = max(width, height)
    left = (side - width) // 2
    top = (side - height) // 2
    canvas = Image.new("RGBA", (side, side), (255, 255, 255, 255))
    # alpha to white
    canvas.paste(rgba, (left, top), mask=rgba)
    return canvas.convert("RGB"), (left, top)


def preprocess(image: Image.Image, size: int) -> np.ndarray:
    """Return a ``(1, size, size, 3)`` float32 BGR tensor scaled to ``[0, 1]``."""

    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    square, _ = pad_to_square(image)
    rgb = np.asarray(square, dtype=np.uint8)
    resized = cv2.resize(rgb, (size, size), interpolation=cv2.INTER_CUBIC)
    # PIL RGB to OpenCV BGR
    bgr = np.ascontiguousarray(resized[:, :, ::-1])
    tensor = bgr.astype(np.float32) / 255.0
    return np.expand_dims(tensor, 0)


__all__ = ["pad_to_square", "preprocess"]

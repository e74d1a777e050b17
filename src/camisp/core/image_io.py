from __future__ import annotations

from pathlib import Path

import cv2  # type: ignore
import numpy as np
from PIL import Image

from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.errors import IOFailure


def load_image(path: str | Path, pixel_format: PixelFormat | str = PixelFormat.BGR) -> PixelBuffer:
    """
    Load an 8-bit image file as a PixelBuffer.

    Primary backend is OpenCV. Pillow is used as a fallback for OpenCV builds
    that lack some codec support. Gray and Bayer formats are read as a single
    channel; Bayer mosaics must be stored as plain single-channel images.
    """
    p = Path(path)
    fmt = PixelFormat(pixel_format)
    if not p.is_file():
        raise IOFailure(f"image not found: {p}")

    flag = cv2.IMREAD_COLOR if fmt is PixelFormat.BGR else cv2.IMREAD_GRAYSCALE
    img = cv2.imread(str(p), flag)
    if img is not None:
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        return PixelBuffer(img, fmt)

    try:
        with Image.open(p) as im:
            if fmt is PixelFormat.BGR:
                arr = np.asarray(im.convert("RGB"), dtype=np.uint8)[:, :, ::-1].copy()
            else:
                arr = np.asarray(im.convert("L"), dtype=np.uint8)
    except OSError as e:
        raise IOFailure(f"cannot decode image {p}: {e}") from e
    return PixelBuffer(arr, fmt)


def save_image(path: str | Path, buffer: PixelBuffer) -> Path:
    p = Path(path)
    if buffer.is_empty:
        raise IOFailure(f"refusing to write an empty image to {p}")
    p.parent.mkdir(parents=True, exist_ok=True)
    try:
        ok = bool(cv2.imwrite(str(p), buffer.data))
    except cv2.error:
        ok = False
    if ok:
        return p

    arr = buffer.data[:, :, ::-1] if buffer.pixel_format is PixelFormat.BGR else buffer.data
    try:
        Image.fromarray(np.ascontiguousarray(arr)).save(p)
    except (OSError, ValueError) as e:
        raise IOFailure(f"cannot write image {p}: {e}") from e
    return p

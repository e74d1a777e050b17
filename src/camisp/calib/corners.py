from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2  # type: ignore
import numpy as np

from camisp.core.buffer import PixelBuffer, PixelFormat


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectorConfig:
    subpix_window: int = 11
    max_iterations: int = 30
    epsilon: float = 1e-3
    # Gray-level spread (max - min) below which the frame is not searched at all.
    min_contrast: int = 16


def _as_gray(image: PixelBuffer | np.ndarray) -> np.ndarray:
    if isinstance(image, PixelBuffer):
        return image.to_gray()
    arr = np.asarray(image)
    if arr.size == 0:
        return np.zeros((0, 0), dtype=np.uint8)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 3:
        return cv2.cvtColor(arr, cv2.COLOR_BGR2GRAY)
    return arr.copy()


def _normalize_orientation(corners: np.ndarray) -> np.ndarray:
    # findChessboardCorners may enumerate the grid from either end.
    if float(np.sum(corners[0])) > float(np.sum(corners[-1])):
        return corners[::-1].copy()
    return corners


def detect_corners(
    image: PixelBuffer | np.ndarray,
    pattern_size: tuple[int, int],
    *,
    config: DetectorConfig = DetectorConfig(),
) -> np.ndarray | None:
    """
    Find the inner corners of a chessboard with `pattern_size` = (columns, rows).

    Returns (columns*rows, 2) float64 subpixel positions in row-major grid order,
    or None when the board is not found. Does not raise on image content.
    """
    gray = _as_gray(image)
    if gray.size == 0:
        return None
    if int(gray.max()) - int(gray.min()) < int(config.min_contrast):
        logger.debug("frame contrast too low for corner search")
        return None

    cols, rows = int(pattern_size[0]), int(pattern_size[1])
    flags = cv2.CALIB_CB_ADAPTIVE_THRESH + cv2.CALIB_CB_NORMALIZE_IMAGE + cv2.CALIB_CB_FAST_CHECK
    try:
        found, corners = cv2.findChessboardCorners(gray, (cols, rows), None, flags)
    except cv2.error as e:
        logger.debug("findChessboardCorners failed: %s", e)
        return None
    if not found or corners is None or corners.shape[0] != cols * rows:
        return None

    criteria = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, int(config.max_iterations), float(config.epsilon))
    win = int(config.subpix_window)
    corners = cv2.cornerSubPix(gray, corners.astype(np.float32), (win, win), (-1, -1), criteria)

    pts = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    return _normalize_orientation(pts)


def draw_corners(
    image: PixelBuffer,
    pattern_size: tuple[int, int],
    corners: np.ndarray | None,
    found: bool,
) -> PixelBuffer:
    """
    Preview overlay: a BGR copy of `image` with the detected grid drawn on it.
    """
    out = image.to_bgr()
    if out.is_empty or corners is None or len(corners) == 0:
        return out
    canvas = out.data.copy()
    pts = np.asarray(corners, dtype=np.float32).reshape(-1, 1, 2)
    cv2.drawChessboardCorners(canvas, (int(pattern_size[0]), int(pattern_size[1])), pts, bool(found))
    return PixelBuffer(canvas, PixelFormat.BGR)

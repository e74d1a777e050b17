from __future__ import annotations

from functools import lru_cache

import cv2  # type: ignore
import numpy as np

from camisp.core.distortion import LensDistortion


def undistortion_maps(
    camera_matrix: np.ndarray,
    distortion: LensDistortion,
    image_size: tuple[int, int],
) -> tuple[np.ndarray, np.ndarray]:
    """
    cv2.remap maps that produce the undistorted image (same K, same size).

    Each output pixel is taken to normalized coordinates with K^-1, pushed
    through the forward distortion model and projected back with K; the
    result is the source pixel to sample.
    """
    K = np.asarray(camera_matrix, dtype=np.float64).reshape(3, 3)
    w, h = int(image_size[0]), int(image_size[1])
    uu, vv = np.meshgrid(np.arange(w, dtype=np.float64), np.arange(h, dtype=np.float64))
    fx, fy, cx, cy, skew = K[0, 0], K[1, 1], K[0, 2], K[1, 2], K[0, 1]
    y = (vv - cy) / fy
    x = (uu - cx - skew * y) / fx
    xd, yd = distortion.distort(x, y)
    map_x = fx * xd + skew * yd + cx
    map_y = fy * yd + cy
    return map_x.astype(np.float32), map_y.astype(np.float32)


@lru_cache(maxsize=8)
def _cached_maps(key: tuple) -> tuple[np.ndarray, np.ndarray]:
    k_flat, coeffs, size = key
    K = np.asarray(k_flat, dtype=np.float64).reshape(3, 3)
    map_x, map_y = undistortion_maps(K, LensDistortion.from_vector(np.asarray(coeffs)), size)
    return map_x, map_y


def undistort_image(image: np.ndarray, camera_matrix: np.ndarray, distortion: np.ndarray | LensDistortion) -> np.ndarray:
    """
    Undistort an (H,W) or (H,W,3) uint8 image; pixels that map outside the source are black.
    """
    if isinstance(distortion, LensDistortion):
        coeffs = distortion.to_vector(12)
    else:
        coeffs = LensDistortion.from_vector(distortion).to_vector(12)
    h, w = image.shape[:2]
    key = (tuple(np.asarray(camera_matrix, dtype=np.float64).reshape(-1).tolist()), tuple(coeffs.tolist()), (int(w), int(h)))
    map_x, map_y = _cached_maps(key)
    return cv2.remap(image, map_x, map_y, interpolation=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=0)

from __future__ import annotations

from dataclasses import dataclass

import cv2  # type: ignore
import numpy as np

from camisp.calib.pattern import PatternSpec
from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.core.distortion import LensDistortion
from camisp.core.projection import project_points, rotation_matrices


@dataclass(frozen=True)
class SyntheticPose:
    rvec: np.ndarray  # (3,)
    tvec: np.ndarray  # (3,) mm


def default_camera_matrix(image_size: tuple[int, int], focal_px: float = 800.0) -> np.ndarray:
    w, h = int(image_size[0]), int(image_size[1])
    return np.array(
        [[focal_px, 0.0, (w - 1) / 2.0], [0.0, focal_px, (h - 1) / 2.0], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


def render_chessboard(pattern_size: tuple[int, int], square_px: int = 40, margin_px: int | None = None) -> PixelBuffer:
    """
    Fronto-parallel chessboard with (columns+1) x (rows+1) squares on a white margin.

    The top-left square is black. Inner corner (row i, column j) sits at pixel
    (margin + (j+1)*square_px - 0.5, margin + (i+1)*square_px - 0.5).
    """
    cols, rows = int(pattern_size[0]), int(pattern_size[1])
    sq = int(square_px)
    margin = sq if margin_px is None else int(margin_px)
    h = (rows + 1) * sq + 2 * margin
    w = (cols + 1) * sq + 2 * margin
    img = np.full((h, w), 255, dtype=np.uint8)
    for i in range(rows + 1):
        for j in range(cols + 1):
            if (i + j) % 2 == 0:
                y0 = margin + i * sq
                x0 = margin + j * sq
                img[y0 : y0 + sq, x0 : x0 + sq] = 0
    return PixelBuffer(img, PixelFormat.GRAY)


def rendered_corner_positions(pattern_size: tuple[int, int], square_px: int = 40, margin_px: int | None = None) -> np.ndarray:
    """Exact inner-corner pixels of render_chessboard, row-major (N,2)."""
    cols, rows = int(pattern_size[0]), int(pattern_size[1])
    sq = float(square_px)
    margin = sq if margin_px is None else float(margin_px)
    ii, jj = np.meshgrid(np.arange(rows, dtype=np.float64), np.arange(cols, dtype=np.float64), indexing="ij")
    u = margin + (jj.reshape(-1) + 1.0) * sq - 0.5
    v = margin + (ii.reshape(-1) + 1.0) * sq - 0.5
    return np.stack([u, v], axis=-1)


# Tilts (about x, about y, about z) in radians; enough variety for a well-posed closed form.
_TILTS = (
    (0.35, 0.00, 0.00),
    (-0.35, 0.05, 0.02),
    (0.05, 0.35, -0.03),
    (0.00, -0.35, 0.04),
    (0.25, 0.25, 0.10),
    (-0.25, 0.30, -0.10),
    (0.30, -0.25, 0.05),
    (-0.20, -0.20, -0.05),
)


def synthetic_poses(
    pattern: PatternSpec,
    n_views: int = 6,
    *,
    distance_mm: float = 600.0,
    jitter: float = 0.0,
    seed: int = 0,
) -> list[SyntheticPose]:
    """
    Board poses looking at the board centre from `distance_mm`, each tilted differently.

    `jitter` adds uniform noise to the tilts (radians) and a lateral offset
    (a fraction of distance_mm), so repeated calls with different seeds give different but reproducible sets.
    """
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    rng = np.random.default_rng(seed)
    cols, rows = pattern.size
    centre = np.array([(cols - 1) * pattern.square_size_mm / 2.0, (rows - 1) * pattern.square_size_mm / 2.0, 0.0])
    poses: list[SyntheticPose] = []
    for k in range(int(n_views)):
        ax, ay, az = _TILTS[k % len(_TILTS)]
        angles = np.array([ax, ay, az], dtype=np.float64)
        if jitter > 0.0:
            angles = angles + rng.uniform(-jitter, jitter, size=(3,))
        R = Rot.from_euler("xyz", angles).as_matrix()
        offset = np.zeros((3,), dtype=np.float64)
        if jitter > 0.0:
            offset[:2] = rng.uniform(-jitter, jitter, size=(2,)) * distance_mm * 0.2
        tvec = -R @ centre + np.array([offset[0], offset[1], float(distance_mm)])
        poses.append(SyntheticPose(rvec=Rot.from_matrix(R).as_rotvec(), tvec=tvec))
    return poses


def synthetic_views(
    pattern: PatternSpec,
    camera_matrix: np.ndarray,
    poses: list[SyntheticPose],
    *,
    distortion: np.ndarray | None = None,
    noise_std: float = 0.0,
    seed: int = 0,
) -> list[np.ndarray]:
    """Projected (N,2) corner positions for each pose, optional Gaussian pixel noise."""
    rng = np.random.default_rng(seed)
    obj = pattern.object_points()
    views: list[np.ndarray] = []
    for pose in poses:
        uv = project_points(obj, pose.rvec, pose.tvec, camera_matrix, distortion)
        if noise_std > 0.0:
            uv = uv + rng.normal(0.0, float(noise_std), size=uv.shape)
        views.append(uv)
    return views


def render_view(
    pattern: PatternSpec,
    camera_matrix: np.ndarray,
    pose: SyntheticPose,
    image_size: tuple[int, int],
    *,
    square_px: int = 40,
    background: int = 160,
) -> PixelBuffer:
    """
    Gray image of the board seen by a distortion-free pinhole camera at `pose`.
    """
    board = render_chessboard(pattern.size, square_px=square_px)
    margin = float(square_px)
    s = float(pattern.square_size_mm)
    sq = float(square_px)
    # texture pixel -> board mm (inverse of the corner layout in render_chessboard)
    A = np.array(
        [[s / sq, 0.0, s * ((0.5 - margin) / sq - 1.0)], [0.0, s / sq, s * ((0.5 - margin) / sq - 1.0)], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )
    R = rotation_matrices(pose.rvec)[0]
    K = np.asarray(camera_matrix, dtype=np.float64).reshape(3, 3)
    H = K @ np.column_stack([R[:, 0], R[:, 1], np.asarray(pose.tvec, dtype=np.float64).reshape(3)])
    w, h = int(image_size[0]), int(image_size[1])
    img = cv2.warpPerspective(
        board.data,
        H @ A,
        (w, h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=int(background),
    )
    return PixelBuffer(img, PixelFormat.GRAY)


def distortion_preset(name: str) -> LensDistortion:
    """Named test lenses: none, barrel, pincushion."""
    presets = {
        "none": LensDistortion(),
        "barrel": LensDistortion(k1=-0.12, k2=0.03),
        "pincushion": LensDistortion(k1=0.10, k2=-0.02),
    }
    if name not in presets:
        raise ValueError(f"unknown distortion preset {name!r}, expected one of {sorted(presets)}")
    return presets[name]

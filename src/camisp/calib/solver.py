from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from camisp.calib.homography import initial_intrinsics, pose_from_homography, view_homography
from camisp.calib.model import CalibrationFlags, CalibrationResult, CalibrationView, SolverCriteria
from camisp.core.distortion import LensDistortion
from camisp.core.projection import project_views, rms_error
from camisp.errors import InputInvalid, InsufficientViews, SolverDivergence


logger = logging.getLogger(__name__)

MIN_VIEWS = 5

# Positions inside the distortion vector (OpenCV order).
_K_INDEX = (0, 1, 4, 5, 6, 7)  # k1..k6
_P_INDEX = (2, 3)


@dataclass(frozen=True)
class _Layout:
    """
    Which of fx, fy, cx, cy and the distortion coefficients are free.

    Fixed entries keep their value from `base_intrinsics` / `base_distortion`.
    """

    free_intrinsics: np.ndarray  # (4,) bool over fx, fy, cx, cy
    free_distortion: np.ndarray  # (D,) bool
    base_intrinsics: np.ndarray  # (4,)
    base_distortion: np.ndarray  # (D,)
    tie_aspect: bool
    n_views: int

    def pack(self, intrinsics: np.ndarray, distortion: np.ndarray, rvecs: np.ndarray, tvecs: np.ndarray) -> np.ndarray:
        poses = np.concatenate([rvecs.reshape(-1, 3), tvecs.reshape(-1, 3)], axis=1).reshape(-1)
        return np.concatenate([intrinsics[self.free_intrinsics], distortion[self.free_distortion], poses], axis=0)

    def unpack(self, p: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        p = np.asarray(p, dtype=np.float64).reshape(-1)
        n_i = int(np.sum(self.free_intrinsics))
        n_d = int(np.sum(self.free_distortion))
        intrinsics = self.base_intrinsics.copy()
        intrinsics[self.free_intrinsics] = p[:n_i]
        if self.tie_aspect:
            intrinsics[1] = intrinsics[0]
        distortion = self.base_distortion.copy()
        distortion[self.free_distortion] = p[n_i : n_i + n_d]
        poses = p[n_i + n_d :].reshape(self.n_views, 6)
        return intrinsics, distortion, poses[:, :3], poses[:, 3:]


def _layout_for(flags: CalibrationFlags, intrinsics0: np.ndarray, n_views: int) -> _Layout:
    size = flags.distortion_size
    free_dist = np.ones((size,), dtype=bool)
    fixed_k = list(flags.fixed_radial())
    if not flags.rational_model:
        fixed_k[3] = fixed_k[4] = fixed_k[5] = True
    for idx, fixed in zip(_K_INDEX, fixed_k):
        if idx < size and fixed:
            free_dist[idx] = False
    if flags.zero_tangent_dist:
        free_dist[list(_P_INDEX)] = False

    free_intr = np.array([True, not flags.fix_aspect_ratio, not flags.fix_principal_point, not flags.fix_principal_point])
    return _Layout(
        free_intrinsics=free_intr,
        free_distortion=free_dist,
        base_intrinsics=np.asarray(intrinsics0, dtype=np.float64).copy(),
        base_distortion=np.zeros((size,), dtype=np.float64),
        tie_aspect=bool(flags.fix_aspect_ratio),
        n_views=int(n_views),
    )


def _camera_matrix(intrinsics: np.ndarray) -> np.ndarray:
    fx, fy, cx, cy = (float(v) for v in intrinsics.tolist())
    return np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


def _stack_views(views: list[CalibrationView]) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    obj = np.concatenate([v.object_points for v in views], axis=0)
    img = np.concatenate([v.image_points for v in views], axis=0)
    idx = np.concatenate([np.full((v.point_count,), k, dtype=np.intp) for k, v in enumerate(views)], axis=0)
    return obj, img, idx


def _validate_views(views: list[CalibrationView], image_size: tuple[int, int]) -> None:
    if len(views) < MIN_VIEWS:
        raise InsufficientViews(f"need at least {MIN_VIEWS} calibration views, have {len(views)}")
    w, h = int(image_size[0]), int(image_size[1])
    if w <= 0 or h <= 0:
        raise InputInvalid("image size must be positive")
    for k, v in enumerate(views):
        if tuple(v.image_size) != (w, h):
            raise InputInvalid(f"view {k} has image size {v.image_size}, expected {(w, h)}")
        if v.image_points.shape != (v.object_points.shape[0], 2) or v.point_count < 4:
            raise InputInvalid(f"view {k} has malformed point arrays")


def solve_calibration(
    views: list[CalibrationView],
    image_size: tuple[int, int],
    flags: CalibrationFlags = CalibrationFlags(),
    criteria: SolverCriteria = SolverCriteria(),
) -> CalibrationResult:
    """
    Joint intrinsic/distortion/pose estimation from planar views.

    Initial camera matrix from the closed-form homography solution, initial
    poses from each homography, then Levenberg-Marquardt-style refinement
    (SciPy TRF) of the pixel reprojection residuals over the free camera
    parameters and all poses.
    """
    from scipy.optimize import least_squares  # type: ignore

    _validate_views(views, image_size)
    w, h = int(image_size[0]), int(image_size[1])

    homographies = [view_homography(v.object_points, v.image_points) for v in views]
    K0 = initial_intrinsics(homographies, (w, h))
    fx0, fy0, cx0, cy0 = float(K0[0, 0]), float(K0[1, 1]), float(K0[0, 2]), float(K0[1, 2])
    if flags.fix_principal_point:
        cx0 = (w - 1) / 2.0
        cy0 = (h - 1) / 2.0
    if flags.fix_aspect_ratio:
        fx0 = fy0 = 0.5 * (fx0 + fy0)
    intrinsics0 = np.array([fx0, fy0, cx0, cy0], dtype=np.float64)
    K_init = _camera_matrix(intrinsics0)

    poses = [pose_from_homography(K_init, H) for H in homographies]
    rvecs0 = np.stack([r for r, _t in poses], axis=0)
    tvecs0 = np.stack([t for _r, t in poses], axis=0)

    layout = _layout_for(flags, intrinsics0, len(views))
    obj, img, idx = _stack_views(views)

    def fun(p: np.ndarray) -> np.ndarray:
        intrinsics, distortion, rv, tv = layout.unpack(p)
        uv = project_views(obj, idx, rv, tv, _camera_matrix(intrinsics), LensDistortion.from_vector(distortion))
        return (uv - img).reshape(-1)

    p0 = layout.pack(intrinsics0, layout.base_distortion, rvecs0, tvecs0)
    tol = max(float(criteria.epsilon), float(np.finfo(np.float64).eps))
    try:
        sol = least_squares(
            fun,
            p0,
            method="trf",
            x_scale="jac",
            ftol=tol,
            xtol=tol,
            gtol=tol,
            max_nfev=max(1, int(criteria.max_iterations)),
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        raise SolverDivergence(f"least-squares refinement failed: {e}") from e

    if sol.status < 0 or not np.all(np.isfinite(sol.x)):
        raise SolverDivergence(f"least-squares refinement did not converge: {sol.message}")

    intrinsics, distortion, rvecs, tvecs = layout.unpack(sol.x)
    if intrinsics[0] <= 0.0 or intrinsics[1] <= 0.0:
        raise SolverDivergence("refined focal length is not positive")
    K = _camera_matrix(intrinsics)
    dist = LensDistortion.from_vector(distortion)

    projected = project_views(obj, idx, rvecs, tvecs, K, dist)
    if not np.all(np.isfinite(projected)):
        raise SolverDivergence("refined model projects to non-finite pixels")
    per_view = np.array([rms_error(img[idx == k], projected[idx == k]) for k in range(len(views))], dtype=np.float64)
    rms = rms_error(img, projected)

    logger.debug(
        "calibration solve: %d views, %d points, nfev=%d, status=%d, rms=%.6f px",
        len(views),
        int(obj.shape[0]),
        int(sol.nfev),
        int(sol.status),
        rms,
    )
    return CalibrationResult(
        camera_matrix=K,
        distortion=distortion,
        rms_error=rms,
        image_size=(w, h),
        rvecs=rvecs,
        tvecs=tvecs,
        per_view_errors=per_view,
        pattern=views[-1].pattern,
        flags=flags,
    )


def compute_reprojection_error(views: list[CalibrationView], result: CalibrationResult | None) -> float:
    """
    RMS reprojection error of the views the result was solved from, or -1.0 when
    there is nothing to evaluate (no result, no poses, fewer views than poses).
    """
    if result is None or not result.has_poses:
        return -1.0
    n = result.view_count
    if len(views) < n:
        return -1.0
    obj, img, idx = _stack_views(list(views[:n]))
    projected = project_views(obj, idx, result.rvecs, result.tvecs, result.camera_matrix, result.lens_distortion())
    return rms_error(img, projected)

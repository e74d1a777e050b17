from __future__ import annotations

import numpy as np

from camisp.core.distortion import LensDistortion


def rotation_matrices(rvecs: np.ndarray) -> np.ndarray:
    """(V,3) rotation vectors -> (V,3,3) matrices."""
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    # scipy rejects read-only buffers.
    rvecs = np.array(rvecs, dtype=np.float64).reshape(-1, 3)
    return Rot.from_rotvec(rvecs).as_matrix().reshape(-1, 3, 3)


def apply_intrinsics(K: np.ndarray, xd: np.ndarray, yd: np.ndarray) -> np.ndarray:
    K = np.asarray(K, dtype=np.float64).reshape(3, 3)
    u = K[0, 0] * xd + K[0, 1] * yd + K[0, 2]
    v = K[1, 1] * yd + K[1, 2]
    return np.stack([u, v], axis=-1)


def project_camera_points(XYZ_cam: np.ndarray, K: np.ndarray, dist: LensDistortion) -> np.ndarray:
    XYZ_cam = np.asarray(XYZ_cam, dtype=np.float64).reshape(-1, 3)
    Z = XYZ_cam[:, 2]
    # OpenCV convention: a point on the camera plane maps through 1/Z = 1.
    inv_z = np.divide(1.0, Z, out=np.ones_like(Z), where=np.abs(Z) > np.finfo(np.float64).eps)
    x = XYZ_cam[:, 0] * inv_z
    y = XYZ_cam[:, 1] * inv_z
    xd, yd = dist.distort(x, y)
    return apply_intrinsics(K, xd, yd)


def project_views(
    object_points: np.ndarray,
    view_index: np.ndarray,
    rvecs: np.ndarray,
    tvecs: np.ndarray,
    K: np.ndarray,
    dist: LensDistortion,
) -> np.ndarray:
    """
    Project board points of several views at once.

    `object_points` (N,3) and `view_index` (N,) are the concatenated points of
    all views and the view each point belongs to; `rvecs`/`tvecs` are (V,3).
    """
    object_points = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    view_index = np.asarray(view_index, dtype=np.intp).reshape(-1)
    R = rotation_matrices(rvecs)
    t = np.asarray(tvecs, dtype=np.float64).reshape(-1, 3)
    P_cam = np.einsum("nij,nj->ni", R[view_index], object_points) + t[view_index]
    return project_camera_points(P_cam, K, dist)


def project_points(
    object_points: np.ndarray,
    rvec: np.ndarray,
    tvec: np.ndarray,
    camera_matrix: np.ndarray,
    dist_coeffs: np.ndarray | None = None,
) -> np.ndarray:
    """
    Same contract as cv2.projectPoints for one pose, returning (N,2) float64.
    """
    object_points = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    view_index = np.zeros((object_points.shape[0],), dtype=np.intp)
    dist = LensDistortion.from_vector(dist_coeffs)
    return project_views(object_points, view_index, np.reshape(rvec, (1, 3)), np.reshape(tvec, (1, 3)), camera_matrix, dist)


def rms_error(observed: np.ndarray, projected: np.ndarray) -> float:
    """sqrt(mean of squared per-point L2 distances)."""
    observed = np.asarray(observed, dtype=np.float64).reshape(-1, 2)
    projected = np.asarray(projected, dtype=np.float64).reshape(-1, 2)
    if observed.shape != projected.shape:
        raise ValueError("observed and projected must have the same shape")
    if observed.shape[0] == 0:
        return 0.0
    d2 = np.sum((observed - projected) ** 2, axis=1)
    return float(np.sqrt(np.mean(d2)))

from __future__ import annotations

import logging

import cv2  # type: ignore
import numpy as np

from camisp.errors import SolverDivergence


logger = logging.getLogger(__name__)


def view_homography(object_points: np.ndarray, image_points: np.ndarray) -> np.ndarray:
    """
    Plane-to-image homography for one view (board z=0 plane -> pixels), H[2,2] = 1.
    """
    obj = np.asarray(object_points, dtype=np.float64).reshape(-1, 3)
    img = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
    if obj.shape[0] < 4 or obj.shape[0] != img.shape[0]:
        raise SolverDivergence("need >= 4 matching points per view for a homography")
    try:
        H, _mask = cv2.findHomography(obj[:, :2], img, 0)
    except cv2.error as e:
        raise SolverDivergence(f"homography estimation failed: {e}") from e
    if H is None or not np.all(np.isfinite(H)) or abs(float(H[2, 2])) < 1e-12:
        raise SolverDivergence("degenerate view: homography estimation failed")
    return H / H[2, 2]


def _conditioning(image_size: tuple[int, int]) -> np.ndarray:
    w, h = float(image_size[0]), float(image_size[1])
    s = 2.0 / max(w + h, 1.0)
    return np.array([[s, 0.0, -s * (w - 1) / 2.0], [0.0, s, -s * (h - 1) / 2.0], [0.0, 0.0, 1.0]], dtype=np.float64)


def _v_ij(H: np.ndarray, i: int, j: int) -> np.ndarray:
    hi = H[:, i]
    hj = H[:, j]
    return np.array(
        [
            hi[0] * hj[0],
            hi[0] * hj[1] + hi[1] * hj[0],
            hi[1] * hj[1],
            hi[2] * hj[0] + hi[0] * hj[2],
            hi[2] * hj[1] + hi[1] * hj[2],
            hi[2] * hj[2],
        ],
        dtype=np.float64,
    )


def closed_form_intrinsics(homographies: list[np.ndarray], image_size: tuple[int, int]) -> np.ndarray:
    """
    Zhang's closed-form camera matrix from >= 3 plane homographies.

    The homographies are expressed in a normalized pixel frame first, which keeps
    the 6x6 system well conditioned. Raises SolverDivergence when the recovered
    conic is not positive definite (e.g. all boards parallel).
    """
    if len(homographies) < 3:
        raise SolverDivergence("closed-form intrinsics need at least 3 views")
    N = _conditioning(image_size)
    rows: list[np.ndarray] = []
    for H in homographies:
        Hn = N @ np.asarray(H, dtype=np.float64).reshape(3, 3)
        Hn = Hn / np.linalg.norm(Hn)
        rows.append(_v_ij(Hn, 0, 1))
        rows.append(_v_ij(Hn, 0, 0) - _v_ij(Hn, 1, 1))
    V = np.stack(rows, axis=0)
    _u, _s, Vt = np.linalg.svd(V)
    b = Vt[-1]
    if b[0] < 0:
        b = -b
    B11, B12, B22, B13, B23, B33 = (float(x) for x in b)

    det = B11 * B22 - B12 * B12
    if B11 <= 0.0 or det <= 0.0:
        raise SolverDivergence("image of the absolute conic is not positive definite")
    v0 = (B12 * B13 - B11 * B23) / det
    lam = B33 - (B13 * B13 + v0 * (B12 * B13 - B11 * B23)) / B11
    if lam / B11 <= 0.0:
        raise SolverDivergence("image of the absolute conic is not positive definite")
    alpha = np.sqrt(lam / B11)
    beta = np.sqrt(lam * B11 / det)
    gamma = -B12 * alpha * alpha * beta / lam
    u0 = gamma * v0 / beta - B13 * alpha * alpha / lam

    Kn = np.array([[alpha, gamma, u0], [0.0, beta, v0], [0.0, 0.0, 1.0]], dtype=np.float64)
    K = np.linalg.solve(N, Kn)
    K /= K[2, 2]
    if not np.all(np.isfinite(K)) or K[0, 0] <= 0.0 or K[1, 1] <= 0.0:
        raise SolverDivergence("closed-form intrinsics are not finite")
    return K


def centered_focal_intrinsics(homographies: list[np.ndarray], image_size: tuple[int, int]) -> np.ndarray:
    """
    Fallback initialisation: principal point at the image centre, focal lengths
    from the orthogonality / equal-norm constraints in least squares.
    """
    w, h = float(image_size[0]), float(image_size[1])
    cx = (w - 1.0) / 2.0
    cy = (h - 1.0) / 2.0
    T = np.array([[1.0, 0.0, -cx], [0.0, 1.0, -cy], [0.0, 0.0, 1.0]], dtype=np.float64)

    A_rows: list[list[float]] = []
    b_rows: list[float] = []
    for H in homographies:
        H0 = T @ np.asarray(H, dtype=np.float64).reshape(3, 3)
        H0 = H0 / np.linalg.norm(H0)
        h1 = H0[:, 0]
        h2 = H0[:, 1]
        A_rows.append([h1[0] * h2[0], h1[1] * h2[1]])
        b_rows.append(-h1[2] * h2[2])
        A_rows.append([h1[0] ** 2 - h2[0] ** 2, h1[1] ** 2 - h2[1] ** 2])
        b_rows.append(-(h1[2] ** 2 - h2[2] ** 2))
    sol, *_ = np.linalg.lstsq(np.asarray(A_rows), np.asarray(b_rows), rcond=None)
    a, b = float(sol[0]), float(sol[1])
    if not (np.isfinite(a) and np.isfinite(b)) or a <= 0.0 or b <= 0.0:
        raise SolverDivergence("cannot initialise focal length from the given views")
    fx = 1.0 / np.sqrt(a)
    fy = 1.0 / np.sqrt(b)
    return np.array([[fx, 0.0, cx], [0.0, fy, cy], [0.0, 0.0, 1.0]], dtype=np.float64)


def initial_intrinsics(homographies: list[np.ndarray], image_size: tuple[int, int]) -> np.ndarray:
    try:
        return closed_form_intrinsics(homographies, image_size)
    except SolverDivergence as e:
        logger.info("closed-form intrinsics unavailable (%s), using centred principal point", e)
        return centered_focal_intrinsics(homographies, image_size)


def pose_from_homography(K: np.ndarray, H: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Board pose (rvec, tvec) from K and a plane homography, board in front of the camera.
    """
    from scipy.spatial.transform import Rotation as Rot  # type: ignore

    A = np.linalg.solve(np.asarray(K, dtype=np.float64), np.asarray(H, dtype=np.float64))
    n1 = np.linalg.norm(A[:, 0])
    n2 = np.linalg.norm(A[:, 1])
    if n1 < 1e-12 or n2 < 1e-12:
        raise SolverDivergence("degenerate homography for pose initialisation")
    lam = 2.0 / (n1 + n2)
    if A[2, 2] * lam < 0.0:
        lam = -lam
    r1 = lam * A[:, 0]
    r2 = lam * A[:, 1]
    r3 = np.cross(r1, r2)
    t = lam * A[:, 2]

    U, _s, Vt = np.linalg.svd(np.stack([r1, r2, r3], axis=1))
    R = U @ Vt
    if np.linalg.det(R) < 0.0:
        R = U @ np.diag([1.0, 1.0, -1.0]) @ Vt
    rvec = Rot.from_matrix(R).as_rotvec()
    return rvec.astype(np.float64), t.astype(np.float64)

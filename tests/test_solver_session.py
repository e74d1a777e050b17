from __future__ import annotations

import numpy as np
import pytest

from camisp.calib.model import CalibrationFlags, SolverCriteria
from camisp.calib.pattern import PatternSpec
from camisp.calib.session import CalibrationSession
from camisp.calib.solver import compute_reprojection_error, solve_calibration
from camisp.errors import InsufficientViews
from camisp.sim.chessboard import default_camera_matrix, distortion_preset, synthetic_poses, synthetic_views


IMAGE_SIZE = (640, 480)
PATTERN = PatternSpec(9, 6, 25.0)


def _session(n_views: int, distortion: np.ndarray | None = None, noise_std: float = 0.0) -> CalibrationSession:
    K = default_camera_matrix(IMAGE_SIZE)
    poses = synthetic_poses(PATTERN, n_views)
    session = CalibrationSession()
    for uv in synthetic_views(PATTERN, K, poses, distortion=distortion, noise_std=noise_std):
        assert session.add_view(uv, PATTERN.size, PATTERN.square_size_mm, IMAGE_SIZE)
    return session


def test_end_to_end_six_views() -> None:
    session = _session(6)
    assert session.calibrate()
    result = session.result
    assert result is not None
    assert result.rms_error < 0.05
    assert result.view_count == 6
    assert result.image_size == IMAGE_SIZE
    assert result.distortion.shape == (5,)
    np.testing.assert_allclose(result.camera_matrix, default_camera_matrix(IMAGE_SIZE), atol=0.05)
    assert result.skew == 0.0
    assert result.per_view_errors.shape == (6,)
    assert session.compute_reprojection_error() == pytest.approx(result.rms_error, abs=1e-9)


def test_fewer_than_five_views_fails_and_keeps_result() -> None:
    session = _session(6)
    assert session.calibrate()
    before = session.result
    assert before is not None
    snapshot = (before.camera_matrix.tobytes(), before.distortion.tobytes(), before.rms_error)

    session.clear_views()
    K = default_camera_matrix(IMAGE_SIZE)
    for uv in synthetic_views(PATTERN, K, synthetic_poses(PATTERN, 4)):
        session.add_view(uv, PATTERN.size, PATTERN.square_size_mm, IMAGE_SIZE)
    assert not session.calibrate()
    assert session.result is before
    assert (before.camera_matrix.tobytes(), before.distortion.tobytes(), before.rms_error) == snapshot


def test_fresh_session_cannot_calibrate() -> None:
    session = _session(4)
    assert not session.calibrate()
    assert session.result is None
    assert not CalibrationSession().calibrate()


def test_reprojection_error_sentinel() -> None:
    session = CalibrationSession()
    assert session.compute_reprojection_error() < 0.0
    session = _session(6)
    assert session.compute_reprojection_error() < 0.0
    assert session.calibrate()
    assert session.compute_reprojection_error() >= 0.0
    session.clear_views()
    assert session.compute_reprojection_error() < 0.0
    session.reset()
    assert session.result is None


def test_mismatched_image_size_rejected() -> None:
    K = default_camera_matrix(IMAGE_SIZE)
    uv = synthetic_views(PATTERN, K, synthetic_poses(PATTERN, 1))[0]
    session = CalibrationSession()
    assert session.add_view(uv, PATTERN.size, PATTERN.square_size_mm, IMAGE_SIZE)
    assert not session.add_view(uv, PATTERN.size, PATTERN.square_size_mm, (800, 600))
    assert session.view_count == 1
    assert session.image_size == IMAGE_SIZE


def test_add_view_rejects_wrong_corner_count() -> None:
    session = CalibrationSession()
    assert not session.add_view(np.zeros((10, 2)), PATTERN.size, PATTERN.square_size_mm, IMAGE_SIZE)
    assert session.view_count == 0


def test_solve_requires_five_views() -> None:
    session = _session(4)
    with pytest.raises(InsufficientViews):
        solve_calibration(list(session.views), IMAGE_SIZE)


def test_fixed_principal_point_and_aspect() -> None:
    session = _session(6)
    flags = CalibrationFlags(fix_principal_point=True, fix_aspect_ratio=True)
    assert session.calibrate(flags)
    result = session.result
    assert result is not None
    assert result.cx == pytest.approx((IMAGE_SIZE[0] - 1) / 2.0, abs=0.0)
    assert result.cy == pytest.approx((IMAGE_SIZE[1] - 1) / 2.0, abs=0.0)
    assert result.fx == result.fy
    assert result.rms_error < 0.05


@pytest.mark.parametrize(
    "flags,size",
    [
        (CalibrationFlags(rational_model=True), 8),
        (CalibrationFlags(thin_prism_model=True), 12),
        (CalibrationFlags(rational_model=True, thin_prism_model=True), 12),
    ],
)
def test_extended_models_vector_length(flags: CalibrationFlags, size: int) -> None:
    session = _session(6)
    assert session.calibrate(flags)
    result = session.result
    assert result is not None
    assert result.distortion.shape == (size,)
    assert result.rms_error < 0.05
    # tangential terms stay at zero by default
    assert result.distortion[2] == 0.0 and result.distortion[3] == 0.0
    if not flags.rational_model:
        np.testing.assert_array_equal(result.distortion[5:8], 0.0)


def test_recovers_radial_distortion() -> None:
    dist = distortion_preset("barrel").to_vector(5)
    session = _session(8, distortion=dist)
    assert session.calibrate(CalibrationFlags(fix_k3=True), SolverCriteria(max_iterations=200))
    result = session.result
    assert result is not None
    assert result.rms_error < 0.01
    assert result.distortion[4] == 0.0
    assert abs(result.fx - 800.0) < 2.0
    assert abs(result.distortion[0] - dist[0]) < 0.01


def test_noisy_views_rms_tracks_noise() -> None:
    session = _session(8, noise_std=0.2)
    assert session.calibrate()
    result = session.result
    assert result is not None
    assert 0.05 < result.rms_error < 0.4


def test_compute_reprojection_error_without_result() -> None:
    session = _session(5)
    assert compute_reprojection_error(list(session.views), None) == -1.0


def test_reprojection_error_after_views_replaced() -> None:
    session = _session(6)
    assert session.calibrate()
    held_rms = session.result.rms_error

    K = default_camera_matrix(IMAGE_SIZE)
    extra = synthetic_views(PATTERN, K, synthetic_poses(PATTERN, 1, jitter=0.2, seed=7))[0]
    assert session.add_view(extra, PATTERN.size, PATTERN.square_size_mm, IMAGE_SIZE)
    assert session.compute_reprojection_error() == pytest.approx(held_rms, abs=1e-9)

    session.clear_views()
    for uv in synthetic_views(PATTERN, K, synthetic_poses(PATTERN, 6, jitter=0.2, seed=3)):
        assert session.add_view(uv, PATTERN.size, PATTERN.square_size_mm, IMAGE_SIZE)
    assert session.compute_reprojection_error() < 0.0
    assert session.result.rms_error == held_rms

    assert session.calibrate()
    assert 0.0 <= session.compute_reprojection_error() < 0.05

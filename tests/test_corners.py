from __future__ import annotations

import numpy as np

from camisp.calib.corners import detect_corners, draw_corners
from camisp.calib.session import CalibrationSession
from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.sim.chessboard import render_chessboard, rendered_corner_positions


def test_detects_rendered_board_subpixel() -> None:
    board = render_chessboard((9, 6), square_px=40)
    corners = detect_corners(board, (9, 6))
    assert corners is not None
    assert corners.shape == (54, 2)
    truth = rendered_corner_positions((9, 6), square_px=40)
    d = np.linalg.norm(corners[:, None, :] - truth[None, :, :], axis=-1)
    assert float(np.max(np.min(d, axis=1))) < 0.5
    assert float(np.sum(corners[0])) <= float(np.sum(corners[-1]))


def test_detects_on_bgr_and_ndarray_input() -> None:
    board = render_chessboard((7, 5), square_px=30)
    assert detect_corners(board.to_bgr(), (7, 5)) is not None
    assert detect_corners(board.data, (7, 5)) is not None


def test_no_board_returns_none() -> None:
    blank = PixelBuffer(np.full((240, 320), 128, dtype=np.uint8), PixelFormat.GRAY)
    assert detect_corners(blank, (9, 6)) is None
    ramp = PixelBuffer(np.tile(np.arange(320, dtype=np.uint8)[None, :] // 2, (240, 1)), PixelFormat.GRAY)
    assert detect_corners(ramp, (9, 6)) is None
    assert detect_corners(PixelBuffer.empty(), (9, 6)) is None


def test_wrong_pattern_size_returns_none() -> None:
    board = render_chessboard((9, 6), square_px=40)
    assert detect_corners(board, (8, 8)) is None


def test_draw_corners_does_not_touch_input() -> None:
    board = render_chessboard((9, 6), square_px=40)
    before = board.data.copy()
    corners = detect_corners(board, (9, 6))
    overlay = draw_corners(board, (9, 6), corners, corners is not None)
    assert overlay.pixel_format is PixelFormat.BGR
    assert overlay.size == board.size
    np.testing.assert_array_equal(board.data, before)


def test_session_add_calibration_image() -> None:
    session = CalibrationSession()
    board = render_chessboard((9, 6), square_px=40)
    assert session.add_calibration_image(board, (9, 6), 25.0)
    assert session.image_size == board.size
    blank = PixelBuffer(np.full((board.height, board.width), 200, dtype=np.uint8), PixelFormat.GRAY)
    assert not session.add_calibration_image(blank, (9, 6), 25.0)
    assert not session.add_calibration_image(PixelBuffer.empty(), (9, 6), 25.0)
    assert session.view_count == 1

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from camisp.calib.corners import DetectorConfig, detect_corners
from camisp.calib.model import CalibrationFlags, CalibrationResult, CalibrationView, SolverCriteria
from camisp.calib.pattern import PatternSpec
from camisp.calib.solver import compute_reprojection_error, solve_calibration
from camisp.calib.store import load_calibration, save_calibration
from camisp.core.buffer import PixelBuffer
from camisp.core.undistort import undistort_image
from camisp.errors import CamIspError, InputInvalid, PatternNotFound


logger = logging.getLogger(__name__)


class CalibrationSession:
    """
    Accumulates chessboard views, solves for the camera model and keeps the result.

    Every public operation reports failure through its return value (False or
    -1.0) and a log record instead of raising. The held result only changes on
    a successful solve, a successful load, or reset().

    Not thread-safe: callers serialize access.
    """

    def __init__(self, *, detector_config: DetectorConfig = DetectorConfig()) -> None:
        self.detector_config = detector_config
        self._views: list[CalibrationView] = []
        self._image_size: tuple[int, int] | None = None
        self._result: CalibrationResult | None = None
        # Views the held result was solved from, in pose order.
        self._solved_views: tuple[CalibrationView, ...] = ()

    @property
    def views(self) -> tuple[CalibrationView, ...]:
        return tuple(self._views)

    @property
    def view_count(self) -> int:
        return len(self._views)

    @property
    def image_size(self) -> tuple[int, int] | None:
        return self._image_size

    @property
    def result(self) -> CalibrationResult | None:
        return self._result

    @property
    def is_calibrated(self) -> bool:
        return self._result is not None

    def _accept(self, view: CalibrationView) -> None:
        if self._image_size is not None and tuple(view.image_size) != self._image_size:
            raise InputInvalid(f"image size {view.image_size} does not match session image size {self._image_size}")
        self._views.append(view)
        if self._image_size is None:
            self._image_size = tuple(view.image_size)

    def add_calibration_image(self, buffer: PixelBuffer, pattern_size: tuple[int, int], square_size_mm: float) -> bool:
        """
        Detect the chessboard in `buffer` and keep the view. False if the image is
        empty, has the wrong size, or shows no complete board.
        """
        try:
            if buffer.is_empty:
                raise InputInvalid("empty calibration image")
            pattern = PatternSpec(int(pattern_size[0]), int(pattern_size[1]), float(square_size_mm))
            corners = detect_corners(buffer, pattern.size, config=self.detector_config)
            if corners is None:
                raise PatternNotFound(f"no {pattern.columns}x{pattern.rows} chessboard found")
            self._accept(
                CalibrationView(
                    image_points=corners,
                    object_points=pattern.object_points(),
                    pattern=pattern,
                    image_size=buffer.size,
                )
            )
        except (CamIspError, ValueError) as e:
            logger.warning("calibration image rejected: %s", e)
            return False
        logger.info("calibration view %d accepted", len(self._views))
        return True

    def add_view(
        self,
        image_points: np.ndarray,
        pattern_size: tuple[int, int],
        square_size_mm: float,
        image_size: tuple[int, int],
    ) -> bool:
        """Keep a view from corners detected elsewhere (row-major grid order)."""
        try:
            pattern = PatternSpec(int(pattern_size[0]), int(pattern_size[1]), float(square_size_mm))
            pts = np.asarray(image_points, dtype=np.float64).reshape(-1, 2)
            if pts.shape[0] != pattern.corner_count:
                raise InputInvalid(f"expected {pattern.corner_count} corners, got {pts.shape[0]}")
            if not np.all(np.isfinite(pts)):
                raise InputInvalid("corner positions must be finite")
            w, h = int(image_size[0]), int(image_size[1])
            if w <= 0 or h <= 0:
                raise InputInvalid("image size must be positive")
            self._accept(
                CalibrationView(image_points=pts.copy(), object_points=pattern.object_points(), pattern=pattern, image_size=(w, h))
            )
        except (CamIspError, ValueError) as e:
            logger.warning("calibration view rejected: %s", e)
            return False
        return True

    def calibrate(self, flags: CalibrationFlags = CalibrationFlags(), criteria: SolverCriteria = SolverCriteria()) -> bool:
        if self._image_size is None:
            logger.warning("calibration failed: no views")
            return False
        try:
            result = solve_calibration(self._views, self._image_size, flags, criteria)
        except CamIspError as e:
            logger.warning("calibration failed: %s", e)
            return False
        self._result = result
        self._solved_views = tuple(self._views)
        logger.info(
            "calibrated from %d views: fx=%.3f fy=%.3f cx=%.3f cy=%.3f rms=%.4f px",
            result.view_count,
            result.fx,
            result.fy,
            result.cx,
            result.cy,
            result.rms_error,
        )
        return True

    def compute_reprojection_error(self) -> float:
        """
        RMS reprojection error of the held result over the views it was solved
        from. -1.0 without a result, after a load, or once those views have been
        cleared, even if other views were added since.
        """
        solved = self._solved_views
        if not solved or len(self._views) < len(solved):
            return -1.0
        if any(view is not ref for view, ref in zip(self._views, solved)):
            return -1.0
        return compute_reprojection_error(list(solved), self._result)

    def save_calibration(self, path: str | Path) -> bool:
        if self._result is None:
            logger.warning("nothing to save: no calibration")
            return False
        try:
            save_calibration(path, self._result)
        except CamIspError as e:
            logger.warning("saving calibration failed: %s", e)
            return False
        return True

    def load_calibration(self, path: str | Path) -> bool:
        try:
            result = load_calibration(path)
        except CamIspError as e:
            logger.warning("loading calibration failed: %s", e)
            return False
        self._result = result
        self._solved_views = ()
        return True

    def clear_views(self) -> None:
        """Drop accumulated views; the held result is kept."""
        self._views.clear()
        self._image_size = None

    def reset(self) -> None:
        self.clear_views()
        self._result = None
        self._solved_views = ()

    def undistort(self, buffer: PixelBuffer) -> PixelBuffer:
        """
        Undistorted copy of `buffer` using the held result; an unchanged copy when
        there is no calibration or the buffer is empty. Bayer input comes back as BGR.
        """
        if self._result is None or buffer.is_empty:
            return buffer.copy()
        if buffer.is_raw:
            buffer = buffer.to_bgr()
        out = undistort_image(buffer.data, self._result.camera_matrix, self._result.lens_distortion())
        return buffer.with_data(out)

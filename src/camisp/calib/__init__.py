"""
Chessboard camera calibration: corner detection, closed-form initialisation,
joint least-squares refinement and the calibration file format.
"""

from camisp.calib.corners import DetectorConfig, detect_corners, draw_corners
from camisp.calib.model import CalibrationFlags, CalibrationResult, CalibrationView, SolverCriteria
from camisp.calib.pattern import PatternSpec, generate_object_points
from camisp.calib.session import CalibrationSession
from camisp.calib.solver import compute_reprojection_error, solve_calibration
from camisp.calib.store import load_calibration, save_calibration

__all__ = [
    "CalibrationFlags",
    "CalibrationResult",
    "CalibrationSession",
    "CalibrationView",
    "DetectorConfig",
    "PatternSpec",
    "SolverCriteria",
    "compute_reprojection_error",
    "detect_corners",
    "draw_corners",
    "generate_object_points",
    "load_calibration",
    "save_calibration",
    "solve_calibration",
]

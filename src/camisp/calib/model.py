from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from camisp.calib.pattern import PatternSpec
from camisp.core.distortion import LensDistortion


@dataclass(frozen=True)
class CalibrationFlags:
    """
    Which intrinsic/distortion terms the solver may move.

    Defaults match the capture application this package grew out of:
    tangential distortion off, everything else free.
    """

    fix_principal_point: bool = False
    zero_tangent_dist: bool = True
    fix_aspect_ratio: bool = False
    rational_model: bool = False
    thin_prism_model: bool = False
    fix_k1: bool = False
    fix_k2: bool = False
    fix_k3: bool = False
    fix_k4: bool = False
    fix_k5: bool = False
    fix_k6: bool = False

    @property
    def distortion_size(self) -> int:
        if self.thin_prism_model:
            return 12
        if self.rational_model:
            return 8
        return 5

    def fixed_radial(self) -> tuple[bool, ...]:
        return (self.fix_k1, self.fix_k2, self.fix_k3, self.fix_k4, self.fix_k5, self.fix_k6)


@dataclass(frozen=True)
class SolverCriteria:
    max_iterations: int = 30
    epsilon: float = float(np.finfo(np.float64).eps)


@dataclass(frozen=True)
class CalibrationView:
    """One accepted chessboard observation."""

    image_points: np.ndarray  # (N,2)
    object_points: np.ndarray  # (N,3), z=0
    pattern: PatternSpec
    image_size: tuple[int, int]  # (width, height)

    @property
    def point_count(self) -> int:
        return int(self.image_points.shape[0])


@dataclass(frozen=True)
class CalibrationResult:
    camera_matrix: np.ndarray  # (3,3)
    distortion: np.ndarray  # (5,), (8,) or (12,)
    rms_error: float
    image_size: tuple[int, int]  # (width, height)
    rvecs: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))  # (V,3)
    tvecs: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))  # (V,3)
    per_view_errors: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.float64))  # (V,)
    pattern: PatternSpec | None = None
    flags: CalibrationFlags | None = None

    def __post_init__(self) -> None:
        shapes = {
            "camera_matrix": (3, 3),
            "distortion": (-1,),
            "rvecs": (-1, 3),
            "tvecs": (-1, 3),
            "per_view_errors": (-1,),
        }
        for name, shape in shapes.items():
            arr = np.array(getattr(self, name), dtype=np.float64).reshape(shape)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)
        object.__setattr__(self, "image_size", (int(self.image_size[0]), int(self.image_size[1])))
        object.__setattr__(self, "rms_error", float(self.rms_error))

    @property
    def fx(self) -> float:
        return float(self.camera_matrix[0, 0])

    @property
    def fy(self) -> float:
        return float(self.camera_matrix[1, 1])

    @property
    def cx(self) -> float:
        return float(self.camera_matrix[0, 2])

    @property
    def cy(self) -> float:
        return float(self.camera_matrix[1, 2])

    @property
    def skew(self) -> float:
        return float(self.camera_matrix[0, 1])

    @property
    def view_count(self) -> int:
        return int(self.rvecs.shape[0])

    @property
    def has_poses(self) -> bool:
        return self.view_count > 0

    def lens_distortion(self) -> LensDistortion:
        return LensDistortion.from_vector(self.distortion)

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache

import numpy as np

from camisp.errors import ConfigValidationError


class DemosaicMethod(str, Enum):
    BILINEAR = "bilinear"
    EDGE_AWARE = "edge_aware"
    VNG = "vng"


def build_gamma_lut(gamma: float) -> np.ndarray:
    """
    256-entry uint8 table: lut[i] = round(255 * (i/255) ** (1/gamma)), halves rounded up.
    """
    g = float(gamma)
    if not np.isfinite(g) or g <= 0.0:
        raise ValueError(f"gamma must be a positive finite number, got {gamma!r}")
    x = np.arange(256, dtype=np.float64) / 255.0
    y = np.floor(255.0 * np.power(x, 1.0 / g) + 0.5)
    return np.clip(y, 0, 255).astype(np.uint8)


@lru_cache(maxsize=32)
def gamma_lut(gamma: float) -> np.ndarray:
    """Cached, read-only build_gamma_lut(gamma)."""
    lut = build_gamma_lut(gamma)
    lut.setflags(write=False)
    return lut


def _identity() -> np.ndarray:
    return np.eye(3, dtype=np.float64)


@dataclass
class ISPParameters:
    """
    Tunable state of the ISP pipeline.

    Mutable between frames; IspPipeline works on a snapshot() per run.
    `color_matrix` acts on pixels in buffer channel order: out = M @ (B, G, R).
    """

    demosaic_method: DemosaicMethod = DemosaicMethod.VNG

    wb_red: float = 1.0
    wb_green: float = 1.0
    wb_blue: float = 1.0
    auto_wb: bool = True

    color_matrix: np.ndarray = field(default_factory=_identity)

    gamma: float = 2.2

    exposure: float = 1.0
    contrast: float = 1.0
    brightness: float = 0.0

    denoise_enabled: bool = True
    denoise_strength: float = 1.0
    sharpen_enabled: bool = True
    sharpen_strength: float = 0.5

    lens_correction: bool = False
    camera_matrix: np.ndarray | None = None
    distortion: np.ndarray | None = None

    def __setattr__(self, name: str, value) -> None:
        # Checked on every assignment so gamma_lut can always be built.
        if name == "gamma":
            value = float(value)
            if not np.isfinite(value) or value <= 0.0:
                raise ConfigValidationError(f"gamma must be a positive finite number, got {value!r}")
        super().__setattr__(name, value)

    def __post_init__(self) -> None:
        self.demosaic_method = DemosaicMethod(self.demosaic_method)
        self.color_matrix = np.array(self.color_matrix, dtype=np.float64).reshape(3, 3)

    @property
    def gamma_lut(self) -> np.ndarray:
        # Looked up from the current gamma on every access.
        return gamma_lut(float(self.gamma))

    @property
    def wb_gains_bgr(self) -> tuple[float, float, float]:
        return (float(self.wb_blue), float(self.wb_green), float(self.wb_red))

    def set_wb_gains(self, red: float, green: float, blue: float) -> None:
        """Manual white balance; turns auto white balance off."""
        self.wb_red = float(red)
        self.wb_green = float(green)
        self.wb_blue = float(blue)
        self.auto_wb = False

    def set_calibration(self, camera_matrix: np.ndarray, distortion: np.ndarray, *, enable: bool = True) -> None:
        self.camera_matrix = np.array(camera_matrix, dtype=np.float64).reshape(3, 3)
        self.distortion = np.array(distortion, dtype=np.float64).reshape(-1)
        self.lens_correction = bool(enable)

    def snapshot(self) -> "ISPParameters":
        return copy.deepcopy(self)

from __future__ import annotations

from dataclasses import dataclass, fields

import numpy as np


SUPPORTED_SIZES = (4, 5, 8, 12)

_ORDER = ("k1", "k2", "p1", "p2", "k3", "k4", "k5", "k6", "s1", "s2", "s3", "s4")


@dataclass(frozen=True)
class LensDistortion:
    """
    Lens distortion on normalized camera coordinates (x=X/Z, y=Y/Z).

    Coefficients follow the OpenCV vector layout
    (k1, k2, p1, p2[, k3[, k4, k5, k6[, s1, s2, s3, s4]]]):
      radial: k1, k2, k3 over the rational denominator 1 + k4 r^2 + k5 r^4 + k6 r^6
      tangential: p1, p2
      thin prism: s1..s4
    """

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0
    k4: float = 0.0
    k5: float = 0.0
    k6: float = 0.0
    s1: float = 0.0
    s2: float = 0.0
    s3: float = 0.0
    s4: float = 0.0

    @classmethod
    def from_vector(cls, coeffs: np.ndarray | list[float] | None) -> "LensDistortion":
        if coeffs is None:
            return cls()
        c = np.asarray(coeffs, dtype=np.float64).reshape(-1)
        if c.size not in SUPPORTED_SIZES:
            raise ValueError(f"distortion vector must have one of {SUPPORTED_SIZES} coefficients, got {c.size}")
        return cls(**{name: float(v) for name, v in zip(_ORDER, c.tolist())})

    def to_vector(self, size: int = 5) -> np.ndarray:
        if size not in SUPPORTED_SIZES:
            raise ValueError(f"size must be one of {SUPPORTED_SIZES}")
        return np.array([getattr(self, name) for name in _ORDER[:size]], dtype=np.float64)

    @property
    def is_zero(self) -> bool:
        return all(getattr(self, f.name) == 0.0 for f in fields(self))

    def distort(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        x = np.asarray(x, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        r2 = x * x + y * y
        r4 = r2 * r2
        r6 = r4 * r2
        radial = (1.0 + self.k1 * r2 + self.k2 * r4 + self.k3 * r6) / (1.0 + self.k4 * r2 + self.k5 * r4 + self.k6 * r6)
        xy = x * y
        x_tan = 2.0 * self.p1 * xy + self.p2 * (r2 + 2.0 * x * x) + self.s1 * r2 + self.s2 * r4
        y_tan = self.p1 * (r2 + 2.0 * y * y) + 2.0 * self.p2 * xy + self.s3 * r2 + self.s4 * r4
        xd = x * radial + x_tan
        yd = y * radial + y_tan
        return xd, yd
